"""Shared exceptions for the bookshelf build pipeline."""


class BookshelfError(Exception):
    """Base exception for bookshelf operations."""

    pass


class ConfigError(BookshelfError):
    """Configuration is missing, unreadable or malformed. Fatal."""

    pass


class DestinationError(BookshelfError):
    """Destination directory cannot be created or written. Fatal."""

    pass


class SourceError(BookshelfError):
    """Failure scoped to a single source. Recoverable at batch level."""

    def __init__(self, source_id: str, message: str):
        super().__init__(message)
        self.source_id = source_id
        self.message = message

    def __str__(self) -> str:
        return f"{self.source_id}: {self.message}"


class SyncError(SourceError):
    """Repository could not be cloned, fetched or resolved."""

    pass


class BuildError(SourceError):
    """Book compiler failed or its artifact could not be placed."""

    pass


class RenderError(BookshelfError):
    """Catalog could not be rendered or written. Fatal."""

    pass
