"""Load bookshelf.toml into a ShelfConfig."""

import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from common.constants import DEFAULT_WORKING_DIR
from common.logger import get_logger

from .models import SourceSpec
from .types import ConfigError

logger = get_logger(__name__)

SHELF_KEYS = {
    "title",
    "destination-dir",
    "templates-dir",
    "working-dir",
    "workers",
    "fail-on-source-error",
    "build-command",
    "build-timeout",
    "book",
}
BOOK_KEYS = {"title", "folder", "repo-url", "url", "branch", "env-var"}


@dataclass(frozen=True)
class ShelfConfig:
    """In-memory form of bookshelf.toml.

    Example document:

        title = "My eBookshelf"
        destination-dir = "out"
        templates-dir = "templates"

        [[book]]
        repo-url = "https://github.com/rams3s/mdbook-dummy.git"
        url = "https://rams3s.github.io/mdbook-dummy/index.html"

        [book.env-var]
        MDBOOK_BOOK__TITLE = "Hello Rust"
    """

    title: str = ""
    destination_dir: Path | None = None
    templates_dir: Path | None = None
    working_dir: Path | None = None
    sources: tuple[SourceSpec, ...] = field(default_factory=tuple)
    workers: int | None = None
    fail_on_source_error: bool = True
    build_command: str | list[str] | None = None
    build_timeout: float | None = None

    def with_overrides(
        self,
        destination_dir: Path | None = None,
        templates_dir: Path | None = None,
        working_dir: Path | None = None,
        workers: int | None = None,
        fail_on_source_error: bool | None = None,
    ) -> "ShelfConfig":
        """Apply command line values; None leaves the document value."""
        changes: dict[str, Any] = {}
        if destination_dir is not None:
            changes["destination_dir"] = Path(destination_dir)
        if templates_dir is not None:
            changes["templates_dir"] = Path(templates_dir)
        if working_dir is not None:
            changes["working_dir"] = Path(working_dir)
        if workers is not None:
            if workers < 1:
                raise ConfigError(f"workers must be a positive integer, got {workers}")
            changes["workers"] = workers
        if fail_on_source_error is not None:
            changes["fail_on_source_error"] = fail_on_source_error
        return replace(self, **changes)

    def resolve(self) -> "ShelfConfig":
        """
        Check the configuration is runnable and fill defaults.

        Raises:
            ConfigError: If no destination directory is set
        """
        if self.destination_dir is None:
            raise ConfigError(
                "Destination dir must be set in the config file or through the command line"
            )
        if self.working_dir is None:
            return replace(self, working_dir=DEFAULT_WORKING_DIR)
        return self


def _expect(value: Any, kind: type | tuple[type, ...], key: str) -> Any:
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) and bool not in (kind if isinstance(kind, tuple) else (kind,)):
        raise ConfigError(f"'{key}' has the wrong type: {value!r}")
    if not isinstance(value, kind):
        raise ConfigError(f"'{key}' has the wrong type: {value!r}")
    return value


def _optional_path(table: dict[str, Any], key: str) -> Path | None:
    if key not in table:
        return None
    return Path(_expect(table[key], str, key))


def _env_value(value: Any, key: str) -> str:
    """Convert a TOML scalar to the string an environment variable holds."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ConfigError(f"env-var '{key}' must be a string, number or boolean, got {value!r}")


def _warn_unknown(table: dict[str, Any], known: set[str], where: str) -> None:
    for key in sorted(set(table) - known):
        logger.warning(f"Ignoring unknown key '{key}' in {where}")


def parse_source(raw: Any, position: int) -> SourceSpec:
    where = f"[[book]] #{position + 1}"
    if not isinstance(raw, dict):
        raise ConfigError(f"{where} must be a table")
    _warn_unknown(raw, BOOK_KEYS, where)

    repo_url = raw.get("repo-url")
    if not isinstance(repo_url, str) or not repo_url.strip():
        raise ConfigError(f"{where} needs a non-empty 'repo-url'")

    env_table = raw.get("env-var", {})
    if not isinstance(env_table, dict):
        raise ConfigError(f"{where} 'env-var' must be a table")

    title = raw.get("title")
    folder = raw.get("folder")
    branch = raw.get("branch")

    return SourceSpec(
        repo_url=repo_url.strip(),
        url=_expect(raw.get("url", ""), str, "url"),
        title=_expect(title, str, "title") if title is not None else None,
        folder=_expect(folder, str, "folder") if folder is not None else None,
        branch=_expect(branch, str, "branch") if branch is not None else None,
        env_vars={str(k): _env_value(v, k) for k, v in env_table.items()},
    )


def parse_config(data: dict[str, Any]) -> ShelfConfig:
    """
    Build a ShelfConfig from a parsed TOML table.

    Raises:
        ConfigError: On wrong types, missing repo-url or duplicate sources
    """
    _warn_unknown(data, SHELF_KEYS, "bookshelf config")

    raw_books = data.get("book", [])
    if not isinstance(raw_books, list):
        raise ConfigError("'book' must be an array of tables ([[book]])")

    sources = tuple(parse_source(raw, i) for i, raw in enumerate(raw_books))

    seen: set[str] = set()
    for source in sources:
        if source.identity in seen:
            raise ConfigError(f"Duplicate book repo-url: {source.identity}")
        seen.add(source.identity)

    workers = data.get("workers")
    if workers is not None:
        _expect(workers, int, "workers")
        if workers < 1:
            raise ConfigError(f"'workers' must be a positive integer, got {workers}")

    build_command = data.get("build-command")
    if build_command is not None:
        if isinstance(build_command, list):
            build_command = [_expect(part, str, "build-command") for part in build_command]
        else:
            _expect(build_command, str, "build-command")

    build_timeout = data.get("build-timeout")
    if build_timeout is not None:
        _expect(build_timeout, (int, float), "build-timeout")
        if build_timeout <= 0:
            raise ConfigError(f"'build-timeout' must be positive, got {build_timeout}")
        build_timeout = float(build_timeout)

    return ShelfConfig(
        title=_expect(data.get("title", ""), str, "title"),
        destination_dir=_optional_path(data, "destination-dir"),
        templates_dir=_optional_path(data, "templates-dir"),
        working_dir=_optional_path(data, "working-dir"),
        sources=sources,
        workers=workers,
        fail_on_source_error=_expect(data.get("fail-on-source-error", True), bool, "fail-on-source-error"),
        build_command=build_command,
        build_timeout=build_timeout,
    )


def parse_config_text(text: str) -> ShelfConfig:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML: {e}") from e
    return parse_config(data)


def load_config(path: Path, required: bool = True) -> ShelfConfig:
    """
    Load the shelf configuration from disk.

    Args:
        path: Path to bookshelf.toml
        required: If False, a missing file yields an empty configuration

    Returns:
        ShelfConfig

    Raises:
        ConfigError: If the file is required and missing, unreadable or malformed
    """
    path = Path(path)
    if not path.exists():
        if required:
            raise ConfigError(f"Config file not found: {path}")
        logger.warning(f"No config file at {path}, using command line values only")
        return ShelfConfig()

    logger.info(f"Loading config from {path}")
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Could not read {path}: {e}") from e

    try:
        return parse_config_text(text)
    except ConfigError as e:
        raise ConfigError(f"{path}: {e}") from e
