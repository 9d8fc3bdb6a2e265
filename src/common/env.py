"""Environment configuration interface for bookshelf.

This module provides a clean interface for accessing environment variables,
centralizing all environment variable access in one place. Values found in
``bookshelf.toml`` take precedence over these, and CLI flags over both.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

from common.constants import DEFAULT_BUILD_COMMAND, DEFAULT_CONFIG_FILE

# Load environment variables from .env file if it exists
load_dotenv()


def _positive_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    value = int(raw)
    if value < 1:
        raise ValueError(f"{name} must be a positive integer, got {raw!r}")
    return value


def _positive_float(name: str) -> float | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    value = float(raw)
    if value <= 0:
        raise ValueError(f"{name} must be a positive number, got {raw!r}")
    return value


class Environment:
    """Interface for accessing environment configuration."""

    @staticmethod
    def config_path() -> Path:
        """Get the path of the shelf configuration document.

        Returns:
            Path to the TOML file, defaults to ./bookshelf.toml
        """
        return Path(os.getenv("BOOKSHELF_CONFIG", str(DEFAULT_CONFIG_FILE)))

    @staticmethod
    def workers() -> int | None:
        """Get the size of the build worker pool.

        Returns:
            Worker count, or None to fall back to the number of CPUs
        """
        return _positive_int("BOOKSHELF_WORKERS")

    @staticmethod
    def build_command() -> str:
        """Get the book compiler command line.

        Returns:
            Command string, defaults to 'mdbook build'
        """
        return os.getenv("BOOKSHELF_BUILD_COMMAND", DEFAULT_BUILD_COMMAND)

    @staticmethod
    def build_timeout() -> float | None:
        """Get the per-source compiler timeout in seconds.

        Returns:
            Timeout, or None for no timeout
        """
        return _positive_float("BOOKSHELF_BUILD_TIMEOUT")

    @staticmethod
    def git_timeout() -> float | None:
        """Get the timeout in seconds applied to each git command.

        Returns:
            Timeout, or None for no timeout
        """
        return _positive_float("BOOKSHELF_GIT_TIMEOUT")

    @staticmethod
    def log_level() -> str:
        """Get the logging level.

        Returns:
            Upper-cased level name, defaults to 'INFO'
        """
        return os.getenv("LOG_LEVEL", "INFO").upper()


# Singleton instance for convenient access
env = Environment()
