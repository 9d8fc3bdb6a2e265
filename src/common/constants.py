"""Shared constants for bookshelf.

For environment-based configuration (worker count, compiler command, etc.), use the env module:
    from common.env import env
    workers = env.workers()
"""

from pathlib import Path

# Configuration and working directories
DEFAULT_CONFIG_FILE = Path("bookshelf.toml")
DEFAULT_WORKING_DIR = Path("repos")

# Files written by a run
MANIFEST_FILENAME = "manifest.json"
RECORD_STORE_FILENAME = ".bookshelf-records.json"
RECORD_STORE_VERSION = 1

# Book compiler defaults (mdbook with the mdbook-epub backend)
DEFAULT_BUILD_COMMAND = "mdbook build"
DEFAULT_BOOK_BUILD_DIR = "book"
BOOK_CONFIG_FILE = "book.toml"
ARTIFACT_SUFFIX = ".epub"

# Process exit statuses
EXIT_OK = 0
EXIT_FATAL = 1
EXIT_PARTIAL = 2
