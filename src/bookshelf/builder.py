"""Drive the external book compiler and place its artifact."""

import os
import shlex
import shutil
import subprocess
import tempfile
import tomllib
from pathlib import Path
from typing import Any, Mapping, Sequence

from common.constants import (
    ARTIFACT_SUFFIX,
    BOOK_CONFIG_FILE,
    DEFAULT_BOOK_BUILD_DIR,
    DEFAULT_BUILD_COMMAND,
)
from common.logger import get_logger

from .models import BuildArtifact, SyncResult
from .types import BuildError

logger = get_logger(__name__)

# Lines of compiler stderr kept in a BuildError
STDERR_TAIL_LINES = 20


def parse_command(command: str | Sequence[str] | None) -> list[str]:
    """Normalize a compiler command given as a string or an argv list."""
    if command is None:
        command = DEFAULT_BUILD_COMMAND
    if isinstance(command, str):
        return shlex.split(command)
    return [str(part) for part in command]


def _read_book_config(book_root: Path) -> dict[str, Any]:
    config_path = book_root / BOOK_CONFIG_FILE
    if not config_path.is_file():
        return {}
    try:
        with open(config_path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Could not read {config_path}: {e}")
        return {}


def book_setting(
    book_root: Path,
    environ: Mapping[str, str],
    section: str,
    key: str,
) -> Any:
    """
    Look up a book.toml setting the way mdbook does.

    An environment variable MDBOOK_<SECTION>__<KEY> (dashes become
    underscores) wins over the value in book.toml.

    Args:
        book_root: Directory containing book.toml
        environ: Environment the compiler runs with
        section: Table name, e.g. "book"
        key: Key inside the table, e.g. "title"

    Returns:
        Setting value or None
    """
    env_name = f"MDBOOK_{section}__{key}".upper().replace("-", "_")
    if env_name in environ:
        return environ[env_name]
    table = _read_book_config(book_root).get(section, {})
    return table.get(key) if isinstance(table, dict) else None


def _output_dir(book_root: Path, environ: Mapping[str, str]) -> Path:
    build_dir = book_setting(book_root, environ, "build", "build-dir") or DEFAULT_BOOK_BUILD_DIR
    return book_root / str(build_dir)


def _clear_stale_artifacts(output_dir: Path) -> None:
    if not output_dir.is_dir():
        return
    for stale in output_dir.rglob(f"*{ARTIFACT_SUFFIX}"):
        stale.unlink(missing_ok=True)


def find_artifact(output_dir: Path, title: str | None) -> Path | None:
    """
    Locate the e-book the compiler produced.

    mdbook-epub writes <build-dir>/<title>.epub, or <build-dir>/epub/<title>.epub
    when several renderers are configured. When more than one EPUB exists the
    one named after the title wins, then the first in path order.
    """
    if not output_dir.is_dir():
        return None

    candidates = sorted(p for p in output_dir.rglob(f"*{ARTIFACT_SUFFIX}") if p.is_file())
    if not candidates:
        return None

    if title:
        for candidate in candidates:
            if candidate.stem == title:
                return candidate

    return candidates[0]


def _place(artifact: Path, destination_dir: Path, artifact_name: str) -> Path:
    """Copy the artifact into the destination via a temporary file and rename."""
    target = destination_dir / artifact_name
    destination_dir.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{artifact_name}.", suffix=".tmp", dir=destination_dir)
    os.close(fd)
    try:
        shutil.copyfile(artifact, tmp_name)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return target


def _stderr_tail(text: str) -> str:
    lines = [line for line in text.strip().splitlines() if line.strip()]
    return "\n".join(lines[-STDERR_TAIL_LINES:])


def build(
    sync_result: SyncResult,
    env_overrides: Mapping[str, str] | None,
    destination_dir: Path,
    *,
    artifact_name: str,
    folder: str | None = None,
    command: str | Sequence[str] | None = None,
    timeout: float | None = None,
    source_id: str | None = None,
) -> BuildArtifact:
    """
    Compile a synchronized working copy into an e-book.

    The compiler runs as a subprocess in the book root with the process
    environment plus env_overrides (overrides win). The parent environment is
    never modified, so concurrent builds cannot see each other's overrides.

    Args:
        sync_result: Synchronized working copy
        env_overrides: Per-source environment variables for this build only
        destination_dir: Shared directory receiving all artifacts
        artifact_name: File name of the placed artifact (unique per source)
        folder: Book root relative to the working copy
        command: Compiler command, defaults to 'mdbook build'
        timeout: Optional timeout in seconds
        source_id: Identity used in errors and logs

    Returns:
        BuildArtifact with placed path, byte size and declared title

    Raises:
        BuildError: If the compiler fails, produces nothing, or the artifact
            cannot be written to the destination
    """
    source_id = source_id or str(sync_result.path)
    book_root = sync_result.path / folder if folder else sync_result.path
    argv = parse_command(command)

    if not book_root.is_dir():
        raise BuildError(source_id, f"book root {book_root} does not exist")
    if not argv:
        raise BuildError(source_id, "empty build command")

    environ = os.environ.copy()
    environ.update(env_overrides or {})

    output_dir = _output_dir(book_root, environ)
    _clear_stale_artifacts(output_dir)

    logger.info(f"Building {source_id} with `{shlex.join(argv)}`")
    try:
        completed = subprocess.run(
            argv,
            cwd=book_root,
            env=environ,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        raise BuildError(source_id, f"book compiler not found: {argv[0]}") from e
    except PermissionError as e:
        raise BuildError(source_id, f"cannot run book compiler {argv[0]}: {e}") from e
    except subprocess.TimeoutExpired as e:
        raise BuildError(source_id, f"book compiler timed out after {timeout}s") from e

    if completed.returncode != 0:
        raise BuildError(
            source_id,
            f"book compiler exited with status {completed.returncode}: "
            f"{_stderr_tail(completed.stderr) or 'no output'}",
        )

    title = book_setting(book_root, environ, "book", "title")
    title = str(title) if title else None

    produced = find_artifact(output_dir, title)
    if produced is None:
        raise BuildError(source_id, f"book compiler produced no {ARTIFACT_SUFFIX} under {output_dir}")

    try:
        placed = _place(produced, Path(destination_dir), artifact_name)
        size = placed.stat().st_size
    except OSError as e:
        raise BuildError(source_id, f"could not write artifact to {destination_dir}: {e}") from e

    logger.info(f"Generated epub into {placed} ({size} bytes)")

    return BuildArtifact(path=placed, size=size, title=title)
