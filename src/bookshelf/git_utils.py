"""Git utilities for keeping book working copies in sync with upstream."""

import os
import subprocess
from datetime import datetime, timezone
from pathlib import Path

from common.logger import get_logger

from .models import SourceSpec, SyncResult, identity_parts, is_local_path
from .types import SyncError

logger = get_logger(__name__)

# Fail instead of waiting for credentials nobody will type
NON_INTERACTIVE_ENV = {
    "GIT_TERMINAL_PROMPT": "0",
    "GIT_ASKPASS": "",
    "SSH_ASKPASS": "",
}


def working_copy_path(repo_url: str, working_dir: Path) -> Path:
    """
    Deterministic location of a source's working copy.

    Args:
        repo_url: Repository location (URL, scp-like address or local path)
        working_dir: Directory holding all working copies

    Returns:
        Path under working_dir, e.g. repos/github.com/rams3s/mdbook-dummy.git
    """
    return Path(working_dir).joinpath(*identity_parts(repo_url))


def clone_location(repo_url: str) -> str:
    """
    Location handed to git for cloning and compared against the origin remote.

    Relative local paths are resolved against the current directory, since
    git runs from inside the working directory.
    """
    if is_local_path(repo_url):
        return str(Path(repo_url).expanduser().resolve())
    return repo_url


def _git_env() -> dict[str, str]:
    git_env = os.environ.copy()
    git_env.update(NON_INTERACTIVE_ENV)
    git_env.setdefault("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
    return git_env


def _run_git(
    args: list[str],
    *,
    cwd: Path,
    source_id: str,
    timeout: float | None = None,
) -> str:
    """
    Run a git sub-command and return stripped stdout.

    Raises:
        SyncError: If git is missing, times out or exits non-zero
    """
    try:
        completed = subprocess.run(
            ["git", *args],
            cwd=cwd,
            env=_git_env(),
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        raise SyncError(source_id, f"git is not available: {e}") from e
    except PermissionError as e:
        raise SyncError(source_id, f"permission denied running git in {cwd}: {e}") from e
    except subprocess.TimeoutExpired as e:
        raise SyncError(source_id, f"git {args[0]} timed out after {timeout}s") from e

    if completed.returncode != 0:
        detail = completed.stderr.strip() or completed.stdout.strip() or "no output"
        raise SyncError(source_id, f"git {args[0]} failed: {detail}")

    return completed.stdout.strip()


def get_current_commit_hash(repo_root: Path, source_id: str = "", timeout: float | None = None) -> str:
    """
    Get current HEAD commit hash.

    Args:
        repo_root: Path to git repository root

    Returns:
        Full commit hash
    """
    return _run_git(["rev-parse", "HEAD"], cwd=repo_root, source_id=source_id, timeout=timeout)


def get_commit_timestamp(
    repo_root: Path,
    commit_hash: str,
    source_id: str = "",
    timeout: float | None = None,
) -> str:
    """
    Get the commit time of a revision as an RFC 3339 UTC timestamp.

    Returns:
        Timestamp string, e.g. 2019-04-19T11:02:18+00:00
    """
    seconds = _run_git(
        ["show", "-s", "--format=%ct", commit_hash],
        cwd=repo_root,
        source_id=source_id,
        timeout=timeout,
    )
    try:
        return datetime.fromtimestamp(int(seconds), tz=timezone.utc).isoformat()
    except ValueError as e:
        raise SyncError(source_id, f"unexpected commit time {seconds!r}") from e


def is_git_repository(path: Path) -> bool:
    return (path / ".git").exists()


def _clone(source: SourceSpec, dest: Path, timeout: float | None) -> None:
    logger.info(f"Cloning {source.repo_url} to {dest}")
    try:
        dest.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise SyncError(source.identity, f"cannot create {dest.parent}: {e}") from e

    args = ["clone", "--quiet"]
    if source.branch:
        args += ["--branch", source.branch]
    args += ["--", clone_location(source.repo_url), str(dest)]
    _run_git(args, cwd=dest.parent, source_id=source.identity, timeout=timeout)


def _update(source: SourceSpec, dest: Path, timeout: float | None) -> None:
    source_id = source.identity

    remote_url = _run_git(
        ["remote", "get-url", "origin"], cwd=dest, source_id=source_id, timeout=timeout
    )
    expected_url = clone_location(source.repo_url)
    if remote_url != expected_url:
        raise SyncError(
            source_id,
            f"working copy {dest} tracks {remote_url}, not {expected_url}",
        )

    logger.info(f"Found {dest}. Fetching {source.repo_url}")
    _run_git(["fetch", "--prune", "--quiet", "origin"], cwd=dest, source_id=source_id, timeout=timeout)

    if source.branch:
        target = f"origin/{source.branch}"
    else:
        # Follow the remote default branch even if it was renamed upstream
        _run_git(["remote", "set-head", "origin", "--auto"], cwd=dest, source_id=source_id, timeout=timeout)
        target = "origin/HEAD"

    # Working copies are disposable: drop local commits and files
    _run_git(["reset", "--hard", "--quiet", target], cwd=dest, source_id=source_id, timeout=timeout)
    _run_git(["clean", "-ffdxq"], cwd=dest, source_id=source_id, timeout=timeout)


def sync(source: SourceSpec, working_dir: Path, timeout: float | None = None) -> SyncResult:
    """
    Clone or update the working copy of a source and resolve its revision.

    - No working copy (or an empty directory): clone
    - Existing working copy: fetch and hard-reset to upstream, discarding
      local changes and diverged history

    Args:
        source: Source to synchronize
        working_dir: Directory holding all working copies
        timeout: Optional timeout in seconds for each git command

    Returns:
        SyncResult with working copy path, full commit hash and commit time

    Raises:
        SyncError: If the source is unreachable, needs credentials, or the
            local path is unusable
    """
    dest = working_copy_path(source.repo_url, working_dir)

    if is_git_repository(dest):
        _update(source, dest, timeout)
    elif dest.exists() and (not dest.is_dir() or any(dest.iterdir())):
        raise SyncError(source.identity, f"{dest} exists but is not a git repository")
    else:
        _clone(source, dest, timeout)

    revision = get_current_commit_hash(dest, source.identity, timeout)
    last_modified = get_commit_timestamp(dest, revision, source.identity, timeout)

    logger.debug(f"{source.identity} is at {revision[:7]} ({last_modified})")

    return SyncResult(path=dest, revision=revision, last_modified=last_modified)
