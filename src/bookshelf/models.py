"""Data models for a bookshelf run."""

import hashlib
import json
import re
from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path, PurePosixPath
from urllib.parse import urlparse

from common.constants import ARTIFACT_SUFFIX

NETWORK_SCHEMES = ("http", "https", "ssh", "git", "git+ssh")

# user@host:path/to/repo.git
SCP_LIKE_PATTERN = re.compile(r"^(?:[^@/]+@)?(?P<host>[^:/]+):(?P<path>(?!//).+)$")

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def _clean_segment(segment: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", segment).strip("._")
    return cleaned or "_"


def location_digest(repo_url: str) -> str:
    return hashlib.sha1(repo_url.encode("utf-8")).hexdigest()[:10]


def is_local_path(repo_url: str) -> bool:
    """True for plain filesystem paths, as opposed to URLs and scp-like addresses."""
    if "://" in repo_url:
        return False
    # A one-letter scheme is a Windows drive
    if len(urlparse(repo_url).scheme) == 1:
        return True
    return SCP_LIKE_PATTERN.match(repo_url) is None


def identity_parts(repo_url: str) -> list[str]:
    """
    Split a repository location into filesystem-safe path segments.

    Examples:
        https://github.com/rams3s/mdbook-dummy.git -> ["github.com", "rams3s", "mdbook-dummy.git"]
        git@github.com:rams3s/mdbook-dummy.git     -> ["github.com", "rams3s", "mdbook-dummy.git"]
        /srv/books/guide                           -> ["local", "guide-<digest>"]

    Local paths get a digest of the full location so that two checkouts with
    the same directory name do not collide.
    """
    parsed = urlparse(repo_url)

    if parsed.scheme in NETWORK_SCHEMES and parsed.netloc:
        host = parsed.hostname or parsed.netloc
        segments = [host, *PurePosixPath(parsed.path).parts[1:]]
    else:
        scp = SCP_LIKE_PATTERN.match(repo_url) if not parsed.scheme or len(parsed.scheme) > 1 else None
        if scp and parsed.scheme != "file":
            segments = [scp.group("host"), *PurePosixPath(scp.group("path")).parts]
            segments = [s for s in segments if s != "/"]
        else:
            local = parsed.path if parsed.scheme == "file" else repo_url
            name = Path(local.rstrip("/\\")).name or "repo"
            segments = ["local", f"{name}-{location_digest(repo_url)}"]

    return [_clean_segment(s) for s in segments if s not in ("", ".", "..")]


@dataclass(frozen=True)
class SourceSpec:
    """One configured book source. Identity is the repository location."""

    repo_url: str
    url: str = ""
    title: str | None = None
    folder: str | None = None
    branch: str | None = None
    env_vars: dict[str, str] = field(default_factory=dict, hash=False)

    @property
    def identity(self) -> str:
        return self.repo_url

    @property
    def slug(self) -> str:
        """
        Stable file name stem for this source's artifact.

        Joining segments is lossy (team/book and team_book read the same), so
        network locations get a digest of the full location. Local paths
        already carry one.
        """
        parts = identity_parts(self.repo_url)
        stem = "_".join(parts)
        if stem.endswith(".git"):
            stem = stem[: -len(".git")]
        digest = location_digest(self.repo_url)
        if stem.endswith(digest):
            return stem
        return f"{stem}-{digest}"

    @property
    def artifact_name(self) -> str:
        return f"{self.slug}{ARTIFACT_SUFFIX}"


@dataclass(frozen=True)
class SyncResult:
    """Working copy state after synchronization."""

    path: Path
    revision: str
    last_modified: str


@dataclass(frozen=True)
class BuildArtifact:
    """A compiled e-book placed in the destination directory."""

    path: Path
    size: int
    title: str | None = None


@dataclass(frozen=True)
class BuildRecord:
    """Last successful build of a source, persisted between runs."""

    source_id: str
    revision: str
    artifact_path: str
    artifact_size: int
    built_at: str
    title: str | None = None
    last_modified: str = ""
    config_digest: str = ""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "BuildRecord":
        return cls(
            source_id=data["source_id"],
            revision=data["revision"],
            artifact_path=data["artifact_path"],
            artifact_size=int(data["artifact_size"]),
            built_at=data["built_at"],
            title=data.get("title"),
            last_modified=data.get("last_modified", ""),
            config_digest=data.get("config_digest", ""),
        )


@dataclass(frozen=True)
class CatalogEntry:
    """One row of the published catalog."""

    title: str
    path: str
    epub_size: int
    url: str
    repo_url: str
    commit_sha: str
    last_modified: str

    def to_dict(self) -> dict:
        return asdict(self)


class SourceState(str, Enum):
    """Per-source pipeline state."""

    PENDING = "pending"
    SYNCING = "syncing"
    SYNC_FAILED = "sync_failed"
    CHECKED = "checked"
    BUILDING = "building"
    BUILD_FAILED = "build_failed"
    REUSED = "reused"
    SUCCEEDED = "succeeded"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_success(self) -> bool:
        return self in (SourceState.REUSED, SourceState.SUCCEEDED)


TERMINAL_STATES = frozenset(
    {
        SourceState.SYNC_FAILED,
        SourceState.BUILD_FAILED,
        SourceState.REUSED,
        SourceState.SUCCEEDED,
    }
)


@dataclass(frozen=True)
class SourceFailure:
    """Why a source produced no usable artifact."""

    source_id: str
    stage: str
    reason: str


@dataclass
class SourceResult:
    """Terminal outcome of one source, stored in its configuration slot."""

    index: int
    source: SourceSpec
    state: SourceState
    entry: CatalogEntry | None = None
    record: BuildRecord | None = None
    failure: SourceFailure | None = None


@dataclass
class BatchOutcome:
    """Result of a whole run, in configuration order."""

    title: str = ""
    timestamp: str = ""
    entries: list[CatalogEntry] = field(default_factory=list)
    failures: list[SourceFailure] = field(default_factory=list)
    built: int = 0
    reused: int = 0
    _finalized: bool = field(default=False, repr=False, compare=False)

    def add(self, result: SourceResult) -> None:
        """Append a terminal source result. Callers add in configuration order."""
        if self._finalized:
            raise RuntimeError("BatchOutcome is finalized")
        if not result.state.is_terminal:
            raise ValueError(f"{result.source.identity} is not finished ({result.state.value})")

        if result.state.is_success and result.entry is not None:
            self.entries.append(result.entry)
            if result.state is SourceState.SUCCEEDED:
                self.built += 1
            else:
                self.reused += 1
        elif result.failure is not None:
            self.failures.append(result.failure)

    def finalize(self, timestamp: str) -> "BatchOutcome":
        self.timestamp = timestamp
        self._finalized = True
        return self

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def has_failures(self) -> bool:
        return bool(self.failures)


def config_digest(source: SourceSpec, destination_dir: Path, command: list[str]) -> str:
    """Digest of everything besides the revision that changes what a build produces."""
    payload = {
        "folder": source.folder,
        "branch": source.branch,
        "env_vars": source.env_vars,
        "destination": str(destination_dir.resolve() / source.artifact_name),
        "command": command,
    }
    encoded = json.dumps(payload, sort_keys=True).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()
