"""Decide whether a source must be rebuilt or its last artifact reused."""

from dataclasses import dataclass
from pathlib import Path

from .models import BuildRecord, SyncResult


@dataclass(frozen=True)
class Build:
    """The source must be compiled."""

    reason: str


@dataclass(frozen=True)
class Reuse:
    """The previous artifact is current."""

    record: BuildRecord


Decision = Build | Reuse


def needs_build(
    source_id: str,
    sync_result: SyncResult,
    prior_record: BuildRecord | None,
    config_digest: str | None = None,
) -> Decision:
    """
    Compare the synchronized revision against the last successful build.

    Reuse requires all of:
    - a record for this source
    - the same revision
    - the recorded artifact still on disk
    - the same build configuration, when a digest is given

    A record whose artifact was deleted never counts, even at the same
    revision.

    Args:
        source_id: Identity of the source being checked
        sync_result: Freshly synchronized working copy
        prior_record: Last successful build, if any
        config_digest: Digest of the current build configuration

    Returns:
        Build with a reason, or Reuse carrying the prior record
    """
    if prior_record is None:
        return Build("no previous build")

    if prior_record.source_id != source_id:
        return Build(f"record belongs to {prior_record.source_id}")

    if prior_record.revision != sync_result.revision:
        return Build(
            f"revision changed {prior_record.revision[:7]} → {sync_result.revision[:7]}"
        )

    if not Path(prior_record.artifact_path).is_file():
        return Build(f"artifact missing at {prior_record.artifact_path}")

    if config_digest is not None and prior_record.config_digest != config_digest:
        return Build("build configuration changed")

    return Reuse(prior_record)
