"""High-level orchestration of a bookshelf run."""

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from common.env import env
from common.logger import get_logger

from .builder import build, parse_command
from .catalog import assemble, catalog_timestamp
from .config import ShelfConfig
from .git_utils import sync
from .models import (
    BatchOutcome,
    BuildArtifact,
    BuildRecord,
    CatalogEntry,
    SourceFailure,
    SourceResult,
    SourceSpec,
    SourceState,
    SyncResult,
    config_digest,
)
from .record_store import BuildRecordStore
from .staleness import Decision, Reuse, needs_build
from .types import BuildError, ConfigError, DestinationError, SyncError

logger = get_logger(__name__)

SyncFunc = Callable[..., SyncResult]
BuildFunc = Callable[..., BuildArtifact]


@dataclass
class SourceRun:
    """Mutable progress of one source through the state machine."""

    index: int
    source: SourceSpec
    state: SourceState = SourceState.PENDING
    sync_result: SyncResult | None = None
    decision: Decision | None = None
    record: BuildRecord | None = None
    failure: SourceFailure | None = None

    def fail(self, state: SourceState, stage: str, reason: str) -> SourceState:
        self.failure = SourceFailure(source_id=self.source.identity, stage=stage, reason=reason)
        return state


def ensure_destination(destination_dir: Path) -> Path:
    """
    Create the destination directory and check it is writable.

    Raises:
        DestinationError: If it cannot be created or written
    """
    try:
        destination_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DestinationError(f"Cannot create destination directory {destination_dir}: {e}") from e
    if not os.access(destination_dir, os.W_OK | os.X_OK):
        raise DestinationError(f"Destination directory {destination_dir} is not writable")
    return destination_dir


def ensure_working_dir(working_dir: Path) -> Path:
    """
    Create the directory holding working copies and build records.

    Raises:
        ConfigError: If it cannot be created
    """
    try:
        working_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"Cannot create working directory {working_dir}: {e}") from e
    return working_dir


class ShelfOrchestrator:
    """Build every configured book and publish the catalog.

    Each source goes through its own state machine:

        PENDING → SYNCING → SYNC_FAILED
                          → CHECKED → REUSED
                                    → BUILDING → BUILD_FAILED
                                               → SUCCEEDED

    A failing source never stops the others. Results land in per-index slots
    so the catalog follows configuration order whatever order workers finish
    in.
    """

    def __init__(
        self,
        config: ShelfConfig,
        store: BuildRecordStore | None = None,
        *,
        sync_func: SyncFunc = sync,
        build_func: BuildFunc = build,
    ):
        """Initialize orchestrator.

        Args:
            config: Resolved shelf configuration (destination and working dir set)
            store: Build record store (if None, uses the working directory's)
            sync_func: Repository synchronizer, replaceable in tests
            build_func: Build driver, replaceable in tests
        """
        self.config = config.resolve()
        self.destination_dir = Path(self.config.destination_dir)
        self.working_dir = Path(self.config.working_dir)
        self.store = store or BuildRecordStore.in_directory(self.working_dir)
        self.sync_func = sync_func
        self.build_func = build_func

        self.command = parse_command(self.config.build_command or env.build_command())
        self.build_timeout = self.config.build_timeout or env.build_timeout()
        self.git_timeout = env.git_timeout()
        self.workers = self.config.workers or env.workers() or os.cpu_count() or 1

        self._handlers: dict[SourceState, Callable[[SourceRun], SourceState]] = {
            SourceState.PENDING: self._start,
            SourceState.SYNCING: self._sync,
            SourceState.CHECKED: self._check,
            SourceState.BUILDING: self._build,
        }

    # Per-source state machine

    def _start(self, run: SourceRun) -> SourceState:
        logger.info(f"[{run.index + 1}/{len(self.config.sources)}] {run.source.identity}")
        return SourceState.SYNCING

    def _sync(self, run: SourceRun) -> SourceState:
        try:
            run.sync_result = self.sync_func(run.source, self.working_dir, timeout=self.git_timeout)
        except SyncError as e:
            return run.fail(SourceState.SYNC_FAILED, "sync", e.message)
        return SourceState.CHECKED

    def _check(self, run: SourceRun) -> SourceState:
        run.decision = needs_build(
            run.source.identity,
            run.sync_result,
            self.store.get(run.source.identity),
            self._digest(run.source),
        )
        if isinstance(run.decision, Reuse):
            run.record = run.decision.record
            logger.info(
                f"{run.source.identity} is up to date at {run.sync_result.revision[:7]}, "
                "reusing previous artifact"
            )
            return SourceState.REUSED

        logger.info(f"{run.source.identity} needs a build: {run.decision.reason}")
        return SourceState.BUILDING

    def _build(self, run: SourceRun) -> SourceState:
        source = run.source
        try:
            artifact = self.build_func(
                run.sync_result,
                source.env_vars,
                self.destination_dir,
                artifact_name=source.artifact_name,
                folder=source.folder,
                command=self.command,
                timeout=self.build_timeout,
                source_id=source.identity,
            )
        except BuildError as e:
            return run.fail(SourceState.BUILD_FAILED, "build", e.message)

        run.record = BuildRecord(
            source_id=source.identity,
            revision=run.sync_result.revision,
            artifact_path=str(Path(artifact.path).resolve()),
            artifact_size=artifact.size,
            built_at=datetime.now(timezone.utc).replace(microsecond=0).isoformat(),
            title=artifact.title,
            last_modified=run.sync_result.last_modified,
            config_digest=self._digest(source),
        )
        try:
            self.store.save(run.record)
        except OSError as e:
            # The artifact is in place; the next run just rebuilds it
            logger.warning(f"Could not save build record for {source.identity}: {e}")
        return SourceState.SUCCEEDED

    def _digest(self, source: SourceSpec) -> str:
        return config_digest(source, self.destination_dir, self.command)

    def _entry(self, run: SourceRun) -> CatalogEntry:
        record = run.record
        artifact_path = Path(record.artifact_path)
        try:
            relative = artifact_path.relative_to(self.destination_dir.resolve())
        except ValueError:
            relative = Path(artifact_path.name)

        return CatalogEntry(
            title=run.source.title or record.title or "",
            path=relative.as_posix(),
            epub_size=record.artifact_size,
            url=run.source.url,
            repo_url=run.source.repo_url,
            commit_sha=run.sync_result.revision,
            last_modified=run.sync_result.last_modified,
        )

    def process_source(self, index: int, source: SourceSpec) -> SourceResult:
        """
        Drive one source to a terminal state.

        SyncError and BuildError end the source in SYNC_FAILED / BUILD_FAILED.
        Any other exception is logged with its traceback and recorded against
        the stage it happened in, so one broken source cannot abort the batch.

        Returns:
            SourceResult for the source's slot
        """
        run = SourceRun(index=index, source=source)

        while not run.state.is_terminal:
            handler = self._handlers[run.state]
            try:
                run.state = handler(run)
            except Exception as e:
                logger.error(
                    f"Unexpected error in {run.state.value} for {source.identity}: {e}",
                    exc_info=True,
                )
                failed = (
                    SourceState.SYNC_FAILED
                    if run.state in (SourceState.PENDING, SourceState.SYNCING)
                    else SourceState.BUILD_FAILED
                )
                run.state = run.fail(failed, run.state.value, f"unexpected error: {e}")

        if run.failure is not None:
            logger.error(
                f"[red]✗[/red] {source.identity} failed during {run.failure.stage}: {run.failure.reason}"
            )
            return SourceResult(index=index, source=source, state=run.state, failure=run.failure)

        return SourceResult(
            index=index,
            source=source,
            state=run.state,
            entry=self._entry(run),
            record=run.record,
        )

    # Batch

    def collect(self) -> BatchOutcome:
        """
        Process every source and gather results in configuration order.

        Uses a thread pool when more than one worker is configured; workers
        only block on git and compiler subprocesses.

        Returns:
            Finalized BatchOutcome
        """
        sources = list(self.config.sources)
        slots: list[SourceResult | None] = [None] * len(sources)

        ensure_destination(self.destination_dir)
        ensure_working_dir(self.working_dir)
        self.store.load()

        workers = min(self.workers, len(sources)) or 1
        logger.info(f"Processing {len(sources)} book(s) with {workers} worker(s)")

        if workers == 1:
            for index, source in enumerate(sources):
                slots[index] = self.process_source(index, source)
        else:
            executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="bookshelf")
            try:
                futures = [
                    executor.submit(self.process_source, index, source)
                    for index, source in enumerate(sources)
                ]
                for index, future in enumerate(futures):
                    slots[index] = future.result()
            except BaseException:
                # Interrupted: drop queued sources, let running builds finish
                executor.shutdown(wait=True, cancel_futures=True)
                raise
            executor.shutdown(wait=True)

        outcome = BatchOutcome(title=self.config.title)
        for result in slots:
            outcome.add(result)

        records = [result.record for result in slots if result.record is not None and result.state.is_success]
        return outcome.finalize(catalog_timestamp(records))

    def run(self) -> BatchOutcome:
        """
        Build the shelf and render its catalog.

        Returns:
            BatchOutcome of the run

        Raises:
            DestinationError: If the destination directory is unusable
            ConfigError: If the working directory cannot be created
            RenderError: If the catalog cannot be rendered
        """
        logger.info(f"Running bookshelf with destination {self.destination_dir}")
        outcome = self.collect()

        assemble(
            outcome.entries,
            title=outcome.title,
            timestamp=outcome.timestamp,
            destination_dir=self.destination_dir,
            templates_dir=self.config.templates_dir,
        )

        logger.info(
            f"[green]✓[/green] Shelf complete: {outcome.built} built, "
            f"{outcome.reused} reused, {outcome.failed} failed"
        )
        return outcome
