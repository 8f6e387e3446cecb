"""
Sync engine: one batch pass from the Streak pipelines into the local store.

A run moves through a fixed sequence of states:

    fetching -> syncing-organizations -> syncing-members
             -> syncing-relationships -> done

Any fetch failure, storage failure or cancellation moves the run straight
to ``failed``. Steps already applied are kept, so rerunning reconciles
whatever was not reached. All remote reads complete before the first local
write.
"""

import logging
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from streak_sync.api.geocoder import GeocodeFunc
from streak_sync.api.streak_api import StreakAPI, StreakAPIError
from streak_sync.config.sync_config import SyncConfig
from streak_sync.storage.db import SyncDatabase
from streak_sync.sync.box import RemoteBox
from streak_sync.sync.entities import EntityKind
from streak_sync.sync.entity_sync import (
    EntitySynchronizer,
    EntitySyncResult,
    RecordFailure,
)
from streak_sync.sync.relationships import RelationshipSynchronizer
from streak_sync.utils.lock import LockError, RunLock, RunLockHeldError

logger = logging.getLogger(__name__)

# Two pipeline reads and two box list reads
FETCH_WORKERS = 4


class SyncError(Exception):
    """Raised when a sync run cannot be started."""

    pass


class SyncAlreadyRunningError(SyncError):
    """Raised when another sync run holds the engine or the run lock."""

    pass


class RunCancelledError(SyncError):
    """Raised inside a run when cancel() was requested."""

    pass


class RunState(str, Enum):
    """Step a sync run is in."""

    FETCHING = "fetching"
    SYNCING_ORGANIZATIONS = "syncing-organizations"
    SYNCING_MEMBERS = "syncing-members"
    SYNCING_RELATIONSHIPS = "syncing-relationships"
    DONE = "done"
    FAILED = "failed"


class RunOutcome(str, Enum):
    """Overall result of a sync run."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass
class EntityCounts:
    """Per-variant record counts for one run."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    deleted: int = 0
    skipped: int = 0

    @classmethod
    def from_result(cls, result: EntitySyncResult) -> "EntityCounts":
        return cls(
            created=len(result.created),
            updated=len(result.updated),
            unchanged=len(result.unchanged),
            deleted=len(result.deleted),
            skipped=len(result.skipped),
        )

    def as_dict(self) -> dict[str, int]:
        return asdict(self)

    def __str__(self) -> str:
        return (
            f"{self.created} created, {self.updated} updated, "
            f"{self.unchanged} unchanged, {self.deleted} deleted, "
            f"{self.skipped} skipped"
        )


@dataclass
class RunResult:
    """
    Result of one sync run.

    ``links_removed`` includes links removed by cascading entity deletes.
    ``warnings`` holds geocoding failures, which never affect the outcome.
    """

    organizations: EntityCounts = field(default_factory=EntityCounts)
    members: EntityCounts = field(default_factory=EntityCounts)
    links_created: int = 0
    links_removed: int = 0
    failures: list[RecordFailure] = field(default_factory=list)
    warnings: list[RecordFailure] = field(default_factory=list)
    state: RunState = RunState.FETCHING
    states: list[RunState] = field(default_factory=list)
    error: Optional[str] = None
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    finished_at: Optional[datetime] = None

    @property
    def outcome(self) -> RunOutcome:
        """failed unless the run reached done; partial if records failed."""
        if self.state != RunState.DONE:
            return RunOutcome.FAILED
        if self.failures:
            return RunOutcome.PARTIAL
        return RunOutcome.SUCCESS

    @property
    def success(self) -> bool:
        return self.outcome == RunOutcome.SUCCESS

    @property
    def duration(self) -> Optional[float]:
        """Run duration in seconds, or None while running."""
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def absorb(self, entity_result: EntitySyncResult) -> None:
        """Fold one entity synchronizer's result into this run."""
        counts = EntityCounts.from_result(entity_result)
        if entity_result.kind == EntityKind.ORGANIZATION:
            self.organizations = counts
        else:
            self.members = counts
        self.links_removed += entity_result.links_removed
        self.failures.extend(entity_result.failures)
        self.warnings.extend(entity_result.geocode_failures)

    def summary(self) -> str:
        """
        Generate a human-readable summary of the run.

        Returns:
            Formatted multi-line summary
        """
        lines = [
            "Sync Summary:",
            f"  Organizations: {self.organizations}",
            f"  Members: {self.members}",
            f"  Links: {self.links_created} created, {self.links_removed} removed",
            f"  Outcome: {self.outcome.value}",
        ]
        if self.duration is not None:
            lines.append(f"  Duration: {self.duration:.1f}s")
        if self.error:
            lines.append(f"  Error: {self.error}")

        if self.failures:
            lines.append("")
            lines.append(f"Failures ({len(self.failures)}):")
            lines.extend(f"  - {failure}" for failure in self.failures)

        if self.warnings:
            lines.append("")
            lines.append(f"Warnings ({len(self.warnings)}):")
            lines.extend(f"  - {warning}" for warning in self.warnings)

        return "\n".join(lines)


class SyncEngine:
    """
    Runs sync passes from two Streak pipelines into a SyncDatabase.

    Only one run executes at a time per engine; a RunLock extends that
    across processes sharing the same local store.

    Usage:
        engine = SyncEngine(api, database, config, geocode=geocoder)
        result = engine.run_sync()
        print(result.summary())
    """

    def __init__(
        self,
        api: StreakAPI,
        database: SyncDatabase,
        config: SyncConfig,
        geocode: Optional[GeocodeFunc] = None,
        run_lock: Optional[RunLock] = None,
    ):
        """
        Initialize the sync engine.

        Args:
            api: Streak API client used for all remote reads
            database: Initialized local store
            config: Sync configuration carrying both pipeline keys
            geocode: Geocoding callable; None disables geocoding
            run_lock: Optional cross-process run lock
        """
        self.api = api
        self.database = database
        self.config = config
        self.geocode = geocode
        self.run_lock = run_lock
        self._run_guard = threading.Lock()
        # Serializes run start against cancel()
        self._control_lock = threading.Lock()
        self._cancel_requested = threading.Event()

    @property
    def running(self) -> bool:
        return self._run_guard.locked()

    def cancel(self) -> None:
        """Request that the current run stops before its next step."""
        with self._control_lock:
            if self.running:
                logger.info("Cancellation requested")
                self._cancel_requested.set()

    def run_sync(self) -> RunResult:
        """
        Execute one sync run.

        Returns:
            RunResult; fetch and storage failures are reported through it
            with outcome ``failed`` rather than raised

        Raises:
            SyncConfigError: If a pipeline key is not configured
            SyncAlreadyRunningError: If a run is already in progress
            SyncError: If the run lock cannot be taken
        """
        pipeline_keys = self.config.require_pipelines()

        with self._control_lock:
            if not self._run_guard.acquire(blocking=False):
                raise SyncAlreadyRunningError("A sync run is already in progress")
            self._cancel_requested.clear()
        try:
            self._acquire_run_lock()
            try:
                return self._run(*pipeline_keys)
            finally:
                if self.run_lock is not None:
                    self.run_lock.release()
        finally:
            self._run_guard.release()

    def _acquire_run_lock(self) -> None:
        if self.run_lock is None:
            return
        try:
            self.run_lock.acquire()
        except RunLockHeldError as e:
            raise SyncAlreadyRunningError(str(e)) from e
        except LockError as e:
            raise SyncError(f"Could not acquire run lock: {e}") from e

    def _run(self, organization_pipeline: str, member_pipeline: str) -> RunResult:
        result = RunResult()
        logger.info("Starting sync run")

        try:
            self._transition(result, RunState.FETCHING)
            organization_boxes, member_boxes = self._fetch(
                organization_pipeline, member_pipeline
            )
            self._check_cancelled()

            self._transition(result, RunState.SYNCING_ORGANIZATIONS)
            organization_result = EntitySynchronizer(
                self.database, EntityKind.ORGANIZATION, self.geocode
            ).synchronize(organization_boxes)
            result.absorb(organization_result)
            self._check_cancelled()

            self._transition(result, RunState.SYNCING_MEMBERS)
            member_result = EntitySynchronizer(
                self.database, EntityKind.MEMBER, self.geocode
            ).synchronize(member_boxes)
            result.absorb(member_result)
            self._check_cancelled()

            self._transition(result, RunState.SYNCING_RELATIONSHIPS)
            link_result = RelationshipSynchronizer(self.database).synchronize(
                organization_boxes, member_boxes, organization_result, member_result
            )
            result.links_created += link_result.created
            result.links_removed += link_result.removed

            self._transition(result, RunState.DONE)

        except StreakAPIError as e:
            logger.error(f"Fetch failed: {e}")
            self._fail(result, f"fetch failed: {e}")
        except RunCancelledError:
            logger.warning("Sync run cancelled")
            self._fail(result, "cancelled")
        except sqlite3.Error as e:
            logger.error(f"Storage error during {result.state.value}: {e}")
            self._fail(result, f"storage error: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error during {result.state.value}: {e}")
            self._fail(result, f"unexpected error: {e}")
            raise
        finally:
            result.finished_at = datetime.now(timezone.utc)
            self._record(result)

        logger.info(
            f"Sync run finished: outcome={result.outcome.value}, "
            f"failures={len(result.failures)}, warnings={len(result.warnings)}"
        )
        return result

    def _fetch(
        self, organization_pipeline: str, member_pipeline: str
    ) -> tuple[list[RemoteBox], list[RemoteBox]]:
        """
        Read both pipelines and both box lists.

        Raises:
            StreakAPIError: If any read fails
        """
        keys = (organization_pipeline, member_pipeline)

        if self.config.concurrent_fetch:
            with ThreadPoolExecutor(
                max_workers=FETCH_WORKERS, thread_name_prefix="streak-fetch"
            ) as executor:
                pipelines = [executor.submit(self.api.fetch_pipeline, k) for k in keys]
                box_lists = [executor.submit(self.api.fetch_boxes, k) for k in keys]
                for future in pipelines:
                    future.result()
                organization_boxes, member_boxes = (f.result() for f in box_lists)
        else:
            for key in keys:
                self.api.fetch_pipeline(key)
            organization_boxes = self.api.fetch_boxes(organization_pipeline)
            member_boxes = self.api.fetch_boxes(member_pipeline)

        logger.info(
            f"Fetched {len(organization_boxes)} organization boxes and "
            f"{len(member_boxes)} member boxes"
        )
        return organization_boxes, member_boxes

    def _check_cancelled(self) -> None:
        if self._cancel_requested.is_set():
            raise RunCancelledError("cancelled")

    def _transition(self, result: RunResult, state: RunState) -> None:
        logger.debug(f"Run state: {result.state.value} -> {state.value}")
        result.state = state
        result.states.append(state)

    def _fail(self, result: RunResult, error: str) -> None:
        result.error = error
        self._transition(result, RunState.FAILED)

    def _record(self, result: RunResult) -> None:
        try:
            self.database.record_run(result)
        except sqlite3.Error as e:
            logger.error(f"Could not record sync run history: {e}")
