"""
Import batch state machine and progress tracking.

Each batch moves ``queued -> processing -> completed | failed`` (``queued ->
failed`` for errors before the first row). Counters and progress live behind a
per-batch lock and are published as immutable BatchSnapshot objects, so a
poller never sees a counter without its progress or a count going backwards.

The in-memory registry is authoritative while a batch runs. Every transition
is mirrored to ``import_batches`` (see ``history``). Row failures are buffered
in memory and written to ``import_batch_errors`` whenever the buffer fills up
and again when the batch finishes. Finished batches leave memory after
``import_batch_memory_ttl_seconds`` and are then read back from those tables.
"""
from __future__ import annotations

import logging
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.domain.imports import history
from app.domain.imports.errors import (
    BatchAlreadyRunning,
    BatchNotFinished,
    BatchNotFound,
    InvalidBatchTransition,
    RowCountExceeded,
)
from app.domain.imports.models import BatchSnapshot, BatchStatus, ImportJob, ImportOptions, RowFailure

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[BatchStatus, FrozenSet[BatchStatus]] = {
    BatchStatus.QUEUED: frozenset({BatchStatus.PROCESSING, BatchStatus.FAILED}),
    BatchStatus.PROCESSING: frozenset({BatchStatus.COMPLETED, BatchStatus.FAILED}),
    BatchStatus.COMPLETED: frozenset(),
    BatchStatus.FAILED: frozenset(),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_progress(processed: int, total: int, status: BatchStatus) -> int:
    """Whole-number percentage of rows with a known outcome."""
    if total <= 0:
        return 100 if status.is_terminal else 0
    # Rounds half up.
    return min(100, (processed * 200 + total) // (2 * total))


class _BatchState:
    def __init__(
        self,
        batch_id: str,
        job: ImportJob,
        options: ImportOptions,
        created_at: datetime,
    ):
        self.lock = threading.Lock()
        self.id = batch_id
        self.import_id = job.id
        self.salon_id = options.salon_id
        self.staff_id = options.staff_id
        self.skip_invalid = options.skip_invalid
        self.filename = job.filename
        self.detected_columns: Tuple[str, ...] = tuple(job.detected_columns)
        self.status = BatchStatus.QUEUED
        self.total_rows = job.total_rows
        self.successful_rows = 0
        self.failed_rows = 0
        self.error_message: Optional[str] = None
        self.created_at = created_at
        self.started_at: Optional[datetime] = None
        self.completed_at: Optional[datetime] = None
        # Failures not yet written to import_batch_errors
        self.failures: List[RowFailure] = []
        self.spilled_failures = 0
        self.persisted = False
        self.snapshot = self._build_snapshot()

    def _build_snapshot(self) -> BatchSnapshot:
        return BatchSnapshot(
            id=self.id,
            import_id=self.import_id,
            salon_id=self.salon_id,
            filename=self.filename,
            status=self.status,
            total_rows=self.total_rows,
            successful_rows=self.successful_rows,
            failed_rows=self.failed_rows,
            progress=compute_progress(self.successful_rows + self.failed_rows, self.total_rows, self.status),
            error_message=self.error_message,
            created_at=self.created_at,
            started_at=self.started_at,
            completed_at=self.completed_at,
        )

    def publish(self) -> BatchSnapshot:
        # Caller holds self.lock
        self.snapshot = self._build_snapshot()
        return self.snapshot


class BatchTracker:
    """
    Registry of import batches.

    Args:
        session_factory: Callable returning a SQLAlchemy session used to mirror
            batch state into the history tables. ``None`` keeps everything in
            memory, including every row failure, and never evicts.
        error_retention_limit: Row failures buffered in memory per batch before
            they are written to ``import_batch_errors``.
        memory_ttl_seconds: How long a finished, persisted batch stays in
            memory before reads go to the database.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        *,
        error_retention_limit: Optional[int] = None,
        memory_ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.error_retention_limit = max(
            1,
            settings.import_error_retention_limit if error_retention_limit is None else error_retention_limit,
        )
        self.memory_ttl = timedelta(
            seconds=settings.import_batch_memory_ttl_seconds if memory_ttl_seconds is None else memory_ttl_seconds
        )
        self._clock = clock
        self._batches: Dict[str, _BatchState] = {}
        self._active_by_job: Dict[str, str] = {}
        self._lock = threading.Lock()

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def _mirror(self, snapshot: BatchSnapshot, failures: Sequence[RowFailure] = ()) -> bool:
        """Write the batch state (and, when terminal, its failures) to the history tables."""
        if self.session_factory is None:
            return False
        try:
            with self._session() as db:
                history.record_batch_state(db, snapshot)
                if failures:
                    history.record_batch_errors(db, snapshot.id, failures)
        except SQLAlchemyError:
            # The in-memory state stays authoritative; only the history view lags.
            logger.exception("Failed to persist state of import batch %s", snapshot.id)
            return False
        return True

    def _get_state(self, batch_id: str) -> _BatchState:
        with self._lock:
            state = self._batches.get(batch_id)
        if state is None:
            raise BatchNotFound(batch_id)
        return state

    def prune(self) -> int:
        """
        Drop finished batches older than the memory TTL from the registry.

        Only batches whose final state reached the database are dropped, so
        their status and error report stay readable. Returns the number dropped.
        """
        if self.session_factory is None:
            return 0
        cutoff = self._clock() - self.memory_ttl
        with self._lock:
            expired = [
                state
                for state in self._batches.values()
                if state.persisted and state.completed_at is not None and state.completed_at <= cutoff
            ]
            for state in expired:
                del self._batches[state.id]
                if self._active_by_job.get(state.import_id) == state.id:
                    del self._active_by_job[state.import_id]
        if expired:
            logger.debug("Evicted %d finished import batches from memory", len(expired))
        return len(expired)

    def create(self, job: ImportJob, options: ImportOptions) -> BatchSnapshot:
        """
        Register a new queued batch for ``job``.

        Raises:
            BatchAlreadyRunning: The job already has a queued or processing batch.
        """
        self.prune()
        with self._lock:
            active_id = self._active_by_job.get(job.id)
            if active_id is not None and not self._batches[active_id].snapshot.status.is_terminal:
                raise BatchAlreadyRunning(job.id, active_id)

            state = _BatchState(str(uuid.uuid4()), job, options, self._clock())
            if self.session_factory is not None:
                # Persist before the batch becomes visible so history and the
                # registry never disagree about its existence.
                with self._session() as db:
                    history.record_batch_created(
                        db,
                        state.snapshot,
                        staff_id=state.staff_id,
                        skip_invalid=state.skip_invalid,
                        detected_columns=state.detected_columns,
                    )
            self._batches[state.id] = state
            self._active_by_job[job.id] = state.id

        logger.info(
            "Created import batch %s for import %s (%d rows, skip_invalid=%s)",
            state.id,
            job.id,
            job.total_rows,
            options.skip_invalid,
        )
        return state.snapshot

    def _transition(self, batch_id: str, new_status: BatchStatus, error_message: Optional[str] = None) -> BatchSnapshot:
        state = self._get_state(batch_id)
        with state.lock:
            if new_status not in ALLOWED_TRANSITIONS[state.status]:
                raise InvalidBatchTransition(batch_id, state.status.value, new_status.value)
            state.status = new_status
            now = self._clock()
            if new_status == BatchStatus.PROCESSING:
                state.started_at = now
            if new_status.is_terminal:
                state.completed_at = now
                state.error_message = error_message
            snapshot = state.publish()
            if not new_status.is_terminal:
                persisted = self._mirror(snapshot)
            else:
                # Written under the lock so a concurrent report never sees
                # these failures both in memory and in the table.
                persisted = self._mirror(snapshot, state.failures)
                if persisted:
                    state.spilled_failures += len(state.failures)
                    state.failures = []
                    state.persisted = True

        if new_status.is_terminal and persisted:
            self.prune()
        return snapshot

    def start(self, batch_id: str) -> BatchSnapshot:
        return self._transition(batch_id, BatchStatus.PROCESSING)

    def finish(self, batch_id: str) -> BatchSnapshot:
        snapshot = self._transition(batch_id, BatchStatus.COMPLETED)
        logger.info(
            "Import batch %s completed: %d successful, %d failed of %d rows",
            batch_id,
            snapshot.successful_rows,
            snapshot.failed_rows,
            snapshot.total_rows,
        )
        return snapshot

    def fail(self, batch_id: str, message: str) -> BatchSnapshot:
        snapshot = self._transition(batch_id, BatchStatus.FAILED, error_message=message)
        logger.error("Import batch %s failed: %s", batch_id, message)
        return snapshot

    def record_success(self, batch_id: str) -> BatchSnapshot:
        state = self._get_state(batch_id)
        with state.lock:
            self._ensure_accepts_outcome(state)
            state.successful_rows += 1
            return state.publish()

    def record_failure(self, batch_id: str, failure: RowFailure) -> BatchSnapshot:
        state = self._get_state(batch_id)
        with state.lock:
            self._ensure_accepts_outcome(state)
            state.failed_rows += 1
            state.failures.append(failure)
            if len(state.failures) % self.error_retention_limit == 0:
                self._spill(state)
            return state.publish()

    def _spill(self, state: _BatchState) -> None:
        # Caller holds state.lock
        if self.session_factory is None:
            return
        try:
            with self._session() as db:
                history.record_batch_errors(db, state.id, state.failures)
        except SQLAlchemyError:
            logger.exception(
                "Could not store row failures of import batch %s; keeping %d in memory",
                state.id,
                len(state.failures),
            )
            return
        state.spilled_failures += len(state.failures)
        state.failures = []

    @staticmethod
    def _ensure_accepts_outcome(state: _BatchState) -> None:
        if state.status != BatchStatus.PROCESSING:
            raise InvalidBatchTransition(state.id, state.status.value, "row outcome")
        if state.successful_rows + state.failed_rows >= state.total_rows:
            raise RowCountExceeded(state.id, state.total_rows)

    def snapshot(self, batch_id: str) -> BatchSnapshot:
        """
        Current point-in-time view of a batch.

        Raises:
            BatchNotFound: Unknown id, neither in memory nor in the history table.
        """
        with self._lock:
            state = self._batches.get(batch_id)
        if state is not None:
            # Snapshots are replaced atomically; reading the reference is enough
            return state.snapshot

        stored = self._load(batch_id)
        if stored is None:
            raise BatchNotFound(batch_id)
        return stored[0]

    def _load(self, batch_id: str) -> Optional[Tuple[BatchSnapshot, List[str]]]:
        if self.session_factory is None:
            return None
        with self._session() as db:
            return history.get_batch_snapshot(db, batch_id)

    def _stored_failures(self, batch_id: str) -> List[RowFailure]:
        with self._session() as db:
            return history.get_batch_errors(db, batch_id)

    def failures(self, batch_id: str) -> Tuple[BatchSnapshot, Tuple[str, ...], List[RowFailure]]:
        """
        Failed rows of a finished batch, in row order.

        Returns:
            (snapshot, detected columns of the job, failures)

        Raises:
            BatchNotFound: Unknown id.
            BatchNotFinished: The batch is still queued or processing.
        """
        with self._lock:
            state = self._batches.get(batch_id)
        if state is not None:
            with state.lock:
                snapshot = state.snapshot
                failures = list(state.failures)
                spilled = state.spilled_failures
            if not snapshot.status.is_terminal:
                raise BatchNotFinished(batch_id, snapshot.status.value)
            if spilled:
                failures = self._stored_failures(batch_id) + failures
            return snapshot, state.detected_columns, sorted(failures, key=lambda failure: failure.row_number)

        stored = self._load(batch_id)
        if stored is None:
            raise BatchNotFound(batch_id)
        snapshot, columns = stored
        if not snapshot.status.is_terminal:
            raise BatchNotFinished(batch_id, snapshot.status.value)
        return snapshot, tuple(columns), self._stored_failures(batch_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._batches)
