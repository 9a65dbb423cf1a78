"""
Commit validated appointment rows for one import batch.

The executor runs off the request thread (see ``BatchRunner``). It resolves
the batch's client identities to accounts, counts invalid rows as failures,
then persists one appointment per valid row, reporting each outcome to the
BatchTracker as soon as it is known.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import time
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.domain.catalog import CatalogRepository
from app.domain.imports.batches import BatchTracker
from app.domain.imports.client_reconciler import ClientReconciler
from app.domain.imports.errors import BatchFatalError, RowCommitError
from app.domain.imports.models import (
    BatchSnapshot,
    CatalogService,
    ClientIdentity,
    ClientRecord,
    ImportJob,
    ImportOptions,
    RowFailure,
    ServiceMapping,
    ValidatedRow,
)
from app.domain.imports.service_matcher import lookup_services

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 3600
END_OF_DAY = time(23, 59, 59)


@dataclass(frozen=True)
class BatchPlan:
    """Everything a batch needs, resolved synchronously before it is queued."""
    job: ImportJob
    options: ImportOptions
    rows: Tuple[ValidatedRow, ...]
    service_mappings: Dict[str, ServiceMapping]
    identities: Dict[str, ClientIdentity]
    row_keys: Dict[int, str]
    catalog: Tuple[CatalogService, ...] = ()


class BatchRunner:
    """
    Thread pool that runs batches in the background.

    ``max_workers=0`` runs submitted work inline and hands back an already
    completed future, which keeps tests deterministic.
    """

    def __init__(self, max_workers: Optional[int] = None):
        self.max_workers = settings.import_batch_runner_workers if max_workers is None else max_workers
        self._pool: Optional[ThreadPoolExecutor] = None
        if self.max_workers > 0:
            self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="import-batch")

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        if self._pool is not None:
            return self._pool.submit(fn, *args, **kwargs)

        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait: bool = True) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=wait)


class _RunControl:
    """Stop signal shared by the row workers of one batch."""

    def __init__(self):
        self.stop = threading.Event()
        self.abort_failure: Optional[RowFailure] = None
        self._lock = threading.Lock()

    def abort(self, failure: RowFailure) -> None:
        with self._lock:
            if self.abort_failure is None:
                self.abort_failure = failure
        self.stop.set()


def compute_end_time(
    start: time,
    duration: Optional[int],
    services: Sequence[ServiceMapping],
    catalog_durations: Dict[int, Optional[int]],
    default_minutes: int,
) -> time:
    """
    End of the appointment: the row's duration, else the summed catalog
    durations of its matched services, else the default duration.

    Appointments running past midnight end at 23:59:59 of their own day.
    """
    minutes = duration
    if not minutes:
        known = [catalog_durations.get(mapping.service_id) for mapping in services]
        minutes = sum(value for value in known if value) or default_minutes
    start_seconds = start.hour * 3600 + start.minute * 60 + start.second
    end_seconds = start_seconds + minutes * 60
    if end_seconds >= SECONDS_PER_DAY:
        return END_OF_DAY
    hours, remainder = divmod(end_seconds, 3600)
    return time(hours, remainder // 60, remainder % 60)


class BatchExecutor:
    def __init__(
        self,
        tracker: BatchTracker,
        session_factory: Callable[[], Session],
        *,
        max_workers: Optional[int] = None,
        default_duration_minutes: Optional[int] = None,
    ):
        self.tracker = tracker
        self.session_factory = session_factory
        self.max_workers = settings.import_batch_max_workers if max_workers is None else max_workers
        self.default_duration_minutes = (
            settings.default_appointment_duration_minutes
            if default_duration_minutes is None
            else default_duration_minutes
        )

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def run(self, batch_id: str, plan: BatchPlan) -> BatchSnapshot:
        """
        Process a queued batch to a terminal state.

        Never raises for row-level problems; systemic errors end the batch as
        ``failed`` with the reason in ``error_message``.
        """
        logger.info("Import batch %s starting (%d rows)", batch_id, len(plan.rows))
        control = _RunControl()
        try:
            clients = self._resolve_clients(plan)
            self.tracker.start(batch_id)
            for row in plan.rows:
                if not row.is_valid:
                    self.tracker.record_failure(batch_id, RowFailure(row.number, dict(row.raw), tuple(row.errors)))

            valid_rows = [row for row in plan.rows if row.is_valid]
            if self.max_workers > 1 and len(valid_rows) > 1:
                self._commit_parallel(batch_id, plan, valid_rows, clients, control)
            else:
                for row in valid_rows:
                    if control.stop.is_set():
                        break
                    self._process_row(batch_id, plan, row, clients, control)
        except BatchFatalError as exc:
            return self.tracker.fail(batch_id, exc.message)
        except SQLAlchemyError as exc:
            logger.exception("Storage error in import batch %s", batch_id)
            return self.tracker.fail(batch_id, f"Storage error: {exc}")
        except Exception as exc:
            logger.exception("Unexpected error in import batch %s", batch_id)
            return self.tracker.fail(batch_id, f"Unexpected error: {exc}")

        if control.abort_failure is not None:
            failure = control.abort_failure
            return self.tracker.fail(
                batch_id,
                f"Stopped at row {failure.row_number}: {'; '.join(failure.errors)}",
            )
        return self.tracker.finish(batch_id)

    def _resolve_clients(self, plan: BatchPlan) -> Dict[str, ClientRecord]:
        try:
            with self._session() as db:
                reconciler = ClientReconciler(
                    CatalogRepository(db),
                    salon_id=plan.options.salon_id,
                    create_guest_users=plan.options.create_guest_users,
                )
                return reconciler.reconcile(plan.identities, persist=True)
        except OperationalError as exc:
            raise BatchFatalError(f"Storage unavailable while resolving clients: {exc.orig}") from exc

    def _commit_parallel(
        self,
        batch_id: str,
        plan: BatchPlan,
        rows: List[ValidatedRow],
        clients: Dict[str, ClientRecord],
        control: _RunControl,
    ) -> None:
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=f"batch-{batch_id[:8]}") as pool:
            futures = [pool.submit(self._process_row, batch_id, plan, row, clients, control) for row in rows]
            wait(futures)
        for future in futures:
            # Re-raises the first fatal error, if any
            future.result()

    def _process_row(
        self,
        batch_id: str,
        plan: BatchPlan,
        row: ValidatedRow,
        clients: Dict[str, ClientRecord],
        control: _RunControl,
    ) -> None:
        if control.stop.is_set():
            return
        try:
            self._commit_row(batch_id, plan, row, clients)
        except RowCommitError as exc:
            failure = RowFailure(row.number, dict(row.raw), (exc.message,))
            self.tracker.record_failure(batch_id, failure)
            logger.warning("Import batch %s: row %d not committed: %s", batch_id, row.number, exc.message)
            if not plan.options.skip_invalid:
                control.abort(failure)
            return
        except BatchFatalError:
            control.stop.set()
            raise
        self.tracker.record_success(batch_id)

    def _commit_row(
        self,
        batch_id: str,
        plan: BatchPlan,
        row: ValidatedRow,
        clients: Dict[str, ClientRecord],
    ) -> int:
        services = [mapping for mapping in lookup_services(plan.service_mappings, row.services) if mapping.service_id]
        service_ids = list(dict.fromkeys(mapping.service_id for mapping in services))
        client = clients.get(plan.row_keys.get(row.number))
        catalog_durations = {service.id: service.duration_minutes for service in plan.catalog}
        try:
            end_time = compute_end_time(
                row.time,
                row.duration,
                services,
                catalog_durations,
                self.default_duration_minutes,
            )
        except (OverflowError, ValueError) as exc:
            raise RowCommitError(row.number, f"Could not compute end time: {exc}") from exc

        with self._session() as db:
            try:
                return CatalogRepository(db).create_appointment(
                    salon_id=plan.options.salon_id,
                    staff_id=plan.options.staff_id,
                    client_id=client.account_id if client else None,
                    service_ids=service_ids,
                    client_name=row.client_name,
                    client_email=row.client_email,
                    client_phone=row.client_phone,
                    appointment_date=row.date,
                    start_time=row.time,
                    end_time=end_time,
                    notes=f"Imported from {plan.job.filename}",
                    import_batch_id=batch_id,
                )
            except OperationalError as exc:
                db.rollback()
                raise BatchFatalError(f"Storage unavailable at row {row.number}: {exc.orig}") from exc
            except (SQLAlchemyError, ValueError, OverflowError) as exc:
                db.rollback()
                raise RowCommitError(row.number, f"Could not save appointment: {exc}") from exc
