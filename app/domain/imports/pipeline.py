"""
Appointment import pipeline: upload -> validate -> process -> poll -> errors.

``AppointmentImportService`` is the single entry point used by the API. It
keeps parsed uploads in the ImportJobStore, runs validation, service matching
and client reconciliation synchronously, and hands the commit phase to the
BatchRunner so ``start_batch`` returns as soon as the batch is queued.
"""
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.config import settings
from app.domain.catalog import CatalogRepository
from app.domain.imports import history
from app.domain.imports.batches import BatchTracker
from app.domain.imports.client_reconciler import ClientReconciler, collect_identities, summarize_clients
from app.domain.imports.error_report import error_report_filename, generate_error_report_stream
from app.domain.imports.executor import BatchExecutor, BatchPlan, BatchRunner
from app.domain.imports.ingestor import ingest_file
from app.domain.imports.jobs import ImportJobStore
from app.domain.imports.models import (
    BatchSnapshot,
    ImportJob,
    ImportOptions,
    RowFailure,
    ServiceMapping,
)
from app.domain.imports.service_matcher import Scorer, ServiceMatcher, summarize_mappings
from app.domain.imports.validator import resolve_column_mapping, validate_rows
from app.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationReport:
    total_rows: int
    valid_rows: int
    invalid_rows: int
    errors: Tuple[RowFailure, ...]
    service_mappings: Tuple[ServiceMapping, ...]
    matched_services: int
    unmatched_services: int
    existing_users: int
    new_guest_users: int


class AppointmentImportService:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        job_store: Optional[ImportJobStore] = None,
        tracker: Optional[BatchTracker] = None,
        runner: Optional[BatchRunner] = None,
        executor: Optional[BatchExecutor] = None,
        scorer: Optional[Scorer] = None,
    ):
        self.session_factory = session_factory
        self.job_store = job_store if job_store is not None else ImportJobStore()
        self.tracker = tracker if tracker is not None else BatchTracker(session_factory)
        self.runner = runner if runner is not None else BatchRunner()
        self.executor = executor if executor is not None else BatchExecutor(self.tracker, session_factory)
        self.scorer = scorer
        self._futures: Dict[str, Future] = {}
        self._futures_lock = threading.Lock()

    @contextmanager
    def _session(self):
        db = self.session_factory()
        try:
            yield db
        finally:
            db.close()

    def ingest(
        self,
        file_content: bytes,
        filename: str,
        content_type: Optional[str] = None,
    ) -> Tuple[ImportJob, List[Dict[str, Any]]]:
        """
        Parse an upload and register it as an import job.

        Returns:
            (job, preview) where preview holds the first rows as JSON-safe dicts.

        Raises:
            FileTooLarge, UnsupportedFormat
        """
        job, rows = ingest_file(file_content, filename, content_type)
        self.job_store.add(job, rows)
        preview = [make_json_safe(row.raw) for row in rows[: settings.import_preview_rows]]
        return job, preview

    def _prepare(self, import_id: str, options: ImportOptions) -> BatchPlan:
        job, raw_rows = self.job_store.get(import_id)
        column_mapping = resolve_column_mapping(options.column_mapping, job.detected_columns)
        rows = validate_rows(raw_rows, column_mapping)

        with self._session() as db:
            catalog = CatalogRepository(db).list_active_services(options.salon_id)
        matcher = ServiceMatcher(catalog, scorer=self.scorer, enabled=options.auto_map_services)
        service_mappings = matcher.match_all(token for row in rows for token in row.services)

        identities, row_keys = collect_identities(row for row in rows if row.is_valid)
        return BatchPlan(
            job=job,
            options=options,
            rows=tuple(rows),
            service_mappings=service_mappings,
            identities=identities,
            row_keys=row_keys,
            catalog=tuple(catalog),
        )

    def validate(self, import_id: str, options: ImportOptions) -> ValidationReport:
        """
        Dry run: validate rows, map services and preview client resolution.

        Nothing is written; guest accounts are only counted.

        Raises:
            ImportJobNotFound
        """
        plan = self._prepare(import_id, options)
        with self._session() as db:
            reconciler = ClientReconciler(
                CatalogRepository(db),
                salon_id=options.salon_id,
                create_guest_users=options.create_guest_users,
            )
            clients = reconciler.reconcile(plan.identities, persist=False)

        invalid = [row for row in plan.rows if not row.is_valid]
        matched, unmatched = summarize_mappings(plan.service_mappings)
        existing, guests = summarize_clients(clients)
        if unmatched:
            logger.warning("Import %s: %d service names without a catalog match", import_id, unmatched)

        return ValidationReport(
            total_rows=len(plan.rows),
            valid_rows=len(plan.rows) - len(invalid),
            invalid_rows=len(invalid),
            errors=tuple(
                RowFailure(row.number, dict(row.raw), tuple(row.errors))
                for row in invalid[: settings.import_error_sample_limit]
            ),
            service_mappings=tuple(plan.service_mappings.values()),
            matched_services=matched,
            unmatched_services=unmatched,
            existing_users=existing,
            new_guest_users=guests,
        )

    def start_batch(self, import_id: str, options: ImportOptions) -> BatchSnapshot:
        """
        Queue the commit phase for a job and return without waiting for it.

        Raises:
            ImportJobNotFound, BatchAlreadyRunning
        """
        plan = self._prepare(import_id, options)
        snapshot = self.tracker.create(plan.job, options)

        future = self.runner.submit(self.executor.run, snapshot.id, plan)
        with self._futures_lock:
            self._futures[snapshot.id] = future
        future.add_done_callback(lambda done, batch_id=snapshot.id: self._forget(batch_id))

        return self.tracker.snapshot(snapshot.id)

    def _forget(self, batch_id: str) -> None:
        with self._futures_lock:
            self._futures.pop(batch_id, None)

    def wait_for_batch(self, batch_id: str, timeout: Optional[float] = None) -> BatchSnapshot:
        """Block until a batch submitted by this service has finished running."""
        with self._futures_lock:
            future = self._futures.get(batch_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.tracker.snapshot(batch_id)

    def status(self, batch_id: str) -> BatchSnapshot:
        return self.tracker.snapshot(batch_id)

    def error_report(self, batch_id: str) -> Tuple[str, Iterator[str], BatchSnapshot]:
        """
        Returns:
            (download filename, CSV chunk iterator, snapshot)

        Raises:
            BatchNotFound, BatchNotFinished
        """
        snapshot, columns, failures = self.tracker.failures(batch_id)
        return error_report_filename(batch_id), generate_error_report_stream(failures, columns), snapshot

    def history(
        self,
        *,
        salon_id: Optional[int] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        with self._session() as db:
            return history.list_import_batches(db, salon_id=salon_id, status=status, limit=limit, offset=offset)

    def shutdown(self) -> None:
        self.runner.shutdown(wait=True)
