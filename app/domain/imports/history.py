"""
Import history: the persistent record of every import batch.

The in-memory batch tracker is authoritative while a batch runs; these helpers
mirror its state into ``import_batches`` / ``import_batch_errors`` so the admin
history screen and error downloads keep working after a restart.
"""

from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from sqlalchemy.orm import Session

from app.db.models import ImportBatchError, ImportBatchRecord, Salon
from app.domain.imports.models import BatchSnapshot, BatchStatus, RowFailure
from app.utils.serialization import make_json_safe

logger = logging.getLogger(__name__)


def _apply_snapshot(record: ImportBatchRecord, snapshot: BatchSnapshot) -> None:
    record.status = snapshot.status.value
    record.total_rows = snapshot.total_rows
    record.successful_rows = snapshot.successful_rows
    record.failed_rows = snapshot.failed_rows
    record.progress = snapshot.progress
    record.error_message = snapshot.error_message
    record.started_at = snapshot.started_at
    record.completed_at = snapshot.completed_at


def record_batch_created(
    db: Session,
    snapshot: BatchSnapshot,
    *,
    staff_id: Optional[int],
    skip_invalid: bool,
    detected_columns: Sequence[str],
) -> None:
    record = ImportBatchRecord(
        id=snapshot.id,
        import_id=snapshot.import_id,
        salon_id=snapshot.salon_id,
        staff_id=staff_id,
        filename=snapshot.filename,
        detected_columns=list(detected_columns),
        skip_invalid=skip_invalid,
        created_at=snapshot.created_at,
    )
    _apply_snapshot(record, snapshot)
    db.add(record)
    db.commit()


def record_batch_state(db: Session, snapshot: BatchSnapshot) -> None:
    """Write the snapshot's status, counters and timestamps to the batch row."""
    record = db.get(ImportBatchRecord, snapshot.id)
    if record is None:
        logger.warning("Import batch %s has no history record; skipping state update", snapshot.id)
        return
    _apply_snapshot(record, snapshot)
    db.commit()


def record_batch_errors(db: Session, batch_id: str, failures: Sequence[RowFailure]) -> None:
    if not failures:
        return
    db.add_all(
        ImportBatchError(
            batch_id=batch_id,
            row_number=failure.row_number,
            raw_data=make_json_safe(failure.data),
            errors=list(failure.errors),
        )
        for failure in failures
    )
    db.commit()
    logger.info("Stored %d row failures for import batch %s", len(failures), batch_id)


def _record_to_snapshot(record: ImportBatchRecord) -> BatchSnapshot:
    return BatchSnapshot(
        id=record.id,
        import_id=record.import_id,
        salon_id=record.salon_id,
        filename=record.filename,
        status=BatchStatus(record.status),
        total_rows=record.total_rows,
        successful_rows=record.successful_rows,
        failed_rows=record.failed_rows,
        progress=record.progress,
        error_message=record.error_message,
        created_at=record.created_at,
        started_at=record.started_at,
        completed_at=record.completed_at,
    )


def get_batch_snapshot(db: Session, batch_id: str) -> Optional[Tuple[BatchSnapshot, List[str]]]:
    """Return (snapshot, detected_columns) for a stored batch, or None."""
    record = db.get(ImportBatchRecord, batch_id)
    if record is None:
        return None
    return _record_to_snapshot(record), list(record.detected_columns or [])


def get_batch_errors(db: Session, batch_id: str) -> List[RowFailure]:
    rows = (
        db.query(ImportBatchError)
        .filter(ImportBatchError.batch_id == batch_id)
        .order_by(ImportBatchError.row_number, ImportBatchError.id)
        .all()
    )
    return [RowFailure(row.row_number, dict(row.raw_data or {}), tuple(row.errors or ())) for row in rows]


def list_import_batches(
    db: Session,
    *,
    salon_id: Optional[int] = None,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[Dict[str, Any]], int]:
    """
    List import batches, newest first, with optional filters.

    Returns:
        (batches, total_count) where each batch is a dict including the salon name.
    """
    query = db.query(ImportBatchRecord, Salon.name).outerjoin(Salon, Salon.id == ImportBatchRecord.salon_id)
    if salon_id is not None:
        query = query.filter(ImportBatchRecord.salon_id == salon_id)
    if status:
        query = query.filter(ImportBatchRecord.status == status)

    total = query.count()
    rows = (
        query.order_by(ImportBatchRecord.created_at.desc(), ImportBatchRecord.id)
        .offset(offset)
        .limit(limit)
        .all()
    )

    batches = []
    for record, salon_name in rows:
        batches.append({
            "id": record.id,
            "import_id": record.import_id,
            "filename": record.filename,
            "status": record.status,
            "total_rows": record.total_rows,
            "successful_rows": record.successful_rows,
            "failed_rows": record.failed_rows,
            "progress": record.progress,
            "error_message": record.error_message,
            "created_at": record.created_at,
            "completed_at": record.completed_at,
            "salon": {"id": record.salon_id, "name": salon_name} if record.salon_id is not None else None,
        })
    return batches, total
