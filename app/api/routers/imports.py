"""
Admin endpoints for importing historical appointments from CSV, JSON and Excel files.

Flow: upload a file, validate it against a salon (dry run), start processing,
poll the batch status and download the error report once it has finished.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse

from app.api.dependencies import get_import_service
from app.api.schemas.imports import (
    BatchStatusResult,
    Envelope,
    ImportHistoryItem,
    ImportHistoryResult,
    ImportRequest,
    ProcessRequest,
    ProcessResult,
    RowErrorEntry,
    ServiceMappingEntry,
    ServiceMappingSummary,
    UploadResult,
    UserCreationSummary,
    ValidationResult,
)
from app.domain.imports.errors import (
    BatchAlreadyRunning,
    BatchNotFinished,
    BatchNotFound,
    FileTooLarge,
    ImportJobNotFound,
    UnsupportedFormat,
)
from app.domain.imports.models import BatchStatus
from app.domain.imports.pipeline import AppointmentImportService

router = APIRouter(prefix="/api/v1/admin/import", tags=["appointment-import"])

logger = logging.getLogger(__name__)


@router.post("/upload", response_model=Envelope[UploadResult])
async def upload_import_file(
    file: UploadFile = File(...),
    service: AppointmentImportService = Depends(get_import_service),
):
    """
    Upload and parse an appointment file.

    Accepts CSV (semicolon or comma separated), JSON, XLSX and XLS up to the
    configured size limit. Returns the import id used by the next steps and a
    preview of the first rows.
    """
    try:
        file_content = await file.read()
        logger.info("Received appointment import upload '%s' (%d bytes)", file.filename, len(file_content))
        job, preview = service.ingest(file_content, file.filename or "", file.content_type)
    except FileTooLarge as e:
        logger.warning("Rejected upload: %s", e.message)
        raise HTTPException(status_code=413, detail=e.message)
    except UnsupportedFormat as e:
        logger.warning("Rejected upload: %s", e.message)
        raise HTTPException(status_code=415, detail=e.message)
    except Exception as e:
        logger.exception("Appointment file upload failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))

    return Envelope(
        data=UploadResult(
            import_id=job.id,
            filename=job.filename,
            file_size=job.file_size,
            total_rows=job.total_rows,
            detected_columns=list(job.detected_columns),
            preview=preview,
        )
    )


@router.post("/{import_id}/validate", response_model=Envelope[ValidationResult])
async def validate_import(
    import_id: str,
    request: ImportRequest,
    service: AppointmentImportService = Depends(get_import_service),
):
    """
    Validate an uploaded file against a salon without writing anything.

    Reports valid/invalid row counts with a sample of row errors, how the
    imported service names map to the salon's catalog, and how many clients
    already have an account versus would be created as guests.
    """
    try:
        report = service.validate(import_id, request.to_options())
    except ImportJobNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except Exception as e:
        logger.exception("Validation of import %s failed: %s", import_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    return Envelope(
        data=ValidationResult(
            total_rows=report.total_rows,
            valid_rows=report.valid_rows,
            invalid_rows=report.invalid_rows,
            errors=[
                RowErrorEntry(row=failure.row_number, data=failure.data, errors=list(failure.errors))
                for failure in report.errors
            ],
            service_mapping=ServiceMappingSummary(
                matched=report.matched_services,
                unmatched=report.unmatched_services,
                mappings=[
                    ServiceMappingEntry(
                        import_name=mapping.imported_name,
                        service_id=mapping.service_id,
                        service_name=mapping.service_name,
                        match_type=mapping.match_kind.value,
                        score=mapping.score,
                    )
                    for mapping in report.service_mappings
                ],
            ),
            user_creation=UserCreationSummary(
                existing_users=report.existing_users,
                new_guest_users=report.new_guest_users,
            ),
        )
    )


@router.post("/{import_id}/process", response_model=Envelope[ProcessResult], status_code=202)
async def process_import(
    import_id: str,
    request: ProcessRequest,
    service: AppointmentImportService = Depends(get_import_service),
):
    """
    Start importing the file's appointments in the background.

    Returns the batch id immediately; poll ``/batch/{id}/status`` for progress.
    """
    try:
        snapshot = service.start_batch(import_id, request.to_options(skip_invalid=request.skip_invalid))
    except ImportJobNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except BatchAlreadyRunning as e:
        logger.warning("Rejected process request: %s", e.message)
        raise HTTPException(status_code=409, detail=e.message)
    except Exception as e:
        logger.exception("Could not start import batch for %s: %s", import_id, e)
        raise HTTPException(status_code=500, detail=str(e))

    return Envelope(data=ProcessResult(import_batch_id=snapshot.id, status=snapshot.status.value))


@router.get("/batch/{batch_id}/status", response_model=Envelope[BatchStatusResult])
async def get_batch_status(
    batch_id: str,
    service: AppointmentImportService = Depends(get_import_service),
):
    try:
        snapshot = service.status(batch_id)
    except BatchNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)

    return Envelope(
        data=BatchStatusResult(
            id=snapshot.id,
            status=snapshot.status.value,
            progress=snapshot.progress,
            total_rows=snapshot.total_rows,
            successful_rows=snapshot.successful_rows,
            failed_rows=snapshot.failed_rows,
            error_message=snapshot.error_message,
            started_at=snapshot.started_at,
            completed_at=snapshot.completed_at,
        )
    )


@router.get("/batch/{batch_id}/errors")
async def download_batch_errors(
    batch_id: str,
    service: AppointmentImportService = Depends(get_import_service),
):
    """
    Download the failed rows of a finished batch as CSV.

    The file is semicolon separated with a UTF-8 BOM: row number, the original
    columns, and the error messages.
    """
    try:
        filename, stream, snapshot = service.error_report(batch_id)
    except BatchNotFound as e:
        raise HTTPException(status_code=404, detail=e.message)
    except BatchNotFinished as e:
        raise HTTPException(status_code=409, detail=e.message)

    return StreamingResponse(
        stream,
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": f'attachment; filename="{filename}"',
            "X-Row-Count": str(snapshot.failed_rows),
        },
    )


@router.get("/history", response_model=Envelope[ImportHistoryResult])
async def list_import_history(
    salon_id: Optional[int] = None,
    status: Optional[BatchStatus] = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    service: AppointmentImportService = Depends(get_import_service),
):
    """
    List past import batches, newest first.

    Parameters:
    - salon_id: Only batches for this salon
    - status: Filter by batch status ('queued', 'processing', 'completed', 'failed')
    - limit: Maximum number of batches to return (default: 50)
    - offset: Number of batches to skip for pagination (default: 0)
    """
    try:
        batches, total = service.history(
            salon_id=salon_id,
            status=status.value if status else None,
            limit=limit,
            offset=offset,
        )
    except Exception as e:
        logger.exception("Failed to retrieve import history: %s", e)
        raise HTTPException(status_code=500, detail=f"Failed to retrieve import history: {str(e)}")

    return Envelope(
        data=ImportHistoryResult(
            batches=[ImportHistoryItem(**batch) for batch in batches],
            total_count=total,
            limit=limit,
            offset=offset,
        )
    )
