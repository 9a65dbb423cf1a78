"""
Exceptions raised by the appointment import pipeline.

Ingestion and precondition errors surface synchronously to the caller.
Row-level errors (``FieldValidationError``, ``RowCommitError``) never escape a
batch: they are aggregated into the validation report or the error report.
``BatchFatalError`` is the only error that ends a running batch as ``failed``.
"""
from typing import List, Optional


class AppointmentImportError(Exception):
    """Base class for every error raised by the import pipeline."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class FileTooLarge(AppointmentImportError):
    def __init__(self, file_size: int, max_bytes: int, message: Optional[str] = None):
        self.file_size = file_size
        self.max_bytes = max_bytes
        super().__init__(
            message
            or f"File is too large ({file_size} bytes). Maximum allowed size is {max_bytes} bytes."
        )


class UnsupportedFormat(AppointmentImportError):
    def __init__(self, filename: Optional[str], content_type: Optional[str] = None, message: Optional[str] = None):
        self.filename = filename
        self.content_type = content_type
        super().__init__(
            message
            or f"Unsupported file format for '{filename}' ({content_type or 'unknown content type'}). "
            "Supported formats: CSV (;), JSON, XLSX, XLS."
        )


class ImportJobNotFound(AppointmentImportError):
    def __init__(self, import_id: str):
        self.import_id = import_id
        super().__init__(f"Import '{import_id}' not found or expired. Upload the file again.")


class FieldValidationError(AppointmentImportError):
    """Validation failures for a single row. Never raised across the API."""

    def __init__(self, row_number: int, errors: List[str]):
        self.row_number = row_number
        self.errors = list(errors)
        super().__init__(f"Row {row_number}: " + "; ".join(self.errors))


class ServiceUnmatched(AppointmentImportError):
    """Informational: an imported service name has no catalog counterpart."""

    def __init__(self, imported_name: str, best_score: Optional[float] = None):
        self.imported_name = imported_name
        self.best_score = best_score
        super().__init__(f"No catalog service matches '{imported_name}'")


class BatchNotFound(AppointmentImportError):
    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(f"Import batch '{batch_id}' not found")


class BatchAlreadyRunning(AppointmentImportError):
    def __init__(self, import_id: str, batch_id: str):
        self.import_id = import_id
        self.batch_id = batch_id
        super().__init__(f"Import '{import_id}' already has a running batch ({batch_id})")


class BatchNotFinished(AppointmentImportError):
    def __init__(self, batch_id: str, status: str):
        self.batch_id = batch_id
        self.status = status
        super().__init__(f"Import batch '{batch_id}' is still {status}; the error report is available once it finishes")


class InvalidBatchTransition(AppointmentImportError):
    def __init__(self, batch_id: str, current: str, requested: str):
        self.batch_id = batch_id
        self.current = current
        self.requested = requested
        super().__init__(f"Import batch '{batch_id}' cannot move from {current} to {requested}")


class RowCountExceeded(AppointmentImportError):
    """More row outcomes were reported than the batch has rows."""

    def __init__(self, batch_id: str, total_rows: int):
        self.batch_id = batch_id
        self.total_rows = total_rows
        super().__init__(f"Import batch '{batch_id}' already has an outcome for all {total_rows} rows")


class RowCommitError(AppointmentImportError):
    """Persisting one row failed; recorded against the row, batch continues."""

    def __init__(self, row_number: int, message: str):
        self.row_number = row_number
        super().__init__(message)


class BatchFatalError(AppointmentImportError):
    """The batch as a whole cannot run to completion (e.g. storage is gone)."""
