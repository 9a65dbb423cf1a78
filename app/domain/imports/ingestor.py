"""
Turn an uploaded appointment file into an ImportJob plus its raw rows.

The file kind is taken from the extension or the declared content type:
browsers mislabel uploads regularly (Windows reports ``.csv`` files as
``application/vnd.ms-excel``), so either one naming a supported format is
enough, and the extension wins when both are supported but disagree.
"""
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple

from app.core.config import settings
from app.domain.imports.errors import FileTooLarge, UnsupportedFormat
from app.domain.imports.models import FileKind, ImportJob, RawRow
from app.domain.imports.processors.csv_processor import process_csv, process_excel
from app.domain.imports.processors.json_processor import process_json

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS: Dict[str, FileKind] = {
    ".csv": FileKind.CSV,
    ".json": FileKind.JSON,
    ".xlsx": FileKind.XLSX,
    ".xls": FileKind.XLS,
}

SUPPORTED_CONTENT_TYPES: Dict[str, FileKind] = {
    "text/csv": FileKind.CSV,
    "application/csv": FileKind.CSV,
    "application/json": FileKind.JSON,
    "text/json": FileKind.JSON,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": FileKind.XLSX,
    "application/vnd.ms-excel": FileKind.XLS,
}

_PROCESSORS: Dict[FileKind, Callable[[bytes], Tuple[list, list]]] = {
    FileKind.CSV: process_csv,
    FileKind.JSON: process_json,
    FileKind.XLSX: lambda content: process_excel(content, engine="openpyxl"),
    FileKind.XLS: lambda content: process_excel(content, engine="xlrd"),
}


def max_upload_bytes() -> int:
    return settings.import_max_file_size_mb * 1024 * 1024


def detect_file_kind(filename: Optional[str], content_type: Optional[str]) -> FileKind:
    """
    Resolve the file kind from the extension and the declared content type.

    Raises:
        UnsupportedFormat: If neither names a supported format.
    """
    extension = os.path.splitext(filename or "")[1].lower()
    declared = (content_type or "").split(";")[0].strip().lower()

    kind = SUPPORTED_EXTENSIONS.get(extension) or SUPPORTED_CONTENT_TYPES.get(declared)
    if kind is None:
        raise UnsupportedFormat(filename, content_type)
    return kind


def ingest_file(
    file_content: bytes,
    filename: str,
    content_type: Optional[str] = None,
    *,
    max_bytes: Optional[int] = None,
) -> Tuple[ImportJob, List[RawRow]]:
    """
    Parse an uploaded file into an ImportJob and its 1-based raw rows.

    The size limit is enforced before anything is parsed. A file that parses
    but holds no rows is not an error: it yields a job with ``total_rows = 0``.

    Raises:
        FileTooLarge: Payload exceeds the configured limit.
        UnsupportedFormat: Unknown format, or the payload cannot be parsed as one.
    """
    limit = max_upload_bytes() if max_bytes is None else max_bytes
    if len(file_content) > limit:
        raise FileTooLarge(len(file_content), limit)

    kind = detect_file_kind(filename, content_type)

    try:
        records, columns = _PROCESSORS[kind](file_content)
    except (ValueError, UnicodeDecodeError) as exc:
        # json.JSONDecodeError is a ValueError
        logger.warning("Could not parse %s upload '%s': %s", kind.value, filename, exc)
        raise UnsupportedFormat(filename, content_type, message=f"Could not parse '{filename}' as {kind.value}: {exc}")

    rows = [RawRow(number=index, raw=record) for index, record in enumerate(records, start=1)]
    job = ImportJob(
        id=str(uuid.uuid4()),
        filename=filename,
        file_size=len(file_content),
        file_kind=kind,
        detected_columns=tuple(columns),
        total_rows=len(rows),
        created_at=datetime.now(timezone.utc),
    )

    logger.info(
        "Ingested '%s' as %s: %d rows, columns=%s (import %s)",
        filename,
        kind.value,
        job.total_rows,
        list(job.detected_columns),
        job.id,
    )
    return job, rows
