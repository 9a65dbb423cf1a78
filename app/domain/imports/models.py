"""
Domain types shared by the appointment import pipeline.

Rows carry a fixed set of normalized fields plus an open ``extra`` mapping for
raw columns that feed none of them. Everything that crosses a thread boundary
(jobs, mappings, client records, batch snapshots) is immutable.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# Normalized field -> raw column name used by the admin import screen.
DEFAULT_COLUMN_MAPPING: Dict[str, str] = {
    "name": "client_name",
    "email": "client_email",
    "phone": "client_phone",
    "date": "date",
    "time": "time",
    "services": "services",
    "duration": "duration",
}

NORMALIZED_FIELDS: Tuple[str, ...] = tuple(DEFAULT_COLUMN_MAPPING)


class FileKind(str, Enum):
    CSV = "csv"
    JSON = "json"
    XLSX = "xlsx"
    XLS = "xls"


class MatchKind(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    NONE = "none"


class ClientKind(str, Enum):
    EXISTING = "existing"
    NEW_GUEST = "new_guest"
    NONE = "none"  # guest creation disabled and no account matched


class BatchStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.FAILED)


@dataclass(frozen=True)
class ImportJob:
    """One parsed upload. Superseded by a new job on re-upload, never mutated."""
    id: str
    filename: str
    file_size: int
    file_kind: FileKind
    detected_columns: Tuple[str, ...]
    total_rows: int
    created_at: datetime


@dataclass(frozen=True)
class RawRow:
    """A record as extracted from the file, addressed by its 1-based position."""
    number: int
    raw: Dict[str, Any]


@dataclass
class ValidatedRow:
    """A row after column mapping and validation; ``errors`` empty means valid."""
    number: int
    raw: Dict[str, Any]
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    date: Optional[date] = None
    time: Optional[time] = None
    services: Tuple[str, ...] = ()
    duration: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


@dataclass(frozen=True)
class CatalogService:
    id: int
    name: str
    duration_minutes: Optional[int] = None


@dataclass(frozen=True)
class ServiceMapping:
    imported_name: str
    service_id: Optional[int]
    service_name: Optional[str]
    match_kind: MatchKind
    score: Optional[float] = None


@dataclass(frozen=True)
class ClientIdentity:
    """The distinct client behind one or more rows of a job."""
    key: str
    name: Optional[str]
    email: Optional[str]
    phone: Optional[str]


@dataclass(frozen=True)
class ClientRecord:
    key: str
    kind: ClientKind
    account_id: Optional[int]


@dataclass(frozen=True)
class ImportOptions:
    salon_id: int
    staff_id: Optional[int]
    column_mapping: Dict[str, str]
    auto_map_services: bool = True
    create_guest_users: bool = True
    skip_invalid: bool = True


@dataclass(frozen=True)
class RowFailure:
    row_number: int
    data: Dict[str, Any]
    errors: Tuple[str, ...]


@dataclass(frozen=True)
class BatchSnapshot:
    """Point-in-time view of an import batch as seen by pollers."""
    id: str
    import_id: str
    salon_id: Optional[int]
    filename: Optional[str]
    status: BatchStatus
    total_rows: int
    successful_rows: int
    failed_rows: int
    progress: int
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def processed_rows(self) -> int:
        return self.successful_rows + self.failed_rows
