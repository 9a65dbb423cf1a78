from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

from app.domain.imports.models import DEFAULT_COLUMN_MAPPING, NORMALIZED_FIELDS, ImportOptions

DataT = TypeVar("DataT")


class Envelope(BaseModel, Generic[DataT]):
    """Standard ``{"success": true, "data": ...}`` wrapper of the admin API."""
    success: bool = True
    data: DataT


class ImportRequest(BaseModel):
    salon_id: int
    staff_id: Optional[int] = None
    mapping: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_COLUMN_MAPPING))
    auto_map_services: bool = True
    create_guest_users: bool = True

    @field_validator("mapping")
    @classmethod
    def known_fields_only(cls, value: Dict[str, str]) -> Dict[str, str]:
        unknown = sorted(set(value) - set(NORMALIZED_FIELDS))
        if unknown:
            raise ValueError(f"Unknown mapping fields: {', '.join(unknown)}")
        return value

    def to_options(self, skip_invalid: bool = True) -> ImportOptions:
        return ImportOptions(
            salon_id=self.salon_id,
            staff_id=self.staff_id,
            column_mapping=dict(self.mapping),
            auto_map_services=self.auto_map_services,
            create_guest_users=self.create_guest_users,
            skip_invalid=skip_invalid,
        )


class ProcessRequest(ImportRequest):
    skip_invalid: bool = True


class UploadResult(BaseModel):
    import_id: str
    filename: str
    file_size: int
    total_rows: int
    detected_columns: List[str]
    preview: List[Dict[str, Any]]


class RowErrorEntry(BaseModel):
    row: int
    data: Dict[str, Any]
    errors: List[str]


class ServiceMappingEntry(BaseModel):
    import_name: str
    service_id: Optional[int] = None
    service_name: Optional[str] = None
    match_type: str
    score: Optional[float] = None


class ServiceMappingSummary(BaseModel):
    matched: int
    unmatched: int
    mappings: List[ServiceMappingEntry]


class UserCreationSummary(BaseModel):
    existing_users: int
    new_guest_users: int


class ValidationResult(BaseModel):
    total_rows: int
    valid_rows: int
    invalid_rows: int
    errors: List[RowErrorEntry]
    service_mapping: ServiceMappingSummary
    user_creation: UserCreationSummary


class ProcessResult(BaseModel):
    import_batch_id: str
    status: str


class BatchStatusResult(BaseModel):
    id: str
    status: str
    progress: int
    total_rows: int
    successful_rows: int
    failed_rows: int
    error_message: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class SalonRef(BaseModel):
    id: int
    name: Optional[str] = None


class ImportHistoryItem(BaseModel):
    id: str
    import_id: str
    filename: Optional[str] = None
    status: str
    total_rows: int
    successful_rows: int
    failed_rows: int
    progress: int
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    salon: Optional[SalonRef] = None


class ImportHistoryResult(BaseModel):
    batches: List[ImportHistoryItem]
    total_count: int
    limit: int
    offset: int
