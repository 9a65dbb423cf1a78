"""
Row validation and normalization.

A row's validity is a pure function of its raw data and the column mapping:
``validate_row`` never mutates its input and always returns a fresh
``ValidatedRow``. Every rule runs; nothing short-circuits, so a row reports all
of its problems at once.
"""
import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from app.domain.imports.errors import FieldValidationError
from app.domain.imports.models import (
    DEFAULT_COLUMN_MAPPING,
    NORMALIZED_FIELDS,
    RawRow,
    ValidatedRow,
)
from app.utils.date import is_blank, parse_appointment_date, parse_appointment_time
from app.utils.phone import normalize_phone

logger = logging.getLogger(__name__)

SERVICE_SEPARATORS = re.compile(r"[,;|+\n]")

MSG_NAME_MISSING = "client name missing"
MSG_DATE_MISSING = "date missing/unparseable"
MSG_TIME_MISSING = "time missing"

# One appointment never spans more than a day.
MAX_DURATION_MINUTES = 24 * 60


def normalize_column_name(name: str) -> str:
    """
    Normalize a column name for comparison.

    Examples:
        "Client Name" -> "clientname"
        "client_name" -> "clientname"
        "Client-Name" -> "clientname"
    """
    normalized = str(name).lower()
    normalized = re.sub(r"[\s\-_]+", "", normalized)
    return re.sub(r"[^\w]", "", normalized)


def resolve_column_mapping(
    mapping: Optional[Mapping[str, str]],
    detected_columns: Sequence[str],
) -> Dict[str, Optional[str]]:
    """
    Resolve a normalized-field -> raw-column mapping against the file's columns.

    Missing fields fall back to the default mapping. A configured column is
    matched exactly first, then by normalized name (case, spaces, hyphens and
    underscores ignored). Fields whose column is absent map to None.
    """
    requested = dict(DEFAULT_COLUMN_MAPPING)
    requested.update({key: value for key, value in (mapping or {}).items() if key in NORMALIZED_FIELDS and value})

    normalized_columns: Dict[str, str] = {}
    for column in detected_columns:
        normalized_columns.setdefault(normalize_column_name(column), column)

    resolved: Dict[str, Optional[str]] = {}
    for field_name in NORMALIZED_FIELDS:
        column = requested.get(field_name)
        if column in detected_columns:
            resolved[field_name] = column
        else:
            resolved[field_name] = normalized_columns.get(normalize_column_name(column)) if column else None
    return resolved


def normalize_email(value: Any) -> Optional[str]:
    if is_blank(value):
        return None
    return str(value).strip().casefold()


def _text(value: Any) -> Optional[str]:
    if is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return re.sub(r"\s+", " ", str(value)).strip()


def split_service_tokens(value: Any) -> Tuple[str, ...]:
    """Split a services cell ("Šišanje, Feniranje") into non-empty trimmed tokens."""
    if is_blank(value):
        return ()
    if isinstance(value, (list, tuple)):
        parts: Iterable[Any] = value
    else:
        parts = SERVICE_SEPARATORS.split(str(value))
    tokens = (_text(part) for part in parts)
    return tuple(token for token in tokens if token)


def parse_duration(value: Any) -> Optional[int]:
    """Return a positive whole number of minutes, or None when not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, float):
        return int(value) if value.is_integer() and value > 0 else None
    text = str(value).strip()
    if re.fullmatch(r"\d+", text):
        minutes = int(text)
    elif re.fullmatch(r"\d+[.,]0+", text):
        minutes = int(re.split(r"[.,]", text)[0])
    else:
        return None
    return minutes if minutes > 0 else None


def validate_row(row: RawRow, column_mapping: Mapping[str, Optional[str]]) -> ValidatedRow:
    """
    Map a raw row onto the normalized fields and run every rule, in order:

    1. client name, date and time are present
    2. the date parses as a calendar date
    3. the time parses as a time of day
    4. duration, if present, is a positive integer of at most a day
    5. services, if present, name at least one service

    Args:
        row: The raw row.
        column_mapping: Resolved normalized-field -> raw-column mapping
            (see ``resolve_column_mapping``).
    """
    def raw_value(field_name: str) -> Any:
        column = column_mapping.get(field_name)
        return row.raw.get(column) if column else None

    raw_name = raw_value("name")
    raw_date = raw_value("date")
    raw_time = raw_value("time")
    raw_duration = raw_value("duration")
    raw_services = raw_value("services")

    errors: List[str] = []

    if is_blank(raw_name):
        errors.append(MSG_NAME_MISSING)
    if is_blank(raw_date):
        errors.append(MSG_DATE_MISSING)
    if is_blank(raw_time):
        errors.append(MSG_TIME_MISSING)

    parsed_date = parse_appointment_date(raw_date)
    if not is_blank(raw_date) and parsed_date is None:
        errors.append(f"{MSG_DATE_MISSING}: '{raw_date}'")

    parsed_time = parse_appointment_time(raw_time)
    if not is_blank(raw_time) and parsed_time is None:
        errors.append(f"time unparseable: '{raw_time}'")

    duration = None
    if not is_blank(raw_duration):
        duration = parse_duration(raw_duration)
        if duration is None:
            errors.append(f"duration must be a positive integer: '{raw_duration}'")
        elif duration > MAX_DURATION_MINUTES:
            errors.append(f"duration must not exceed {MAX_DURATION_MINUTES} minutes: '{raw_duration}'")
            duration = None

    services: Tuple[str, ...] = ()
    if not is_blank(raw_services):
        services = split_service_tokens(raw_services)
        if not services:
            errors.append("services must name at least one service")

    mapped_columns = {column for column in column_mapping.values() if column}
    extra = {key: value for key, value in row.raw.items() if key not in mapped_columns}

    return ValidatedRow(
        number=row.number,
        raw=dict(row.raw),
        client_name=_text(raw_name),
        client_email=normalize_email(raw_value("email")),
        client_phone=normalize_phone(raw_value("phone")),
        date=parsed_date,
        time=parsed_time,
        services=services,
        duration=duration,
        extra=extra,
        errors=errors,
    )


def validate_rows(rows: Sequence[RawRow], column_mapping: Mapping[str, Optional[str]]) -> List[ValidatedRow]:
    validated = [validate_row(row, column_mapping) for row in rows]
    invalid = 0
    for row in validated:
        if not row.is_valid:
            invalid += 1
            logger.debug("%s", FieldValidationError(row.number, row.errors).message)
    logger.info("Validated %d rows: %d valid, %d invalid", len(validated), len(validated) - invalid, invalid)
    return validated
