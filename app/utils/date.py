"""
Date and time parsing utilities for imported appointment rows.

Salons export their calendars from very different tools: spreadsheets hand us
native ``datetime``/``time`` cells or Excel serial numbers, CSV/JSON exports
hand us strings in European (``DD.MM.YYYY``), ISO or slash-separated formats.
These helpers turn all of them into ``datetime.date`` / ``datetime.time``
values and return ``None`` for anything they cannot interpret.
"""

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Optional

import pandas as pd

from app.core.config import settings

logger = logging.getLogger(__name__)

FAILED_SAMPLE_LIMIT = 5
SUPPRESSION_NOTICE_EVERY = 100

# Excel stores dates as days since 1899-12-30 (accounting for the 1900 leap bug).
EXCEL_EPOCH = date(1899, 12, 30)
EXCEL_SERIAL_RANGE = (20000, 80000)  # 1954 .. 2119

_ISO_PREFIX = re.compile(r"^\d{4}-\d{1,2}-\d{1,2}")
_NUMERIC_DATE = re.compile(r"^(\d{1,2})[./-](\d{1,2})[./-](\d{2,4})\.?$")
_TIME_PATTERN = re.compile(r"^(\d{1,2})[:.](\d{2})(?:[:.](\d{2}))?\s*([AaPp][Mm])?$")

_failure_stats: dict = {}


def _record_parse_failure(value: Any, context: str) -> None:
    """
    Collect failure stats and emit limited logs (sampled debug lines + periodic summaries).
    """
    stats = _failure_stats.setdefault(context, {"count": 0, "samples": []})
    stats["count"] += 1
    count = stats["count"]

    if len(stats["samples"]) < FAILED_SAMPLE_LIMIT:
        stats["samples"].append(value)
        logger.debug("Failed to parse %s value %r", context, value)
        return

    # Emit a single summary when suppression starts, then periodically.
    if count == FAILED_SAMPLE_LIMIT + 1 or count % SUPPRESSION_NOTICE_EVERY == 0:
        logger.info(
            "Suppressed additional %s parse failures after %d values; sample values=%s",
            context,
            count,
            stats["samples"],
        )


def is_blank(value: Any) -> bool:
    """Return True for None, NaN/NaT and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple, dict, set)):
        return len(value) == 0
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _dayfirst_for(first: int, second: int) -> bool:
    """Decide whether day-first is more plausible for ``first/second/year``."""
    if first > 12 and second <= 12:
        return True
    if second > 12 and first <= 12:
        return False
    return settings.date_default_dayfirst


def _build_date(year: int, month: int, day: int) -> Optional[date]:
    if year < 100:
        year += 2000
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_appointment_date(value: Any) -> Optional[date]:
    """
    Parse an appointment date from a cell value.

    Supports:
    - native ``date``/``datetime``/``pandas.Timestamp`` cells
    - Excel serial day numbers (e.g. ``45292`` for 2024-01-01)
    - ISO 8601: ``2024-03-15``, ``2024-03-15T10:30:00``
    - European: ``15.03.2024``, ``15.03.2024.``, ``15/03/2024``, ``15-03-2024``
    - Month-first ``03/15/2024`` when the day cannot be the first component

    Returns:
        The parsed date, or None if the value is blank or unparseable.
    """
    if is_blank(value):
        return None

    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime().date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if EXCEL_SERIAL_RANGE[0] <= value <= EXCEL_SERIAL_RANGE[1]:
            return EXCEL_EPOCH + timedelta(days=int(value))
        _record_parse_failure(value, "date")
        return None

    text = str(value).strip()

    numeric_match = _NUMERIC_DATE.match(text)
    if numeric_match:
        first, second, year = (int(part) for part in numeric_match.groups())
        if _dayfirst_for(first, second):
            parsed = _build_date(year, second, first)
        else:
            parsed = _build_date(year, first, second)
        if parsed is None:
            _record_parse_failure(value, "date")
        return parsed

    if _ISO_PREFIX.match(text):
        try:
            return pd.Timestamp(text).to_pydatetime().date()
        except (ValueError, OverflowError):
            pass

    _record_parse_failure(value, "date")
    return None


def parse_appointment_time(value: Any) -> Optional[time]:
    """
    Parse an appointment start time from a cell value.

    Supports native ``time``/``datetime`` cells, Excel day fractions
    (``0.4375`` is 10:30), and strings such as ``10:30``, ``10:30:00``,
    ``9.15`` and ``2:30 PM``.
    """
    if is_blank(value):
        return None

    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime().time()
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if 0 <= value < 1:
            seconds = int(round(value * 24 * 60 * 60))
            return (datetime.min + timedelta(seconds=seconds)).time()
        _record_parse_failure(value, "time")
        return None

    text = str(value).strip()
    # "2024-03-15 10:30" style cells carry the time after the date
    if _ISO_PREFIX.match(text) and (" " in text or "T" in text):
        text = re.split(r"[ T]", text, maxsplit=1)[1]

    match = _TIME_PATTERN.match(text)
    if not match:
        _record_parse_failure(value, "time")
        return None

    hour, minute = int(match.group(1)), int(match.group(2))
    second = int(match.group(3) or 0)
    meridiem = (match.group(4) or "").lower()
    if meridiem:
        if not 1 <= hour <= 12:
            _record_parse_failure(value, "time")
            return None
        hour = hour % 12 + (12 if meridiem == "pm" else 0)

    try:
        return time(hour, minute, second)
    except ValueError:
        _record_parse_failure(value, "time")
        return None
