"""
Normalisation of raw cell values for JSON columns and API payloads.

Spreadsheet uploads arrive as pandas/numpy scalars and datetime objects; the
row snapshots kept on failures, the upload preview and the persisted error
rows all pass through make_json_safe first.
"""
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any

import pandas as pd

_PLAIN = (str, int, bool)


def _decimal(value: Decimal) -> Any:
    # Whole amounts stay ints; anything else keeps its exact text.
    return int(value) if value == value.to_integral() else str(value)


def make_json_safe(value: Any) -> Any:
    if value is None or isinstance(value, _PLAIN):
        return value
    if isinstance(value, float):
        return None if pd.isna(value) else value
    if isinstance(value, dict):
        return {str(key): make_json_safe(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [make_json_safe(item) for item in value]
    if value is pd.NaT:
        return None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime().isoformat()
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return _decimal(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")

    # numpy scalars
    if callable(getattr(value, "item", None)):
        return make_json_safe(value.item())
    return str(value)
