import pandas as pd
from pandas.errors import EmptyDataError, ParserError
from typing import List, Dict, Any, Tuple
import io
import logging

logger = logging.getLogger(__name__)

# Exports from Balkan salon software are mostly UTF-8, older ones Windows-1250.
CSV_ENCODINGS = ("utf-8-sig", "cp1250")

Records = List[Dict[str, Any]]


def _clean_value(value: Any) -> Any:
    """Convert pandas/numpy cell values into plain Python values (blank -> None)."""
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, pd.Timestamp):
        return value.to_pydatetime()
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        return value
    item = getattr(value, "item", None)
    if callable(item):
        return item()
    return value


def _dataframe_to_records(df: pd.DataFrame) -> Tuple[Records, List[str]]:
    """Return (records, column_names) with trimmed headers and blank cells as None."""
    columns = [str(column).strip() for column in df.columns]
    df.columns = columns

    records = df.to_dict("records")
    for record in records:
        for key, value in record.items():
            record[key] = _clean_value(value)

    # Fully blank lines (trailing separators, empty spreadsheet rows) are not appointments.
    records = [record for record in records if any(value is not None for value in record.values())]
    return records, columns


def _decode(file_content: bytes) -> str:
    last_error = None
    for encoding in CSV_ENCODINGS:
        try:
            return file_content.decode(encoding)
        except UnicodeDecodeError as exc:
            last_error = exc
    raise ValueError(f"Could not decode CSV file: {last_error}")


def detect_delimiter(header_line: str) -> str:
    """
    Pick the CSV delimiter from the header line.

    The import format is semicolon-separated; comma-separated files are
    accepted when the header contains no semicolon at all.
    """
    if ";" in header_line:
        return ";"
    if "," in header_line:
        return ","
    return ";"


def process_csv(file_content: bytes) -> Tuple[Records, List[str]]:
    """
    Process a delimited appointment export and return (records, column_names).

    Every cell is read as text so that phone numbers keep their leading zeros
    and dates are not reinterpreted by pandas.
    """
    text_content = _decode(file_content)
    if not text_content.strip():
        logger.info("CSV file is empty")
        return [], []

    header_line = text_content.lstrip().splitlines()[0]
    delimiter = detect_delimiter(header_line)

    try:
        df = pd.read_csv(
            io.StringIO(text_content),
            sep=delimiter,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
        )
    except EmptyDataError:
        return [], []
    except ParserError as e:
        raise ValueError(f"Could not parse CSV file: {str(e)}")

    records, columns = _dataframe_to_records(df)
    logger.info(f"Processed CSV (delimiter '{delimiter}'): {len(records)} rows, columns: {columns}")
    return records, columns


def process_excel(file_content: bytes, engine: str = "openpyxl") -> Tuple[Records, List[str]]:
    """
    Process the first sheet of an Excel workbook and return (records, column_names).

    Args:
        file_content: Workbook bytes
        engine: ``openpyxl`` for .xlsx, ``xlrd`` for legacy .xls
    """
    try:
        df = pd.read_excel(io.BytesIO(file_content), engine=engine, dtype=object)
    except Exception as e:
        raise ValueError(f"Could not read Excel file: {str(e)}")

    records, columns = _dataframe_to_records(df)
    logger.info(f"Processed Excel ({engine}): {len(records)} rows, columns: {columns}")
    return records, columns
