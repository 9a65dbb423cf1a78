"""
Downloadable error report for a finished import batch.

One line per failed row: the row number, the row's raw values under the
job's detected columns, and the error messages. Written semicolon-delimited
like the import files themselves, with a UTF-8 BOM so spreadsheet tools pick
the right encoding.
"""
import csv
import json
from io import StringIO
from typing import Any, Iterable, Iterator, List, Sequence

from app.domain.imports.models import RowFailure
from app.utils.serialization import make_json_safe

DELIMITER = ";"
BOM = "\ufeff"
MESSAGE_SEPARATOR = " | "


def report_columns(detected_columns: Sequence[str], failures: Iterable[RowFailure]) -> List[str]:
    """Detected columns first, then any other keys the failed rows carry."""
    columns = list(detected_columns)
    seen = set(columns)
    for failure in failures:
        for key in failure.data:
            if key not in seen:
                seen.add(key)
                columns.append(key)
    return columns


def _cell(value: Any) -> str:
    value = make_json_safe(value)
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def generate_error_report_stream(
    failures: Sequence[RowFailure],
    detected_columns: Sequence[str],
) -> Iterator[str]:
    """
    Yield the report as CSV text chunks, header first.

    Args:
        failures: Failed rows in the order they should appear.
        detected_columns: Columns of the uploaded file.
    """
    columns = report_columns(detected_columns, failures)
    buffer = StringIO()
    writer = csv.writer(buffer, delimiter=DELIMITER)

    writer.writerow(["row", *columns, "errors"])
    yield BOM + buffer.getvalue()
    buffer.seek(0)
    buffer.truncate(0)

    for failure in failures:
        writer.writerow([
            failure.row_number,
            *(_cell(failure.data.get(column)) for column in columns),
            MESSAGE_SEPARATOR.join(failure.errors),
        ])
        yield buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)


def render_error_report(failures: Sequence[RowFailure], detected_columns: Sequence[str]) -> str:
    return "".join(generate_error_report_stream(failures, detected_columns))


def error_report_filename(batch_id: str) -> str:
    return f"import_errors_{batch_id}.csv"
