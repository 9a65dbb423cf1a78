"""
Tests for the CSV error report of finished batches.
"""

import csv
import io
from datetime import date

from app.domain.imports.error_report import (
    error_report_filename,
    render_error_report,
    report_columns,
)
from app.domain.imports.models import RowFailure


FAILURES = [
    RowFailure(2, {"client_name": "Lejla", "date": None, "time": "11:00"}, ("date missing/unparseable",)),
    RowFailure(
        5,
        {"client_name": None, "date": "31.02.2024", "time": "9:00", "notes": "walk-in"},
        ("client name missing", "date missing/unparseable: '31.02.2024'"),
    ),
]


def parse(report):
    assert report.startswith("\ufeff")
    return list(csv.reader(io.StringIO(report[1:]), delimiter=";"))


def test_header_and_rows():
    rows = parse(render_error_report(FAILURES, ["client_name", "date", "time"]))

    assert rows[0] == ["row", "client_name", "date", "time", "notes", "errors"]
    assert rows[1] == ["2", "Lejla", "", "11:00", "", "date missing/unparseable"]
    assert rows[2] == [
        "5", "", "31.02.2024", "9:00", "walk-in",
        "client name missing | date missing/unparseable: '31.02.2024'",
    ]


def test_one_line_per_failure():
    rows = parse(render_error_report(FAILURES, ["client_name", "date", "time"]))
    assert len(rows) - 1 == len(FAILURES)


def test_empty_report_has_header_only():
    rows = parse(render_error_report([], ["client_name"]))
    assert rows == [["row", "client_name", "errors"]]


def test_values_containing_delimiter_are_quoted():
    failure = RowFailure(1, {"services": "Šišanje; Feniranje", "date": date(2024, 1, 15)}, ("x",))
    rows = parse(render_error_report([failure], ["services", "date"]))
    assert rows[1] == ["1", "Šišanje; Feniranje", "2024-01-15", "x"]


def test_report_columns_keep_detected_order():
    assert report_columns(["b", "a"], FAILURES) == ["b", "a", "client_name", "date", "time", "notes"]


def test_filename():
    assert error_report_filename("abc") == "import_errors_abc.csv"
