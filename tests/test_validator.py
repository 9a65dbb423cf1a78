"""
Tests for row validation and column mapping.
"""

from datetime import date, time

import pytest

from app.domain.imports.models import DEFAULT_COLUMN_MAPPING, RawRow
from app.domain.imports.validator import (
    normalize_column_name,
    parse_duration,
    resolve_column_mapping,
    split_service_tokens,
    validate_row,
    validate_rows,
)

COLUMNS = ("client_name", "client_email", "client_phone", "date", "time", "services", "duration")
MAPPING = resolve_column_mapping(None, COLUMNS)


def make_row(number=1, **values):
    raw = {
        "client_name": "Ana Anić",
        "client_email": "Ana@Example.com ",
        "client_phone": "061 111 222",
        "date": "15.01.2024",
        "time": "10:00",
        "services": "Šišanje",
        "duration": "30",
    }
    raw.update(values)
    return RawRow(number=number, raw=raw)


class TestColumnMapping:
    def test_default_mapping_resolves_exact_columns(self):
        assert MAPPING == DEFAULT_COLUMN_MAPPING

    def test_columns_matched_by_normalized_name(self):
        resolved = resolve_column_mapping(None, ["Client Name", "Date", "TIME", "Client-Email"])
        assert resolved["name"] == "Client Name"
        assert resolved["date"] == "Date"
        assert resolved["time"] == "TIME"
        assert resolved["email"] == "Client-Email"
        assert resolved["phone"] is None

    def test_custom_mapping_overrides_defaults(self):
        resolved = resolve_column_mapping({"name": "Klijent", "date": "Datum"}, ["Klijent", "Datum", "time"])
        assert resolved["name"] == "Klijent"
        assert resolved["date"] == "Datum"
        assert resolved["time"] == "time"

    def test_unknown_fields_ignored(self):
        resolved = resolve_column_mapping({"colour": "Boja"}, ["Boja"])
        assert "colour" not in resolved

    def test_normalize_column_name(self):
        assert normalize_column_name("Client Name") == "clientname"
        assert normalize_column_name("client_name") == "clientname"
        assert normalize_column_name("Client-Name") == "clientname"


class TestValidateRow:
    def test_valid_row_is_normalized(self):
        row = validate_row(make_row(), MAPPING)

        assert row.is_valid
        assert row.errors == []
        assert row.client_name == "Ana Anić"
        assert row.client_email == "ana@example.com"
        assert row.client_phone == "061111222"
        assert row.date == date(2024, 1, 15)
        assert row.time == time(10, 0)
        assert row.services == ("Šišanje",)
        assert row.duration == 30

    def test_missing_name(self):
        row = validate_row(make_row(client_name="  "), MAPPING)
        assert not row.is_valid
        assert row.errors == ["client name missing"]

    def test_missing_date(self):
        row = validate_row(make_row(date=None), MAPPING)
        assert row.errors == ["date missing/unparseable"]

    def test_unparseable_date(self):
        row = validate_row(make_row(date="31.02.2024"), MAPPING)
        assert row.errors == ["date missing/unparseable: '31.02.2024'"]

    def test_missing_time(self):
        row = validate_row(make_row(time=""), MAPPING)
        assert row.errors == ["time missing"]

    def test_unparseable_time(self):
        row = validate_row(make_row(time="25:99"), MAPPING)
        assert row.errors == ["time unparseable: '25:99'"]

    def test_bad_duration(self):
        for value in ("abc", "0", "-15", "12.5"):
            row = validate_row(make_row(duration=value), MAPPING)
            assert row.errors == [f"duration must be a positive integer: '{value}'"], value

    def test_duration_longer_than_a_day(self):
        for value in ("1441", "10000000000"):
            row = validate_row(make_row(duration=value), MAPPING)
            assert row.errors == [f"duration must not exceed 1440 minutes: '{value}'"], value
            assert row.duration is None

        assert validate_row(make_row(duration="1440"), MAPPING).duration == 1440

    def test_services_without_names(self):
        row = validate_row(make_row(services=" , ; "), MAPPING)
        assert row.errors == ["services must name at least one service"]

    def test_optional_fields_may_be_absent(self):
        row = validate_row(make_row(services=None, duration=None, client_email=None, client_phone=None), MAPPING)
        assert row.is_valid
        assert row.services == ()
        assert row.duration is None
        assert row.client_email is None

    def test_all_errors_reported_together(self):
        row = validate_row(make_row(client_name=None, date="someday", time="late"), MAPPING)
        assert row.errors == [
            "client name missing",
            "date missing/unparseable: 'someday'",
            "time unparseable: 'late'",
        ]

    def test_unmapped_columns_kept_as_extra(self):
        row = validate_row(make_row(notes="Prefers Amra"), MAPPING)
        assert row.extra == {"notes": "Prefers Amra"}

    def test_input_row_not_mutated(self):
        source = make_row()
        before = dict(source.raw)
        validate_row(source, MAPPING)
        assert source.raw == before

    def test_invalid_phone_is_dropped_not_an_error(self):
        row = validate_row(make_row(client_phone="12"), MAPPING)
        assert row.is_valid
        assert row.client_phone is None


def test_validate_rows_partitions_totals():
    rows = [make_row(1), make_row(2, client_name=None), make_row(3, time="noon"), make_row(4)]
    validated = validate_rows(rows, MAPPING)

    valid = [row for row in validated if row.is_valid]
    invalid = [row for row in validated if not row.is_valid]
    assert len(valid) + len(invalid) == len(rows)
    assert [row.number for row in invalid] == [2, 3]


@pytest.mark.parametrize(
    "value, expected",
    [
        ("Šišanje, Feniranje", ("Šišanje", "Feniranje")),
        ("Šišanje; Feniranje | Manikir", ("Šišanje", "Feniranje", "Manikir")),
        ("Šišanje + Feniranje", ("Šišanje", "Feniranje")),
        (["Šišanje", " ", "Manikir"], ("Šišanje", "Manikir")),
        ("  Šišanje   dugo ", ("Šišanje dugo",)),
        (None, ()),
    ],
)
def test_split_service_tokens(value, expected):
    assert split_service_tokens(value) == expected


@pytest.mark.parametrize(
    "value, expected",
    [(30, 30), (45.0, 45), ("60", 60), ("90.0", 90), ("0", None), (-5, None), ("1h", None), (True, None)],
)
def test_parse_duration(value, expected):
    assert parse_duration(value) == expected
