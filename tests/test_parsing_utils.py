"""
Tests for date, time and phone parsing helpers used by the validator.
"""

from datetime import date, datetime, time

import pandas as pd
import pytest

from app.utils.date import is_blank, parse_appointment_date, parse_appointment_time
from app.utils.phone import normalize_phone


class TestParseAppointmentDate:
    @pytest.mark.parametrize(
        "value",
        [
            "15.03.2024",
            "15.03.2024.",
            "15/03/2024",
            "15-03-2024",
            "15.3.24",
            "2024-03-15",
            "2024-03-15T10:30:00",
            "03/15/2024",  # day cannot come first
            date(2024, 3, 15),
            datetime(2024, 3, 15, 10, 30),
            pd.Timestamp("2024-03-15"),
            45366,  # Excel serial
        ],
    )
    def test_supported_formats(self, value):
        assert parse_appointment_date(value) == date(2024, 3, 15)

    def test_ambiguous_dates_are_day_first(self):
        assert parse_appointment_date("04.05.2024") == date(2024, 5, 4)

    @pytest.mark.parametrize("value", [None, "", "   ", "yesterday", "32.01.2024", "29.02.2023", 7, True])
    def test_unparseable(self, value):
        assert parse_appointment_date(value) is None


class TestParseAppointmentTime:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("10:30", time(10, 30)),
            ("9:05", time(9, 5)),
            ("10:30:15", time(10, 30, 15)),
            ("9.15", time(9, 15)),
            ("2:30 PM", time(14, 30)),
            ("12:00 am", time(0, 0)),
            ("2024-03-15 10:30", time(10, 30)),
            (time(8, 0), time(8, 0)),
            (datetime(2024, 3, 15, 17, 45), time(17, 45)),
            (0.4375, time(10, 30)),
        ],
    )
    def test_supported_formats(self, value, expected):
        assert parse_appointment_time(value) == expected

    @pytest.mark.parametrize("value", [None, "", "noon", "24:00", "13:00 PM", "10:7", 3])
    def test_unparseable(self, value):
        assert parse_appointment_time(value) is None


class TestNormalizePhone:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("061 111 222", "061111222"),
            ("061/111-222", "061111222"),
            ("+387 61 111-222", "+38761111222"),
            ("00387 61 111 222", "+38761111222"),
            (61111222.0, "61111222"),
            ("061 111 222 ext 12", "061111222"),
        ],
    )
    def test_normalizes(self, value, expected):
        assert normalize_phone(value) == expected

    @pytest.mark.parametrize("value", [None, "", "12345", "1" * 16, 6111.5, True])
    def test_rejects_implausible_numbers(self, value):
        assert normalize_phone(value) is None


def test_is_blank():
    assert is_blank(None)
    assert is_blank("  ")
    assert is_blank(float("nan"))
    assert is_blank([])
    assert not is_blank("x")
    assert not is_blank(0)
    assert not is_blank(["Šišanje"])
