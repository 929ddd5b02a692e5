"""
Unit tests for textual date parsing.
"""
from datetime import date, datetime

import pytest

from pipeline.dates import parse_date


@pytest.mark.unit
class TestParseDate:

    @pytest.mark.parametrize("text, expected", [
        ("2025-11-22", date(2025, 11, 22)),
        ("2025-11-22T10:15:00Z", date(2025, 11, 22)),
        ("2025/01/05", date(2025, 1, 5)),
        ("22-11-2025", date(2025, 11, 22)),
        ("11/22/2025", date(2025, 11, 22)),
        ("05/06/2025", date(2025, 5, 6)),
        ("28Jan26", date(2026, 1, 28)),
        ("02feb2026", date(2026, 2, 2)),
        ("15Mar99", date(1999, 3, 15)),
        ("22 November 2025", date(2025, 11, 22)),
        ("1st Sept 2025", date(2025, 9, 1)),
        ("November 22, 2025", date(2025, 11, 22)),
        ("Nov 22 2025", date(2025, 11, 22)),
    ])
    def test_accepted_formats(self, text, expected):
        assert parse_date(text) == expected

    @pytest.mark.parametrize("text", [
        "", "   ", "N/A", "next week", "2025-13-01", "31-02-2025", "32Foo25", "22 Brumaire 2025",
    ])
    def test_unrecognised_returns_none(self, text):
        """Unparsable input is never replaced by today's date."""
        assert parse_date(text) is None

    def test_date_objects_pass_through(self):
        assert parse_date(date(2025, 1, 2)) == date(2025, 1, 2)
        assert parse_date(datetime(2025, 1, 2, 9, 30)) == date(2025, 1, 2)
        assert parse_date(None) is None
