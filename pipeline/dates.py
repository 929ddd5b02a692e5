"""
Textual date parsing for model-extracted documents.

Models are asked for YYYY-MM-DD but routinely echo what is printed on the
document instead.  Accepted forms:

  2025-11-22, 2025-11-22T10:00:00   ISO (time part ignored)
  22-11-2025, 11/22/2025            day-first when the first part exceeds 12
  28Jan26, 02Feb2026                compact DDMonYY
  22 November 2025, 22 Nov 2025
  November 22, 2025, Nov 22 2025

parse_date() returns None for anything else.  It never falls back to today:
expiry-driven statuses depend on these dates being real.
"""
import re
from datetime import date, datetime
from typing import Optional

_MONTHS = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7, "aug": 8,
    "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
}

_ISO_RE       = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?:[T\s].*)?$")
_NUMERIC_RE   = re.compile(r"^(\d{1,2})[-/.\s](\d{1,2})[-/.\s](\d{4})$")
_COMPACT_RE   = re.compile(r"^(\d{1,2})([a-z]{3,4})(\d{2}|\d{4})$", re.IGNORECASE)
_DAY_MONTH_RE = re.compile(r"^(\d{1,2})(?:st|nd|rd|th)?[\s\-]+([a-z]+)\.?,?[\s\-]+(\d{4})$", re.IGNORECASE)
_MONTH_DAY_RE = re.compile(r"^([a-z]+)\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})$", re.IGNORECASE)


def _build(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _expand_year(text: str) -> int:
    year = int(text)
    if len(text) == 2:
        year += 1900 if year > 50 else 2000
    return year


def parse_date(value) -> Optional[date]:
    """Parse a date from any accepted textual form; None if not recognised."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None

    m = _ISO_RE.match(text)
    if m:
        return _build(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _NUMERIC_RE.match(text)
    if m:
        first, second, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        if first > 12:
            return _build(year, second, first)
        return _build(year, first, second)

    m = _COMPACT_RE.match(text)
    if m:
        month = _MONTHS.get(m.group(2).lower())
        if month:
            return _build(_expand_year(m.group(3)), month, int(m.group(1)))
        return None

    m = _DAY_MONTH_RE.match(text)
    if m:
        month = _MONTHS.get(m.group(2).lower())
        if month:
            return _build(int(m.group(3)), month, int(m.group(1)))
        return None

    m = _MONTH_DAY_RE.match(text)
    if m:
        month = _MONTHS.get(m.group(1).lower())
        if month:
            return _build(int(m.group(3)), month, int(m.group(2)))
        return None

    return None
