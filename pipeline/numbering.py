"""
Document number generation.

Quotations:       "<prefix> DD-MM-YYYY-NNNNNN", e.g. "ALK 15-03-2024-100000".
                  The six-digit serial restarts at 100000 each day and is
                  always even: 100000, 100002, 100004, ...
Supplier orders:  "SO-YYYYMMDD-NNNN"
Delivery docs:    "DOC-YYYYMMDD-NNNN"
"""
import logging
import re
from datetime import date
from typing import Iterable, Optional

from .errors import SerialsExhausted

logger = logging.getLogger(__name__)

FIRST_SERIAL = 100000
MAX_SERIAL   = 999998


def next_quotation_number(
    existing: Iterable[str],
    today: Optional[date] = None,
    prefix: str = "ALK",
) -> str:
    """
    Next even-serial quotation number for *today*, given all existing numbers.

    Raises SerialsExhausted once serial 999998 has been issued for the day.
    """
    today = today or date.today()
    day_prefix = f"{prefix} {today:%d-%m-%Y}-"

    highest: Optional[int] = None
    for number in existing:
        number = number.strip()
        if not number.startswith(day_prefix):
            continue
        serial = number[len(day_prefix):].strip()
        if len(serial) == 6 and serial.isdigit():
            value = int(serial)
            if value >= FIRST_SERIAL and (highest is None or value > highest):
                highest = value

    if highest is None:
        serial = FIRST_SERIAL
    else:
        serial = highest + 2 if highest % 2 == 0 else highest + 1
    if serial > MAX_SERIAL:
        raise SerialsExhausted(prefix, today)
    return f"{day_prefix}{serial:06d}"


def next_sequential_number(
    existing: Iterable[str],
    prefix: str,
    today: Optional[date] = None,
) -> str:
    """Next "<prefix>-YYYYMMDD-NNNN" number, counting up from the day's highest."""
    today = today or date.today()
    day_prefix = f"{prefix}-{today:%Y%m%d}-"
    pattern = re.compile(rf"^{re.escape(day_prefix)}(\d+)$")

    highest = 0
    for number in existing:
        m = pattern.match(number.strip())
        if m:
            highest = max(highest, int(m.group(1)))
    return f"{day_prefix}{highest + 1:04d}"


class DocumentNumbering:
    """Allocates the next document numbers against what is already stored."""

    def __init__(self, quotation_prefix: str = "ALK"):
        self.quotation_prefix = quotation_prefix

    def quotation_number(self, tx, today: Optional[date] = None) -> str:
        today = today or date.today()
        existing = tx.numbers("quotation", f"{self.quotation_prefix} {today:%d-%m-%Y}-")
        return next_quotation_number(existing, today, self.quotation_prefix)

    def supplier_order_number(self, tx, today: Optional[date] = None) -> str:
        today = today or date.today()
        return next_sequential_number(tx.numbers("supplier_order", f"SO-{today:%Y%m%d}-"), "SO", today)

    def delivery_document_number(self, tx, today: Optional[date] = None) -> str:
        today = today or date.today()
        return next_sequential_number(tx.numbers("delivery_document", f"DOC-{today:%Y%m%d}-"), "DOC", today)
