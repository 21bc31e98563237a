"""
Dues period helpers.

A period is a (year, month) pair. Dues for a period fall due on the first
day of the following month.
"""

import calendar
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterator, Tuple

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Normalize any numeric input to a two-place Decimal."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def month_name(month: int) -> str:
    if 1 <= month <= 12:
        return calendar.month_name[month]
    return "Unknown"


def due_date_for(year: int, month: int) -> date:
    if month == 12:
        return date(year + 1, 1, 1)
    return date(year, month + 1, 1)


def iter_periods(start: date, end: date) -> Iterator[Tuple[int, int]]:
    """
    Yield every (year, month) from start's month through end's month inclusive.

    Yields nothing when start falls in a later month than end.
    """
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        yield year, month
        if month == 12:
            year, month = year + 1, 1
        else:
            month += 1


def dues_description(year: int, month: int) -> str:
    return f"Monthly dues for {month_name(month)} {year}"


def generation_key(member_id: int, year: int, month: int) -> str:
    return f"{member_id}:{year:04d}-{month:02d}"
