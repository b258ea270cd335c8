"""
Calendar-date helpers.

Dates travel as plain `YYYY-MM-DD` strings or `date` objects. Nothing here
touches timezones: a timestamp suffix such as `T00:00:00.000Z` is cut off
rather than parsed, so a value can never drift to the previous day.
"""

import calendar
from collections.abc import Iterator
from datetime import date, datetime


def parse_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Expected a YYYY-MM-DD string, got {type(value).__name__}")

    date_str: str = value.strip().split("T")[0].split(" ")[0]
    try:
        return datetime.strptime(date_str, "%Y-%m-%d").date()
    except ValueError:
        raise ValueError(f"Invalid date: '{value}'. Expected format is YYYY-MM-DD")


def parse_month(value: str) -> tuple[int, int]:
    """Parse "YYYY-MM" into (year, month)."""
    try:
        parsed: datetime = datetime.strptime(value.strip(), "%Y-%m")
    except ValueError:
        raise ValueError(f"Invalid month: '{value}'. Expected format is YYYY-MM")
    return parsed.year, parsed.month


def month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def next_month(year: int, month: int) -> tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def iter_months(first: tuple[int, int], last: tuple[int, int]) -> Iterator[tuple[int, int]]:
    """Yield every (year, month) from first to last inclusive."""
    current: tuple[int, int] = first
    while current <= last:
        yield current
        current = next_month(*current)
