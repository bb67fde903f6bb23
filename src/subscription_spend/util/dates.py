from __future__ import annotations

from datetime import date, datetime
from typing import Union

from dateutil import parser as date_parser

from ..errors import InvalidDate


DateLike = Union[date, datetime, str]

# Both leap years, differing in year, month and day.
_DEFAULT_A = datetime(1904, 1, 1)
_DEFAULT_B = datetime(1908, 2, 2)


def parse_date(value: DateLike) -> date:
    """
    Coerce a record's date field to a calendar date.

    Accepts:
    - `date` / `datetime` objects (time of day is dropped)
    - ISO strings like "2025-03-15" or "2025-03-15T08:30:00Z"
    - other unambiguous forms dateutil understands ("Mar 15 2025")

    Raises `InvalidDate` for empty, unparseable, partial ("2025", "March") or impossible dates
    ("2025-02-30").
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if value is None:
        raise InvalidDate("parse_date: value is None")
    if not isinstance(value, str):
        raise InvalidDate(f"parse_date: unsupported type {type(value).__name__}")

    s = value.strip()
    if not s:
        raise InvalidDate("parse_date: empty string")

    # Fast path for plain ISO dates; also rejects impossible days like 2025-02-30.
    if len(s) == 10 and s[4] == "-" and s[7] == "-":
        try:
            return date.fromisoformat(s)
        except ValueError as e:
            raise InvalidDate(f"parse_date: {s!r} is not a real calendar date") from e

    # dateutil fills missing parts from `default`; parsing against two defaults exposes them.
    try:
        a = date_parser.parse(s, default=_DEFAULT_A, dayfirst=False, yearfirst=True)
        b = date_parser.parse(s, default=_DEFAULT_B, dayfirst=False, yearfirst=True)
    except (ValueError, OverflowError) as e:
        raise InvalidDate(f"parse_date: cannot parse {s!r}") from e
    if a.date() != b.date():
        raise InvalidDate(f"parse_date: {s!r} lacks an explicit year, month and day")
    return a.date()


def month_start(d: date) -> date:
    return d.replace(day=1)


def quarter_start(d: date) -> date:
    return date(d.year, ((d.month - 1) // 3) * 3 + 1, 1)


def year_start(d: date) -> date:
    return date(d.year, 1, 1)
