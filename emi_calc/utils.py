"""Date and number helpers shared by the engine and its front-ends.

Parsing helpers raise ``ValueError`` naming the offending value so that the
CLI and the web form can report it. ``coerce_decimal`` is the lenient variant
used by the engine, which must never raise on bad input.
"""

from __future__ import annotations

import calendar
from datetime import date
from decimal import Decimal, InvalidOperation, getcontext
from typing import Any, Optional, Tuple

getcontext().prec = 28  # increase decimal precision to avoid rounding errors

TENURE_UNITS = ("months", "years")


def parse_year_month(ym: str) -> date:
    """Parse a ``YYYY-MM`` string into the first day of that month.

    A trailing day component (``YYYY-MM-DD``) is accepted and kept, which
    matters only for exact-date rate-change matching.

    Raises
    ------
    ValueError
        If the string is not a valid year-month.
    """
    try:
        parts = ym.strip().split("-")
        if len(parts) not in (2, 3):
            raise ValueError
        year = int(parts[0])
        month = int(parts[1])
        day = int(parts[2]) if len(parts) == 3 else 1
        return date(year, month, day)
    except (AttributeError, TypeError, ValueError) as exc:
        raise ValueError(f"Invalid year-month string: {ym}") from exc


def add_months(dt: date, months: int) -> date:
    """Return a new date a number of months after ``dt``.

    The day of the month is clamped to the last valid day if needed (e.g.,
    adding one month to Jan 31 yields Feb 28 or 29).
    """
    year = dt.year + (dt.month - 1 + months) // 12
    month = (dt.month - 1 + months) % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def month_key(dt: date) -> Tuple[int, int]:
    """Return the ``(year, month)`` pair used for month-granularity matching."""
    return dt.year, dt.month


def format_month(dt: Optional[date]) -> Optional[str]:
    return dt.strftime("%Y-%m") if dt is not None else None


def decimal_from_str(value: str) -> Decimal:
    """Convert a numeric string into a ``Decimal``.

    Commas are stripped. Raises ``ValueError`` if conversion fails or the
    value is not finite.
    """
    try:
        result = Decimal(str(value).replace(",", "").strip())
    except InvalidOperation as exc:
        raise ValueError(f"Invalid numeric value: {value}") from exc
    if not result.is_finite():
        raise ValueError(f"Invalid numeric value: {value}")
    return result


def coerce_decimal(value: Any) -> Optional[Decimal]:
    """Return ``value`` as a finite ``Decimal`` or ``None`` if it is not numeric."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    try:
        return decimal_from_str(str(value))
    except ValueError:
        return None


def tenure_in_months(value: int, unit: str = "months") -> int:
    """Convert a tenure expressed in ``unit`` into a number of months."""
    unit = unit.lower()
    if unit not in TENURE_UNITS:
        raise ValueError(f"Tenure unit must be 'months' or 'years'; got {unit}")
    return int(value) * 12 if unit == "years" else int(value)
