"""Utility functions for money rounding, date parsing, and expense filtering."""
import datetime as dt
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional

from models import Expense


def round_money(dec: Decimal) -> float:
    """Round a Decimal to 2 decimal places with HALF_UP (normal money rounding)."""
    return float(dec.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def to_decimal(value: Any) -> Decimal:
    """Convert ints / floats / Decimals / None to Decimal without float noise."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def sum_amounts(rows: Iterable[Any]) -> Decimal:
    """Sum the .amount of every row as a Decimal."""
    total = Decimal("0")
    for row in rows:
        total += to_decimal(row.amount)
    return total


def normalize_iso_date(value: Any) -> dt.date:
    """Normalize a value to a date or raise a ValueError."""
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value

    if isinstance(value, str):
        try:
            return dt.date.fromisoformat(value)
        except ValueError:
            raise ValueError("Invalid date format. Expected YYYY-MM-DD.")

    raise ValueError("Invalid date format. Expected YYYY-MM-DD.")


def normalize_iso_datetime(value: Any) -> dt.datetime:
    """Normalize a date, datetime or ISO string to a naive datetime.

    Plain dates become midnight. Aware datetimes are converted to local
    time and stripped of tzinfo so they compare with stored rows.
    """
    if isinstance(value, str):
        try:
            value = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError("Invalid date format. Expected ISO 8601.")

    if isinstance(value, dt.datetime):
        if value.tzinfo is not None:
            value = value.astimezone().replace(tzinfo=None)
        return value
    if isinstance(value, dt.date):
        return dt.datetime.combine(value, dt.time.min)

    raise ValueError("Invalid date format. Expected ISO 8601.")


def filter_expenses(
    expenses: Iterable[Expense],
    date_from: Optional[dt.datetime] = None,
    date_to: Optional[dt.datetime] = None,
    query: Optional[str] = None,
    category_id: Optional[int] = None,
) -> list[Expense]:
    """Filter expenses by inclusive date range, description text, and category."""
    q = (query or "").strip().lower()
    results: list[Expense] = []

    for e in expenses:

        if category_id is not None and e.category_id != category_id:
            continue

        if date_from and e.date < date_from:
            continue
        if date_to and e.date > date_to:
            continue

        if q and q not in (e.description or "").lower():
            continue

        results.append(e)

    return results
