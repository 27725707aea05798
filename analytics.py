"""Budget and spending aggregates.

Every function here is pure: it takes rows already fetched from the store
(anything with the attributes of ``BudgetCategory`` / ``Expense``) and folds
them into one of the derived views in ``schemas``. Amounts are summed as
Decimal and only rounded to cents on the way out.
"""
import datetime as dt
import math
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from schemas import (
    BudgetSummary,
    CategoryProgress,
    CategorySlice,
    SpendingSummary,
    TrendSeries,
)
from timeframes import (
    bucket_key,
    day_label,
    resolve_window,
    trend_labels,
    trend_timeframe,
    trend_window,
)
from utils import round_money, sum_amounts, to_decimal

UNKNOWN_CATEGORY_NAME = "Uncategorized"
UNKNOWN_CATEGORY_COLOR = "#7F7F7F"
SECONDS_PER_DAY = 24 * 60 * 60


def percentage_of(spent: Decimal, budget: Decimal) -> float:
    """spent / budget * 100, or 0 when there is no budget to measure against."""
    if budget <= 0:
        return 0.0
    return round_money(spent / budget * 100)


def totals_by_category(expenses: Iterable) -> dict[int, Decimal]:
    """Sum amounts per category_id, keyed in first-encountered order."""
    totals: dict[int, Decimal] = {}
    for e in expenses:
        totals[e.category_id] = totals.get(e.category_id, Decimal("0")) + to_decimal(e.amount)
    return totals


def _leader(totals: dict) -> tuple[Optional[object], Decimal]:
    """Key with the highest total. Only a strictly greater total takes the
    lead, so on a tie the first key to reach the maximum wins."""
    best_key = None
    best_total = Decimal("0")
    for key, total in totals.items():
        if total > best_total:
            best_key, best_total = key, total
    return best_key, best_total


def budget_summary(categories: Iterable, expenses: Iterable) -> BudgetSummary:
    """Total budget over all categories against this month's spend.

    ``remaining`` goes negative once the user is over budget.
    """
    total_budget = sum((to_decimal(c.monthly_budget) for c in categories), Decimal("0"))
    total_spent = sum_amounts(expenses)
    remaining = total_budget - total_spent

    return BudgetSummary(
        total_budget=round_money(total_budget),
        total_spent=round_money(total_spent),
        remaining=round_money(remaining),
        percentage=percentage_of(total_spent, total_budget),
        is_over_budget=remaining < 0,
    )


def categories_with_progress(categories: Sequence, expenses: Iterable) -> list[CategoryProgress]:
    """One entry per category, in input order, with this month's spend attached.

    Categories without expenses get spent = 0. Over-budget categories are
    kept; ``is_over_budget`` is set once the percentage passes 100.
    """
    spending = totals_by_category(expenses)
    progress: list[CategoryProgress] = []

    for category in categories:
        budget = to_decimal(category.monthly_budget)
        spent = spending.get(category.id, Decimal("0"))
        percentage = percentage_of(spent, budget)
        progress.append(
            CategoryProgress(
                id=category.id,
                name=category.name,
                icon=category.icon,
                color=category.color,
                monthly_budget=round_money(budget),
                spent=round_money(spent),
                percentage=percentage,
                remaining=round_money(budget - spent),
                is_over_budget=percentage > 100,
            )
        )
    return progress


def spending_by_category(expenses: Iterable, categories: Iterable = ()) -> list[CategorySlice]:
    """Pie slices: one per category that has at least one expense in range."""
    lookup = {c.id: c for c in categories}
    slices: list[CategorySlice] = []

    for category_id, total in totals_by_category(expenses).items():
        category = lookup.get(category_id)
        slices.append(
            CategorySlice(
                category_id=category_id,
                name=category.name if category else UNKNOWN_CATEGORY_NAME,
                color=category.color if category else UNKNOWN_CATEGORY_COLOR,
                value=round_money(total),
            )
        )
    return slices


def spending_trends(expenses: Iterable, timeframe, now: dt.datetime) -> TrendSeries:
    """Sum expenses into the timeframe's trend buckets.

    Values line up with ``labels`` by position; empty buckets are 0.
    Expenses outside the trend window, or whose key has no label, are left
    out of the series (they still count toward any total computed elsewhere).
    """
    tf = trend_timeframe(timeframe)
    labels = trend_labels(tf, now)
    window = trend_window(tf, now)
    positions = {label: i for i, label in enumerate(labels)}
    buckets = [Decimal("0")] * len(labels)

    for e in expenses:
        if e.date < window.start or e.date > window.end:
            continue
        i = positions.get(bucket_key(tf, e.date))
        if i is None:
            continue
        buckets[i] += to_decimal(e.amount)

    return TrendSeries(labels=labels, values=[round_money(v) for v in buckets])


def days_in_window(start: dt.datetime, now: dt.datetime) -> int:
    """Whole days between start and now, rounded up and never less than 1."""
    elapsed = (now - start).total_seconds() / SECONDS_PER_DAY
    return max(1, math.ceil(elapsed))


def spending_summary(
    expenses: Sequence,
    categories: Iterable,
    timeframe,
    now: dt.datetime,
) -> SpendingSummary:
    """Headline facts for a timeframe: total, daily average, top category, top day."""
    window = resolve_window(timeframe, now)
    total_spent = sum_amounts(expenses)
    avg_per_day = total_spent / days_in_window(window.start, now)

    names = {c.id: c.name for c in categories}
    top_category_id, _ = _leader(totals_by_category(expenses))
    if top_category_id is None:
        most_expensive_category = ""
    else:
        most_expensive_category = names.get(top_category_id, UNKNOWN_CATEGORY_NAME)

    day_totals: dict[str, Decimal] = {}
    for e in expenses:
        key = day_label(e.date)
        day_totals[key] = day_totals.get(key, Decimal("0")) + to_decimal(e.amount)
    top_day, _ = _leader(day_totals)

    return SpendingSummary(
        total_spent=round_money(total_spent),
        avg_per_day=round_money(avg_per_day),
        most_expensive_category=most_expensive_category,
        most_expensive_day=top_day or "",
    )
