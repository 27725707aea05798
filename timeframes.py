"""Date windows and trend-bucket labels for the analytics timeframes.

A window is always ``[start, now]`` inclusive on both ends. ``start`` is a
local midnight; ``now`` is the reference instant passed in by the caller.

Bucket labels and bucket keys are produced by the same function
(``bucket_key``), using fixed English abbreviations rather than the
process locale, so an expense date always lands on a label string that
the label list can contain.
"""
import datetime as dt
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Timeframe(str, Enum):
    day = "day"
    week = "week"
    month = "month"
    year = "year"


WEEKDAY_LABELS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
MONTH_LABELS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

TREND_WEEK_DAYS = 7


@dataclass(frozen=True)
class TimeWindow:
    start: dt.datetime
    end: dt.datetime


def parse_timeframe(token: Optional[str]) -> Timeframe:
    """Map a user-supplied token to a Timeframe; anything unknown means month."""
    if isinstance(token, Timeframe):
        return token
    try:
        return Timeframe((token or "").strip().lower())
    except ValueError:
        return Timeframe.month


def start_of_day(when: dt.datetime) -> dt.datetime:
    return dt.datetime(when.year, when.month, when.day)


def start_of_week(when: dt.datetime) -> dt.datetime:
    """Weeks begin on Sunday (day index 0)."""
    days_since_sunday = (when.weekday() + 1) % 7
    return start_of_day(when) - dt.timedelta(days=days_since_sunday)


def start_of_month(when: dt.datetime) -> dt.datetime:
    return dt.datetime(when.year, when.month, 1)


def start_of_year(when: dt.datetime) -> dt.datetime:
    return dt.datetime(when.year, 1, 1)


def resolve_window(timeframe, now: dt.datetime) -> TimeWindow:
    """Return the [start, now] window a timeframe selects."""
    tf = parse_timeframe(timeframe)
    if tf is Timeframe.day:
        start = start_of_day(now)
    elif tf is Timeframe.week:
        start = start_of_week(now)
    elif tf is Timeframe.year:
        start = start_of_year(now)
    else:
        start = start_of_month(now)
    return TimeWindow(start=start, end=now)


def month_window(now: dt.datetime) -> TimeWindow:
    """The 'this month' window used by budget progress."""
    return resolve_window(Timeframe.month, now)


def trend_timeframe(timeframe) -> Timeframe:
    """Trend charts have no 'day' series; it is charted like month."""
    tf = parse_timeframe(timeframe)
    if tf is Timeframe.day:
        return Timeframe.month
    return tf


def trend_window(timeframe, now: dt.datetime) -> TimeWindow:
    """The window a trend series covers.

    For week this is the seven days ending today, not the calendar week,
    so that every labelled day is inside the query range.
    """
    tf = trend_timeframe(timeframe)
    if tf is Timeframe.week:
        start = start_of_day(now) - dt.timedelta(days=TREND_WEEK_DAYS - 1)
        return TimeWindow(start=start, end=now)
    return resolve_window(tf, now)


def bucket_key(timeframe, when) -> str:
    """Label of the trend bucket a date falls into."""
    tf = trend_timeframe(timeframe)
    if tf is Timeframe.week:
        return WEEKDAY_LABELS[when.weekday()]
    if tf is Timeframe.year:
        return MONTH_LABELS[when.month - 1]
    return str(when.day)


def trend_labels(timeframe, now: dt.datetime) -> list[str]:
    """Ordered x-axis labels for a trend series, oldest first, never past today.

    week  -> the 7 weekday abbreviations ending today
    month -> "1" .. today's day of month
    year  -> "Jan" .. the current month
    """
    tf = trend_timeframe(timeframe)
    today = start_of_day(now)

    if tf is Timeframe.week:
        return [
            bucket_key(tf, today - dt.timedelta(days=offset))
            for offset in range(TREND_WEEK_DAYS - 1, -1, -1)
        ]
    if tf is Timeframe.year:
        return [
            bucket_key(tf, dt.date(now.year, month, 1))
            for month in range(1, now.month + 1)
        ]
    return [
        bucket_key(tf, dt.date(now.year, now.month, day))
        for day in range(1, now.day + 1)
    ]


def day_label(when) -> str:
    """Calendar day formatted like 'Jun 3'."""
    return f"{MONTH_LABELS[when.month - 1]} {when.day}"
