"""Calendar helpers: week normalization and history windows."""

from __future__ import annotations

from datetime import date, datetime, timedelta

from household_planner.errors import BadRequest

DAY_NAMES = [
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
]

DATE_FORMAT = "%Y-%m-%d"


def get_day_index(day_name: str) -> int:
    """Convert day name to 0-indexed (Monday=0)."""
    mapping = {d.lower(): i for i, d in enumerate(DAY_NAMES)}
    return mapping.get(day_name.lower(), -1)


def parse_date(raw: str | date) -> date:
    """Parse a YYYY-MM-DD string; dates pass through unchanged."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return datetime.strptime(raw.strip(), DATE_FORMAT).date()
    except (ValueError, AttributeError):
        raise BadRequest(f"weekStart must be YYYY-MM-DD format, got '{raw}'")


def normalize_to_monday(day: str | date) -> date:
    """Return the Monday of the ISO week containing ``day``.

    Sunday moves back six days; every other day moves back ``isoweekday - 1``.
    """
    d = parse_date(day)
    dow = d.isoweekday()
    if dow == 7:
        return d - timedelta(days=6)
    return d - timedelta(days=dow - 1)


def format_date(d: date) -> str:
    return d.strftime(DATE_FORMAT)


def weeks_between(later: date, earlier: date) -> int:
    """Whole weeks between two dates, rounded to the nearest week."""
    return round((later - earlier).days / 7)


def history_window(week_start: date, lookback_weeks: int) -> tuple[date, date]:
    """Inclusive [start, end] range of prior week starts, target week excluded."""
    start = week_start - timedelta(days=lookback_weeks * 7)
    end = week_start - timedelta(days=7)
    return start, end


def current_monday(today: date | None = None) -> date:
    return normalize_to_monday(today or date.today())
