"""UTC clock helpers. All timestamps are stored as naive UTC."""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def add_business_days(start: datetime, days: int) -> datetime:
    """Advance `days` working days, skipping Saturdays and Sundays."""
    result = start
    added = 0
    while added < days:
        result += timedelta(days=1)
        if result.weekday() < 5:
            added += 1
    return result


def month_window_start(now: datetime, months: int) -> tuple[int, int]:
    """(month, year) of the first month in a trailing window of `months` months ending at `now`."""
    index = now.year * 12 + (now.month - 1) - (months - 1)
    return index % 12 + 1, index // 12
