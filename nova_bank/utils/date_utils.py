"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def add_days(from_date: datetime, days: int) -> datetime:
    """Shift a timestamp by whole calendar days"""
    return from_date + timedelta(days=days)


def day_of_next_month(now: datetime, day: int) -> datetime:
    """Midnight on the given day of the month after ``now`` (day <= 28)"""
    year, month = (now.year + 1, 1) if now.month == 12 else (now.year, now.month + 1)
    return datetime(year, month, day, tzinfo=timezone.utc)


def format_long_date(value: datetime) -> str:
    """e.g. 'March 15, 2026'"""
    return f"{value.strftime('%B')} {value.day}, {value.year}"
