"""
Time helpers

MongoDB stores naive UTC datetimes with millisecond precision, so every
timestamp the service produces is truncated to milliseconds up front. That
keeps values read back from the database comparable with the ones we wrote.
"""
import calendar
from datetime import datetime, timedelta


def utcnow() -> datetime:
    """Current naive UTC time, truncated to milliseconds"""
    now = datetime.utcnow()
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


def to_epoch_ms(dt: datetime) -> int:
    """Naive UTC datetime -> integer milliseconds since the epoch"""
    return calendar.timegm(dt.utctimetuple()) * 1000 + dt.microsecond // 1000


def from_epoch_ms(ms: int) -> datetime:
    """Integer milliseconds since the epoch -> naive UTC datetime"""
    return datetime(1970, 1, 1) + timedelta(milliseconds=ms)


def current_period(now: datetime = None) -> str:
    """Usage period key: the calendar month in UTC, e.g. ``2025-01``"""
    now = now or utcnow()
    return f"{now.year:04d}-{now.month:02d}"


def next_period_start(now: datetime = None) -> datetime:
    """First instant of the month following ``now``"""
    now = now or utcnow()
    if now.month == 12:
        return datetime(now.year + 1, 1, 1)
    return datetime(now.year, now.month + 1, 1)
