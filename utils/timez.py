"""
Workplace Clock
Local civil time helpers. Services take `now` as a parameter and only fall
back to `now_local()` when a caller does not inject one.
"""

from datetime import datetime, time, date, timedelta
import pytz
from config import Config


def get_timezone(name: str = None):
    return pytz.timezone(name or Config.TIMEZONE)


def now_local(tz_name: str = None) -> datetime:
    """Current aware datetime in the workplace timezone"""
    return datetime.now(pytz.UTC).astimezone(get_timezone(tz_name))


def minutes_since_midnight(value) -> float:
    """Minutes since midnight for a time or datetime, seconds included"""
    return value.hour * 60 + value.minute + value.second / 60


def end_of_day(value: datetime) -> datetime:
    """23:59:59 of the civil day of `value`, same timezone"""
    naive = datetime.combine(value.date(), time(23, 59, 59))
    tz = value.tzinfo
    if tz is None:
        return naive
    if hasattr(tz, 'localize'):
        return tz.localize(naive)
    return naive.replace(tzinfo=tz)


def parse_time_of_day(value: str) -> time:
    """Parse HH:MM or HH:MM:SS; raises ValueError"""
    for fmt in ('%H:%M:%S', '%H:%M'):
        try:
            return datetime.strptime(value, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Invalid time: {value!r}")


def parse_date(value: str) -> date:
    """Parse YYYY-MM-DD; raises ValueError"""
    return datetime.strptime(value, '%Y-%m-%d').date()


def to_time(value):
    """Convert DB time values (time, 'HH:MM:SS' string) to time"""
    if isinstance(value, time):
        return value
    if isinstance(value, timedelta):
        seconds = int(value.total_seconds()) % 86400
        return time(seconds // 3600, (seconds % 3600) // 60, seconds % 60)
    if isinstance(value, str):
        try:
            return parse_time_of_day(value[:8])
        except ValueError:
            return None
    return None


def to_date(value):
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return parse_date(value[:10])
    return None
