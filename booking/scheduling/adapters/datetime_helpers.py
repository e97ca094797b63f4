import datetime as dt
from zoneinfo import ZoneInfo

from loguru import logger


def resolve_timezone(name: str) -> dt.tzinfo:
    """Resolve a timezone name, falling back to UTC if invalid."""
    try:
        return ZoneInfo(name)
    except Exception:
        logger.warning("Invalid office timezone '{}'; defaulting to UTC", name)
        return dt.timezone.utc


def is_weekday(date: dt.date) -> bool:
    return date.weekday() < 5


def local_slot(moment: dt.datetime, tz: dt.tzinfo) -> tuple[dt.date, dt.time]:
    """Split an aware datetime into the office-local ``(date, time)`` slot key."""
    local = moment.astimezone(tz)
    return local.date(), local.time().replace(tzinfo=None)


def time_to_12h(time: dt.time) -> str:
    """Convert ``time(14, 0)`` → ``2:00 PM`` for slot labels."""
    hour = time.hour % 12 or 12
    period = "AM" if time.hour < 12 else "PM"
    return f"{hour}:{time.strftime('%M')} {period}"


def weekdays_between(start: dt.date, end: dt.date) -> list[dt.date]:
    """Every weekday from ``start`` to ``end`` inclusive."""
    days: list[dt.date] = []
    day = start
    while day <= end:
        if is_weekday(day):
            days.append(day)
        day += dt.timedelta(days=1)
    return days
