"""
Time parsing helpers
Video offsets ("06:45"), card clock times ("1:12 PM") and the 4 AM logical day
"""

from datetime import date, datetime, time, timedelta
from typing import Optional, Tuple

DAY_START_HOUR = 4
MINUTES_PER_DAY = 24 * 60

_CLOCK_FORMATS = ("%I:%M %p", "%I:%M%p")


def parse_video_timestamp(timestamp: str) -> Optional[int]:
    """Parse an in-video offset ("MM:SS" or "HH:MM:SS") into seconds"""
    if not isinstance(timestamp, str):
        return None
    parts = timestamp.strip().split(":")
    if len(parts) not in (2, 3):
        return None
    try:
        values = [int(p) for p in parts]
    except ValueError:
        return None
    if any(v < 0 for v in values) or values[-1] >= 60:
        return None
    if len(values) == 2:
        minutes, seconds = values
        return minutes * 60 + seconds
    hours, minutes, seconds = values
    if minutes >= 60:
        return None
    return hours * 3600 + minutes * 60 + seconds


def format_video_timestamp(seconds: float) -> str:
    """Format seconds as MM:SS (minutes may exceed 59)"""
    total = max(0, int(seconds))
    return f"{total // 60:02d}:{total % 60:02d}"


def parse_clock_minutes(value: str) -> Optional[int]:
    """Parse "h:mm AM" style clock strings into minutes since midnight.

    Accepts "h:mm a", "hh:mm a", "h:mma" and "hh:mma", case-insensitive.
    """
    if not isinstance(value, str):
        return None
    cleaned = value.strip().upper()
    for fmt in _CLOCK_FORMATS:
        try:
            parsed = datetime.strptime(cleaned, fmt)
        except ValueError:
            continue
        return parsed.hour * 60 + parsed.minute
    return None


def format_minutes(minutes: float) -> str:
    """Format minutes since midnight as "h:mm AM" (wraps past 24h)"""
    total = int(minutes) % MINUTES_PER_DAY
    hours, mins = divmod(total, 60)
    period = "AM" if hours < 12 else "PM"
    display = hours % 12 or 12
    return f"{display}:{mins:02d} {period}"


def format_clock(moment: datetime) -> str:
    """Format a datetime as "h:mm AM" """
    return format_minutes(moment.hour * 60 + moment.minute)


def format_clock_ts(ts: float) -> str:
    """Format a unix timestamp (local time) as "h:mm AM" """
    return format_clock(datetime.fromtimestamp(ts))


def day_minutes(value: str, day_start_hour: int = DAY_START_HOUR) -> Optional[int]:
    """Minutes on the logical day; times before the day start sort after midnight"""
    minutes = parse_clock_minutes(value)
    if minutes is None:
        return None
    if minutes < day_start_hour * 60:
        minutes += MINUTES_PER_DAY
    return minutes


def card_duration_minutes(start: str, end: str) -> Optional[int]:
    """Duration between two clock strings, rolling over midnight"""
    start_min = parse_clock_minutes(start)
    end_min = parse_clock_minutes(end)
    if start_min is None or end_min is None:
        return None
    if end_min < start_min:
        end_min += MINUTES_PER_DAY
    return end_min - start_min


def logical_day(moment: datetime, day_start_hour: int = DAY_START_HOUR) -> str:
    """Logical day (YYYY-MM-DD) for a moment; before 4 AM belongs to the previous day"""
    if moment.hour < day_start_hour:
        moment = moment - timedelta(days=1)
    return moment.strftime("%Y-%m-%d")


def logical_day_for_ts(ts: float, day_start_hour: int = DAY_START_HOUR) -> str:
    return logical_day(datetime.fromtimestamp(ts), day_start_hour)


def day_bounds(day: str, day_start_hour: int = DAY_START_HOUR) -> Tuple[int, int]:
    """Unix start (inclusive) and end (exclusive) of a logical day"""
    start = datetime.combine(date.fromisoformat(day), time(hour=day_start_hour))
    end = start + timedelta(days=1)
    return int(start.timestamp()), int(end.timestamp())


def clock_to_timestamp(
    day: str, value: str, day_start_hour: int = DAY_START_HOUR
) -> Optional[int]:
    """Resolve a card clock string on a logical day to a unix timestamp"""
    minutes = day_minutes(value, day_start_hour)
    if minutes is None or not day:
        return None
    try:
        midnight = datetime.combine(date.fromisoformat(day), time())
    except ValueError:
        return None
    return int((midnight + timedelta(minutes=minutes)).timestamp())


def card_bounds(
    day: str, start: str, end: str, day_start_hour: int = DAY_START_HOUR
) -> Optional[Tuple[int, int]]:
    """Unix range of a card, or None when either clock string is unusable"""
    start_ts = clock_to_timestamp(day, start, day_start_hour)
    end_ts = clock_to_timestamp(day, end, day_start_hour)
    if start_ts is None or end_ts is None:
        return None
    if end_ts < start_ts:
        # 11:50 PM -> 12:10 AM style rollover inside the logical day
        end_ts += MINUTES_PER_DAY * 60
    return start_ts, end_ts
