import logging
import secrets
import string
import time
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from moviebook.core.config import SHOW_TIMEZONE

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits


# ---------------- Time ----------------
def utcnow() -> datetime:
    """Naive UTC timestamp, the convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_show_time(show_time: str) -> tuple:
    """Split "HH:MM" into (hour, minute)."""
    try:
        hour_s, minute_s = show_time.split(":")
        hour, minute = int(hour_s), int(minute_s)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid show time {show_time!r}, expected HH:MM")
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid show time {show_time!r}, expected HH:MM")
    return hour, minute


def show_start_utc(show_date: date, show_time: str, tz_name: str = SHOW_TIMEZONE) -> datetime:
    """Combine a local show date and "HH:MM" start time into one naive UTC instant."""
    hour, minute = parse_show_time(show_time)
    try:
        tz = ZoneInfo(tz_name)
    except ZoneInfoNotFoundError:
        logger.warning("Unknown SHOW_TIMEZONE %s, falling back to UTC", tz_name)
        tz = timezone.utc
    local = datetime(show_date.year, show_date.month, show_date.day, hour, minute, tzinfo=tz)
    return local.astimezone(timezone.utc).replace(tzinfo=None)


# ---------------- Codes ----------------
def generate_booking_code(length: int = 9) -> str:
    """Human-readable booking code: "BK" + epoch millis + random uppercase suffix."""
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(length))
    return f"BK{int(time.time() * 1000)}{suffix}"


def generate_token(length: int = 32) -> str:
    return secrets.token_urlsafe(length)
