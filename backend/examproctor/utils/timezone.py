"""
Time helpers. Everything is stored as naive UTC; conversion to the configured
display timezone happens only when rendering for people.
"""
from datetime import datetime, timezone
from typing import Optional
import pytz

from ..core.config import settings


def utc_now() -> datetime:
    """Current UTC time without tzinfo, matching what the database stores"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_display_timezone(dt: datetime, tz_name: Optional[str] = None) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=pytz.UTC)
    return dt.astimezone(pytz.timezone(tz_name or settings.display_timezone))


def format_display_time(dt: Optional[datetime], format_str: Optional[str] = None) -> Optional[str]:
    if dt is None:
        return None
    return to_display_timezone(dt).strftime(format_str or settings.timezone_display_format)
