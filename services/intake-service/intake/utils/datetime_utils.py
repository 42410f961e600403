"""
Timestamps in the sheets are ISO-8601 strings carrying their UTC offset.
Day boundaries (today, this week, ...) and display strings use the
configured TIMEZONE.
"""
from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from intake.core.config import settings
from intake.core.logger import get_logger

logger = get_logger(__name__)

DISPLAY_FORMAT = "%d/%m/%Y %H:%M"
EXPORT_FORMAT = "%Y-%m-%d %H:%M:%S"


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def now_local() -> datetime:
    return datetime.now(local_tz())


def to_local(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=local_tz())
    return dt.astimezone(local_tz())


def to_storage(dt: datetime) -> str:
    return to_local(dt).isoformat(timespec="seconds")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp; unreadable values yield None."""
    if not value:
        return None
    try:
        return to_local(datetime.fromisoformat(value.strip()))
    except ValueError:
        logger.warning(f"Unparseable timestamp in sheet: {value!r}")
        return None


def to_display(dt: Optional[datetime]) -> str:
    return to_local(dt).strftime(DISPLAY_FORMAT) if dt else ""


def to_export(dt: Optional[datetime]) -> str:
    return to_local(dt).strftime(EXPORT_FORMAT) if dt else ""
