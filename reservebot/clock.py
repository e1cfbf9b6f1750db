"""Civil-time clock used by every timing computation."""

from __future__ import annotations

import asyncio
import time
import zoneinfo
from datetime import datetime

CIVIL_FORMAT = "%Y-%m-%d %H:%M:%S"


class Clock:
    """Supplies the current instant in a fixed civil timezone.

    Durations use the monotonic clock so they are immune to wall-clock
    adjustments; instants use the wall clock so they can be compared with
    configured target times.

    Args:
        timezone: IANA timezone name (e.g. ``"Asia/Tokyo"``).
    """

    def __init__(self, timezone: str = "Asia/Tokyo") -> None:
        self._tz = zoneinfo.ZoneInfo(timezone)

    @property
    def tz(self) -> zoneinfo.ZoneInfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(self._tz)

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        """Sleep for *seconds*; zero or negative durations return immediately."""
        if seconds <= 0:
            return
        await asyncio.sleep(seconds)

    def localize(self, dt: datetime) -> datetime:
        """Attach the clock's timezone to a naive datetime, or convert an aware one."""
        if dt.tzinfo is None:
            return dt.replace(tzinfo=self._tz)
        return dt.astimezone(self._tz)


def parse_civil(text: str, tz: zoneinfo.ZoneInfo) -> datetime:
    """Parse ``"YYYY-MM-DD HH:MM:SS"`` (or ISO 8601) as an instant in *tz*.

    Raises:
        ValueError: If *text* is not a recognisable timestamp.
    """
    text = text.strip()
    try:
        parsed = datetime.strptime(text, CIVIL_FORMAT)
    except ValueError:
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def format_timestamp(dt: datetime) -> str:
    """Render ``YYYY-MM-DD HH:MM:SS.mmm``."""
    return f"{dt.strftime(CIVIL_FORMAT)}.{dt.microsecond // 1000:03d}"
