"""Device clock conversions.

Devices stamp their readings with local wall-clock epochs (the local time
encoded as if it were UTC), usually in seconds. Everything persisted by the
engine is true UTC epoch milliseconds.
"""
from __future__ import annotations

import math
import time
from datetime import datetime, timezone

from dateutil import tz

MS_DIGITS = 13
SECONDS_DIGITS = 10


def now_ms() -> int:
    return int(time.time() * 1000)


def _digits(ts) -> int:
    return len(str(int(abs(ts))))


def to_ms(ts) -> int:
    """Normalise a device timestamp to milliseconds (shorter than 13 digits means seconds)."""
    if _digits(ts) < MS_DIGITS:
        return int(math.floor(ts * 1000))
    return int(ts)


def to_seconds(ts) -> int:
    if _digits(ts) > SECONDS_DIGITS:
        return int(math.floor(ts / 1000))
    return int(ts)


def to_utc(ts_ms: int, offset_ms: int) -> int:
    return ts_ms + offset_ms


def resolve_offset_ms(tz_name: str, at: datetime | None = None) -> int:
    """
    Offset that turns a device-local epoch into UTC, in ms.

    This is the negated UTC offset of ``tz_name`` at ``at`` (default: now),
    e.g. Pacific/Auckland during daylight time gives -780 minutes.
    """
    zone = tz.gettz(tz_name)
    if zone is None:
        raise ValueError(f"Unknown timezone: {tz_name}")
    moment = at or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    offset = moment.astimezone(zone).utcoffset()
    return -int(offset.total_seconds() * 1000)


class DeviceClock:
    """Fixed device-local to UTC conversion, resolved once per process."""

    def __init__(self, tz_name: str, offset_ms: int | None = None):
        self.tz_name = tz_name
        self.offset_ms = resolve_offset_ms(tz_name) if offset_ms is None else offset_ms

    def local_to_utc_ms(self, ts) -> int:
        return to_utc(to_ms(ts), self.offset_ms)
