"""Expand a device's compressed batch arrays into timestamped data points."""
from __future__ import annotations

from typing import Any, Optional, Sequence

from shedwatch.shared.errors import MalformedEvent
from shedwatch.shared.models import DataPoint, Device

POINT_GAP_MS = 60_000


def _at_day(values: Optional[Sequence], day: Optional[int]):
    if not values or day is None or not 0 <= day < len(values):
        return None
    return values[day]


def point_timestamps(end_ts: int, count: int, point_gap_ms: int = POINT_GAP_MS) -> list[int]:
    """``count`` timestamps spaced ``point_gap_ms`` apart, the last one equal to ``end_ts``."""
    return [end_ts - point_gap_ms * (count - 1 - i) for i in range(count)]


def reconstruct_points(
    device: Device,
    reported: dict[str, Any],
    point_gap_ms: int = POINT_GAP_MS,
) -> list[DataPoint]:
    """
    One DataPoint per ``rT`` reading of the patch.

    Readings are one sample per cycle ending at the device's ``temp_ts``.
    The per-day set points (``iT``, ``nT``, ``pT``, ``tR``) are looked up at
    the ``day`` bucket, falling back to the device's stored arrays when the
    patch does not carry them.
    """
    readings = reported.get("rT") or []
    if not readings:
        return []
    if device.temp_ts is None:
        raise MalformedEvent(
            [{"loc": ("current", "state", "reported", "tempTS"), "msg": "readings without tempTS"}]
        )

    day = reported.get("day", device.day)
    alarm = reported.get("alarm", device.alarm)
    i_t = _at_day(reported.get("iT") or device.i_t, day)
    n_t = _at_day(reported.get("nT") or device.n_t, day)
    p_t = _at_day(reported.get("pT") or device.p_t, day)
    t_r = _at_day(reported.get("tR") or device.t_r, day)

    timestamps = point_timestamps(device.temp_ts, len(readings), point_gap_ms)
    return [
        DataPoint(
            asset_id=device.asset_id,
            timestamp=ts,
            r_t=reading,
            i_t=i_t,
            n_t=n_t,
            p_t=p_t,
            t_r=t_r,
            alarm=alarm,
            day=day,
            in_batch=device.in_batch,
        )
        for ts, reading in zip(timestamps, readings)
    ]
