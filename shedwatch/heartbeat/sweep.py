"""
Offline heartbeat sweep.

Devices transmit roughly every 10 minutes during a batch and every 2 hours
outside one. A device is flagged only while its silence falls inside a
one-minute window just past the expected interval, so a sweep running once
a minute raises a single OFFLINE alarm per outage rather than one per sweep.
"""
from __future__ import annotations

import logging
from typing import Optional

from shedwatch.dialer.driver import EscalationCallDriver
from shedwatch.shared.alarm_codec import build_offline_alarm
from shedwatch.shared.metrics import offline_alarms_total, sweep_device_errors_total
from shedwatch.shared.models import Alarm, Device, DeviceStatus
from shedwatch.shared.store import Store
from shedwatch.shared.timeutil import now_ms as current_ms

logger = logging.getLogger(__name__)

BATCH_OFFLINE_WINDOW = (11, 12)
IDLE_OFFLINE_WINDOW = (121, 122)


def is_newly_offline(
    device: Device,
    now_ms: int,
    batch_window: tuple[int, int] = BATCH_OFFLINE_WINDOW,
    idle_window: tuple[int, int] = IDLE_OFFLINE_WINDOW,
) -> bool:
    if device.last_transmitted is None:
        return False
    low, high = batch_window if device.in_batch else idle_window
    silence = now_ms - device.last_transmitted
    return low * 60_000 < silence < high * 60_000


async def run_offline_sweep(
    store: Store,
    driver: EscalationCallDriver,
    now_ms: Optional[int] = None,
    batch_window: tuple[int, int] = BATCH_OFFLINE_WINDOW,
    idle_window: tuple[int, int] = IDLE_OFFLINE_WINDOW,
) -> list[Alarm]:
    """Raise and call out OFFLINE alarms; one bad device never stops the sweep."""
    timestamp = current_ms() if now_ms is None else now_ms
    devices = await store.fetch_active_devices()
    raised: list[Alarm] = []
    for device in devices:
        if device.asset_status is not DeviceStatus.ACTIVE:
            continue
        try:
            if not is_newly_offline(device, timestamp, batch_window, idle_window):
                continue
            alarm = build_offline_alarm(device, timestamp)
            # the first call goes out right away
            alarm.attempt = 1
            await store.create_alarm(alarm)
            offline_alarms_total.inc()
            logger.info(
                "device_offline",
                extra={"device_id": device.asset_id, "alarm_id": alarm.alarm_id},
            )
            if alarm.users:
                await driver.notify(alarm, device, 0)
            raised.append(alarm)
        except Exception:
            sweep_device_errors_total.inc()
            logger.exception("offline_sweep_device_failed", extra={"device_id": device.asset_id})
    return raised
