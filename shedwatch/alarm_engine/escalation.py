"""
Alarm episode deduplication and call escalation.

Per device, an incoming alarm code lands in one of four states:

    NO_ALARM             code is OK, or only the power-glitch bit is set
    NEW_EPISODE          no previous alarm, or the code changed
    CONTINUING_SILENT    same code, still inside the cool-down window
    CONTINUING_ESCALATE  same code, cool-down elapsed: call the next subscriber

An episode is a single alarm row: re-escalation refreshes that row instead
of opening a new one.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from shedwatch.dialer.driver import EscalationCallDriver
from shedwatch.shared.alarm_codec import build_temp_alarm, is_alarming
from shedwatch.shared.metrics import alarm_decisions_total, alarms_created_total
from shedwatch.shared.models import Alarm, Device
from shedwatch.shared.store import Store

logger = logging.getLogger(__name__)

ESCALATION_COOLDOWN_MINUTES = 15


class AlarmState(str, Enum):
    NO_ALARM = "NO_ALARM"
    NEW_EPISODE = "NEW_EPISODE"
    CONTINUING_SILENT = "CONTINUING_SILENT"
    CONTINUING_ESCALATE = "CONTINUING_ESCALATE"


@dataclass
class AlarmOutcome:
    state: AlarmState
    alarm: Optional[Alarm] = None
    called: bool = False


def decide_alarm_state(
    code: int,
    last_alarm: Optional[Alarm],
    now_ms: int,
    cooldown_ms: int = ESCALATION_COOLDOWN_MINUTES * 60_000,
) -> AlarmState:
    if not is_alarming(code):
        return AlarmState.NO_ALARM
    if last_alarm is None or last_alarm.alarm_code != code:
        return AlarmState.NEW_EPISODE
    if now_ms - last_alarm.updated_at < cooldown_ms:
        return AlarmState.CONTINUING_SILENT
    return AlarmState.CONTINUING_ESCALATE


def subscriber_index(attempt: int, subscriber_count: int) -> int:
    """Round-robin position of the next subscriber to call."""
    if subscriber_count < 1:
        raise ValueError("no subscribers to call")
    return attempt % subscriber_count


def _last_reading(reported: dict[str, Any], device: Device):
    readings = reported.get("rT") or device.r_t or []
    return readings[-1] if readings else None


class AlarmEngine:
    def __init__(
        self,
        store: Store,
        driver: EscalationCallDriver,
        cooldown_minutes: int = ESCALATION_COOLDOWN_MINUTES,
    ):
        self.store = store
        self.driver = driver
        self.cooldown_ms = cooldown_minutes * 60_000

    async def process(
        self,
        device: Device,
        reported: dict[str, Any],
        desired: dict[str, Any],
        now_ms: int,
    ) -> AlarmOutcome:
        """Run one merged device update through the state machine."""
        code = int(device.alarm or 0)
        if not is_alarming(code):
            alarm_decisions_total.labels(state=AlarmState.NO_ALARM.value).inc()
            return AlarmOutcome(AlarmState.NO_ALARM)

        last_alarm = await self.store.fetch_last_alarm_for_device(device.asset_id)
        state = decide_alarm_state(code, last_alarm, now_ms, self.cooldown_ms)
        alarm_decisions_total.labels(state=state.value).inc()

        if state is AlarmState.CONTINUING_SILENT:
            return AlarmOutcome(state)

        if state is AlarmState.NEW_EPISODE:
            users = desired.get("SMSNum") or device.sms_num
            alarm = build_temp_alarm(code, now_ms, device, _last_reading(reported, device), users)
            await self.store.create_alarm(alarm)
            alarms_created_total.labels(alarm_type=alarm.alarm_type.value).inc()
            logger.info(
                "alarm_episode_opened",
                extra={"alarm_id": alarm.alarm_id, "alarm_code": code},
            )
        else:
            alarm = last_alarm
            previous_updated_at = alarm.updated_at
            alarm.updated_at = now_ms
            claimed = await self.store.update_alarm(alarm, expected_updated_at=previous_updated_at)
            if not claimed:
                # another worker re-escalated this episode first
                logger.warning("alarm_claim_lost", extra={"alarm_id": alarm.alarm_id})
                return AlarmOutcome(AlarmState.CONTINUING_SILENT)

        called = await self._escalate(alarm, device, now_ms)
        await self.store.update_alarm(alarm)
        return AlarmOutcome(state, alarm, called)

    async def _escalate(self, alarm: Alarm, device: Device, now_ms: int) -> bool:
        if not device.enable_call or not alarm.users:
            return False
        user_index = subscriber_index(alarm.attempt, len(alarm.users))
        placed = await self.driver.notify(alarm, device, user_index)
        if placed:
            alarm.attempt += 1
            alarm.notified_at = now_ms
        return placed
