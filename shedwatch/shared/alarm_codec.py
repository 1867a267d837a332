"""Alarm bitmask decoding and alarm record construction.

Bit layout of the device ``alarm`` code:

    6  sensor failure
    5  power off
    4  power glitch (never alarms on its own)
    3  heating fast
    2  cooling fast
    1  above hot threshold
    0  below cold threshold
"""
from __future__ import annotations

import uuid

from shedwatch.shared.models import Alarm, AlarmType, Device

POWER_GLITCH_BIT = 4
POWER_ONLY_CODE = 1 << POWER_GLITCH_BIT
OFFLINE_ALARM_CODE = 1000

# (bit, clause template), highest bit first
ALARM_BIT_MESSAGES: tuple[tuple[int, str], ...] = (
    (6, "Sensor failure in {name}."),
    (5, "Power to {name} is off."),
    (4, "Power glitch in {name}."),
    (3, "{name} is heating fast."),
    (2, "{name} is cooling fast."),
    (1, "Temperature in {name} is now {value} and hot"),
    (0, "Temperature in {name} is now {value} and cold"),
)


def mask_power_glitch(code: int) -> int:
    return code & ~(1 << POWER_GLITCH_BIT)


def is_alarming(code: int) -> bool:
    """False for an OK code and for a power glitch with nothing else set."""
    return mask_power_glitch(code) != 0


def classify_alarm_type(code: int) -> AlarmType:
    if code < POWER_ONLY_CODE:
        return AlarmType.TEMP
    if code == POWER_ONLY_CODE:
        return AlarmType.POWER
    return AlarmType.TEMP_POWER


def decode_alarm_bits(code: int) -> list[int]:
    return [bit for bit, _ in ALARM_BIT_MESSAGES if code & (1 << bit)]


def _format_value(value) -> str:
    if value is None:
        return "unknown"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_alarm_message(code: int, device_name: str, temp_value=None) -> str:
    value = _format_value(temp_value)
    clauses = [
        template.format(name=device_name, value=value)
        for bit, template in ALARM_BIT_MESSAGES
        if code & (1 << bit)
    ]
    return " ".join(clauses)


def build_temp_alarm(
    code: int,
    timestamp: int,
    device: Device,
    temp_value,
    users: list[str],
) -> Alarm:
    """Open a new episode for ``code``; nothing has been notified yet."""
    return Alarm(
        alarm_id=str(uuid.uuid4()),
        alarm_code=code,
        alarm_type=classify_alarm_type(code),
        device_id=device.asset_id,
        message=build_alarm_message(code, device.asset_name, temp_value),
        attempt=0,
        notify=True,
        notified_at=0,
        users=list(users or []),
        shed_id=device.shed_id,
        farm_id=device.farm_id,
        company_id=device.company_id,
        created_at=timestamp,
        updated_at=timestamp,
        timestamp=timestamp,
    )


def build_offline_alarm(device: Device, timestamp: int) -> Alarm:
    return Alarm(
        alarm_id=str(uuid.uuid4()),
        alarm_code=OFFLINE_ALARM_CODE,
        alarm_type=AlarmType.OFFLINE,
        device_id=device.asset_id,
        message=f"Device {device.asset_name} went offline",
        attempt=0,
        notify=True,
        notified_at=timestamp,
        users=list(device.sms_num or []),
        shed_id=device.shed_id,
        farm_id=device.farm_id,
        company_id=device.company_id,
        created_at=timestamp,
        updated_at=timestamp,
        timestamp=timestamp,
    )
