"""Device twin helpers: apply shadow patches onto the persisted device."""

from typing import Any, Optional

from shedwatch.shared.models import Device
from shedwatch.shared.timeutil import DeviceClock

# shadow key -> (device attribute, is device-local timestamp)
REPORTED_FIELDS: dict[str, tuple[str, bool]] = {
    "alarm": ("alarm", False),
    "alarmTS": ("alarm_ts", True),
    "cOut": ("c_out", True),
    "day": ("day", False),
    "devTS": ("dev_ts", True),
    "dur": ("dur", False),
    "freq": ("freq", False),
    "FW": ("fw", False),
    "inh": ("inh", False),
    "inhTS": ("inh_ts", False),
    "iT": ("i_t", False),
    "nT": ("n_t", False),
    "pT": ("p_t", False),
    "rT": ("r_t", False),
    "sEn": ("s_en", False),
    "SMSEn": ("sms_en", False),
    "sSq": ("s_sq", False),
    "start": ("start", True),
    "tempTS": ("temp_ts", True),
    "tR": ("t_r", False),
}

DESIRED_FIELDS: dict[str, str] = {
    "SMSNum": "sms_num",
}


def is_in_batch(dev_ts: Optional[int], start: Optional[int], c_out: Optional[int]) -> bool:
    """Strictly inside the batch window; unknown bounds mean not in batch."""
    if dev_ts is None or start is None or c_out is None:
        return False
    return start < dev_ts < c_out


def merge_shadow(
    device: Device,
    reported: dict[str, Any],
    desired: dict[str, Any],
    received_at: int,
    clock: DeviceClock,
) -> Device:
    """
    Copy recognised keys present in the patches onto ``device``.

    Keys missing from the patch keep their stored value; a key that is
    present with a null value is treated as missing. The device is always
    marked online with ``last_transmitted = received_at``.
    """
    for key, (attr, is_timestamp) in REPORTED_FIELDS.items():
        value = reported.get(key)
        if value is None:
            continue
        if is_timestamp:
            value = clock.local_to_utc_ms(value)
        setattr(device, attr, value)

    for key, attr in DESIRED_FIELDS.items():
        value = desired.get(key)
        if value is not None:
            setattr(device, attr, list(value))

    device.last_transmitted = received_at
    device.is_online = True
    device.in_batch = is_in_batch(device.dev_ts, device.start, device.c_out)
    return device


def compute_delta(desired: dict, reported: dict) -> dict:
    """Return desired keys whose values differ from reported."""
    delta: dict = {}
    for key, desired_val in desired.items():
        if reported.get(key) != desired_val:
            delta[key] = desired_val
    return delta
