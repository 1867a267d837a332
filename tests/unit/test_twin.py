import pytest

from shedwatch.shared.twin import compute_delta, is_in_batch, merge_shadow
from tests.factories import NOW_MS, fake_device

pytestmark = [pytest.mark.unit]

LOCAL_SHIFT_S = 780 * 60  # NZDT device clocks run 13h ahead of UTC


def test_in_batch_strict_window():
    assert is_in_batch(150, 100, 200) is True
    assert is_in_batch(100, 100, 200) is False
    assert is_in_batch(200, 100, 200) is False
    assert is_in_batch(99, 100, 200) is False


def test_in_batch_unknown_bounds():
    assert is_in_batch(None, 100, 200) is False
    assert is_in_batch(150, None, 200) is False
    assert is_in_batch(150, 100, None) is False


def test_merge_converts_device_local_timestamps(clock):
    device = fake_device()
    utc_s = 1_700_000_000
    merge_shadow(
        device,
        {"devTS": utc_s + LOCAL_SHIFT_S, "tempTS": utc_s + LOCAL_SHIFT_S, "alarmTS": utc_s + LOCAL_SHIFT_S},
        {},
        NOW_MS,
        clock,
    )
    assert device.dev_ts == utc_s * 1000
    assert device.temp_ts == utc_s * 1000
    assert device.alarm_ts == utc_s * 1000


def test_merge_copies_plain_fields(clock):
    device = fake_device()
    merge_shadow(
        device,
        {"alarm": 3, "day": 4, "FW": "2.1.0", "rT": [1.0, 2.0], "inh": [0, 1], "SMSEn": True, "sSq": False},
        {"SMSNum": ["+649"]},
        NOW_MS,
        clock,
    )
    assert device.alarm == 3
    assert device.day == 4
    assert device.fw == "2.1.0"
    assert device.r_t == [1.0, 2.0]
    assert device.inh == [0, 1]
    assert device.sms_en is True
    assert device.s_sq is False
    assert device.sms_num == ["+649"]


def test_merge_leaves_absent_keys_untouched(clock):
    device = fake_device({"freq": 10, "i_t": [5, 6], "inh_ts": [1, 2], "start": 123})
    merge_shadow(device, {"alarm": 0}, {}, NOW_MS, clock)
    assert device.freq == 10
    assert device.i_t == [5, 6]
    assert device.inh_ts == [1, 2]
    assert device.start == 123
    assert device.sms_num == ["+6421000001", "+6421000002", "+6421000003"]


def test_merge_always_marks_online(clock):
    device = fake_device({"is_online": False, "last_transmitted": 1})
    merge_shadow(device, {}, {}, NOW_MS, clock)
    assert device.is_online is True
    assert device.last_transmitted == NOW_MS


def test_merge_recomputes_in_batch(clock):
    device = fake_device({"in_batch": True})
    base = 1_700_000_000 + LOCAL_SHIFT_S
    merge_shadow(device, {"start": base, "devTS": base + 60, "cOut": base + 3600}, {}, NOW_MS, clock)
    assert device.in_batch is True

    merge_shadow(device, {"devTS": base + 3600}, {}, NOW_MS, clock)
    assert device.in_batch is False


def test_compute_delta():
    assert compute_delta({"inh": [1, 1]}, {"inh": [0, 0]}) == {"inh": [1, 1]}
    assert compute_delta({"inh": [1, 1]}, {"inh": [1, 1]}) == {}
