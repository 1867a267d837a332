import pytest

from shedwatch.shared.config import Settings, optional_env, require_env

pytestmark = [pytest.mark.unit]


def test_require_env_missing(monkeypatch):
    monkeypatch.delenv("SHEDWATCH_TEST_SECRET", raising=False)
    with pytest.raises(RuntimeError):
        require_env("SHEDWATCH_TEST_SECRET")


def test_require_env_blank(monkeypatch):
    monkeypatch.setenv("SHEDWATCH_TEST_SECRET", "   ")
    with pytest.raises(RuntimeError):
        require_env("SHEDWATCH_TEST_SECRET")


def test_optional_env_default(monkeypatch):
    monkeypatch.delenv("SHEDWATCH_TEST_PORT", raising=False)
    assert optional_env("SHEDWATCH_TEST_PORT", "8080") == "8080"


def test_settings_defaults(monkeypatch):
    monkeypatch.setenv("TELEPHONY_API_KEY", "key")
    for name in ("ALARM_LOOKUP_ORDER", "POINT_GAP_MS", "DEVICE_TIMEZONE", "ESCALATION_COOLDOWN_MINUTES"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.alarm_lookup_order == "latest"
    assert settings.point_gap_ms == 60_000
    assert settings.device_timezone == "Pacific/Auckland"
    assert settings.escalation_cooldown_minutes == 15
    assert settings.batch_offline_window == (11, 12)


def test_settings_overrides(monkeypatch):
    monkeypatch.setenv("TELEPHONY_API_KEY", "key")
    monkeypatch.setenv("ALARM_LOOKUP_ORDER", "OLDEST")
    monkeypatch.setenv("POINT_GAP_MS", "30000")
    settings = Settings.from_env()
    assert settings.alarm_lookup_order == "oldest"
    assert settings.point_gap_ms == 30_000


def test_settings_rejects_unknown_lookup_order(monkeypatch):
    monkeypatch.setenv("TELEPHONY_API_KEY", "key")
    monkeypatch.setenv("ALARM_LOOKUP_ORDER", "random")
    with pytest.raises(RuntimeError):
        Settings.from_env()


def test_settings_requires_telephony_key(monkeypatch):
    monkeypatch.delenv("TELEPHONY_API_KEY", raising=False)
    monkeypatch.delenv("ALARM_LOOKUP_ORDER", raising=False)
    with pytest.raises(RuntimeError):
        Settings.from_env()
