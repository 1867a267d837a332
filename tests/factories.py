from shedwatch.shared.models import Alarm, AlarmType, Connection, Device, Farm, UserRole

NOW_MS = 1_700_000_000_000


def fake_device(overrides: dict | None = None) -> Device:
    device = Device(
        asset_id="MS0001",
        asset_name="Shed 1 Probe",
        company_id="company-a",
        farm_id="farm-1",
        shed_id="shed-1",
        template_id="template-1",
        enable_call=True,
        sms_num=["+6421000001", "+6421000002", "+6421000003"],
        last_transmitted=NOW_MS - 5 * 60_000,
        temp_ts=NOW_MS - 60_000,
    )
    for key, value in (overrides or {}).items():
        setattr(device, key, value)
    return device


def fake_alarm(overrides: dict | None = None) -> Alarm:
    alarm = Alarm(
        alarm_id="alarm-1",
        alarm_code=2,
        alarm_type=AlarmType.TEMP,
        device_id="MS0001",
        message="Temperature in Shed 1 Probe is now 31 and hot",
        attempt=1,
        users=["+6421000001", "+6421000002", "+6421000003"],
        shed_id="shed-1",
        farm_id="farm-1",
        company_id="company-a",
        created_at=NOW_MS - 20 * 60_000,
        updated_at=NOW_MS - 20 * 60_000,
        timestamp=NOW_MS - 20 * 60_000,
    )
    for key, value in (overrides or {}).items():
        setattr(alarm, key, value)
    return alarm


def fake_farm(overrides: dict | None = None) -> Farm:
    farm = Farm(asset_id="farm-1", company_id="company-a", asset_name="North", users=["user-m"])
    for key, value in (overrides or {}).items():
        setattr(farm, key, value)
    return farm


def fake_connection(role: UserRole, **overrides) -> Connection:
    conn = Connection(connection_id=f"conn-{role.value.lower()}", user_id=f"user-{role.value[0].lower()}", role=role)
    for key, value in overrides.items():
        setattr(conn, key, value)
    return conn


def shadow_event(reported: dict | None = None, desired: dict | None = None, timestamp=1_700_000_000) -> dict:
    """Shadow documents event as delivered on the update/documents topic."""
    state_reported = {"deviceId": "MS0001"}
    state_reported.update(reported or {})
    return {
        "previous": {"state": {}, "metadata": {}, "version": 41},
        "current": {
            "state": {"reported": state_reported, "desired": dict(desired or {})},
            "metadata": {},
            "version": 42,
        },
        "timestamp": timestamp,
    }
