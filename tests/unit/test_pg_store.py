import json

import asyncpg
import pytest

from shedwatch.shared.errors import NotFound, TransientIOFailure
from shedwatch.shared.models import AlarmType, DataPoint, DeviceStatus, UserRole
from shedwatch.shared.store import ALARM_COLUMNS, PgStore
from tests.factories import NOW_MS, fake_alarm, fake_device
from tests.helpers.fakes import FakeConn, FakePool

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


def _store(conn, order="latest"):
    return PgStore(FakePool(conn), alarm_lookup_order=order)


def _alarm_row(**overrides):
    record = fake_alarm().to_record()
    record.update(overrides)
    return {c: record[c] for c in ALARM_COLUMNS}


async def test_fetch_device_decodes_doc():
    doc = {"asset_name": "Shed 1 Probe", "alarm": 2, "sms_num": ["+641"], "r_t": [1.0]}
    conn = FakeConn(fetchrow_result={"asset_id": "MS0001", "asset_status": "ACTIVE", "doc": json.dumps(doc)})

    device = await _store(conn).fetch_device_by_asset_id("MS0001")

    assert device.asset_id == "MS0001"
    assert device.asset_status is DeviceStatus.ACTIVE
    assert device.alarm == 2
    assert device.sms_num == ["+641"]
    query, args = conn.queries[0]
    assert "asset_status <> 'DELETED'" in query
    assert args == ("MS0001",)


async def test_fetch_device_missing_raises_not_found():
    with pytest.raises(NotFound) as exc_info:
        await _store(FakeConn(fetchrow_result=None)).fetch_device_by_asset_id("MS0404")
    assert exc_info.value.key == "MS0404"


async def test_driver_errors_become_transient_failures():
    conn = FakeConn(error=asyncpg.PostgresError("boom"))
    with pytest.raises(TransientIOFailure) as exc_info:
        await _store(conn).fetch_device_by_asset_id("MS0001")
    assert exc_info.value.operation == "fetch_device"


async def test_connection_errors_become_transient_failures():
    conn = FakeConn(error=ConnectionRefusedError("down"))
    with pytest.raises(TransientIOFailure):
        await _store(conn).create_alarm(fake_alarm())


async def test_update_device_upserts_document():
    conn = FakeConn()
    device = fake_device({"alarm": 3})
    await _store(conn).update_device(device)
    query, args = conn.queries[0]
    assert "ON CONFLICT (asset_id) DO UPDATE" in query
    assert args[0] == "MS0001"
    assert json.loads(args[4])["alarm"] == 3
    assert args[5] == device.last_transmitted


async def test_insert_points_runs_in_one_transaction():
    conn = FakeConn()
    points = [
        DataPoint(asset_id="MS0001", timestamp=NOW_MS - 60_000, r_t=4.0),
        DataPoint(asset_id="MS0001", timestamp=NOW_MS, r_t=4.2),
    ]
    written = await _store(conn).insert_points(points)
    assert written == 2
    assert conn.transactions == 1
    (rows,) = conn.executemany_calls
    assert rows[1][:3] == ("MS0001", NOW_MS, 4.2)
    assert "ON CONFLICT" in conn.queries[0][0]


async def test_insert_no_points_skips_database():
    conn = FakeConn()
    assert await _store(conn).insert_points([]) == 0
    assert conn.queries == []


async def test_last_alarm_defaults_to_latest():
    conn = FakeConn(fetchrow_result=_alarm_row())
    alarm = await _store(conn).fetch_last_alarm_for_device("MS0001")
    assert alarm.alarm_id == "alarm-1"
    assert alarm.alarm_type is AlarmType.TEMP
    assert 'ORDER BY "timestamp" DESC' in conn.queries[0][0]


async def test_last_alarm_oldest_order():
    conn = FakeConn(fetchrow_result=None)
    assert await _store(conn, order="oldest").fetch_last_alarm_for_device("MS0001") is None
    assert 'ORDER BY "timestamp" ASC' in conn.queries[0][0]


async def test_create_alarm_binds_every_column():
    conn = FakeConn()
    await _store(conn).create_alarm(fake_alarm())
    query, args = conn.queries[0]
    assert query.startswith("INSERT INTO alarms")
    assert len(args) == len(ALARM_COLUMNS)
    assert args[ALARM_COLUMNS.index("alarm_type")] == "TEMP"


async def test_unguarded_update_alarm():
    conn = FakeConn(execute_result="UPDATE 1")
    assert await _store(conn).update_alarm(fake_alarm()) is True
    query, args = conn.queries[0]
    assert "$8" not in query
    assert len(args) == 7


async def test_guarded_update_alarm_reports_lost_race():
    conn = FakeConn(execute_result="UPDATE 0")
    claimed = await _store(conn).update_alarm(fake_alarm(), expected_updated_at=NOW_MS - 60_000)
    assert claimed is False
    query, args = conn.queries[0]
    assert "AND updated_at = $8" in query
    assert args[-1] == NOW_MS - 60_000


async def test_log_message_serialises_payload():
    conn = FakeConn()
    await _store(conn).log_message("MS0001", NOW_MS, {"current": {"state": {}}})
    _, args = conn.queries[0]
    assert args[:2] == ("MS0001", NOW_MS)
    assert json.loads(args[2]) == {"current": {"state": {}}}


async def test_fetch_connections_skips_unknown_roles():
    conn = FakeConn(
        fetch_result=[
            {"connection_id": "c1", "user_id": "u1", "role": "OWNER", "company_id": "company-a", "devices": None},
            {"connection_id": "c2", "user_id": "u2", "role": "AUDITOR", "company_id": None, "devices": None},
        ]
    )
    connections = await _store(conn).fetch_connections()
    assert [(c.connection_id, c.role) for c in connections] == [("c1", UserRole.OWNER)]
    assert connections[0].devices == []


async def test_fetch_farm_missing_raises_not_found():
    with pytest.raises(NotFound):
        await _store(FakeConn(fetchrow_result=None)).fetch_farm("farm-404")


async def test_fetch_alarms_between():
    conn = FakeConn(fetch_result=[_alarm_row(), _alarm_row(alarm_id="alarm-2")])
    alarms = await _store(conn).fetch_alarms_between("MS0001", 0, NOW_MS)
    assert [a.alarm_id for a in alarms] == ["alarm-1", "alarm-2"]
    assert conn.queries[0][1] == ("MS0001", 0, NOW_MS)


async def test_fetch_raw_data_maps_rows_to_points():
    conn = FakeConn(
        fetch_result=[
            {
                "asset_id": "MS0001",
                "timestamp": NOW_MS,
                "r_t": 4.2,
                "i_t": 10.0,
                "n_t": None,
                "p_t": None,
                "t_r": 1.0,
                "alarm": 0,
                "day": 3,
                "in_batch": True,
            }
        ]
    )
    (point,) = await _store(conn).fetch_raw_data("MS0001", NOW_MS - 60_000, NOW_MS)
    assert point == DataPoint(
        asset_id="MS0001", timestamp=NOW_MS, r_t=4.2, i_t=10.0, t_r=1.0, alarm=0, day=3, in_batch=True
    )
    query, args = conn.queries[0]
    assert 'BETWEEN $2 AND $3' in query
    assert args == ("MS0001", NOW_MS - 60_000, NOW_MS)
