"""Persistence collaborator for devices, alarms, data points and observers.

``Store`` is the interface the engine depends on; ``PgStore`` is the
production implementation on an asyncpg pool. Driver and network errors are
raised as ``TransientIOFailure``; missing device/farm rows as ``NotFound``.
"""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Optional, Protocol, Sequence

import asyncpg

from shedwatch.shared.errors import NotFound, TransientIOFailure
from shedwatch.shared.models import Alarm, Connection, DataPoint, Device, DeviceStatus, Farm, UserRole

logger = logging.getLogger(__name__)

_IO_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

ALARM_COLUMNS = (
    "alarm_id",
    "device_id",
    "alarm_code",
    "alarm_type",
    "attempt",
    "message",
    "notify",
    "notified_at",
    "users",
    "shed_id",
    "farm_id",
    "company_id",
    "created_at",
    "updated_at",
    "timestamp",
)

POINT_COLUMNS = (
    "asset_id",
    "timestamp",
    "r_t",
    "i_t",
    "n_t",
    "p_t",
    "t_r",
    "alarm",
    "day",
    "in_batch",
)


class Store(Protocol):
    async def fetch_device_by_asset_id(self, asset_id: str) -> Device: ...

    async def fetch_active_devices(self) -> list[Device]: ...

    async def update_device(self, device: Device) -> None: ...

    async def fetch_farm(self, farm_id: str) -> Farm: ...

    async def insert_points(self, points: Sequence[DataPoint]) -> int: ...

    async def fetch_last_alarm_for_device(self, device_id: str) -> Optional[Alarm]: ...

    async def create_alarm(self, alarm: Alarm) -> None: ...

    async def update_alarm(self, alarm: Alarm, expected_updated_at: Optional[int] = None) -> bool: ...

    async def log_message(self, device_id: str, timestamp: int, message: dict) -> None: ...

    async def fetch_connections(self) -> list[Connection]: ...

    async def fetch_alarms_between(self, device_id: str, start: int, end: int) -> list[Alarm]: ...

    async def fetch_raw_data(self, device_id: str, start: int, end: int) -> list[DataPoint]: ...


@asynccontextmanager
async def _io(operation: str):
    try:
        yield
    except _IO_ERRORS as exc:
        raise TransientIOFailure(operation, exc) from exc


def _device_from_row(row) -> Device:
    doc = row["doc"]
    if isinstance(doc, str):
        doc = json.loads(doc)
    doc = dict(doc or {})
    doc["asset_id"] = row["asset_id"]
    doc["asset_status"] = row["asset_status"]
    return Device.from_record(doc)


def _alarm_args(alarm: Alarm) -> list[Any]:
    record = alarm.to_record()
    return [record[c] for c in ALARM_COLUMNS]


class PgStore:
    """Store backed by the shedwatch PostgreSQL schema (db/migrations)."""

    def __init__(self, pool: asyncpg.Pool, alarm_lookup_order: str = "latest"):
        self.pool = pool
        self.alarm_lookup_order = alarm_lookup_order

    async def fetch_device_by_asset_id(self, asset_id: str) -> Device:
        async with _io("fetch_device"):
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT asset_id, asset_status, doc
                    FROM devices
                    WHERE asset_id = $1 AND asset_status <> 'DELETED'
                    """,
                    asset_id,
                )
        if row is None:
            raise NotFound("device", asset_id)
        return _device_from_row(row)

    async def fetch_active_devices(self) -> list[Device]:
        async with _io("fetch_active_devices"):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT asset_id, asset_status, doc FROM devices WHERE asset_status = $1",
                    DeviceStatus.ACTIVE.value,
                )
        return [_device_from_row(r) for r in rows]

    async def update_device(self, device: Device) -> None:
        record = device.to_record()
        async with _io("update_device"):
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO devices (asset_id, asset_status, farm_id, company_id, doc, updated_at)
                    VALUES ($1, $2, $3, $4, $5::jsonb, $6)
                    ON CONFLICT (asset_id) DO UPDATE
                    SET asset_status = EXCLUDED.asset_status,
                        farm_id = EXCLUDED.farm_id,
                        company_id = EXCLUDED.company_id,
                        doc = EXCLUDED.doc,
                        updated_at = EXCLUDED.updated_at
                    """,
                    device.asset_id,
                    record["asset_status"],
                    device.farm_id,
                    device.company_id,
                    json.dumps(record),
                    device.last_transmitted,
                )

    async def fetch_farm(self, farm_id: str) -> Farm:
        async with _io("fetch_farm"):
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT asset_id, company_id, asset_name, users FROM farms WHERE asset_id = $1",
                    farm_id,
                )
        if row is None:
            raise NotFound("farm", farm_id)
        return Farm(
            asset_id=row["asset_id"],
            company_id=row["company_id"],
            asset_name=row["asset_name"] or "",
            users=list(row["users"] or []),
        )

    async def insert_points(self, points: Sequence[DataPoint]) -> int:
        """Write one batch atomically; returns the number of rows written."""
        if not points:
            return 0
        rows = [tuple(p.to_record()[c] for c in POINT_COLUMNS) for p in points]
        placeholders = ", ".join(f"${i}" for i in range(1, len(POINT_COLUMNS) + 1))
        columns = ", ".join(f'"{c}"' for c in POINT_COLUMNS)
        async with _io("insert_points"):
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.executemany(
                        f"""
                        INSERT INTO data_points ({columns})
                        VALUES ({placeholders})
                        ON CONFLICT (asset_id, "timestamp") DO NOTHING
                        """,
                        rows,
                    )
        return len(rows)

    async def fetch_last_alarm_for_device(self, device_id: str) -> Optional[Alarm]:
        direction = "DESC" if self.alarm_lookup_order == "latest" else "ASC"
        columns = ", ".join(f'"{c}"' for c in ALARM_COLUMNS)
        async with _io("fetch_last_alarm"):
            async with self.pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"""
                    SELECT {columns}
                    FROM alarms
                    WHERE device_id = $1
                    ORDER BY "timestamp" {direction}
                    LIMIT 1
                    """,
                    device_id,
                )
        return Alarm.from_record(dict(row)) if row is not None else None

    async def create_alarm(self, alarm: Alarm) -> None:
        columns = ", ".join(f'"{c}"' for c in ALARM_COLUMNS)
        placeholders = ", ".join(f"${i}" for i in range(1, len(ALARM_COLUMNS) + 1))
        async with _io("create_alarm"):
            async with self.pool.acquire() as conn:
                await conn.execute(
                    f"INSERT INTO alarms ({columns}) VALUES ({placeholders})",
                    *_alarm_args(alarm),
                )

    async def update_alarm(self, alarm: Alarm, expected_updated_at: Optional[int] = None) -> bool:
        """
        Write the mutable alarm fields.

        With ``expected_updated_at`` the write only applies if the stored row
        still carries that ``updated_at``; returns False when it did not.
        """
        args = [
            alarm.alarm_id,
            alarm.attempt,
            alarm.notify,
            alarm.notified_at,
            alarm.users,
            alarm.message,
            alarm.updated_at,
        ]
        query = """
            UPDATE alarms
            SET attempt = $2, notify = $3, notified_at = $4, users = $5,
                message = $6, updated_at = $7
            WHERE alarm_id = $1
        """
        if expected_updated_at is not None:
            query += " AND updated_at = $8"
            args.append(expected_updated_at)
        async with _io("update_alarm"):
            async with self.pool.acquire() as conn:
                result = await conn.execute(query, *args)
        return result != "UPDATE 0"

    async def log_message(self, device_id: str, timestamp: int, message: dict) -> None:
        async with _io("log_message"):
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO message_log (asset_id, "timestamp", message)
                    VALUES ($1, $2, $3::jsonb)
                    """,
                    device_id,
                    timestamp,
                    json.dumps(message, default=str),
                )

    async def fetch_connections(self) -> list[Connection]:
        async with _io("fetch_connections"):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    """
                    SELECT connection_id, user_id, role, company_id, devices
                    FROM connections
                    WHERE c_type = 'WS'
                    """
                )
        connections = []
        for row in rows:
            try:
                role = UserRole(row["role"])
            except ValueError:
                logger.warning("Skipping connection with unknown role", extra={"role": row["role"]})
                continue
            connections.append(
                Connection(
                    connection_id=row["connection_id"],
                    user_id=row["user_id"],
                    role=role,
                    company_id=row["company_id"],
                    devices=list(row["devices"] or []),
                )
            )
        return connections

    async def fetch_alarms_between(self, device_id: str, start: int, end: int) -> list[Alarm]:
        columns = ", ".join(f'"{c}"' for c in ALARM_COLUMNS)
        async with _io("fetch_alarms_between"):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {columns} FROM alarms
                    WHERE device_id = $1 AND "timestamp" BETWEEN $2 AND $3
                    ORDER BY "timestamp"
                    """,
                    device_id,
                    start,
                    end,
                )
        return [Alarm.from_record(dict(r)) for r in rows]

    async def fetch_raw_data(self, device_id: str, start: int, end: int) -> list[DataPoint]:
        columns = ", ".join(f'"{c}"' for c in POINT_COLUMNS)
        async with _io("fetch_raw_data"):
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(
                    f"""
                    SELECT {columns} FROM data_points
                    WHERE asset_id = $1 AND "timestamp" BETWEEN $2 AND $3
                    ORDER BY "timestamp"
                    """,
                    device_id,
                    start,
                    end,
                )
        return [DataPoint(**dict(r)) for r in rows]
