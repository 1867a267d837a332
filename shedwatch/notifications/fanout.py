"""
Live dashboard fan-out - pushes device and alarm updates to the WebSocket
gateway for every connection allowed to see the device.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import httpx

from shedwatch.shared.http_client import traced_client
from shedwatch.shared.models import Alarm, Connection, Device, Farm, MessageType, UserRole
from shedwatch.shared.store import Store

logger = logging.getLogger(__name__)


def can_observe(connection: Connection, device: Device, farm: Optional[Farm]) -> bool:
    if connection.role is UserRole.ADMIN:
        return True
    if connection.role is UserRole.OWNER:
        return connection.company_id is not None and connection.company_id == device.company_id
    if connection.role is UserRole.MANAGER:
        return farm is not None and connection.user_id in (farm.users or [])
    if connection.role is UserRole.CONSULTANT:
        return device.asset_id in (connection.devices or [])
    return False


def build_messages(device: Optional[Device], alarm: Optional[Alarm]) -> list[dict]:
    messages = []
    if device is not None:
        messages.append(
            {"action": "message", "type": MessageType.DEVICE.value, "data": device.to_record()}
        )
    if alarm is not None:
        messages.append(
            {"action": "message", "type": MessageType.ALARM.value, "data": alarm.to_record()}
        )
    return messages


class NotificationFanout:
    def __init__(
        self,
        store: Store,
        gateway_url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.gateway_url = gateway_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def deliver(self, device: Device, farm: Optional[Farm], messages: list[dict]) -> int:
        """Post ``messages`` to every permitted connection; returns how many accepted them."""
        if not messages:
            return 0
        connections = await self.store.fetch_connections()
        recipients = [c for c in connections if can_observe(c, device, farm)]
        if not recipients:
            return 0

        async with traced_client(
            timeout=self.timeout,
            transport=self._transport,
            base_url=self.gateway_url,
        ) as client:
            results = await asyncio.gather(
                *(
                    client.post(f"/@connections/{c.connection_id}", json=messages)
                    for c in recipients
                ),
                return_exceptions=True,
            )

        delivered = 0
        for connection, result in zip(recipients, results):
            if isinstance(result, Exception):
                logger.warning(
                    "fanout_post_failed",
                    extra={"connection_id": connection.connection_id, "error": str(result)},
                )
            elif result.status_code == 410:
                logger.info("fanout_connection_gone", extra={"connection_id": connection.connection_id})
            elif result.is_success:
                delivered += 1
            else:
                logger.warning(
                    "fanout_post_rejected",
                    extra={
                        "connection_id": connection.connection_id,
                        "status_code": result.status_code,
                    },
                )
        return delivered
