"""Outbound voice call collaborator.

Calls are requested from the dialer gateway, which fronts the contact-centre
instance (contact flow + queue) that actually rings the subscriber.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from shedwatch.shared.errors import TransientIOFailure
from shedwatch.shared.http_client import traced_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CallHandle:
    contact_id: str
    phone: str


class TelephonyClient(Protocol):
    async def place_call(self, phone: str, attributes: dict) -> CallHandle: ...


class HttpTelephonyClient:
    """Places one outbound voice contact per call; never retries."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        instance_id: str,
        contact_flow_id: str,
        queue_id: str,
        timeout: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.instance_id = instance_id
        self.contact_flow_id = contact_flow_id
        self.queue_id = queue_id
        self.timeout = timeout
        self._transport = transport

    async def place_call(self, phone: str, attributes: dict) -> CallHandle:
        body = {
            "DestinationPhoneNumber": phone,
            "ContactFlowId": self.contact_flow_id,
            "InstanceId": self.instance_id,
            "QueueId": self.queue_id,
            # contact attributes must all be strings
            "Attributes": {k: str(v) for k, v in attributes.items()},
        }
        try:
            async with traced_client(
                timeout=self.timeout,
                transport=self._transport,
                base_url=self.base_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
            ) as client:
                response = await client.post("/outbound-voice-contacts", json=body)
                response.raise_for_status()
                data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise TransientIOFailure("place_call", exc) from exc
        contact_id = data.get("ContactId") if isinstance(data, dict) else None
        if not contact_id:
            raise TransientIOFailure("place_call", ValueError("response carried no ContactId"))
        return CallHandle(contact_id=contact_id, phone=phone)
