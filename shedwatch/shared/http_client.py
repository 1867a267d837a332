"""
Traced HTTP client for the telephony and WebSocket gateways.

Usage:
    from shedwatch.shared.http_client import traced_client

    async with traced_client(base_url=url, timeout=5.0) as client:
        resp = await client.post("/calls", json=body)
        # X-Trace-ID header is automatically injected
"""

import httpx
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from shedwatch.shared.logging import trace_id_var


class TraceTransport(httpx.AsyncHTTPTransport):
    """
    httpx transport wrapper that injects X-Trace-ID header
    into every outbound request from the current ContextVar.
    """

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        trace_id = trace_id_var.get("")
        if trace_id:
            request.headers["X-Trace-ID"] = trace_id
        return await super().handle_async_request(request)


@asynccontextmanager
async def traced_client(
    timeout: float = 10.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs,
) -> AsyncIterator[httpx.AsyncClient]:
    """
    Create an httpx.AsyncClient that auto-injects X-Trace-ID.

    Args:
        timeout: Request timeout in seconds. Default 10.0.
        transport: Override the transport (tests pass httpx.MockTransport).
        **kwargs: Additional kwargs passed to httpx.AsyncClient.
    """
    async with httpx.AsyncClient(
        transport=transport or TraceTransport(),
        timeout=timeout,
        **kwargs,
    ) as client:
        yield client
