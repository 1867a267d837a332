import json

import httpx
import pytest

from shedwatch.shared.errors import TransientIOFailure
from shedwatch.shared.telephony import HttpTelephonyClient

pytestmark = [pytest.mark.unit, pytest.mark.asyncio]


def _client(handler):
    return HttpTelephonyClient(
        base_url="https://dialer.example.test/",
        api_key="secret-key",
        instance_id="instance-1",
        contact_flow_id="flow-1",
        queue_id="queue-1",
        transport=httpx.MockTransport(handler),
    )


async def test_place_call_posts_contact_request():
    captured = {}

    def handler(request):
        captured["path"] = request.url.path
        captured["auth"] = request.headers.get("Authorization")
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ContactId": "contact-123"})

    handle = await _client(handler).place_call("+6421000001", {"alarmId": "a1", "userIndex": 0})

    assert handle.contact_id == "contact-123"
    assert handle.phone == "+6421000001"
    assert captured["path"] == "/outbound-voice-contacts"
    assert captured["auth"] == "Bearer secret-key"
    assert captured["body"] == {
        "DestinationPhoneNumber": "+6421000001",
        "ContactFlowId": "flow-1",
        "InstanceId": "instance-1",
        "QueueId": "queue-1",
        "Attributes": {"alarmId": "a1", "userIndex": "0"},
    }


async def test_server_error_is_transient():
    client = _client(lambda request: httpx.Response(500))
    with pytest.raises(TransientIOFailure) as exc_info:
        await client.place_call("+641", {})
    assert exc_info.value.operation == "place_call"


async def test_connect_error_is_transient():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(TransientIOFailure):
        await _client(handler).place_call("+641", {})


async def test_missing_contact_id_is_transient():
    client = _client(lambda request: httpx.Response(200, json={}))
    with pytest.raises(TransientIOFailure):
        await client.place_call("+641", {})


async def test_non_json_body_is_transient():
    client = _client(lambda request: httpx.Response(200, content=b"<html>"))
    with pytest.raises(TransientIOFailure):
        await client.place_call("+641", {})
