import asyncio
import json
import logging
from typing import Optional

import paho.mqtt.client as mqtt
from aiohttp import web

from shedwatch.alarm_engine.escalation import AlarmEngine
from shedwatch.dialer.driver import EscalationCallDriver
from shedwatch.notifications.fanout import NotificationFanout
from shedwatch.shadow_processor.processor import ShadowProcessor
from shedwatch.shadow_processor.publisher import ShadowPublisher
from shedwatch.shared.config import Settings
from shedwatch.shared.errors import NotFound, TransientIOFailure
from shedwatch.shared.logging import configure_logging
from shedwatch.shared.metrics import shadow_events_total, shadow_queue_depth
from shedwatch.shared.service import build_health_app, create_pool, start_health_server
from shedwatch.shared.store import PgStore, Store
from shedwatch.shared.telephony import HttpTelephonyClient
from shedwatch.shared.timeutil import DeviceClock

logger = logging.getLogger(__name__)


class ShadowSubscriber:
    """Bridges paho's network thread onto an asyncio queue drained by N workers."""

    def __init__(self, processor: ShadowProcessor, settings: Settings):
        self.processor = processor
        self.settings = settings
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=settings.processor_queue_size)
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.client.on_connect = self.on_connect
        self.client.on_message = self.on_message
        self.msg_received = 0
        self.msg_dropped = 0

    def on_connect(self, client, userdata, flags, reason_code, properties=None):
        logger.info(
            "mqtt_connected",
            extra={"reason_code": str(reason_code), "topic": self.settings.shadow_topic},
        )
        client.subscribe(self.settings.shadow_topic, qos=1)

    def on_message(self, client, userdata, msg):
        self.msg_received += 1
        try:
            payload = json.loads(msg.payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            shadow_events_total.labels(result="malformed").inc()
            logger.error(
                "shadow_payload_undecodable",
                extra={"topic": msg.topic, "raw": msg.payload.decode("utf-8", errors="replace")},
            )
            return

        if self.loop is None:
            self.msg_dropped += 1
            return

        def _enqueue():
            try:
                self.queue.put_nowait(payload)
            except asyncio.QueueFull:
                self.msg_dropped += 1
                logger.warning("shadow_queue_full", extra={"topic": msg.topic})
            shadow_queue_depth.set(self.queue.qsize())

        self.loop.call_soon_threadsafe(_enqueue)

    async def worker(self) -> None:
        while True:
            payload = await self.queue.get()
            try:
                await self.processor.handle(payload)
            finally:
                self.queue.task_done()
                shadow_queue_depth.set(self.queue.qsize())

    async def run(self) -> None:
        self.loop = asyncio.get_running_loop()
        workers = [
            asyncio.create_task(self.worker())
            for _ in range(self.settings.processor_worker_count)
        ]
        self.client.connect(self.settings.mqtt_host, self.settings.mqtt_port, keepalive=60)
        self.client.loop_start()
        try:
            await asyncio.gather(*workers)
        finally:
            self.client.loop_stop()
            self.client.disconnect()


def suppress_alarm_route(store: Store, publisher: ShadowPublisher) -> web.RouteDef:
    async def suppress_alarm_handler(request: web.Request) -> web.Response:
        device_id = request.match_info["device_id"]
        try:
            device = await store.fetch_device_by_asset_id(device_id)
        except NotFound:
            return web.json_response({"error": "device not found"}, status=404)
        except TransientIOFailure:
            return web.json_response({"error": "storage unavailable"}, status=503)
        published = publisher.suppress_alarm(device)
        return web.json_response({"device_id": device_id, "published": published})

    return web.post("/devices/{device_id}/suppress-alarm", suppress_alarm_handler)


def _time_range(request: web.Request) -> tuple[int, int]:
    try:
        start = int(request.query["start"])
        end = int(request.query["end"])
    except (KeyError, ValueError):
        raise web.HTTPBadRequest(text="start and end must be epoch milliseconds")
    if start > end:
        raise web.HTTPBadRequest(text="start must not be after end")
    return start, end


def history_routes(store: Store) -> list[web.RouteDef]:
    """Alarm and raw data history for a device over an inclusive ms range."""

    async def alarms_handler(request: web.Request) -> web.Response:
        device_id = request.match_info["device_id"]
        start, end = _time_range(request)
        try:
            alarms = await store.fetch_alarms_between(device_id, start, end)
        except TransientIOFailure:
            return web.json_response({"error": "storage unavailable"}, status=503)
        return web.json_response({"device_id": device_id, "alarms": [a.to_record() for a in alarms]})

    async def data_handler(request: web.Request) -> web.Response:
        device_id = request.match_info["device_id"]
        start, end = _time_range(request)
        try:
            points = await store.fetch_raw_data(device_id, start, end)
        except TransientIOFailure:
            return web.json_response({"error": "storage unavailable"}, status=503)
        return web.json_response({"device_id": device_id, "points": [p.to_record() for p in points]})

    return [
        web.get("/devices/{device_id}/alarms", alarms_handler),
        web.get("/devices/{device_id}/data", data_handler),
    ]


async def main() -> None:
    configure_logging("shadow_processor")
    settings = Settings.from_env()
    if settings.alarm_lookup_order == "oldest":
        logger.warning(
            "alarm_lookup_oldest_first",
            extra={"detail": "episodes are matched against the oldest alarm row of each device"},
        )

    pool = await create_pool(settings)
    store = PgStore(pool, alarm_lookup_order=settings.alarm_lookup_order)
    driver = EscalationCallDriver(
        HttpTelephonyClient(
            base_url=settings.telephony_api_url,
            api_key=settings.telephony_api_key,
            instance_id=settings.connect_instance_id,
            contact_flow_id=settings.connect_contact_flow_id,
            queue_id=settings.connect_queue_id,
        )
    )
    processor = ShadowProcessor(
        store=store,
        alarm_engine=AlarmEngine(store, driver, settings.escalation_cooldown_minutes),
        fanout=NotificationFanout(store, settings.ws_gateway_url),
        clock=DeviceClock(settings.device_timezone),
        point_gap_ms=settings.point_gap_ms,
        point_write_attempts=settings.point_write_attempts,
    )
    subscriber = ShadowSubscriber(processor, settings)
    publisher = ShadowPublisher(subscriber.client)

    await start_health_server(
        build_health_app(
            "shadow_processor",
            ready=lambda: subscriber.client.is_connected(),
            routes=[suppress_alarm_route(store, publisher), *history_routes(store)],
        ),
        settings.health_port,
    )
    await subscriber.run()


if __name__ == "__main__":
    asyncio.run(main())
