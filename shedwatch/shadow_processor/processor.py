"""
Shadow update handling: merge, reconstruct, alarm, broadcast.

``ShadowProcessor.handle`` is the event-handler boundary. Every failure is
logged and counted there and nothing propagates to the MQTT transport.
Side effects already applied when a later step fails are kept.
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from shedwatch.alarm_engine.escalation import AlarmEngine, AlarmOutcome, AlarmState
from shedwatch.notifications.fanout import NotificationFanout, build_messages
from shedwatch.shadow_processor.schemas import parse_shadow_event
from shedwatch.shared.errors import MalformedEvent, NotFound, TransientIOFailure
from shedwatch.shared.logging import device_id_var, log_event, log_exception, trace_id_var
from shedwatch.shared.metrics import (
    data_points_written_total,
    processing_duration_seconds,
    shadow_events_total,
)
from shedwatch.shared.models import Alarm, DataPoint, Device, Farm
from shedwatch.shared.store import Store
from shedwatch.shared.telemetry import POINT_GAP_MS, reconstruct_points
from shedwatch.shared.timeutil import DeviceClock, now_ms, to_ms
from shedwatch.shared.twin import merge_shadow

logger = logging.getLogger(__name__)

POINT_RETRY_DELAYS = (0.5, 2.0, 5.0)


@dataclass
class ProcessResult:
    device: Device
    points: list[DataPoint] = field(default_factory=list)
    outcome: AlarmOutcome = field(default_factory=lambda: AlarmOutcome(AlarmState.NO_ALARM))

    @property
    def alarm(self) -> Optional[Alarm]:
        return self.outcome.alarm


class ShadowProcessor:
    def __init__(
        self,
        store: Store,
        alarm_engine: AlarmEngine,
        fanout: NotificationFanout,
        clock: DeviceClock,
        point_gap_ms: int = POINT_GAP_MS,
        point_write_attempts: int = 3,
        retry_delays: Sequence[float] = POINT_RETRY_DELAYS,
        now: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.alarm_engine = alarm_engine
        self.fanout = fanout
        self.clock = clock
        self.point_gap_ms = point_gap_ms
        self.point_write_attempts = max(1, point_write_attempts)
        self.retry_delays = tuple(retry_delays) or (0.0,)
        self.now = now

    async def handle(self, payload: Any) -> Optional[ProcessResult]:
        """Process one raw event; returns None when it was abandoned."""
        trace_token = trace_id_var.set(str(uuid.uuid4()))
        device_token = device_id_var.set("")
        started = time.monotonic()
        result = "processed"
        try:
            return await self.process(payload)
        except MalformedEvent as exc:
            result = "malformed"
            logger.error(
                "malformed_shadow_event",
                extra={"errors": exc.errors, "payload": payload},
            )
        except NotFound as exc:
            result = "not_found"
            log_event(logger, "shadow_event_abandoned", level="WARNING", kind=exc.kind, key=exc.key)
        except TransientIOFailure as exc:
            result = "io_failure"
            log_exception(logger, "shadow_event_io_failure", exc, context={"operation": exc.operation})
        except Exception:
            result = "error"
            logger.exception("shadow_event_failed", extra={"payload": payload})
        finally:
            shadow_events_total.labels(result=result).inc()
            processing_duration_seconds.labels(
                service="shadow_processor", operation="handle"
            ).observe(time.monotonic() - started)
            device_id_var.reset(device_token)
            trace_id_var.reset(trace_token)
        return None

    async def process(self, payload: Any) -> ProcessResult:
        event = parse_shadow_event(payload)
        device_id = event.device_id
        device_id_var.set(device_id)
        received_at = to_ms(event.timestamp)

        await self.store.log_message(device_id, received_at, payload)
        device = await self.store.fetch_device_by_asset_id(device_id)

        reported = event.reported_patch()
        desired = event.desired_patch()
        device = merge_shadow(device, reported, desired, received_at, self.clock)
        await self.store.update_device(device)

        points = reconstruct_points(device, reported, self.point_gap_ms)
        await self._write_points(points)

        outcome = await self.alarm_engine.process(device, reported, desired, self.now())
        await self._broadcast(device, outcome.alarm)
        return ProcessResult(device=device, points=points, outcome=outcome)

    async def _write_points(self, points: list[DataPoint]) -> None:
        if not points:
            return
        for attempt in range(1, self.point_write_attempts + 1):
            try:
                written = await self.store.insert_points(points)
            except TransientIOFailure as exc:
                if attempt == self.point_write_attempts:
                    raise
                delay = self.retry_delays[min(attempt - 1, len(self.retry_delays) - 1)]
                logger.warning(
                    "point_write_retry",
                    extra={"attempt": attempt, "delay_s": delay, "error": str(exc.cause)},
                )
                await asyncio.sleep(delay)
                continue
            data_points_written_total.inc(written)
            return

    async def _broadcast(self, device: Device, alarm: Optional[Alarm]) -> None:
        farm: Optional[Farm] = None
        try:
            if device.farm_id:
                farm = await self.store.fetch_farm(device.farm_id)
        except NotFound:
            logger.warning("fanout_farm_missing", extra={"farm_id": device.farm_id})
        try:
            await self.fanout.deliver(device, farm, build_messages(device, alarm))
        except TransientIOFailure as exc:
            log_exception(logger, "fanout_failed", exc, context={"operation": exc.operation})
