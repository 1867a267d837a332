import asyncio
import logging

from shedwatch.dialer.driver import EscalationCallDriver
from shedwatch.heartbeat.sweep import run_offline_sweep
from shedwatch.shared.config import Settings
from shedwatch.shared.logging import configure_logging, log_event
from shedwatch.shared.service import build_health_app, create_pool, start_health_server, worker_loop
from shedwatch.shared.store import PgStore
from shedwatch.shared.telephony import HttpTelephonyClient

logger = logging.getLogger(__name__)


async def main() -> None:
    configure_logging("heartbeat")
    settings = Settings.from_env()
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

    async def run_offline_sweep_tick() -> None:
        raised = await run_offline_sweep(
            store,
            driver,
            batch_window=settings.batch_offline_window,
            idle_window=settings.idle_offline_window,
        )
        if raised:
            log_event(logger, "offline_sweep_raised", count=len(raised))

    await start_health_server(
        build_health_app("heartbeat", ready=lambda: pool is not None),
        settings.health_port,
    )
    await worker_loop(
        run_offline_sweep_tick,
        interval=settings.sweep_interval_seconds,
        service="heartbeat",
        pool=pool,
    )


if __name__ == "__main__":
    asyncio.run(main())
