"""Process plumbing shared by the service entry points: DB pool, health server, tick loop."""
import asyncio
import logging
import time
import uuid
from typing import Awaitable, Callable, Iterable, Optional

import asyncpg
from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from shedwatch.shared.config import Settings
from shedwatch.shared.logging import trace_id_var
from shedwatch.shared.metrics import db_pool_free, db_pool_size, processing_duration_seconds

logger = logging.getLogger(__name__)


async def _init_db_connection(conn: asyncpg.Connection) -> None:
    # Avoid passing statement_timeout as a startup parameter (PgBouncer rejects it).
    await conn.execute("SET statement_timeout TO 30000")


async def create_pool(settings: Settings) -> asyncpg.Pool:
    if settings.database_url:
        return await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.pg_pool_min,
            max_size=settings.pg_pool_max,
            command_timeout=30,
            init=_init_db_connection,
        )
    return await asyncpg.create_pool(
        host=settings.pg_host,
        port=settings.pg_port,
        database=settings.pg_db,
        user=settings.pg_user,
        password=settings.pg_pass,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        command_timeout=30,
        init=_init_db_connection,
    )


def build_health_app(
    service: str,
    ready: Callable[[], bool],
    routes: Optional[Iterable[web.RouteDef]] = None,
) -> web.Application:
    async def health_handler(_request):
        return web.json_response({"status": "ok", "service": service})

    async def ready_handler(_request):
        if ready():
            return web.json_response({"status": "ready"})
        return web.json_response({"status": "not_ready"}, status=503)

    async def metrics_handler(_request):
        return web.Response(body=generate_latest(), content_type=CONTENT_TYPE_LATEST.split(";")[0])

    app = web.Application()
    app.router.add_get("/health", health_handler)
    app.router.add_get("/ready", ready_handler)
    app.router.add_get("/metrics", metrics_handler)
    if routes:
        app.router.add_routes(list(routes))
    return app


async def start_health_server(app: web.Application, port: int) -> web.AppRunner:
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, "0.0.0.0", port)
    await site.start()
    logger.info("health server started", extra={"port": port})
    return runner


async def worker_loop(
    fn: Callable[[], Awaitable[object]],
    interval: float,
    service: str,
    pool: Optional[asyncpg.Pool] = None,
) -> None:
    """
    Run ``fn`` at a fixed rate: tick starts are ``interval`` seconds apart
    regardless of how long each tick takes. A tick that overruns its slot is
    followed immediately by the next one.
    """
    worker_name = getattr(fn, "__name__", "unknown")
    next_run = time.monotonic()
    while True:
        trace_token = trace_id_var.set(str(uuid.uuid4()))
        tick_start = time.monotonic()
        try:
            logger.info("tick_start", extra={"tick": worker_name})

            await fn()

            processing_duration_seconds.labels(
                service=service,
                operation=worker_name,
            ).observe(time.monotonic() - tick_start)
            logger.info("tick_done", extra={"tick": worker_name})
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Worker loop failed", extra={"worker": worker_name})
        finally:
            trace_id_var.reset(trace_token)

        if pool is not None:
            db_pool_size.labels(service=service).set(pool.get_size())
            db_pool_free.labels(service=service).set(pool.get_idle_size())

        next_run += interval
        now = time.monotonic()
        if next_run < now:
            logger.warning(
                "tick_overran",
                extra={"tick": worker_name, "behind_s": round(now - next_run, 3)},
            )
            next_run = now
        await asyncio.sleep(next_run - now)
