from __future__ import annotations

import asyncio
from contextlib import suppress
import logging

from arq import cron
from arq.connections import RedisSettings

from slanglab.core.config import get_settings
from slanglab.core.logging import configure_logging
from slanglab.services.monitoring import run_monitoring_pass
from slanglab.services.sources import start_source_rules_listener


logger = logging.getLogger(__name__)


def monitoring_hours(interval_hours: int) -> set[int]:
    # Cron hours for a fixed cadence starting at midnight UTC.
    step = min(max(1, int(interval_hours)), 24)
    return set(range(0, 24, step))


async def monitoring_pass(ctx) -> dict:
    # The scheduler is the only timer; each tick checks whatever is due.
    result = await run_monitoring_pass(None)
    return result.to_dict()


async def _startup(ctx) -> None:
    configure_logging()
    ctx["source_rules_listener"] = await start_source_rules_listener()


async def _shutdown(ctx) -> None:
    # Cancel the listener to avoid dangling coroutines on exit.
    task = ctx.get("source_rules_listener")
    if task:
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    functions = [monitoring_pass]
    cron_jobs = [
        cron(
            monitoring_pass,
            hour=monitoring_hours(settings.monitoring_interval_hours),
            minute=0,
            run_at_startup=False,
            unique=True,
        )
    ]
    on_startup = _startup
    on_shutdown = _shutdown
