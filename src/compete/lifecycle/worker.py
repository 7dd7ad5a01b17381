"""Status-update arq worker: runs the scheduler pass twice a day.

Import path for arq CLI: arq compete.lifecycle.worker.StatusWorkerSettings
"""

from __future__ import annotations

import logging

import redis.asyncio as aioredis
from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession

from compete.config import get_settings
from compete.database import close_db, get_session, init_db
from compete.exceptions import ConfigurationError
from compete.lifecycle.scheduler import run_status_update

logger = logging.getLogger(__name__)


async def _get_db_session() -> AsyncSession:
    """Get a database session for the worker."""
    async for session in get_session():
        return session
    raise ConfigurationError("Failed to get database session")


async def status_startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize Redis + DB connections on worker startup."""
    settings = get_settings()
    await init_db(settings.database_url)

    ctx["redis"] = aioredis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    logger.info("Status worker started")


async def status_shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    """Clean up on worker shutdown."""
    redis_client: aioredis.Redis | None = ctx.get("redis")
    if redis_client:
        await redis_client.aclose()
    await close_db()
    logger.info("Status worker shut down")


async def update_competition_statuses(ctx: dict) -> dict[str, int]:  # type: ignore[type-arg]
    """Scheduled arq task: one status-update pass.

    Safe to run more than once; every step is idempotent.
    """
    db = await _get_db_session()
    try:
        summary = await run_status_update(db, redis=ctx.get("redis"))
    except Exception:
        logger.exception("Competition status update failed")
        raise
    finally:
        await db.close()

    return {
        "activated": summary.activated,
        "completed": summary.completed,
        "force_locked": summary.force_locked,
        "settlement_retries": summary.settlement_retries,
    }


_settings = get_settings()


class StatusWorkerSettings:
    """arq worker settings for the competition status scheduler."""

    functions = [update_competition_statuses]
    cron_jobs = [
        cron(
            update_competition_statuses,
            hour=set(_settings.status_cron_hours),
            minute=_settings.status_cron_minute,
            run_at_startup=False,
            unique=True,
        ),
    ]
    redis_settings = RedisSettings.from_dsn(_settings.arq_redis_url)
    on_startup = status_startup
    on_shutdown = status_shutdown
    max_jobs = 1
    job_timeout = _settings.worker_job_timeout_seconds
    allow_abort_jobs = True
