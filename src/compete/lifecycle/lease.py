"""Per-competition settlement lease backed by Redis.

Two overlapping invocations may both see a competition as due. The lease
makes the second one skip it for this run instead of racing the first past
the payout and coin existence checks. It is advisory: the unique constraints
on prize_payouts and coin_transactions remain the last line.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

logger = logging.getLogger(__name__)

LEASE_KEY_PREFIX = "lease:competition:"


def lease_key(competition_id: int) -> str:
    return f"{LEASE_KEY_PREFIX}{competition_id}"


async def acquire_lease(redis: object | None, competition_id: int, ttl_seconds: int) -> str | None:
    """Try to take the lease. Returns the owner token, or None if held elsewhere.

    Without Redis, or with Redis unreachable, every caller gets a (local) token.
    """
    token = secrets.token_hex(16)
    if redis is None:
        return token

    try:
        acquired = await redis.set(  # type: ignore[union-attr]
            lease_key(competition_id), token, nx=True, ex=ttl_seconds,
        )
    except Exception:
        logger.warning(
            "Lease unavailable for competition %d, continuing without it",
            competition_id, exc_info=True,
        )
        return token
    return token if acquired else None


async def release_lease(redis: object | None, competition_id: int, token: str) -> None:
    """Release the lease if this caller still owns it."""
    if redis is None:
        return
    key = lease_key(competition_id)
    try:
        current = await redis.get(key)  # type: ignore[union-attr]
        if current == token:
            await redis.delete(key)  # type: ignore[union-attr]
    except Exception:
        # The TTL will expire it.
        logger.warning("Failed to release lease for competition %d", competition_id, exc_info=True)


@asynccontextmanager
async def competition_lease(
    redis: object | None,
    competition_id: int,
    ttl_seconds: int = 300,
) -> AsyncIterator[bool]:
    """Hold the competition's lease for the duration of the block.

    Yields True if acquired; the block is expected to skip its work on False.
    """
    token = await acquire_lease(redis, competition_id, ttl_seconds)
    if token is None:
        logger.info("Competition %d is being settled by another invocation, skipping", competition_id)
        yield False
        return
    try:
        yield True
    finally:
        await release_lease(redis, competition_id, token)
