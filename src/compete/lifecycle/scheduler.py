"""Competition status scheduler.

One invocation:

1. promotes upcoming competitions whose start date has arrived,
2. completes active competitions whose end date has passed, once the
   western-most participant's deadline is behind us (scores are force-locked
   first, then the seasonal, prize and coin reward steps run),
3. re-runs reward steps for recently completed competitions that did not
   settle cleanly last time.

Invocations may overlap or repeat. Status writes are compare-and-set, each
reward step guards itself, and a Redis lease keeps two invocations off the
same competition at once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from compete.config import Settings, get_settings
from compete.db.models import Competition
from compete.exceptions import InvalidTransitionError
from compete.lifecycle.deadline import competition_deadline, is_past_deadline
from compete.lifecycle.lease import competition_lease
from compete.lifecycle.score_lock import force_lock_scores
from compete.lifecycle.snapshot import CompetitionSnapshot
from compete.notifications.outbox import NotificationOutbox
from compete.rewards.coins import distribute_competition_coins
from compete.rewards.prize_settlement import settle_prize_pool
from compete.rewards.seasonal import distribute_seasonal_rewards

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[str, list[str]] = {
    "upcoming": ["active"],
    "active": ["completed"],
    "completed": [],
}

TRACKED_STATUSES = ("active", "upcoming", "completed")


def validate_transition(current_status: str, target_status: str) -> None:
    """Validate a status change. Raises InvalidTransitionError if invalid."""
    valid = VALID_TRANSITIONS.get(current_status, [])
    if target_status not in valid:
        raise InvalidTransitionError(current_status, target_status, valid)


@dataclass(frozen=True)
class CompetitionOutcome:
    """What one pass did to one competition."""

    competition_id: int
    completed: bool = False
    force_locked: int = 0
    rewards_settled: bool = False
    retried: bool = False
    skipped: str | None = None  # not_due | lease_held | lost_race | error
    deadline: datetime | None = None


@dataclass
class StatusUpdateSummary:
    counts: dict[str, int] | None
    activated: int = 0
    completed: int = 0
    force_locked: int = 0
    settlement_retries: int = 0
    outcomes: list[CompetitionOutcome] = field(default_factory=list)


def summarize(
    outcomes: list[CompetitionOutcome],
    activated: int,
    counts: dict[str, int] | None,
) -> StatusUpdateSummary:
    """Fold per-competition outcomes into the invocation summary."""
    return StatusUpdateSummary(
        counts=counts,
        activated=activated,
        completed=sum(1 for o in outcomes if o.completed),
        force_locked=sum(o.force_locked for o in outcomes),
        settlement_retries=sum(1 for o in outcomes if o.retried),
        outcomes=list(outcomes),
    )


# ---------------------------------------------------------------------------
# Status writes
# ---------------------------------------------------------------------------


async def activate_competitions(db: AsyncSession, today: date, now: datetime) -> int:
    """Promote upcoming competitions whose start date has arrived."""
    validate_transition("upcoming", "active")
    result = await db.execute(
        update(Competition)
        .where(Competition.status == "upcoming", Competition.start_date <= today)
        .values(status="active", updated_at=now)
    )
    await db.commit()
    return result.rowcount or 0


async def complete_competition(db: AsyncSession, competition_id: int, now: datetime) -> bool:
    """Compare-and-set active -> completed. False if another invocation got there first."""
    validate_transition("active", "completed")
    result = await db.execute(
        update(Competition)
        .where(Competition.id == competition_id, Competition.status == "active")
        .values(status="completed", completed_at=now, updated_at=now)
    )
    await db.commit()
    return (result.rowcount or 0) == 1


async def mark_rewards_settled(db: AsyncSession, competition_id: int, now: datetime) -> None:
    await db.execute(
        update(Competition)
        .where(Competition.id == competition_id, Competition.rewards_settled_at.is_(None))
        .values(rewards_settled_at=now)
    )
    await db.commit()


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def get_completion_candidates(db: AsyncSession, today: date) -> list[CompetitionSnapshot]:
    """Active competitions whose last day is before today (UTC)."""
    result = await db.execute(
        select(Competition)
        .where(Competition.status == "active", Competition.end_date < today)
        .order_by(Competition.end_date.asc(), Competition.id.asc())
    )
    return [CompetitionSnapshot.from_model(c) for c in result.scalars().all()]


async def get_unsettled_competitions(
    db: AsyncSession,
    now: datetime,
    window_days: int,
) -> list[CompetitionSnapshot]:
    """Completed competitions whose reward steps have not all succeeded yet."""
    result = await db.execute(
        select(Competition)
        .where(
            Competition.status == "completed",
            Competition.rewards_settled_at.is_(None),
            Competition.completed_at.is_not(None),
            Competition.completed_at >= now - timedelta(days=window_days),
        )
        .order_by(Competition.completed_at.asc(), Competition.id.asc())
    )
    return [CompetitionSnapshot.from_model(c) for c in result.scalars().all()]


async def get_status_counts(db: AsyncSession) -> dict[str, int]:
    result = await db.execute(
        select(Competition.status, func.count(Competition.id)).group_by(Competition.status)
    )
    counts = {status: 0 for status in TRACKED_STATUSES}
    for status, count in result.all():
        if status in counts:
            counts[status] = int(count)
    return counts


# ---------------------------------------------------------------------------
# Per-competition work
# ---------------------------------------------------------------------------


async def run_reward_steps(
    db: AsyncSession,
    competition: CompetitionSnapshot,
    now: datetime,
    outbox: NotificationOutbox,
    settings: Settings,
) -> bool:
    """Run every applicable reward step. True if none of them raised.

    A failing step never blocks the others or undoes the completion; its own
    idempotency guard makes it safe to run again later.
    """
    settled = True

    if competition.is_seasonal_event and competition.event_reward:
        try:
            await distribute_seasonal_rewards(db, competition, now, outbox)
        except Exception:
            settled = False
            await db.rollback()
            logger.exception("Error distributing seasonal event rewards for competition %d", competition.id)

    if competition.has_prize_pool:
        try:
            await settle_prize_pool(
                db,
                competition,
                now,
                outbox,
                claim_expiration_days=settings.prize_claim_expiration_days,
                max_placements=settings.max_prize_placements,
            )
        except Exception:
            settled = False
            await db.rollback()
            logger.exception("Prize distribution error for competition %d", competition.id)

    try:
        await distribute_competition_coins(db, competition.id)
    except Exception:
        settled = False
        await db.rollback()
        logger.exception("Coin reward error for competition %d", competition.id)

    return settled


async def process_competition(
    db: AsyncSession,
    redis: object | None,
    competition: CompetitionSnapshot,
    now: datetime,
    outbox: NotificationOutbox,
    settings: Settings,
) -> CompetitionOutcome:
    """Complete one candidate if its deadline has passed, then reward it."""
    async with competition_lease(redis, competition.id, settings.settlement_lease_seconds) as acquired:
        if not acquired:
            return CompetitionOutcome(competition.id, skipped="lease_held")

        deadline, offset = await competition_deadline(
            db,
            competition.id,
            competition.end_date,
            now,
            buffer_hours=settings.deadline_buffer_hours,
            fallback_offset=settings.fallback_timezone_offset,
        )
        if not is_past_deadline(now, deadline):
            logger.info(
                "Competition %d not yet past deadline (offset=%d, deadline=%s)",
                competition.id, offset, deadline.isoformat(),
            )
            return CompetitionOutcome(competition.id, skipped="not_due", deadline=deadline)

        locked = await force_lock_scores(db, competition.id, now)

        if not await complete_competition(db, competition.id, now):
            logger.info("Competition %d was completed by another invocation", competition.id)
            return CompetitionOutcome(
                competition.id, force_locked=locked, skipped="lost_race", deadline=deadline,
            )
        logger.info(
            "Completed competition %d (offset=%d, deadline=%s)",
            competition.id, offset, deadline.isoformat(),
        )

        settled = await run_reward_steps(db, competition, now, outbox, settings)
        if settled:
            await mark_rewards_settled(db, competition.id, now)

    return CompetitionOutcome(
        competition.id,
        completed=True,
        force_locked=locked,
        rewards_settled=settled,
        deadline=deadline,
    )


async def retry_settlement(
    db: AsyncSession,
    redis: object | None,
    competition: CompetitionSnapshot,
    now: datetime,
    outbox: NotificationOutbox,
    settings: Settings,
) -> CompetitionOutcome:
    """Re-run reward steps for a completed competition that did not settle."""
    async with competition_lease(redis, competition.id, settings.settlement_lease_seconds) as acquired:
        if not acquired:
            return CompetitionOutcome(competition.id, skipped="lease_held")

        logger.info("Retrying reward settlement for competition %d", competition.id)
        settled = await run_reward_steps(db, competition, now, outbox, settings)
        if settled:
            await mark_rewards_settled(db, competition.id, now)

    return CompetitionOutcome(competition.id, rewards_settled=settled, retried=True)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def run_status_update(
    db: AsyncSession,
    redis: object | None = None,
    now: datetime | None = None,
    outbox: NotificationOutbox | None = None,
    settings: Settings | None = None,
) -> StatusUpdateSummary:
    """Run one full status-update pass and return its summary."""
    if now is None:
        now = datetime.now(timezone.utc)
    if outbox is None:
        outbox = NotificationOutbox()
    if settings is None:
        settings = get_settings()
    today = now.astimezone(timezone.utc).date()

    logger.info("Starting competition status update (today=%s)", today.isoformat())

    try:
        activated = await activate_competitions(db, today, now)
        logger.info("Activated %d competition(s)", activated)
    except Exception:
        await db.rollback()
        activated = 0
        logger.exception("Error activating competitions")

    try:
        candidates = await get_completion_candidates(db, today)
    except Exception:
        await db.rollback()
        candidates = []
        logger.exception("Error fetching candidate competitions")

    outcomes: list[CompetitionOutcome] = []
    for competition in candidates:
        try:
            outcome = await process_competition(db, redis, competition, now, outbox, settings)
        except Exception:
            await db.rollback()
            outcome = CompetitionOutcome(competition.id, skipped="error")
            logger.exception("Error processing competition %d, skipped", competition.id)
        outcomes.append(outcome)
        await outbox.deliver(db, redis)

    processed = {o.competition_id for o in outcomes}
    try:
        unsettled = await get_unsettled_competitions(db, now, settings.settlement_retry_window_days)
    except Exception:
        await db.rollback()
        unsettled = []
        logger.exception("Error fetching unsettled competitions")

    for competition in unsettled:
        if competition.id in processed:
            continue
        try:
            outcome = await retry_settlement(db, redis, competition, now, outbox, settings)
        except Exception:
            await db.rollback()
            outcome = CompetitionOutcome(competition.id, retried=True, skipped="error")
            logger.exception("Error retrying settlement for competition %d", competition.id)
        outcomes.append(outcome)
        await outbox.deliver(db, redis)

    try:
        counts: dict[str, int] | None = await get_status_counts(db)
    except Exception:
        await db.rollback()
        counts = None
        logger.exception("Error getting status counts")

    summary = summarize(outcomes, activated, counts)
    logger.info(
        "Status update complete: activated=%d completed=%d force_locked=%d retries=%d counts=%s",
        summary.activated, summary.completed, summary.force_locked,
        summary.settlement_retries, summary.counts,
    )
    return summary
