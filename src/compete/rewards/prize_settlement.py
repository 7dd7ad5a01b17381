"""Prize pool settlement: placements -> payout records, exactly once.

Called by the status scheduler right after a competition is completed, and
again by its retry pass until the competition is marked settled.
Idempotent: if any payout already exists for the competition, nothing
happens. Payouts are created unclaimed; winners claim them in-app and a
separate process pays them out and marks the pool distributed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from compete.db.models import CompetitionParticipant, PrizePayout, PrizePool
from compete.identity import get_contact_info
from compete.lifecycle.snapshot import CompetitionSnapshot
from compete.notifications.outbox import NotificationOutbox
from compete.rewards.audit import ACTION_PAYOUT_CREATED, ACTION_POOL_DISTRIBUTING, record_prize_action
from compete.rewards.placements import (
    MAX_PLACEMENTS,
    PlannedPayout,
    Standing,
    individual_placements,
    plan_payouts,
    team_placements,
)

logger = logging.getLogger(__name__)

CLAIM_EXPIRATION_DAYS = 7


@dataclass
class PrizeSettlementResult:
    competition_id: int
    status: str  # settled | already_settled | no_active_pool | no_participants
    payouts_created: int = 0
    payouts_failed: int = 0
    total_paid: Decimal = Decimal("0.00")


async def payouts_exist(db: AsyncSession, competition_id: int) -> bool:
    """Idempotency guard: any payout row means the competition was settled."""
    result = await db.execute(
        select(PrizePayout.id).where(PrizePayout.competition_id == competition_id).limit(1)
    )
    return result.first() is not None


async def get_active_prize_pool(db: AsyncSession, competition_id: int) -> PrizePool | None:
    result = await db.execute(
        select(PrizePool).where(
            PrizePool.competition_id == competition_id,
            PrizePool.status == "active",
        )
    )
    return result.scalar_one_or_none()


async def get_standings(db: AsyncSession, competition_id: int) -> list[Standing]:
    """Finalized scores, highest first."""
    result = await db.execute(
        select(
            CompetitionParticipant.user_id,
            CompetitionParticipant.total_points,
            CompetitionParticipant.team_id,
        )
        .where(CompetitionParticipant.competition_id == competition_id)
        .order_by(CompetitionParticipant.total_points.desc(), CompetitionParticipant.id.asc())
    )
    return [
        Standing(user_id=row.user_id, total_points=Decimal(str(row.total_points or 0)), team_id=row.team_id)
        for row in result.all()
    ]


async def settle_prize_pool(
    db: AsyncSession,
    competition: CompetitionSnapshot,
    now: datetime | None = None,
    outbox: NotificationOutbox | None = None,
    claim_expiration_days: int = CLAIM_EXPIRATION_DAYS,
    max_placements: int = MAX_PLACEMENTS,
) -> PrizeSettlementResult:
    """Create one payout per winner from the competition's active prize pool."""
    if now is None:
        now = datetime.now(timezone.utc)

    if await payouts_exist(db, competition.id):
        logger.info("Prize payouts already exist for competition %d", competition.id)
        return PrizeSettlementResult(competition.id, "already_settled")

    pool = await get_active_prize_pool(db, competition.id)
    if pool is None:
        return PrizeSettlementResult(competition.id, "no_active_pool")
    pool_id = pool.id
    total_amount = Decimal(str(pool.total_amount))
    payout_structure = dict(pool.payout_structure or {})

    standings = await get_standings(db, competition.id)
    if not standings:
        logger.info("No participants to pay for competition %d", competition.id)
        return PrizeSettlementResult(competition.id, "no_participants")

    if competition.is_team_competition:
        placements = team_placements(standings, limit=max_placements)
    else:
        placements = individual_placements(standings, limit=max_placements)
    planned = plan_payouts(placements, total_amount, payout_structure)

    result = PrizeSettlementResult(competition.id, "settled")
    claim_expires_at = now + timedelta(days=claim_expiration_days)

    for entry in planned:
        try:
            payout_id = await _create_payout(db, competition, pool_id, entry, now, claim_expires_at)
        except IntegrityError:
            # A racing invocation inserted this winner first.
            await db.rollback()
            result.payouts_failed += 1
            logger.warning(
                "Duplicate payout for user %d in competition %d, skipped",
                entry.user_id, competition.id,
            )
            continue
        except Exception:
            await db.rollback()
            result.payouts_failed += 1
            logger.exception(
                "Failed to create payout for user %d in competition %d",
                entry.user_id, competition.id,
            )
            continue

        result.payouts_created += 1
        result.total_paid += entry.amount
        if outbox is not None:
            outbox.enqueue("prize_won", entry.user_id, {
                "competitionId": competition.id,
                "competitionName": competition.name,
                "placement": entry.placement,
                "amount": str(entry.amount),
                "payoutId": payout_id,
                "claimDays": claim_expiration_days,
                "claimExpiresAt": claim_expires_at.isoformat(),
            })

    await _mark_pool_distributing(db, pool_id, now, result)

    logger.info(
        "Distributed prizes for competition %d: %d payouts totalling %s (%d failed)",
        competition.id, result.payouts_created, result.total_paid, result.payouts_failed,
    )
    return result


async def _create_payout(
    db: AsyncSession,
    competition: CompetitionSnapshot,
    pool_id: int,
    entry: PlannedPayout,
    now: datetime,
    claim_expires_at: datetime,
) -> int:
    """Insert the payout and its audit entry, committed together."""
    contact = await get_contact_info(db, entry.user_id)

    payout = PrizePayout(
        prize_pool_id=pool_id,
        competition_id=competition.id,
        winner_id=entry.user_id,
        placement=entry.placement,
        payout_amount=entry.amount,
        status="pending",
        claim_status="unclaimed",
        claim_expires_at=claim_expires_at,
        recipient_email=contact.email if contact else None,
        recipient_name=contact.display_name if contact else None,
        seen_by_winner=False,
        created_at=now,
    )
    db.add(payout)
    await db.flush()
    payout_id = payout.id

    details: dict[str, object] = {
        "placement": entry.placement,
        "amount": str(entry.amount),
        "winner_id": entry.user_id,
        "claim_expires_at": claim_expires_at.isoformat(),
        "source": "cron",
    }
    if entry.team_id is not None:
        details["team_id"] = entry.team_id
        details["team_split_count"] = entry.split_count
    record_prize_action(db, ACTION_PAYOUT_CREATED, pool_id, payout_id=payout_id, details=details)

    await db.commit()
    return payout_id


async def _mark_pool_distributing(
    db: AsyncSession,
    pool_id: int,
    now: datetime,
    result: PrizeSettlementResult,
) -> None:
    await db.execute(
        update(PrizePool)
        .where(PrizePool.id == pool_id, PrizePool.status == "active")
        .values(status="distributing", updated_at=now)
    )
    record_prize_action(db, ACTION_POOL_DISTRIBUTING, pool_id, details={
        "payouts_created": result.payouts_created,
        "payouts_failed": result.payouts_failed,
        "total_paid": str(result.total_paid),
        "source": "cron",
    })
    await db.commit()
