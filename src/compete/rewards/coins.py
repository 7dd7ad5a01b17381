"""Coin rewards for a completed competition.

Every participant earns the participation bonus. When at least two people
took part, the top three also earn a placement bonus. Runs once per
competition: an existing ``earn_competition_win`` transaction for the
competition means it was already distributed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compete.db.models import CoinRewardConfig, CoinTransaction, Competition, CompetitionParticipant
from compete.rewards.ledger import credit_coins

logger = logging.getLogger(__name__)

TX_COMPETITION_WIN = "earn_competition_win"
TX_COMPETITION_COMPLETE = "earn_competition_complete"
REFERENCE_TYPE = "competition"

# coin_reward_config.event_type -> CoinRewardConfiguration field
CONFIG_EVENT_TYPES: dict[str, str] = {
    "competition_win_1st": "first_place",
    "competition_win_2nd": "second_place",
    "competition_win_3rd": "third_place",
    "competition_complete": "participation",
}


@dataclass(frozen=True)
class CoinRewardConfiguration:
    first_place: int = 100
    second_place: int = 50
    third_place: int = 25
    participation: int = 10

    def placement_bonus(self, placement: int) -> int:
        return {1: self.first_place, 2: self.second_place, 3: self.third_place}.get(placement, 0)


DEFAULT_COIN_REWARDS = CoinRewardConfiguration()


@dataclass(frozen=True)
class ParticipantScore:
    user_id: int
    total_points: Decimal


@dataclass(frozen=True)
class CoinAward:
    user_id: int
    placement: int
    coins: int
    placement_bonus: int
    participation_bonus: int
    transaction_type: str
    total_points: Decimal


@dataclass
class CoinDistributionResult:
    competition_id: int
    status: str  # distributed | already_distributed | no_participants
    awards_credited: int = 0
    awards_skipped: int = 0
    awards_failed: int = 0
    coins_awarded: int = 0
    failed_user_ids: list[int] = field(default_factory=list)


def plan_coin_awards(
    participants: list[ParticipantScore],
    config: CoinRewardConfiguration = DEFAULT_COIN_REWARDS,
) -> list[CoinAward]:
    """Coins per participant; ``participants`` must be ordered by points, highest first."""
    has_real_competition = len(participants) >= 2

    awards: list[CoinAward] = []
    for idx, p in enumerate(participants):
        placement = idx + 1
        bonus = config.placement_bonus(placement) if has_real_competition else 0
        awards.append(CoinAward(
            user_id=p.user_id,
            placement=placement,
            coins=config.participation + bonus,
            placement_bonus=bonus,
            participation_bonus=config.participation,
            transaction_type=TX_COMPETITION_WIN if bonus > 0 else TX_COMPETITION_COMPLETE,
            total_points=p.total_points,
        ))
    return awards


async def load_coin_reward_config(db: AsyncSession) -> CoinRewardConfiguration:
    """Defaults, overridden field by field by active config rows."""
    result = await db.execute(
        select(CoinRewardConfig.event_type, CoinRewardConfig.earned_coins).where(
            CoinRewardConfig.event_type.in_(list(CONFIG_EVENT_TYPES)),
            CoinRewardConfig.is_active.is_(True),
        )
    )
    overrides = {CONFIG_EVENT_TYPES[row.event_type]: int(row.earned_coins) for row in result.all()}
    if not overrides:
        return DEFAULT_COIN_REWARDS
    return CoinRewardConfiguration(**{**DEFAULT_COIN_REWARDS.__dict__, **overrides})


async def coins_already_distributed(db: AsyncSession, competition_id: int) -> bool:
    result = await db.execute(
        select(CoinTransaction.id).where(
            CoinTransaction.transaction_type == TX_COMPETITION_WIN,
            CoinTransaction.reference_type == REFERENCE_TYPE,
            CoinTransaction.reference_id == str(competition_id),
        ).limit(1)
    )
    return result.first() is not None


async def distribute_competition_coins(db: AsyncSession, competition_id: int) -> CoinDistributionResult:
    """Credit placement and participation coins for a completed competition."""
    if await coins_already_distributed(db, competition_id):
        logger.info("Coins already distributed for competition %d", competition_id)
        return CoinDistributionResult(competition_id, "already_distributed")

    name_result = await db.execute(select(Competition.name).where(Competition.id == competition_id))
    competition_name = name_result.scalar_one_or_none()

    rows = await db.execute(
        select(CompetitionParticipant.user_id, CompetitionParticipant.total_points)
        .where(CompetitionParticipant.competition_id == competition_id)
        .order_by(CompetitionParticipant.total_points.desc(), CompetitionParticipant.id.asc())
    )
    participants = [
        ParticipantScore(user_id=row.user_id, total_points=Decimal(str(row.total_points or 0)))
        for row in rows.all()
    ]
    if not participants:
        return CoinDistributionResult(competition_id, "no_participants")

    config = await load_coin_reward_config(db)
    awards = plan_coin_awards(participants, config)

    result = CoinDistributionResult(competition_id, "distributed")
    for award in awards:
        metadata: dict[str, Any] = {
            "competition_name": competition_name or "Competition",
            "placement": award.placement,
            "total_points": float(award.total_points),
            "placement_bonus": award.placement_bonus,
            "participation_bonus": award.participation_bonus,
        }
        try:
            credit = await credit_coins(
                db,
                user_id=award.user_id,
                earned_amount=award.coins,
                premium_amount=0,
                transaction_type=award.transaction_type,
                reference_type=REFERENCE_TYPE,
                reference_id=str(competition_id),
                metadata=metadata,
            )
        except Exception:
            await db.rollback()
            result.awards_failed += 1
            result.failed_user_ids.append(award.user_id)
            logger.exception(
                "Failed to credit %d coins to user %d for competition %d",
                award.coins, award.user_id, competition_id,
            )
            continue

        if credit.duplicate:
            result.awards_skipped += 1
            continue
        result.awards_credited += 1
        result.coins_awarded += award.coins

    logger.info(
        "Distributed %d coins to %d participants for competition %d (%d skipped, %d failed)",
        result.coins_awarded, result.awards_credited, competition_id,
        result.awards_skipped, result.awards_failed,
    )
    return result
