"""Trial grants for seasonal-event competitions.

A participant qualifies by recording points on at least
``event_reward.min_days_completed`` distinct days of the event. Qualifying
participants get a time-limited trial; a re-grant only ever extends an
existing trial, never shortens it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from compete.db.models import CompetitionDailyData, UserTrial
from compete.lifecycle.snapshot import CompetitionSnapshot
from compete.notifications.outbox import NotificationOutbox

logger = logging.getLogger(__name__)

DEFAULT_TRIAL_SOURCE = "seasonal_event"
DEFAULT_REWARD_DESCRIPTION = "a special reward"

TRIAL_GRANTED = "granted"
TRIAL_EXTENDED = "extended"
TRIAL_UNCHANGED = "unchanged"

# event_reward.type -> user_trials.trial_type
TRIAL_TYPES: dict[str, str] = {
    "trial_mover": "mover",
    "trial_coach": "coach",
    "trial_crusher": "crusher",
}


@dataclass
class SeasonalRewardResult:
    competition_id: int
    status: str  # granted | not_seasonal | unsupported_reward
    qualified_users: int = 0
    trials_granted: int = 0
    trials_extended: int = 0
    trials_unchanged: int = 0
    failed_user_ids: list[int] = field(default_factory=list)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def count_active_days(db: AsyncSession, competition: CompetitionSnapshot) -> dict[int, int]:
    """Distinct days with points > 0 per user, inside the competition window."""
    result = await db.execute(
        select(
            CompetitionDailyData.user_id,
            func.count(CompetitionDailyData.activity_date.distinct()).label("days"),
        )
        .where(
            CompetitionDailyData.competition_id == competition.id,
            CompetitionDailyData.points > 0,
            CompetitionDailyData.activity_date >= competition.start_date,
            CompetitionDailyData.activity_date <= competition.end_date,
        )
        .group_by(CompetitionDailyData.user_id)
    )
    return {row.user_id: int(row.days) for row in result.all()}


def qualifying_users(day_counts: dict[int, int], min_days_completed: int) -> list[int]:
    return sorted(user_id for user_id, days in day_counts.items() if days >= min_days_completed)


async def grant_trial(
    db: AsyncSession,
    user_id: int,
    trial_type: str,
    source: str,
    expires_at: datetime,
    now: datetime,
) -> str:
    """Insert the trial, or push its expiry later.

    Returns ``TRIAL_GRANTED``, ``TRIAL_EXTENDED`` or ``TRIAL_UNCHANGED``.
    """
    result = await db.execute(
        select(UserTrial).where(
            UserTrial.user_id == user_id,
            UserTrial.trial_type == trial_type,
            UserTrial.source == source,
        )
    )
    trial = result.scalar_one_or_none()

    if trial is None:
        db.add(UserTrial(
            user_id=user_id,
            trial_type=trial_type,
            source=source,
            granted_at=now,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        ))
        outcome = TRIAL_GRANTED
    elif expires_at > _as_utc(trial.expires_at):
        trial.granted_at = now
        trial.expires_at = expires_at
        trial.updated_at = now
        outcome = TRIAL_EXTENDED
    else:
        return TRIAL_UNCHANGED

    await db.commit()
    return outcome


async def distribute_seasonal_rewards(
    db: AsyncSession,
    competition: CompetitionSnapshot,
    now: datetime | None = None,
    outbox: NotificationOutbox | None = None,
) -> SeasonalRewardResult:
    """Grant event trials to every participant who was active enough."""
    if not competition.is_seasonal_event or not competition.event_reward:
        return SeasonalRewardResult(competition.id, "not_seasonal")
    if now is None:
        now = datetime.now(timezone.utc)

    reward: dict[str, Any] = competition.event_reward
    trial_type = TRIAL_TYPES.get(str(reward.get("type")))
    trial_hours = int(reward.get("trial_hours") or 0)
    if trial_type is None or trial_hours <= 0:
        logger.warning(
            "Unsupported event reward %r for competition %d, no trials granted",
            reward.get("type"), competition.id,
        )
        return SeasonalRewardResult(competition.id, "unsupported_reward")

    min_days = int(reward.get("min_days_completed") or 0)
    source = reward.get("source") or DEFAULT_TRIAL_SOURCE
    expires_at = now + timedelta(hours=trial_hours)

    day_counts = await count_active_days(db, competition)
    qualified = qualifying_users(day_counts, min_days)
    logger.info(
        "Seasonal event %d: %d user(s) qualified for reward (min %d days)",
        competition.id, len(qualified), min_days,
    )

    result = SeasonalRewardResult(competition.id, "granted", qualified_users=len(qualified))
    reward_description = competition.event_theme.get("rewardDescription") or DEFAULT_REWARD_DESCRIPTION

    for user_id in qualified:
        try:
            outcome = await grant_trial(db, user_id, trial_type, source, expires_at, now)
        except Exception:
            await db.rollback()
            result.failed_user_ids.append(user_id)
            logger.exception("Error granting %s trial to user %d", trial_type, user_id)
            continue

        if outcome == TRIAL_UNCHANGED:
            result.trials_unchanged += 1
            continue
        if outcome == TRIAL_EXTENDED:
            # Already announced on the first grant.
            result.trials_extended += 1
            logger.info("Extended %s trial for user %d", trial_type, user_id)
            continue

        result.trials_granted += 1
        logger.info("Granted %dh %s trial to user %d", trial_hours, trial_type, user_id)
        if outbox is not None:
            outbox.enqueue("seasonal_event_reward", user_id, {
                "competitionId": competition.id,
                "eventName": competition.name or "Seasonal Event",
                "rewardDescription": reward_description,
                "trialType": trial_type,
                "expiresAt": expires_at.isoformat(),
            })

    return result
