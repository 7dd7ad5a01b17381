"""Force-finalize participant scores once a competition's deadline passes."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from compete.db.models import CompetitionParticipant

logger = logging.getLogger(__name__)


async def force_lock_scores(db: AsyncSession, competition_id: int, now: datetime) -> int:
    """Lock every still-unlocked participant score. Returns rows locked.

    Only rows with ``score_locked_at IS NULL`` are touched, so a lock set by
    the participant's own sync is never moved and a second call is a no-op.
    """
    result = await db.execute(
        update(CompetitionParticipant)
        .where(
            CompetitionParticipant.competition_id == competition_id,
            CompetitionParticipant.score_locked_at.is_(None),
        )
        .values(score_locked_at=now)
    )
    await db.commit()

    locked = result.rowcount or 0
    if locked:
        logger.info("Force-locked %d participant(s) for competition %d", locked, competition_id)
    return locked
