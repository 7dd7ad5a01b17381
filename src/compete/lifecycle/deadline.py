"""Completion deadline for a competition.

A competition's last day ends at local midnight for each participant. The
most-western participant's midnight is the latest such moment, so the
deadline is anchored there and then pushed back by a safety buffer that gives
everyone time to open the app and sync before being judged absent:

    deadline = (end_date + 1 day) 00:00 UTC + |offset| hours + buffer hours

With a 12h buffer an Eastern (UTC-5) competition ending 2024-01-10 becomes
completable after 2024-01-11T17:00Z; with a Hawaii (UTC-10) participant,
after 2024-01-11T22:00Z.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compete.db.models import CompetitionParticipant, UserProfile

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_HOURS = 12
FALLBACK_OFFSET_HOURS = -10  # Hawaii


def timezone_offset_hours(tz_name: str | None, at: datetime) -> int:
    """Whole-hour UTC offset of an IANA timezone at a given instant.

    Negative is west of UTC. Unknown or invalid names map to the fallback.
    Partial-hour zones round away from zero (Newfoundland -3:30 -> -4), so
    the deadline never lands before a participant's local midnight.
    """
    if not tz_name:
        return FALLBACK_OFFSET_HOURS
    try:
        offset = at.astimezone(ZoneInfo(tz_name)).utcoffset()
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("Unknown timezone %r, using fallback offset", tz_name)
        return FALLBACK_OFFSET_HOURS
    if offset is None:
        return FALLBACK_OFFSET_HOURS
    hours = offset.total_seconds() / 3600
    return math.floor(hours) if hours < 0 else math.ceil(hours)


async def get_latest_timezone_offset(
    db: AsyncSession,
    competition_id: int,
    at: datetime | None = None,
) -> int | None:
    """Return the most-western participant's UTC offset, or None if unknown.

    A participant without a (valid) timezone counts as the fallback offset,
    since their midnight could be as late as Hawaii's.
    """
    if at is None:
        at = datetime.now(timezone.utc)

    result = await db.execute(
        select(UserProfile.timezone)
        .join(CompetitionParticipant, CompetitionParticipant.user_id == UserProfile.id)
        .where(CompetitionParticipant.competition_id == competition_id)
    )
    tz_names = [row[0] for row in result.all()]
    if not tz_names:
        return None
    return min(timezone_offset_hours(name, at) for name in tz_names)


def resolve_offset(offset: int | None, fallback: int = FALLBACK_OFFSET_HOURS) -> int:
    """Apply the conservative fallback when the lookup gave no answer."""
    return fallback if offset is None else offset


def compute_deadline(
    end_date: date,
    offset_hours: int,
    buffer_hours: int = DEFAULT_BUFFER_HOURS,
) -> datetime:
    """Compute the UTC instant after which the competition may be completed."""
    midnight_after_end = datetime.combine(end_date + timedelta(days=1), time.min, tzinfo=timezone.utc)
    return midnight_after_end + timedelta(hours=abs(offset_hours) + buffer_hours)


def is_past_deadline(now: datetime, deadline: datetime) -> bool:
    """True only once now is strictly after the deadline."""
    return now > deadline


async def competition_deadline(
    db: AsyncSession,
    competition_id: int,
    end_date: date,
    now: datetime,
    buffer_hours: int = DEFAULT_BUFFER_HOURS,
    fallback_offset: int = FALLBACK_OFFSET_HOURS,
) -> tuple[datetime, int]:
    """Look up the western-most offset and return (deadline, offset used).

    Lookup failures are not fatal: they fall back to the latest possible
    offset, which can only delay completion, never rush it.
    """
    try:
        offset = await get_latest_timezone_offset(db, competition_id, at=now)
    except Exception:
        logger.warning(
            "Timezone offset lookup failed for competition %d, using fallback %d",
            competition_id, fallback_offset, exc_info=True,
        )
        await db.rollback()
        offset = None

    west_offset = resolve_offset(offset, fallback_offset)
    return compute_deadline(end_date, west_offset, buffer_hours), west_offset
