"""Contact lookup against the identity system (user profiles)."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from compete.db.models import UserProfile


@dataclass(frozen=True)
class ContactInfo:
    user_id: int
    email: str | None
    display_name: str | None


async def get_contact_info(db: AsyncSession, user_id: int) -> ContactInfo | None:
    """Return a user's email and display name, or None if the user is unknown."""
    result = await db.execute(select(UserProfile).where(UserProfile.id == user_id))
    profile = result.scalar_one_or_none()
    if profile is None:
        return None
    return ContactInfo(
        user_id=profile.id,
        email=profile.email,
        display_name=profile.display_name or profile.full_name or profile.email,
    )
