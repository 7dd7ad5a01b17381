"""Shared test fixtures.

Every test gets its own SQLite database file with the schema created from
the ORM metadata. Redis is left unconfigured (leases and pushes become
no-ops) unless a test passes an AsyncMock in explicitly.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from compete.config import get_settings
from compete.database import close_db, get_engine, get_session, init_db
from compete.db.base import Base
from compete.db.models import (
    Competition,
    CompetitionDailyData,
    CompetitionParticipant,
    PrizePool,
    UserProfile,
)
from compete.main import create_app


@pytest_asyncio.fixture
async def db_session(tmp_path) -> AsyncGenerator[AsyncSession, None]:
    """A session on a fresh SQLite database."""
    await init_db(f"sqlite+aiosqlite:///{tmp_path / 'compete.db'}")
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    sessions = get_session()
    session = await anext(sessions)
    try:
        yield session
    finally:
        await sessions.aclose()
        await close_db()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, sharing the test database."""
    get_settings.cache_clear()
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Redis stand-in: lease SETs succeed, GET returns nothing."""
    redis = AsyncMock()
    redis.set = AsyncMock(return_value=True)
    redis.get = AsyncMock(return_value=None)
    redis.delete = AsyncMock(return_value=1)
    redis.publish = AsyncMock(return_value=1)
    return redis


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------


class Seed:
    """Row builders for the test database. Callers commit."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def user(
        self,
        name: str,
        tz: str | None = "America/New_York",
        email: str | None = None,
    ) -> UserProfile:
        user = UserProfile(
            email=email or f"{name.lower()}@example.com",
            display_name=name,
            timezone=tz,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(user)
        await self.db.flush()
        return user

    async def competition(
        self,
        start: date,
        end: date,
        status: str = "active",
        name: str = "Weekly Ring Battle",
        **kwargs: object,
    ) -> Competition:
        comp = Competition(
            name=name,
            status=status,
            start_date=start,
            end_date=end,
            created_at=datetime.now(timezone.utc),
            **kwargs,
        )
        self.db.add(comp)
        await self.db.flush()
        return comp

    async def participant(
        self,
        competition: Competition,
        user: UserProfile,
        points: str | int = 0,
        team_id: int | None = None,
        locked_at: datetime | None = None,
    ) -> CompetitionParticipant:
        participant = CompetitionParticipant(
            competition_id=competition.id,
            user_id=user.id,
            total_points=Decimal(str(points)),
            team_id=team_id,
            score_locked_at=locked_at,
            joined_at=datetime.now(timezone.utc),
        )
        self.db.add(participant)
        await self.db.flush()
        return participant

    async def daily_points(
        self,
        competition: Competition,
        user: UserProfile,
        day: date,
        points: str | int,
    ) -> None:
        self.db.add(CompetitionDailyData(
            competition_id=competition.id,
            user_id=user.id,
            activity_date=day,
            points=Decimal(str(points)),
        ))
        await self.db.flush()

    async def prize_pool(
        self,
        competition: Competition,
        total: str,
        structure: dict[str, int] | None = None,
        status: str = "active",
    ) -> PrizePool:
        pool = PrizePool(
            competition_id=competition.id,
            total_amount=Decimal(total),
            payout_structure=structure if structure is not None else {"first": 100},
            status=status,
            created_at=datetime.now(timezone.utc),
        )
        self.db.add(pool)
        await self.db.flush()
        return pool


@pytest.fixture
def seed(db_session: AsyncSession) -> Seed:
    return Seed(db_session)
