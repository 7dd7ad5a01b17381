"""Detached, read-only view of a competition row."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from compete.db.models import Competition


@dataclass(frozen=True)
class CompetitionSnapshot:
    """Plain values copied out of a Competition.

    Reward steps commit and roll back per user, which expires ORM instances;
    they work from this copy instead of the live row.
    """

    id: int
    name: str
    start_date: date
    end_date: date
    status: str
    is_team_competition: bool = False
    is_seasonal_event: bool = False
    has_prize_pool: bool = False
    event_reward: dict[str, Any] | None = None
    event_theme: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_model(cls, competition: Competition) -> CompetitionSnapshot:
        return cls(
            id=competition.id,
            name=competition.name,
            start_date=competition.start_date,
            end_date=competition.end_date,
            status=competition.status,
            is_team_competition=bool(competition.is_team_competition),
            is_seasonal_event=bool(competition.is_seasonal_event),
            has_prize_pool=bool(competition.has_prize_pool),
            event_reward=dict(competition.event_reward) if competition.event_reward else None,
            event_theme=dict(competition.event_theme or {}),
        )
