"""Placement and payout math for prize pools. No I/O.

Individual competitions: the top participants by total points take
placements 1..N one-to-one.

Team competitions: teams are ranked by their members' average points and
every member of a ranked team shares that team's placement.

Payouts never over-distribute: a tier's amount is split evenly among the
winners sharing it and each share is rounded down to the cent.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal
from typing import Any

MAX_PLACEMENTS = 5

PLACEMENT_KEYS: dict[int, str] = {
    1: "first",
    2: "second",
    3: "third",
    4: "fourth",
    5: "fifth",
}

DEFAULT_PAYOUT_STRUCTURE: dict[str, int] = {"first": 100}

_CENT = Decimal("0.01")


@dataclass(frozen=True)
class Standing:
    """A participant's finalized score."""

    user_id: int
    total_points: Decimal
    team_id: int | None = None


@dataclass(frozen=True)
class Placement:
    user_id: int
    placement: int
    team_id: int | None = None


@dataclass(frozen=True)
class PlannedPayout:
    user_id: int
    placement: int
    amount: Decimal
    tier_amount: Decimal
    split_count: int
    team_id: int | None = None


def placement_key(placement: int) -> str:
    return PLACEMENT_KEYS.get(placement, f"place_{placement}")


def individual_placements(standings: list[Standing], limit: int = MAX_PLACEMENTS) -> list[Placement]:
    """Top ``limit`` participants by points, placement 1..limit.

    Ties keep the input order (stable sort), which callers supply ordered
    by points descending already.
    """
    ranked = sorted(standings, key=lambda s: s.total_points, reverse=True)
    return [
        Placement(user_id=s.user_id, placement=idx + 1, team_id=s.team_id)
        for idx, s in enumerate(ranked[:limit])
    ]


def rank_teams(standings: list[Standing]) -> list[tuple[int, Decimal, list[int]]]:
    """Group by team and rank by average points, highest first.

    Returns (team_id, average_points, member_user_ids). Participants without
    a team are ignored.
    """
    totals: dict[int, Decimal] = {}
    members: dict[int, list[int]] = {}
    for s in standings:
        if s.team_id is None:
            continue
        totals[s.team_id] = totals.get(s.team_id, Decimal(0)) + Decimal(str(s.total_points or 0))
        members.setdefault(s.team_id, []).append(s.user_id)

    teams = [
        (team_id, totals[team_id] / len(user_ids), user_ids)
        for team_id, user_ids in members.items()
    ]
    teams.sort(key=lambda t: t[1], reverse=True)
    return teams


def team_placements(standings: list[Standing], limit: int = MAX_PLACEMENTS) -> list[Placement]:
    """Every member of each of the top ``limit`` teams gets the team's placement."""
    placements: list[Placement] = []
    for idx, (team_id, _avg, user_ids) in enumerate(rank_teams(standings)[:limit]):
        placements.extend(Placement(user_id=uid, placement=idx + 1, team_id=team_id) for uid in user_ids)
    return placements


def split_tier(total_amount: Decimal, percentage: Decimal | float | int, member_count: int) -> Decimal:
    """One winner's share of a tier, rounded down to the cent."""
    tier_amount = Decimal(str(total_amount)) * Decimal(str(percentage)) / Decimal(100)
    share = tier_amount / max(member_count, 1)
    return share.quantize(_CENT, rounding=ROUND_DOWN)


def plan_payouts(
    placements: list[Placement],
    total_amount: Decimal,
    payout_structure: dict[str, Any] | None,
) -> list[PlannedPayout]:
    """Turn placements into payout amounts using the pool's payout structure.

    Placements whose key is missing or non-positive in the structure get
    nothing. Percentages need not sum to 100.
    """
    structure = payout_structure or DEFAULT_PAYOUT_STRUCTURE
    members_per_placement = Counter(p.placement for p in placements)

    planned: list[PlannedPayout] = []
    for p in placements:
        percentage = Decimal(str(structure.get(placement_key(p.placement)) or 0))
        if percentage <= 0:
            continue
        split_count = members_per_placement[p.placement]
        planned.append(PlannedPayout(
            user_id=p.user_id,
            placement=p.placement,
            amount=split_tier(total_amount, percentage, split_count),
            tier_amount=Decimal(str(total_amount)) * percentage / Decimal(100),
            split_count=split_count,
            team_id=p.team_id,
        ))
    return planned
