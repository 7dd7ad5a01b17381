"""Unit tests for coin award planning."""

from __future__ import annotations

from decimal import Decimal

from compete.rewards.coins import (
    TX_COMPETITION_COMPLETE,
    TX_COMPETITION_WIN,
    CoinRewardConfiguration,
    ParticipantScore,
    plan_coin_awards,
)


def _participants(count: int) -> list[ParticipantScore]:
    return [ParticipantScore(user_id=i + 1, total_points=Decimal(100 - i)) for i in range(count)]


class TestCoinPlan:

    def test_default_amounts(self):
        awards = plan_coin_awards(_participants(5))
        assert [a.coins for a in awards] == [110, 60, 35, 10, 10]

    def test_transaction_types(self):
        awards = plan_coin_awards(_participants(4))
        assert [a.transaction_type for a in awards] == [
            TX_COMPETITION_WIN, TX_COMPETITION_WIN, TX_COMPETITION_WIN, TX_COMPETITION_COMPLETE,
        ]

    def test_single_participant_gets_participation_only(self):
        awards = plan_coin_awards(_participants(1))
        assert len(awards) == 1
        assert awards[0].coins == 10
        assert awards[0].placement_bonus == 0
        assert awards[0].transaction_type == TX_COMPETITION_COMPLETE

    def test_two_participants_get_placement_bonuses(self):
        awards = plan_coin_awards(_participants(2))
        assert [a.coins for a in awards] == [110, 60]

    def test_configured_amounts(self):
        config = CoinRewardConfiguration(first_place=500, second_place=200, third_place=100, participation=5)
        awards = plan_coin_awards(_participants(3), config)
        assert [a.coins for a in awards] == [505, 205, 105]
        assert all(a.participation_bonus == 5 for a in awards)

    def test_zero_bonus_counts_as_completion(self):
        config = CoinRewardConfiguration(third_place=0)
        awards = plan_coin_awards(_participants(3), config)
        assert awards[2].transaction_type == TX_COMPETITION_COMPLETE

    def test_no_participants(self):
        assert plan_coin_awards([]) == []
