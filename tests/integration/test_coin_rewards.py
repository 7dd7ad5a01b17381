"""Integration tests for competition coin rewards and the coin ledger."""

from __future__ import annotations

from datetime import date

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from compete.db.models import CoinRewardConfig, CoinTransaction, UserCoinBalance
from compete.rewards import coins, ledger
from compete.rewards.coins import distribute_competition_coins
from compete.rewards.ledger import credit_coins

pytestmark = pytest.mark.asyncio


async def _balances(db) -> dict[int, int]:
    rows = (await db.execute(select(UserCoinBalance.user_id, UserCoinBalance.earned_coins))).all()
    return {row.user_id: row.earned_coins for row in rows}


def _stale_existence_check(monkeypatch):
    """Make each key's first existence check miss, as if a racing writer had not committed yet."""
    real_exists = ledger.transaction_exists
    seen: set[tuple] = set()

    async def stale_once(db, *key):
        if key not in seen:
            seen.add(key)
            return False
        return await real_exists(db, *key)

    monkeypatch.setattr(ledger, "transaction_exists", stale_once)


async def _transaction_count(db) -> int:
    return len((await db.execute(select(CoinTransaction.id))).all())


class TestCompetitionCoins:

    async def test_placement_and_participation_bonuses(self, db_session, seed):
        db = db_session
        comp = await seed.competition(date(2024, 1, 1), date(2024, 1, 10), status="completed")
        users = [await seed.user(n) for n in ("Ana", "Ben", "Cat", "Dan")]
        for user, points in zip(users, (400, 300, 200, 100)):
            await seed.participant(comp, user, points)
        await db.commit()

        result = await distribute_competition_coins(db, comp.id)

        assert result.status == "distributed"
        assert result.coins_awarded == 110 + 60 + 35 + 10
        assert await _balances(db) == {users[0].id: 110, users[1].id: 60, users[2].id: 35, users[3].id: 10}

        tx = (await db.execute(
            select(CoinTransaction).where(CoinTransaction.user_id == users[0].id)
        )).scalar_one()
        assert tx.transaction_type == "earn_competition_win"
        assert tx.reference_type == "competition"
        assert tx.reference_id == str(comp.id)
        assert tx.earned_coin_balance_after == 110
        assert tx.transaction_metadata["placement"] == 1
        assert tx.transaction_metadata["placement_bonus"] == 100
        assert tx.transaction_metadata["participation_bonus"] == 10
        assert tx.transaction_metadata["competition_name"] == "Weekly Ring Battle"

    async def test_second_run_credits_nothing(self, db_session, seed):
        db = db_session
        comp = await seed.competition(date(2024, 1, 1), date(2024, 1, 10), status="completed")
        for name, points in (("Ana", 20), ("Ben", 10)):
            await seed.participant(comp, await seed.user(name), points)
        await db.commit()

        await distribute_competition_coins(db, comp.id)
        balances = await _balances(db)
        again = await distribute_competition_coins(db, comp.id)

        assert again.status == "already_distributed"
        assert await _balances(db) == balances
        assert await _transaction_count(db) == 2

    async def test_single_participant_gets_participation_only(self, db_session, seed):
        db = db_session
        comp = await seed.competition(date(2024, 1, 1), date(2024, 1, 10), status="completed")
        solo = await seed.user("Solo")
        await seed.participant(comp, solo, 999)
        await db.commit()

        await distribute_competition_coins(db, comp.id)

        assert await _balances(db) == {solo.id: 10}
        tx_type = (await db.execute(select(CoinTransaction.transaction_type))).scalar_one()
        assert tx_type == "earn_competition_complete"

    async def test_single_participant_rerun_is_caught_by_ledger(self, db_session, seed):
        """No earn_competition_win row exists, so the ledger key is what stops a second credit."""
        db = db_session
        comp = await seed.competition(date(2024, 1, 1), date(2024, 1, 10), status="completed")
        solo = await seed.user("Solo")
        await seed.participant(comp, solo, 999)
        await db.commit()

        await distribute_competition_coins(db, comp.id)
        again = await distribute_competition_coins(db, comp.id)

        assert again.status == "distributed"
        assert again.awards_skipped == 1
        assert again.coins_awarded == 0
        assert await _balances(db) == {solo.id: 10}

    async def test_reward_config_overrides(self, db_session, seed):
        db = db_session
        db.add(CoinRewardConfig(event_type="competition_win_1st", earned_coins=500, is_active=True))
        db.add(CoinRewardConfig(event_type="competition_complete", earned_coins=99, is_active=False))
        comp = await seed.competition(date(2024, 1, 1), date(2024, 1, 10), status="completed")
        ana = await seed.user("Ana")
        ben = await seed.user("Ben")
        await seed.participant(comp, ana, 20)
        await seed.participant(comp, ben, 10)
        await db.commit()

        await distribute_competition_coins(db, comp.id)

        assert await _balances(db) == {ana.id: 510, ben.id: 60}

    async def test_no_participants(self, db_session, seed):
        comp = await seed.competition(date(2024, 1, 1), date(2024, 1, 10), status="completed")
        await db_session.commit()

        result = await distribute_competition_coins(db_session, comp.id)
        assert result.status == "no_participants"

    async def test_one_failed_credit_does_not_stop_others(self, db_session, seed, monkeypatch):
        db = db_session
        comp = await seed.competition(date(2024, 1, 1), date(2024, 1, 10), status="completed")
        ana = await seed.user("Ana")
        ben = await seed.user("Ben")
        await seed.participant(comp, ana, 20)
        await seed.participant(comp, ben, 10)
        await db.commit()
        ana_id, ben_id = ana.id, ben.id

        real_credit = credit_coins

        async def flaky_credit(db, user_id, *args, **kwargs):
            if user_id == ana_id:
                raise RuntimeError("ledger unavailable")
            return await real_credit(db, user_id, *args, **kwargs)

        monkeypatch.setattr("compete.rewards.coins.credit_coins", flaky_credit)
        result = await distribute_competition_coins(db, comp.id)

        assert result.awards_failed == 1
        assert result.failed_user_ids == [ana_id]
        assert await _balances(db) == {ben_id: 60}


class TestLedger:

    async def test_credit_creates_balance_and_transaction(self, db_session, seed):
        db = db_session
        user = await seed.user("Ana")
        await db.commit()

        result = await credit_coins(db, user.id, 25, 5, "earn_bonus", "promo", "p-1", {"note": "hi"})

        assert not result.duplicate
        assert (result.earned_balance_after, result.premium_balance_after) == (25, 5)
        balance = (await db.execute(
            select(UserCoinBalance).where(UserCoinBalance.user_id == user.id)
        )).scalar_one()
        assert (balance.lifetime_earned_coins, balance.lifetime_premium_coins) == (25, 5)

    async def test_same_key_is_duplicate(self, db_session, seed):
        db = db_session
        user = await seed.user("Ana")
        await db.commit()

        await credit_coins(db, user.id, 25, 0, "earn_bonus", "promo", "p-1")
        again = await credit_coins(db, user.id, 25, 0, "earn_bonus", "promo", "p-1")

        assert again.duplicate
        assert await _balances(db) == {user.id: 25}
        assert await _transaction_count(db) == 1

    async def test_different_reference_is_new_credit(self, db_session, seed):
        db = db_session
        user = await seed.user("Ana")
        await db.commit()

        await credit_coins(db, user.id, 25, 0, "earn_bonus", "promo", "p-1")
        await credit_coins(db, user.id, 10, 0, "earn_bonus", "promo", "p-2")

        assert await _balances(db) == {user.id: 35}

    async def test_debit_does_not_reduce_lifetime(self, db_session, seed):
        db = db_session
        user = await seed.user("Ana")
        await db.commit()

        await credit_coins(db, user.id, 50, 0, "earn_bonus", "promo", "p-1")
        result = await credit_coins(db, user.id, -20, 0, "spend_store", "order", "o-1")

        assert result.earned_balance_after == 30
        lifetime = (await db.execute(
            select(UserCoinBalance.lifetime_earned_coins).where(UserCoinBalance.user_id == user.id)
        )).scalar_one()
        assert lifetime == 50

    async def test_racing_credit_with_same_key_is_duplicate(self, db_session, seed, monkeypatch):
        db = db_session
        user = await seed.user("Ana")
        await db.commit()
        user_id = user.id
        await credit_coins(db, user_id, 25, 0, "earn_bonus", "promo", "p-1")

        _stale_existence_check(monkeypatch)
        again = await credit_coins(db, user_id, 25, 0, "earn_bonus", "promo", "p-1")

        assert again.duplicate
        assert await _balances(db) == {user_id: 25}
        assert await _transaction_count(db) == 1

    async def test_balance_row_conflict_is_retried(self, db_session, seed, monkeypatch):
        db = db_session
        user = await seed.user("Ana")
        await db.commit()
        user_id = user.id

        real_get = ledger.get_or_create_balance
        calls: list[int] = []

        async def conflict_once(db, uid):
            calls.append(uid)
            if len(calls) == 1:
                raise IntegrityError(
                    "INSERT INTO user_coin_balances", {}, Exception("UNIQUE constraint failed: user_coin_balances.user_id"),
                )
            return await real_get(db, uid)

        monkeypatch.setattr(ledger, "get_or_create_balance", conflict_once)
        result = await credit_coins(db, user_id, 25, 0, "earn_bonus", "promo", "p-1")

        assert not result.duplicate
        assert result.transaction_id is not None
        assert len(calls) == 2
        assert await _balances(db) == {user_id: 25}

    async def test_persistent_balance_conflict_raises(self, db_session, seed, monkeypatch):
        db = db_session
        user = await seed.user("Ana")
        await db.commit()
        user_id = user.id

        async def always_conflict(db, uid):
            raise IntegrityError("INSERT INTO user_coin_balances", {}, Exception("UNIQUE constraint failed"))

        monkeypatch.setattr(ledger, "get_or_create_balance", always_conflict)
        with pytest.raises(IntegrityError):
            await credit_coins(db, user_id, 25, 0, "earn_bonus", "promo", "p-1")
        assert await _transaction_count(db) == 0


class TestConcurrentDistribution:

    async def test_racing_distribution_credits_nothing_twice(self, db_session, seed, monkeypatch):
        db = db_session
        comp = await seed.competition(date(2024, 1, 1), date(2024, 1, 10), status="completed")
        for name, points in (("Ana", 300), ("Ben", 200), ("Cat", 100)):
            await seed.participant(comp, await seed.user(name), points)
        await db.commit()
        comp_id = comp.id
        await distribute_competition_coins(db, comp_id)
        balances = await _balances(db)

        async def not_yet(*args, **kwargs):
            return False

        monkeypatch.setattr(coins, "coins_already_distributed", not_yet)
        _stale_existence_check(monkeypatch)
        second = await distribute_competition_coins(db, comp_id)

        assert second.awards_credited == 0
        assert second.awards_skipped == 3
        assert second.awards_failed == 0
        assert await _transaction_count(db) == 3
        assert await _balances(db) == balances
