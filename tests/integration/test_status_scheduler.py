"""Integration tests for the status-update pass."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from compete.db.models import (
    CoinTransaction,
    Competition,
    CompetitionParticipant,
    Notification,
    PrizePayout,
    PrizePool,
)
from compete.lifecycle import scheduler
from compete.lifecycle.scheduler import run_status_update

pytestmark = pytest.mark.asyncio

NOW = datetime(2024, 1, 11, 18, 0, tzinfo=timezone.utc)
START = date(2024, 1, 1)
END = date(2024, 1, 10)


async def _status(db, competition_id):
    row = (await db.execute(
        select(Competition.status, Competition.completed_at, Competition.rewards_settled_at)
        .where(Competition.id == competition_id)
    )).one()
    return row


async def _coin_rows(db, competition_id):
    return (await db.execute(
        select(func.count(CoinTransaction.id)).where(CoinTransaction.reference_id == str(competition_id))
    )).scalar_one()


async def _eastern_competition(db, seed, **kwargs):
    comp = await seed.competition(START, END, **kwargs)
    ana = await seed.user("Ana")
    ben = await seed.user("Ben")
    await seed.participant(comp, ana, 300)
    await seed.participant(comp, ben, 100)
    await db.commit()
    return comp.id, ana.id, ben.id


class TestActivation:

    async def test_upcoming_competition_activates_on_start_date(self, db_session, seed):
        db = db_session
        due = await seed.competition(date(2024, 1, 11), date(2024, 1, 17), status="upcoming")
        later = await seed.competition(date(2024, 1, 12), date(2024, 1, 18), status="upcoming")
        await db.commit()
        due_id, later_id = due.id, later.id

        summary = await run_status_update(db, now=NOW)

        assert summary.activated == 1
        assert (await _status(db, due_id)).status == "active"
        assert (await _status(db, later_id)).status == "upcoming"

    async def test_completed_competition_never_reverts(self, db_session, seed):
        db = db_session
        comp = await seed.competition(date(2024, 1, 12), date(2024, 1, 20), status="completed")
        await db.commit()
        comp_id = comp.id

        summary = await run_status_update(db, now=NOW)

        assert summary.activated == 0
        assert (await _status(db, comp_id)).status == "completed"


class TestCompletion:

    async def test_completes_after_eastern_deadline(self, db_session, seed):
        db = db_session
        comp_id, ana_id, _ = await _eastern_competition(db, seed)

        summary = await run_status_update(db, now=NOW)

        assert summary.completed == 1
        assert summary.force_locked == 2
        row = await _status(db, comp_id)
        assert row.status == "completed"
        assert row.completed_at.replace(tzinfo=None) == NOW.replace(tzinfo=None)
        assert row.rewards_settled_at is not None
        assert await _coin_rows(db, comp_id) == 2

        outcome = summary.outcomes[0]
        assert outcome.competition_id == comp_id
        assert outcome.deadline == datetime(2024, 1, 11, 17, 0, tzinfo=timezone.utc)

    async def test_hawaii_participant_delays_completion(self, db_session, seed):
        db = db_session
        comp = await seed.competition(START, END)
        await seed.participant(comp, await seed.user("Ana"), 300)
        await seed.participant(comp, await seed.user("Kai", tz="Pacific/Honolulu"), 100)
        await db.commit()
        comp_id = comp.id

        early = await run_status_update(db, now=NOW)
        assert early.completed == 0
        assert early.outcomes[0].skipped == "not_due"
        assert (await _status(db, comp_id)).status == "active"

        late = await run_status_update(db, now=datetime(2024, 1, 11, 23, 0, tzinfo=timezone.utc))
        assert late.completed == 1
        assert (await _status(db, comp_id)).status == "completed"

    async def test_participant_without_timezone_uses_fallback(self, db_session, seed):
        db = db_session
        comp = await seed.competition(START, END)
        await seed.participant(comp, await seed.user("Ana", tz=None), 300)
        await db.commit()

        summary = await run_status_update(db, now=NOW)

        assert summary.completed == 0
        assert summary.outcomes[0].deadline == datetime(2024, 1, 11, 22, 0, tzinfo=timezone.utc)

    async def test_self_locked_scores_are_kept(self, db_session, seed):
        db = db_session
        comp = await seed.competition(START, END)
        own_lock = datetime(2024, 1, 11, 4, 0, tzinfo=timezone.utc)
        await seed.participant(comp, await seed.user("Ana"), 300, locked_at=own_lock)
        await seed.participant(comp, await seed.user("Ben"), 100)
        await db.commit()
        comp_id = comp.id

        summary = await run_status_update(db, now=NOW)

        assert summary.force_locked == 1
        locks = (await db.execute(
            select(CompetitionParticipant.score_locked_at)
            .where(CompetitionParticipant.competition_id == comp_id)
            .order_by(CompetitionParticipant.id)
        )).scalars().all()
        assert [lock.replace(tzinfo=None) for lock in locks] == [
            own_lock.replace(tzinfo=None), NOW.replace(tzinfo=None),
        ]

    async def test_second_run_is_a_no_op(self, db_session, seed):
        db = db_session
        comp_id, _, _ = await _eastern_competition(db, seed)

        await run_status_update(db, now=NOW)
        again = await run_status_update(db, now=NOW + timedelta(hours=12))

        assert again.completed == 0
        assert again.force_locked == 0
        assert again.settlement_retries == 0
        assert await _coin_rows(db, comp_id) == 2

    async def test_lease_held_elsewhere_skips_competition(self, db_session, seed, mock_redis):
        db = db_session
        comp_id, _, _ = await _eastern_competition(db, seed)
        mock_redis.set.return_value = False

        summary = await run_status_update(db, redis=mock_redis, now=NOW)

        assert summary.completed == 0
        assert summary.outcomes[0].skipped == "lease_held"
        assert (await _status(db, comp_id)).status == "active"
        assert await _coin_rows(db, comp_id) == 0


    async def test_unreachable_redis_does_not_block_completion(self, db_session, seed, mock_redis):
        db = db_session
        comp_id, _, _ = await _eastern_competition(db, seed)
        mock_redis.set.side_effect = ConnectionError("redis down")
        mock_redis.get.side_effect = ConnectionError("redis down")

        summary = await run_status_update(db, redis=mock_redis, now=NOW)

        assert summary.completed == 1
        assert (await _status(db, comp_id)).rewards_settled_at is not None
        assert await _coin_rows(db, comp_id) == 2


class TestSettlementRetry:

    async def test_failed_reward_step_is_retried_next_run(self, db_session, seed, monkeypatch):
        db = db_session
        comp_id, _, _ = await _eastern_competition(db, seed)

        async def broken(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(scheduler, "distribute_competition_coins", broken)
        first = await run_status_update(db, now=NOW)
        monkeypatch.undo()

        assert first.completed == 1
        assert first.outcomes[0].rewards_settled is False
        row = await _status(db, comp_id)
        assert row.status == "completed"
        assert row.rewards_settled_at is None

        second = await run_status_update(db, now=NOW + timedelta(hours=12))

        assert second.completed == 0
        assert second.settlement_retries == 1
        assert (await _status(db, comp_id)).rewards_settled_at is not None
        assert await _coin_rows(db, comp_id) == 2

    async def test_retry_window_is_bounded(self, db_session, seed, monkeypatch):
        db = db_session
        await _eastern_competition(db, seed)

        async def broken(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(scheduler, "distribute_competition_coins", broken)
        await run_status_update(db, now=NOW)
        monkeypatch.undo()

        summary = await run_status_update(db, now=NOW + timedelta(days=30))
        assert summary.settlement_retries == 0


class TestPrizeCompetition:

    async def test_prize_pool_settles_and_notifies(self, db_session, seed, mock_redis):
        db = db_session
        comp = await seed.competition(START, END, has_prize_pool=True, name="January Sprint")
        ana = await seed.user("Ana")
        ben = await seed.user("Ben")
        await seed.participant(comp, ana, 300)
        await seed.participant(comp, ben, 100)
        await seed.prize_pool(comp, "100.00", {"first": 70, "second": 30})
        await db.commit()
        comp_id, ana_id = comp.id, ana.id

        summary = await run_status_update(db, redis=mock_redis, now=NOW)

        assert summary.completed == 1
        payouts = (await db.execute(
            select(func.count(PrizePayout.id)).where(PrizePayout.competition_id == comp_id)
        )).scalar_one()
        assert payouts == 2
        pool_status = (await db.execute(
            select(PrizePool.status).where(PrizePool.competition_id == comp_id)
        )).scalar_one()
        assert pool_status == "distributing"

        notes = (await db.execute(
            select(Notification.user_id, Notification.type, Notification.description)
            .order_by(Notification.id)
        )).all()
        assert [(n.user_id, n.type) for n in notes][0] == (ana_id, "prize_won")
        assert "January Sprint" in notes[0].description
        channels = [call.args[0] for call in mock_redis.publish.await_args_list]
        assert f"ws:user:{ana_id}" in channels


class TestCounts:

    async def test_counts_reflect_post_run_state(self, db_session, seed):
        db = db_session
        await _eastern_competition(db, seed)
        await seed.competition(date(2024, 2, 1), date(2024, 2, 7), status="upcoming")
        await seed.competition(date(2024, 1, 8), date(2024, 1, 14))
        await db.commit()

        summary = await run_status_update(db, now=NOW)

        assert summary.counts == {"active": 1, "upcoming": 1, "completed": 1}
