"""Competition lifecycle and reward settlement schema.

Creates user_profiles, competitions, competition_participants,
competition_daily_data, prize_pools, prize_payouts, prize_audit_log,
user_coin_balances, coin_transactions, coin_reward_config, user_trials
and notifications.

Revision ID: 001_competition_engine
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

from alembic import op

revision: str = "001_competition_engine"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # --- Identity snapshot ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_profiles (
            id SERIAL PRIMARY KEY,
            email VARCHAR(320),
            display_name VARCHAR(64),
            full_name VARCHAR(128),
            timezone VARCHAR(64),
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # --- Competitions ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS competitions (
            id SERIAL PRIMARY KEY,
            name VARCHAR(128) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'upcoming',
            start_date DATE NOT NULL,
            end_date DATE NOT NULL,
            is_team_competition BOOLEAN NOT NULL DEFAULT false,
            is_seasonal_event BOOLEAN NOT NULL DEFAULT false,
            event_reward JSONB,
            event_theme JSONB,
            has_prize_pool BOOLEAN NOT NULL DEFAULT false,
            completed_at TIMESTAMPTZ,
            rewards_settled_at TIMESTAMPTZ,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            CHECK (status IN ('upcoming', 'active', 'completed'))
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_competitions_status_dates
        ON competitions(status, start_date, end_date)
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_competitions_unsettled
        ON competitions(completed_at)
        WHERE status = 'completed' AND rewards_settled_at IS NULL
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS competition_participants (
            id SERIAL PRIMARY KEY,
            competition_id INTEGER NOT NULL REFERENCES competitions(id) ON DELETE CASCADE,
            user_id INTEGER NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
            total_points NUMERIC(12, 2) NOT NULL DEFAULT 0,
            team_id INTEGER,
            score_locked_at TIMESTAMPTZ,
            joined_at TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT comp_participants_comp_user_key UNIQUE (competition_id, user_id)
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS competition_daily_data (
            id SERIAL PRIMARY KEY,
            competition_id INTEGER NOT NULL REFERENCES competitions(id) ON DELETE CASCADE,
            user_id INTEGER NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
            date DATE NOT NULL,
            points NUMERIC(12, 2) NOT NULL DEFAULT 0,
            CONSTRAINT comp_daily_data_comp_user_date_key UNIQUE (competition_id, user_id, date)
        )
    """)

    # --- Prize pools ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS prize_pools (
            id SERIAL PRIMARY KEY,
            competition_id INTEGER NOT NULL UNIQUE REFERENCES competitions(id) ON DELETE CASCADE,
            total_amount NUMERIC(10, 2) NOT NULL,
            payout_structure JSONB NOT NULL DEFAULT '{"first": 100}',
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS prize_payouts (
            id SERIAL PRIMARY KEY,
            prize_pool_id INTEGER NOT NULL REFERENCES prize_pools(id) ON DELETE CASCADE,
            competition_id INTEGER NOT NULL REFERENCES competitions(id) ON DELETE CASCADE,
            winner_id INTEGER NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
            placement INTEGER NOT NULL,
            payout_amount NUMERIC(10, 2) NOT NULL,
            status VARCHAR(16) NOT NULL DEFAULT 'pending',
            claim_status VARCHAR(16) NOT NULL DEFAULT 'unclaimed',
            claim_expires_at TIMESTAMPTZ,
            recipient_email VARCHAR(320),
            recipient_name VARCHAR(128),
            seen_by_winner BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT prize_payouts_pool_winner_key UNIQUE (prize_pool_id, winner_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_prize_payouts_competition
        ON prize_payouts(competition_id)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS prize_audit_log (
            id SERIAL PRIMARY KEY,
            prize_pool_id INTEGER REFERENCES prize_pools(id) ON DELETE SET NULL,
            payout_id INTEGER REFERENCES prize_payouts(id) ON DELETE SET NULL,
            action VARCHAR(32) NOT NULL,
            actor_id INTEGER,
            details JSONB,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    # --- Coin ledger ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_coin_balances (
            user_id INTEGER PRIMARY KEY REFERENCES user_profiles(id) ON DELETE CASCADE,
            earned_coins INTEGER NOT NULL DEFAULT 0,
            premium_coins INTEGER NOT NULL DEFAULT 0,
            lifetime_earned_coins INTEGER NOT NULL DEFAULT 0,
            lifetime_premium_coins INTEGER NOT NULL DEFAULT 0,
            updated_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS coin_transactions (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
            transaction_type VARCHAR(50) NOT NULL,
            earned_coin_delta INTEGER NOT NULL DEFAULT 0,
            premium_coin_delta INTEGER NOT NULL DEFAULT 0,
            earned_coin_balance_after INTEGER NOT NULL DEFAULT 0,
            premium_coin_balance_after INTEGER NOT NULL DEFAULT 0,
            reference_type VARCHAR(32),
            reference_id VARCHAR(64),
            metadata JSONB,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT coin_transactions_user_type_reference_key
                UNIQUE (user_id, transaction_type, reference_type, reference_id)
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_coin_transactions_reference
        ON coin_transactions(reference_type, reference_id, transaction_type)
    """)

    op.execute("""
        CREATE TABLE IF NOT EXISTS coin_reward_config (
            id SERIAL PRIMARY KEY,
            event_type VARCHAR(50) NOT NULL UNIQUE,
            earned_coins INTEGER NOT NULL,
            is_active BOOLEAN NOT NULL DEFAULT true
        )
    """)
    op.execute("""
        INSERT INTO coin_reward_config (event_type, earned_coins) VALUES
            ('competition_win_1st', 100),
            ('competition_win_2nd', 50),
            ('competition_win_3rd', 25),
            ('competition_complete', 10)
        ON CONFLICT (event_type) DO NOTHING
    """)

    # --- Trials ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS user_trials (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
            trial_type VARCHAR(32) NOT NULL,
            source VARCHAR(64) NOT NULL,
            granted_at TIMESTAMPTZ NOT NULL,
            expires_at TIMESTAMPTZ NOT NULL,
            created_at TIMESTAMPTZ DEFAULT NOW(),
            updated_at TIMESTAMPTZ DEFAULT NOW(),
            CONSTRAINT user_trials_user_type_source_key UNIQUE (user_id, trial_type, source)
        )
    """)

    # --- Notifications ---
    op.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id SERIAL PRIMARY KEY,
            user_id INTEGER NOT NULL REFERENCES user_profiles(id) ON DELETE CASCADE,
            type VARCHAR(32) NOT NULL,
            title VARCHAR(128) NOT NULL,
            description TEXT,
            data JSONB,
            read BOOLEAN NOT NULL DEFAULT false,
            created_at TIMESTAMPTZ DEFAULT NOW()
        )
    """)
    op.execute("""
        CREATE INDEX IF NOT EXISTS idx_notifications_user_created
        ON notifications(user_id, created_at DESC)
    """)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS notifications CASCADE")
    op.execute("DROP TABLE IF EXISTS user_trials CASCADE")
    op.execute("DROP TABLE IF EXISTS coin_reward_config CASCADE")
    op.execute("DROP TABLE IF EXISTS coin_transactions CASCADE")
    op.execute("DROP TABLE IF EXISTS user_coin_balances CASCADE")
    op.execute("DROP TABLE IF EXISTS prize_audit_log CASCADE")
    op.execute("DROP TABLE IF EXISTS prize_payouts CASCADE")
    op.execute("DROP TABLE IF EXISTS prize_pools CASCADE")
    op.execute("DROP TABLE IF EXISTS competition_daily_data CASCADE")
    op.execute("DROP TABLE IF EXISTS competition_participants CASCADE")
    op.execute("DROP TABLE IF EXISTS competitions CASCADE")
    op.execute("DROP TABLE IF EXISTS user_profiles CASCADE")
