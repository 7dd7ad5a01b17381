"""ORM models for competitions, prize pools, the coin ledger and trials.

Column types are kept portable (JSON, Numeric, Date) so the same models run
against PostgreSQL in production and SQLite in the test suite.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compete.db.base import Base


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class UserProfile(Base):
    """Snapshot of the identity system: contact info and home timezone."""

    __tablename__ = "user_profiles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    display_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)  # IANA name
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Competitions
# ---------------------------------------------------------------------------


class Competition(Base):
    """A fitness competition with a calendar-date window."""

    __tablename__ = "competitions"
    __table_args__ = (
        Index("idx_competitions_status_dates", "status", "start_date", "end_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="upcoming", server_default="upcoming")
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_team_competition: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    is_seasonal_event: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    event_reward: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    event_theme: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    has_prize_pool: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rewards_settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    participants: Mapped[list[CompetitionParticipant]] = relationship(
        "CompetitionParticipant", back_populates="competition", cascade="all, delete-orphan"
    )


class CompetitionParticipant(Base):
    """A user's entry in a competition."""

    __tablename__ = "competition_participants"
    __table_args__ = (
        UniqueConstraint("competition_id", "user_id", name="comp_participants_comp_user_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id: Mapped[int] = mapped_column(Integer, ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False)
    total_points: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0, server_default="0")
    team_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    score_locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    joined_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    competition: Mapped[Competition] = relationship("Competition", back_populates="participants")
    user: Mapped[UserProfile] = relationship("UserProfile")


class CompetitionDailyData(Base):
    """Per-day points recorded for a participant."""

    __tablename__ = "competition_daily_data"
    __table_args__ = (
        UniqueConstraint("competition_id", "user_id", "date", name="comp_daily_data_comp_user_date_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id: Mapped[int] = mapped_column(Integer, ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False)
    activity_date: Mapped[date] = mapped_column("date", Date, nullable=False)
    points: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=0, server_default="0")


# ---------------------------------------------------------------------------
# Prize pools
# ---------------------------------------------------------------------------


class PrizePool(Base):
    """Cash prize attached to a competition."""

    __tablename__ = "prize_pools"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    competition_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    payout_structure: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=lambda: {"first": 100})
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PrizePayout(Base):
    """One winner's share of a prize pool, claimable in-app."""

    __tablename__ = "prize_payouts"
    __table_args__ = (
        UniqueConstraint("prize_pool_id", "winner_id", name="prize_payouts_pool_winner_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prize_pool_id: Mapped[int] = mapped_column(Integer, ForeignKey("prize_pools.id", ondelete="CASCADE"), nullable=False)
    competition_id: Mapped[int] = mapped_column(Integer, ForeignKey("competitions.id", ondelete="CASCADE"), nullable=False)
    winner_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False)
    placement: Mapped[int] = mapped_column(Integer, nullable=False)
    payout_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", server_default="pending")
    claim_status: Mapped[str] = mapped_column(String(16), nullable=False, default="unclaimed", server_default="unclaimed")
    claim_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    recipient_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    recipient_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    seen_by_winner: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class PrizeAuditLog(Base):
    """Append-only audit trail for prize pool actions."""

    __tablename__ = "prize_audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prize_pool_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("prize_pools.id", ondelete="SET NULL"), nullable=True)
    payout_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("prize_payouts.id", ondelete="SET NULL"), nullable=True)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    details: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Coin ledger
# ---------------------------------------------------------------------------


class UserCoinBalance(Base):
    """Denormalized coin balance, updated together with each ledger entry."""

    __tablename__ = "user_coin_balances"

    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("user_profiles.id", ondelete="CASCADE"), primary_key=True
    )
    earned_coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    premium_coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lifetime_earned_coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    lifetime_premium_coins: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CoinTransaction(Base):
    """Append-only coin ledger entry."""

    __tablename__ = "coin_transactions"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "transaction_type", "reference_type", "reference_id",
            name="coin_transactions_user_type_reference_key",
        ),
        Index("idx_coin_transactions_reference", "reference_type", "reference_id", "transaction_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False)
    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False)
    earned_coin_delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    premium_coin_delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    earned_coin_balance_after: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    premium_coin_balance_after: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reference_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    transaction_metadata: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class CoinRewardConfig(Base):
    """Admin-tunable coin amounts per reward event."""

    __tablename__ = "coin_reward_config"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    earned_coins: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, server_default="true")


# ---------------------------------------------------------------------------
# Trials
# ---------------------------------------------------------------------------


class UserTrial(Base):
    """Time-limited premium entitlement."""

    __tablename__ = "user_trials"
    __table_args__ = (
        UniqueConstraint("user_id", "trial_type", "source", name="user_trials_user_type_source_key"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False)
    trial_type: Mapped[str] = mapped_column(String(32), nullable=False)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    granted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """Persisted copy of a dispatched notification."""

    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("user_profiles.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    read: Mapped[bool] = mapped_column(Boolean, default=False, server_default="false")
    created_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
