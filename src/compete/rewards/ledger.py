"""Coin ledger: credit a user's balance and record the transaction atomically."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from compete.db.models import CoinTransaction, UserCoinBalance

logger = logging.getLogger(__name__)

# A conflict on the balance row (first credit racing another) is retried once.
CREDIT_ATTEMPTS = 2


@dataclass
class CreditResult:
    user_id: int
    duplicate: bool = False
    transaction_id: int | None = None
    earned_balance_after: int | None = None
    premium_balance_after: int | None = None


async def get_or_create_balance(db: AsyncSession, user_id: int) -> UserCoinBalance:
    """Get or create the denormalized coin balance row for a user."""
    result = await db.execute(
        select(UserCoinBalance).where(UserCoinBalance.user_id == user_id)
    )
    balance = result.scalar_one_or_none()
    if balance is None:
        balance = UserCoinBalance(
            user_id=user_id,
            earned_coins=0,
            premium_coins=0,
            lifetime_earned_coins=0,
            lifetime_premium_coins=0,
            updated_at=datetime.now(timezone.utc),
        )
        db.add(balance)
        await db.flush()
    return balance


async def transaction_exists(
    db: AsyncSession,
    user_id: int,
    transaction_type: str,
    reference_type: str | None,
    reference_id: str | None,
) -> bool:
    result = await db.execute(
        select(CoinTransaction.id).where(
            CoinTransaction.user_id == user_id,
            CoinTransaction.transaction_type == transaction_type,
            CoinTransaction.reference_type == reference_type,
            CoinTransaction.reference_id == reference_id,
        ).limit(1)
    )
    return result.first() is not None


async def credit_coins(
    db: AsyncSession,
    user_id: int,
    earned_amount: int,
    premium_amount: int,
    transaction_type: str,
    reference_type: str | None,
    reference_id: str | None,
    metadata: dict[str, Any] | None = None,
) -> CreditResult:
    """Apply coin deltas and append a ledger entry, committed together.

    At most one transaction exists per (user, type, reference). A second
    credit with the same key changes nothing and returns ``duplicate=True``.
    Lifetime counters only count positive deltas.
    """
    if await transaction_exists(db, user_id, transaction_type, reference_type, reference_id):
        return CreditResult(user_id=user_id, duplicate=True)

    attempt = 1
    while True:
        try:
            return await _apply_credit(
                db, user_id, earned_amount, premium_amount,
                transaction_type, reference_type, reference_id, metadata,
            )
        except IntegrityError:
            await db.rollback()
            # Only a conflict on the transaction key makes this a duplicate.
            if await transaction_exists(db, user_id, transaction_type, reference_type, reference_id):
                logger.info(
                    "Duplicate %s credit for user %d (%s:%s)",
                    transaction_type, user_id, reference_type, reference_id,
                )
                return CreditResult(user_id=user_id, duplicate=True)
            if attempt >= CREDIT_ATTEMPTS:
                raise
            logger.info("Coin balance for user %d changed concurrently, retrying credit", user_id)
            attempt += 1


async def _apply_credit(
    db: AsyncSession,
    user_id: int,
    earned_amount: int,
    premium_amount: int,
    transaction_type: str,
    reference_type: str | None,
    reference_id: str | None,
    metadata: dict[str, Any] | None,
) -> CreditResult:
    now = datetime.now(timezone.utc)

    balance = await get_or_create_balance(db, user_id)
    balance.earned_coins += earned_amount
    balance.premium_coins += premium_amount
    balance.lifetime_earned_coins += max(earned_amount, 0)
    balance.lifetime_premium_coins += max(premium_amount, 0)
    balance.updated_at = now
    earned_after = balance.earned_coins
    premium_after = balance.premium_coins

    entry = CoinTransaction(
        user_id=user_id,
        transaction_type=transaction_type,
        earned_coin_delta=earned_amount,
        premium_coin_delta=premium_amount,
        earned_coin_balance_after=earned_after,
        premium_coin_balance_after=premium_after,
        reference_type=reference_type,
        reference_id=reference_id,
        transaction_metadata=metadata or {},
        created_at=now,
    )
    db.add(entry)
    await db.flush()
    transaction_id = entry.id
    await db.commit()

    return CreditResult(
        user_id=user_id,
        transaction_id=transaction_id,
        earned_balance_after=earned_after,
        premium_balance_after=premium_after,
    )
