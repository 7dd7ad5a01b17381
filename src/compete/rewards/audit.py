"""Prize audit trail."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from compete.db.models import PrizeAuditLog

ACTION_PAYOUT_CREATED = "payout_created"
ACTION_POOL_DISTRIBUTING = "pool_distributing"


def record_prize_action(
    db: AsyncSession,
    action: str,
    prize_pool_id: int | None,
    payout_id: int | None = None,
    actor_id: int | None = None,
    details: dict[str, Any] | None = None,
) -> PrizeAuditLog:
    """Stage an audit entry on the session. The caller commits."""
    entry = PrizeAuditLog(
        prize_pool_id=prize_pool_id,
        payout_id=payout_id,
        action=action,
        actor_id=actor_id,
        details=details or {},
        created_at=datetime.now(timezone.utc),
    )
    db.add(entry)
    return entry
