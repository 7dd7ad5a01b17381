"""Best-effort outbound notification queue.

Contract: at-most-once, never blocks or fails the caller.

``enqueue`` only appends to an in-memory queue. ``deliver`` pops each item
before attempting it, persists a Notification row and pushes it to the
user's WebSocket channel over Redis pub/sub. A failed item is logged and
dropped, never retried.
"""

from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from compete.db.models import Notification

logger = logging.getLogger(__name__)

# type -> (title, description template)
NOTIFICATION_TEMPLATES: dict[str, tuple[str, str]] = {
    "seasonal_event_reward": (
        "Event reward unlocked!",
        "You completed {eventName} and earned {rewardDescription}.",
    ),
    "prize_won": (
        "You won a prize!",
        "You placed #{placement} in {competitionName}. Claim your ${amount} prize within {claimDays} days.",
    ),
}


@dataclass
class OutboundNotification:
    type: str
    recipient_user_id: int
    data: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryReport:
    delivered: int = 0
    failed: int = 0


def render(type_: str, data: dict[str, Any]) -> tuple[str, str | None]:
    """Render title and description; unknown types get a generic title."""
    template = NOTIFICATION_TEMPLATES.get(type_)
    if template is None:
        return type_.replace("_", " ").capitalize(), None
    title, description = template
    try:
        return title, description.format(**data)
    except (KeyError, IndexError, ValueError):
        return title, None


class NotificationOutbox:
    """In-memory queue drained by the scheduler after each competition."""

    def __init__(self) -> None:
        self._queue: deque[OutboundNotification] = deque()

    def __len__(self) -> int:
        return len(self._queue)

    def enqueue(self, type_: str, recipient_user_id: int, data: dict[str, Any] | None = None) -> None:
        """Queue a notification. Never raises."""
        self._queue.append(OutboundNotification(type_, recipient_user_id, dict(data or {})))

    async def deliver(self, db: AsyncSession, redis: object | None = None) -> DeliveryReport:
        """Attempt every queued notification once."""
        report = DeliveryReport()
        while self._queue:
            item = self._queue.popleft()
            try:
                await self._deliver_one(db, redis, item)
                report.delivered += 1
            except Exception:
                report.failed += 1
                logger.warning(
                    "Failed to send %s notification to user %s",
                    item.type, item.recipient_user_id, exc_info=True,
                )
                await db.rollback()
        return report

    async def _deliver_one(self, db: AsyncSession, redis: object | None, item: OutboundNotification) -> None:
        title, description = render(item.type, item.data)
        notification = Notification(
            user_id=item.recipient_user_id,
            type=item.type,
            title=title,
            description=description,
            data=item.data,
            created_at=datetime.now(timezone.utc),
        )
        db.add(notification)
        await db.commit()

        if redis is None:
            return
        ws_payload = {
            "event": "notification",
            "data": {
                "id": str(notification.id),
                "type": notification.type,
                "title": notification.title,
                "description": notification.description,
                "timestamp": notification.created_at.isoformat() if notification.created_at else None,
                "read": False,
                "payload": item.data,
            },
        }
        try:
            await redis.publish(  # type: ignore[union-attr]
                f"ws:user:{item.recipient_user_id}",
                json.dumps(ws_payload, default=str),
            )
        except Exception:
            logger.warning("Failed to push notification via ws:user:%s", item.recipient_user_id, exc_info=True)
