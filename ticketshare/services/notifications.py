"""
Notification emitter.

Core services never write notification rows themselves: they describe what
happened as a DomainEvent and hand it to a NotificationEmitter. The emitter
renders the user-facing text, stores the Notification row and queues a
`notification.created` outbox event in the caller's transaction. Webhook
delivery happens later in the worker and can never fail the core operation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.models.notification import Notification
from ticketshare.models.outbox import OutboxEvent

log = logging.getLogger(__name__)


# type -> (title, message template)
NOTIFICATION_TEMPLATES: dict[str, tuple[str, str]] = {
    "new_inquiry": ("New inquiry", 'Someone asked about your listing "{event_name}"'),
    "new_application": ("New application", 'Someone applied to join "{event_name}"'),
    "application_accepted": ("Matched!", 'Your application for "{event_name}" was accepted'),
    "application_rejected": ("Not matched", 'Your application for "{event_name}" was not selected'),
    "application_removed": (
        "Application removed",
        'Your application for "{event_name}" was removed because the host edited the listing',
    ),
    "transaction_completed": (
        "Transaction completed",
        'Both sides confirmed the handoff for "{event_name}". Leave a review!',
    ),
    "new_review": ("New review", 'You received a {rating}-star review for "{event_name}"'),
    "cancellation_request": ("Cancellation requested", 'The other side wants to cancel the match for "{event_name}"'),
    "cancellation_accepted": ("Cancellation accepted", 'The match for "{event_name}" has been cancelled'),
    "cancellation_rejected": ("Cancellation rejected", 'The other side declined to cancel "{event_name}". Keep talking it through'),
}


@dataclass(frozen=True)
class DomainEvent:
    type: str
    recipient_id: str
    listing_id: str | None = None
    conversation_id: str | None = None
    event_name: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def data(self) -> dict[str, Any]:
        out: dict[str, Any] = {"event_name": self.event_name}
        if self.listing_id:
            out["listing_id"] = self.listing_id
        if self.conversation_id:
            out["conversation_id"] = self.conversation_id
        out.update(self.extra)
        return out


def render(event: DomainEvent) -> tuple[str, str]:
    try:
        title, template = NOTIFICATION_TEMPLATES[event.type]
    except KeyError:
        raise ValueError(f"unknown notification type: {event.type}") from None
    return title, template.format(event_name=event.event_name, **event.extra)


class NotificationEmitter:
    """Writes notification rows plus their outbox events."""

    async def emit(self, db: AsyncSession, event: DomainEvent) -> Notification:
        title, message = render(event)
        row = Notification(
            user_id=event.recipient_id,
            type=event.type,
            title=title,
            message=message,
            data=event.data(),
            is_read=False,
        )
        db.add(row)
        await db.flush()

        db.add(
            OutboxEvent(
                aggregate_type="notification",
                aggregate_id=row.id,
                event_type="notification.created",
                payload={
                    "notification_id": row.id,
                    "user_id": row.user_id,
                    "type": row.type,
                },
                status="pending",
            )
        )
        log.info("notification %s queued for user=%s", event.type, event.recipient_id)
        return row

    async def emit_many(self, db: AsyncSession, events: Iterable[DomainEvent]) -> list[Notification]:
        return [await self.emit(db, e) for e in events]


def get_notifier(request: Request) -> NotificationEmitter:
    return request.app.state.notifier
