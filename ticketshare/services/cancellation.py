from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import HTTPException
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.config import settings
from ticketshare.core.db import utcnow
from ticketshare.models.application import Application
from ticketshare.models.conversation import Conversation, Message
from ticketshare.models.listing import Listing
from ticketshare.models.transaction_confirmation import TransactionConfirmation
from ticketshare.models.user import User
from ticketshare.schemas.conversation import CancellationOut
from ticketshare.services.audit import audit
from ticketshare.services.auth import Actor
from ticketshare.services.confirmations import get_confirmation
from ticketshare.services.engagement import get_conversation_or_404, require_participant
from ticketshare.services.notifications import DomainEvent, NotificationEmitter

log = logging.getLogger(__name__)


CLOSED_DETAIL = {"error": "Listing has already been closed", "currentStatus": "closed"}


async def _require_listing_not_closed(db: AsyncSession, listing_id: str) -> None:
    closed_at = (await db.execute(select(Listing.closed_at).where(Listing.id == listing_id))).scalar_one_or_none()
    if closed_at is not None:
        raise HTTPException(status_code=400, detail=CLOSED_DETAIL)


async def _event_name(db: AsyncSession, listing_id: str) -> str:
    return (await db.execute(select(Listing.event_name).where(Listing.id == listing_id))).scalar_one_or_none() or ""


async def request_cancellation(
    db: AsyncSession,
    notifier: NotificationEmitter,
    *,
    actor: Actor,
    conversation_id: str,
    reason: str | None,
) -> CancellationOut:
    reason = (reason or "").strip()
    if not reason:
        raise HTTPException(status_code=400, detail="Reason is required")

    convo = await get_conversation_or_404(db, conversation_id)
    require_participant(convo, actor)

    if convo.conversation_type != "matched":
        raise HTTPException(
            status_code=400,
            detail={"error": "Only matched conversations can be cancelled", "currentType": convo.conversation_type},
        )
    if convo.cancellation_status == "pending":
        raise HTTPException(status_code=400, detail="A cancellation request is already pending")

    txc = await get_confirmation(db, convo.id)
    if txc and txc.completed_at is not None:
        raise HTTPException(status_code=400, detail="Transaction already completed")
    await _require_listing_not_closed(db, convo.listing_id)

    now = utcnow()
    expires_at = now + timedelta(hours=settings.cancellation_window_hours)
    convo.cancellation_status = "pending"
    convo.cancellation_requested_by = actor.user_id
    convo.cancellation_reason = reason
    convo.cancellation_requested_at = now
    convo.cancellation_expires_at = expires_at
    convo.cancellation_responded_at = None

    db.add(
        Message(
            conversation_id=convo.id,
            sender_id=actor.user_id,
            content=f"[system] Cancellation requested. Reason: {reason}",
        )
    )

    other_id = convo.guest_id if convo.host_id == actor.user_id else convo.host_id
    await notifier.emit(
        db,
        DomainEvent(
            type="cancellation_request",
            recipient_id=other_id,
            listing_id=convo.listing_id,
            conversation_id=convo.id,
            event_name=await _event_name(db, convo.listing_id),
            extra={"reason": reason},
        ),
    )
    await audit(
        db,
        actor_user_id=actor.user_id,
        action="cancellation.requested",
        target_type="conversation",
        target_id=convo.id,
    )
    return CancellationOut(success=True, cancellation_status="pending", expires_at=expires_at)


async def respond_to_cancellation(
    db: AsyncSession,
    notifier: NotificationEmitter,
    *,
    actor: Actor,
    conversation_id: str,
    action: str | None,
) -> CancellationOut:
    if action not in ("accept", "reject"):
        raise HTTPException(status_code=400, detail="Invalid action")

    convo = await get_conversation_or_404(db, conversation_id)
    require_participant(convo, actor)

    if convo.cancellation_requested_by == actor.user_id:
        raise HTTPException(status_code=400, detail="Cannot respond to your own request")
    if convo.cancellation_status != "pending":
        raise HTTPException(status_code=400, detail="No pending cancellation request")

    now = utcnow()
    requester_id = convo.cancellation_requested_by
    event_name = await _event_name(db, convo.listing_id)

    if action == "reject":
        convo.cancellation_status = "rejected"
        convo.cancellation_responded_at = now
        db.add(
            Message(
                conversation_id=convo.id,
                sender_id=actor.user_id,
                content="[system] Cancellation request rejected. Please keep talking it through.",
            )
        )
        await notifier.emit(
            db,
            DomainEvent(
                type="cancellation_rejected",
                recipient_id=requester_id,
                listing_id=convo.listing_id,
                conversation_id=convo.id,
                event_name=event_name,
            ),
        )
        await audit(
            db,
            actor_user_id=actor.user_id,
            action="cancellation.rejected",
            target_type="conversation",
            target_id=convo.id,
        )
        return CancellationOut(success=True, cancellation_status="rejected")

    # accept: unwind the match, unless the host already closed the listing after the handoff
    reopened = await db.execute(
        update(Listing)
        .where(Listing.id == convo.listing_id, Listing.closed_at.is_(None))
        .values(status="open", available_slots=Listing.total_slots, updated_by=actor.user_id)
    )
    if (reopened.rowcount or 0) != 1:
        raise HTTPException(status_code=400, detail=CLOSED_DETAIL)

    convo.cancellation_status = "cancelled"
    convo.cancellation_responded_at = now
    convo.conversation_type = "inquiry"
    convo.matched_at = None
    convo.host_confirmed_at = None
    convo.guest_confirmed_at = None

    await db.execute(delete(TransactionConfirmation).where(TransactionConfirmation.conversation_id == convo.id))

    # frees the listing's single "accepted" slot for a new selection
    await db.execute(
        update(Application)
        .where(
            Application.listing_id == convo.listing_id,
            Application.guest_id == convo.guest_id,
            Application.status == "accepted",
        )
        .values(status="cancelled", updated_by=actor.user_id)
    )

    await db.execute(
        update(User)
        .where(User.id.in_([convo.host_id, convo.guest_id]))
        .values(cancellation_count=User.cancellation_count + 1)
    )

    db.add(
        Message(
            conversation_id=convo.id,
            sender_id=actor.user_id,
            content="[system] Cancellation accepted. The match has been dissolved.",
        )
    )
    await notifier.emit(
        db,
        DomainEvent(
            type="cancellation_accepted",
            recipient_id=requester_id,
            listing_id=convo.listing_id,
            conversation_id=convo.id,
            event_name=event_name,
        ),
    )
    await audit(
        db,
        actor_user_id=actor.user_id,
        action="cancellation.accepted",
        target_type="conversation",
        target_id=convo.id,
    )
    log.info("conversation %s: match cancelled, listing %s reopened", convo.id, convo.listing_id)
    return CancellationOut(success=True, cancellation_status="cancelled")
