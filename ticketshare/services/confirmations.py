"""
Two-party handoff confirmation.

Host and guest each own one timestamp on the TransactionConfirmation row and
may set or clear it until the transaction completes. Completion is a single
conditional UPDATE so exactly one caller observes the transition and sends
the `transaction_completed` notifications.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta

from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.config import settings
from ticketshare.core.db import as_utc, utcnow
from ticketshare.models.conversation import Conversation
from ticketshare.models.listing import Listing
from ticketshare.models.transaction_confirmation import TransactionConfirmation
from ticketshare.schemas.conversation import ConfirmationState, ConfirmOut, DeadlineInfo
from ticketshare.services.audit import audit
from ticketshare.services.auth import Actor
from ticketshare.services.notifications import DomainEvent, NotificationEmitter

log = logging.getLogger(__name__)

CONFIRM_ACTIONS = ("confirm", "cancel")


async def get_confirmation(db: AsyncSession, conversation_id: str) -> TransactionConfirmation | None:
    stmt = select(TransactionConfirmation).where(TransactionConfirmation.conversation_id == conversation_id)
    return (await db.execute(stmt)).scalar_one_or_none()


async def ensure_confirmation(
    db: AsyncSession,
    convo: Conversation,
    *,
    matched_at: datetime | None = None,
) -> TransactionConfirmation:
    """
    Return the confirmation row for `convo`, creating it if missing.
    Deadline is matched time + confirmation_deadline_days.
    """
    existing = await get_confirmation(db, convo.id)
    if existing:
        return existing

    start = as_utc(matched_at or convo.matched_at) or utcnow()
    row = TransactionConfirmation(
        conversation_id=convo.id,
        listing_id=convo.listing_id,
        host_id=convo.host_id,
        guest_id=convo.guest_id,
        deadline_at=start + timedelta(days=settings.confirmation_deadline_days),
    )
    try:
        async with db.begin_nested():
            db.add(row)
            await db.flush()
    except IntegrityError:
        # concurrent creator won
        row = await get_confirmation(db, convo.id)
    return row


def deadline_info(txc: TransactionConfirmation, now: datetime | None = None) -> DeadlineInfo:
    now = now or utcnow()
    deadline = as_utc(txc.deadline_at)
    remaining = (deadline - now).total_seconds()
    return DeadlineInfo(
        deadlineAt=deadline,
        daysRemaining=max(0, math.ceil(remaining / 86400)),
        isExpired=remaining <= 0,
        autoCompleted=txc.auto_completed,
        completedAt=as_utc(txc.completed_at),
    )


def _state(convo_id: str, txc: TransactionConfirmation) -> ConfirmationState:
    return ConfirmationState(
        id=convo_id,
        hostConfirmedAt=as_utc(txc.host_confirmed_at),
        guestConfirmedAt=as_utc(txc.guest_confirmed_at),
        bothConfirmed=txc.host_confirmed_at is not None and txc.guest_confirmed_at is not None,
        completedAt=as_utc(txc.completed_at),
    )


async def confirm(
    db: AsyncSession,
    notifier: NotificationEmitter,
    *,
    actor: Actor,
    conversation_id: str,
    action: str | None,
) -> ConfirmOut:
    if action not in CONFIRM_ACTIONS:
        raise HTTPException(status_code=400, detail="Invalid action")

    convo = (await db.execute(select(Conversation).where(Conversation.id == conversation_id))).scalar_one_or_none()
    if not convo:
        raise HTTPException(status_code=404, detail="Conversation not found")

    is_host = convo.host_id == actor.user_id
    if not is_host and convo.guest_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Forbidden")

    if convo.conversation_type != "matched":
        raise HTTPException(
            status_code=400,
            detail={"error": "Conversation is not matched", "currentType": convo.conversation_type},
        )

    txc = await ensure_confirmation(db, convo)
    if txc.completed_at is not None:
        raise HTTPException(status_code=400, detail="Transaction already completed")

    now = utcnow()
    value = now if action == "confirm" else None
    field = "host_confirmed_at" if is_host else "guest_confirmed_at"

    # only while still open; a completed row is never touched again
    result = await db.execute(
        update(TransactionConfirmation)
        .where(TransactionConfirmation.id == txc.id, TransactionConfirmation.completed_at.is_(None))
        .values({field: value})
    )
    if (result.rowcount or 0) == 0:
        raise HTTPException(status_code=400, detail="Transaction already completed")

    setattr(convo, field, value)

    completed = await db.execute(
        update(TransactionConfirmation)
        .where(
            TransactionConfirmation.id == txc.id,
            TransactionConfirmation.completed_at.is_(None),
            TransactionConfirmation.host_confirmed_at.is_not(None),
            TransactionConfirmation.guest_confirmed_at.is_not(None),
        )
        .values(completed_at=now)
    )
    await db.flush()
    await db.refresh(txc)

    if (completed.rowcount or 0) == 1:
        event_name = (
            await db.execute(select(Listing.event_name).where(Listing.id == convo.listing_id))
        ).scalar_one_or_none() or ""
        await notifier.emit_many(
            db,
            [
                DomainEvent(
                    type="transaction_completed",
                    recipient_id=user_id,
                    listing_id=convo.listing_id,
                    conversation_id=convo.id,
                    event_name=event_name,
                )
                for user_id in (convo.host_id, convo.guest_id)
            ],
        )
        await audit(
            db,
            actor_user_id=actor.user_id,
            action="transaction.completed",
            target_type="conversation",
            target_id=convo.id,
        )
        log.info("conversation %s: transaction completed", convo.id)

    return ConfirmOut(success=True, conversation=_state(convo.id, txc))
