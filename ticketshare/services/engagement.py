"""
Per (listing, guest) conversation state: inquiry -> pending -> matched.

Transitions are conditional UPDATEs on the current type, so a repeated or
racing call observes the new state and fails with the current type instead
of applying twice.
"""
from __future__ import annotations

import logging

from fastapi import HTTPException
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.db import as_utc, utcnow
from ticketshare.models.conversation import Conversation, Message
from ticketshare.models.listing import Listing
from ticketshare.models.transaction_confirmation import TransactionConfirmation
from ticketshare.schemas.conversation import (
    ConversationDetailOut,
    ConversationOut,
    InquiryOut,
    MessageOut,
    TransitionOut,
)
from ticketshare.services.audit import audit
from ticketshare.services.auth import Actor
from ticketshare.services.confirmations import deadline_info, ensure_confirmation, get_confirmation
from ticketshare.services.listings import claim_open_listing, get_listing_or_404
from ticketshare.services.notifications import DomainEvent, NotificationEmitter

log = logging.getLogger(__name__)


async def get_conversation_or_404(db: AsyncSession, conversation_id: str) -> Conversation:
    convo = (await db.execute(select(Conversation).where(Conversation.id == conversation_id))).scalar_one_or_none()
    if not convo:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return convo


def require_participant(convo: Conversation, actor: Actor) -> None:
    if actor.user_id not in (convo.host_id, convo.guest_id):
        raise HTTPException(status_code=403, detail="Forbidden")


async def find_conversation(db: AsyncSession, listing_id: str, guest_id: str) -> Conversation | None:
    stmt = select(Conversation).where(Conversation.listing_id == listing_id, Conversation.guest_id == guest_id)
    return (await db.execute(stmt)).scalar_one_or_none()


def message_out(m: Message) -> MessageOut:
    return MessageOut(
        id=m.id,
        conversation_id=m.conversation_id,
        sender_id=m.sender_id,
        content=m.content,
        is_read=m.is_read,
        created_at=m.created_at,
    )


# ---------- inquire ----------

async def inquire(
    db: AsyncSession,
    notifier: NotificationEmitter,
    *,
    actor: Actor,
    listing_id: str | None,
    message: str | None = None,
) -> InquiryOut:
    if not listing_id:
        raise HTTPException(status_code=400, detail="Listing ID is required")

    listing = await get_listing_or_404(db, listing_id)
    if listing.host_id == actor.user_id:
        raise HTTPException(status_code=400, detail="Cannot inquire on your own listing")

    existing = await find_conversation(db, listing.id, actor.user_id)
    if existing:
        return InquiryOut(conversationId=existing.id, exists=True, type=existing.conversation_type)

    convo = Conversation(
        listing_id=listing.id,
        host_id=listing.host_id,
        guest_id=actor.user_id,
        conversation_type="inquiry",
        inquiry_started_at=utcnow(),
        created_by=actor.user_id,
        updated_by=actor.user_id,
    )
    try:
        async with db.begin_nested():
            db.add(convo)
            await db.flush()
    except IntegrityError:
        # same guest inquired concurrently; return the winner's row
        existing = await find_conversation(db, listing.id, actor.user_id)
        if not existing:
            raise
        return InquiryOut(conversationId=existing.id, exists=True, type=existing.conversation_type)

    await db.execute(
        update(Listing).where(Listing.id == listing.id).values(inquiry_count=Listing.inquiry_count + 1)
    )

    if message and message.strip():
        db.add(Message(conversation_id=convo.id, sender_id=actor.user_id, content=message.strip()))

    await notifier.emit(
        db,
        DomainEvent(
            type="new_inquiry",
            recipient_id=listing.host_id,
            listing_id=listing.id,
            conversation_id=convo.id,
            event_name=listing.event_name,
        ),
    )
    await db.flush()
    return InquiryOut(conversationId=convo.id, exists=False, type=convo.conversation_type)


async def inquiry_count(db: AsyncSession, listing_id: str | None) -> int:
    if not listing_id:
        raise HTTPException(status_code=400, detail="Listing ID is required")
    listing = await get_listing_or_404(db, listing_id)
    return listing.inquiry_count


# ---------- apply ----------

async def apply(
    db: AsyncSession,
    notifier: NotificationEmitter,
    *,
    actor: Actor,
    conversation_id: str,
) -> TransitionOut:
    if not actor.has_verification("applicant"):
        raise HTTPException(
            status_code=403,
            detail={
                "error": "EMAIL_VERIFICATION_REQUIRED",
                "message": "Email verification required to apply",
                "currentLevel": actor.verification_level,
            },
        )

    convo = await get_conversation_or_404(db, conversation_id)
    if convo.guest_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Only the guest can apply")

    if convo.conversation_type != "inquiry":
        raise HTTPException(
            status_code=400,
            detail={"error": "Can only apply from inquiry state", "currentType": convo.conversation_type},
        )

    listing = await get_listing_or_404(db, convo.listing_id)
    if listing.status != "open":
        raise HTTPException(
            status_code=400,
            detail={"error": "Listing is no longer open", "currentStatus": listing.status},
        )

    now = utcnow()
    result = await db.execute(
        update(Conversation)
        .where(Conversation.id == convo.id, Conversation.conversation_type == "inquiry")
        .values(conversation_type="pending", applied_at=now, updated_by=actor.user_id)
    )
    if (result.rowcount or 0) == 0:
        await db.refresh(convo)
        raise HTTPException(
            status_code=400,
            detail={"error": "Can only apply from inquiry state", "currentType": convo.conversation_type},
        )

    await notifier.emit(
        db,
        DomainEvent(
            type="new_application",
            recipient_id=convo.host_id,
            listing_id=listing.id,
            conversation_id=convo.id,
            event_name=listing.event_name,
        ),
    )
    await db.flush()
    return TransitionOut(success=True, conversation_type="pending")


# ---------- accept (conversation track) ----------

async def accept(
    db: AsyncSession,
    notifier: NotificationEmitter,
    *,
    actor: Actor,
    conversation_id: str,
) -> TransitionOut:
    convo = await get_conversation_or_404(db, conversation_id)
    if convo.host_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Only the host can accept")

    if convo.conversation_type != "pending":
        raise HTTPException(
            status_code=400,
            detail={"error": "Can only accept pending applications", "currentType": convo.conversation_type},
        )

    listing = await get_listing_or_404(db, convo.listing_id, lock=True)
    if listing.status != "open":
        raise HTTPException(
            status_code=400,
            detail={"error": "Listing is no longer open", "currentStatus": listing.status},
        )

    # whoever flips the listing out of "open" owns the match
    if not await claim_open_listing(db, listing.id, new_status="closed"):
        raise HTTPException(status_code=409, detail="Listing was matched by another request")

    now = utcnow()
    convo.conversation_type = "matched"
    convo.matched_at = now
    convo.updated_by = actor.user_id

    # losers' threads are purged, not archived
    others = select(Conversation.id).where(Conversation.listing_id == listing.id, Conversation.id != convo.id)
    await db.execute(delete(Message).where(Message.conversation_id.in_(others)))
    await db.execute(
        delete(TransactionConfirmation).where(TransactionConfirmation.conversation_id.in_(others))
    )
    purged = await db.execute(
        delete(Conversation).where(Conversation.listing_id == listing.id, Conversation.id != convo.id)
    )
    await db.flush()

    await ensure_confirmation(db, convo, matched_at=now)

    await notifier.emit(
        db,
        DomainEvent(
            type="application_accepted",
            recipient_id=convo.guest_id,
            listing_id=listing.id,
            conversation_id=convo.id,
            event_name=listing.event_name,
        ),
    )
    await audit(
        db,
        actor_user_id=actor.user_id,
        action="conversation.accepted",
        target_type="conversation",
        target_id=convo.id,
        detail={"listing_id": listing.id, "purged_conversations": int(purged.rowcount or 0)},
    )
    log.info("conversation %s matched; listing %s closed", convo.id, listing.id)
    return TransitionOut(success=True, conversation_type="matched")


# ---------- messaging ----------

async def list_conversations(db: AsyncSession, *, actor: Actor) -> list[ConversationOut]:
    rows = (
        await db.execute(
            select(Conversation)
            .where(or_(Conversation.host_id == actor.user_id, Conversation.guest_id == actor.user_id))
            .order_by(Conversation.updated_at.desc())
        )
    ).scalars().all()

    out: list[ConversationOut] = []
    for convo in rows:
        last = (
            await db.execute(
                select(Message)
                .where(Message.conversation_id == convo.id)
                .order_by(Message.created_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        unread = (
            await db.execute(
                select(func.count())
                .select_from(Message)
                .where(
                    Message.conversation_id == convo.id,
                    Message.sender_id != actor.user_id,
                    Message.is_read.is_(False),
                )
            )
        ).scalar_one()
        out.append(conversation_out(convo, actor, last_message=last, unread=unread))
    return out


def conversation_out(
    convo: Conversation,
    actor: Actor,
    *,
    last_message: Message | None = None,
    unread: int = 0,
    txc: TransactionConfirmation | None = None,
) -> ConversationOut:
    is_host = convo.host_id == actor.user_id
    host_at = txc.host_confirmed_at if txc else convo.host_confirmed_at
    guest_at = txc.guest_confirmed_at if txc else convo.guest_confirmed_at
    return ConversationOut(
        id=convo.id,
        listing_id=convo.listing_id,
        host_id=convo.host_id,
        guest_id=convo.guest_id,
        conversation_type=convo.conversation_type,
        isHost=is_host,
        otherUserId=convo.guest_id if is_host else convo.host_id,
        unreadCount=unread,
        lastMessage=message_out(last_message) if last_message else None,
        hostConfirmedAt=as_utc(host_at),
        guestConfirmedAt=as_utc(guest_at),
        bothConfirmed=host_at is not None and guest_at is not None,
        cancellation_status=convo.cancellation_status,
    )


async def conversation_detail(db: AsyncSession, *, actor: Actor, conversation_id: str) -> ConversationDetailOut:
    convo = await get_conversation_or_404(db, conversation_id)
    require_participant(convo, actor)

    # opening the thread reads the counterpart's messages
    await db.execute(
        update(Message)
        .where(
            Message.conversation_id == convo.id,
            Message.sender_id != actor.user_id,
            Message.is_read.is_(False),
        )
        .values(is_read=True)
    )

    messages = (
        await db.execute(
            select(Message).where(Message.conversation_id == convo.id).order_by(Message.created_at.asc())
        )
    ).scalars().all()

    txc = await get_confirmation(db, convo.id)
    return ConversationDetailOut(
        conversation=conversation_out(convo, actor, txc=txc),
        deadlineInfo=deadline_info(txc) if txc else None,
        messages=[message_out(m) for m in messages],
    )


async def post_message(db: AsyncSession, *, actor: Actor, conversation_id: str, content: str) -> MessageOut:
    convo = await get_conversation_or_404(db, conversation_id)
    require_participant(convo, actor)

    if not content.strip():
        raise HTTPException(status_code=400, detail="Message content is required")

    msg = Message(conversation_id=convo.id, sender_id=actor.user_id, content=content.strip())
    db.add(msg)
    convo.updated_at = utcnow()
    await db.flush()
    return message_out(msg)
