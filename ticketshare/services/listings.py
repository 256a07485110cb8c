from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.config import settings
from ticketshare.core.db import utcnow
from ticketshare.models.application import Application
from ticketshare.models.conversation import Conversation, Message
from ticketshare.models.listing import Listing
from ticketshare.models.transaction_confirmation import TransactionConfirmation
from ticketshare.models.user import User
from ticketshare.schemas.listing import (
    ApplicantApplicationOut,
    ApplicantInquiryOut,
    ApplicantsOut,
    ListingCreate,
    ListingOut,
)
from ticketshare.services.audit import audit
from ticketshare.services.auth import Actor
from ticketshare.services.notifications import DomainEvent, NotificationEmitter

log = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "event_name",
    "event_date",
    "venue",
    "ticket_type",
    "seat_grade",
    "asking_price_jpy",
    "description",
    "total_slots",
)


def listing_out(listing: Listing) -> ListingOut:
    return ListingOut(
        id=listing.id,
        host_id=listing.host_id,
        event_name=listing.event_name,
        event_date=listing.event_date,
        venue=listing.venue,
        ticket_type=listing.ticket_type,
        seat_grade=listing.seat_grade,
        asking_price_jpy=listing.asking_price_jpy,
        description=listing.description,
        total_slots=listing.total_slots,
        available_slots=listing.available_slots,
        inquiry_count=listing.inquiry_count,
        status=listing.status,
        closed_at=listing.closed_at,
        created_at=listing.created_at,
    )


async def get_listing_or_404(db: AsyncSession, listing_id: str, *, lock: bool = False) -> Listing:
    stmt = select(Listing).where(Listing.id == listing_id)
    if lock:
        # matching requests for one listing queue here (no-op on sqlite)
        stmt = stmt.with_for_update()
    listing = (await db.execute(stmt)).scalar_one_or_none()
    if not listing:
        raise HTTPException(status_code=404, detail="Listing not found")
    return listing


async def _owned_listing(db: AsyncSession, actor: Actor, listing_id: str) -> Listing:
    listing = await get_listing_or_404(db, listing_id)
    if listing.host_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return listing


def _require_open(listing: Listing, error: str) -> None:
    if listing.status != "open":
        raise HTTPException(status_code=409, detail={"error": error, "currentStatus": listing.status})


async def create_listing(db: AsyncSession, *, actor: Actor, data: ListingCreate) -> Listing:
    if not actor.has_verification("host"):
        raise HTTPException(
            status_code=403,
            detail={
                "error": "PHONE_VERIFICATION_REQUIRED",
                "message": "Phone verification required to create listings",
                "currentLevel": actor.verification_level,
            },
        )

    existing = (
        await db.execute(
            select(func.count())
            .select_from(Listing)
            .where(
                Listing.host_id == actor.user_id,
                Listing.event_name == data.event_name,
                Listing.status != "closed",
            )
        )
    ).scalar_one()
    if existing >= settings.max_listings_per_event:
        raise HTTPException(
            status_code=400,
            detail={
                "error": "MAX_LISTINGS_REACHED",
                "message": f"Maximum {settings.max_listings_per_event} listings per event",
                "current": existing,
                "max": settings.max_listings_per_event,
            },
        )

    listing = Listing(
        host_id=actor.user_id,
        event_name=data.event_name,
        event_date=data.event_date,
        venue=data.venue,
        ticket_type=data.ticket_type,
        seat_grade=data.seat_grade,
        asking_price_jpy=data.asking_price_jpy,
        description=data.description,
        total_slots=data.total_slots,
        available_slots=data.total_slots,
        inquiry_count=0,
        status="open",
        created_by=actor.user_id,
        updated_by=actor.user_id,
    )
    db.add(listing)
    await db.flush()

    await audit(db, actor_user_id=actor.user_id, action="listing.created", target_type="listing", target_id=listing.id)
    return listing


async def edit_listing(
    db: AsyncSession,
    notifier: NotificationEmitter,
    *,
    actor: Actor,
    listing_id: str,
    updates: dict[str, Any],
    remove_applicants: bool = False,
) -> Listing:
    listing = await _owned_listing(db, actor, listing_id)
    _require_open(listing, "Cannot edit a listing that is no longer open")

    if remove_applicants:
        pending = (
            await db.execute(
                select(Application).where(
                    Application.listing_id == listing.id,
                    Application.status == "pending",
                )
            )
        ).scalars().all()

        await notifier.emit_many(
            db,
            [
                DomainEvent(
                    type="application_removed",
                    recipient_id=a.guest_id,
                    listing_id=listing.id,
                    event_name=listing.event_name,
                )
                for a in pending
            ],
        )
        if pending:
            await db.execute(delete(Application).where(Application.id.in_([a.id for a in pending])))
        log.info("listing %s: removed %d pending applications", listing.id, len(pending))

    for name in EDITABLE_FIELDS:
        if name in updates and updates[name] is not None:
            setattr(listing, name, updates[name])
    if updates.get("total_slots") is not None:
        listing.available_slots = listing.total_slots
    listing.updated_by = actor.user_id

    await db.flush()
    await audit(
        db,
        actor_user_id=actor.user_id,
        action="listing.edited",
        target_type="listing",
        target_id=listing.id,
        detail={"fields": sorted(k for k in updates if k in EDITABLE_FIELDS), "remove_applicants": remove_applicants},
    )
    return listing


async def claim_open_listing(db: AsyncSession, listing_id: str, *, new_status: str) -> bool:
    """
    Move an open listing to `new_status` and zero its slots.
    Returns False when the listing had already left "open" (lost race).
    """
    result = await db.execute(
        update(Listing)
        .where(Listing.id == listing_id, Listing.status == "open")
        .values(status=new_status, available_slots=0)
    )
    return (result.rowcount or 0) == 1


async def close_listing(db: AsyncSession, *, actor: Actor, listing_id: str) -> Listing:
    """Host marks the ticket handoff done: matched -> closed."""
    listing = await _owned_listing(db, actor, listing_id)
    if listing.status != "matched":
        raise HTTPException(
            status_code=400,
            detail={"error": "Only matched listings can be closed", "currentStatus": listing.status},
        )

    listing.status = "closed"
    listing.available_slots = 0
    listing.closed_at = utcnow()
    listing.updated_by = actor.user_id
    await db.flush()

    await audit(db, actor_user_id=actor.user_id, action="listing.closed", target_type="listing", target_id=listing.id)
    return listing


async def delete_listing(db: AsyncSession, *, actor: Actor, listing_id: str) -> None:
    listing = await _owned_listing(db, actor, listing_id)
    _require_open(listing, "Cannot delete a listing that is no longer open")

    conversation_ids = select(Conversation.id).where(Conversation.listing_id == listing.id)
    await db.execute(delete(Message).where(Message.conversation_id.in_(conversation_ids)))
    await db.execute(delete(TransactionConfirmation).where(TransactionConfirmation.listing_id == listing.id))
    await db.execute(delete(Conversation).where(Conversation.listing_id == listing.id))
    await db.execute(delete(Application).where(Application.listing_id == listing.id))
    await db.delete(listing)
    await db.flush()

    await audit(db, actor_user_id=actor.user_id, action="listing.deleted", target_type="listing", target_id=listing_id)


async def list_open_listings(db: AsyncSession, *, limit: int = 50, offset: int = 0) -> list[Listing]:
    stmt = (
        select(Listing)
        .where(Listing.status == "open")
        .order_by(Listing.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    return list((await db.execute(stmt)).scalars().all())


async def list_applicants(db: AsyncSession, *, actor: Actor, listing_id: str) -> ApplicantsOut:
    listing = await get_listing_or_404(db, listing_id)
    if listing.host_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Not authorized")

    app_rows = (
        await db.execute(
            select(Application, User)
            .join(User, User.id == Application.guest_id)
            .where(Application.listing_id == listing.id)
            .order_by(Application.created_at.desc())
        )
    ).all()

    inquiry_rows = (
        await db.execute(
            select(Conversation, User)
            .join(User, User.id == Conversation.guest_id)
            .where(Conversation.listing_id == listing.id, Conversation.conversation_type == "inquiry")
        )
    ).all()

    inquiries: list[ApplicantInquiryOut] = []
    for convo, guest in inquiry_rows:
        last = (
            await db.execute(
                select(Message.content)
                .where(Message.conversation_id == convo.id)
                .order_by(Message.created_at.desc())
                .limit(1)
            )
        ).scalar_one_or_none()
        inquiries.append(
            ApplicantInquiryOut(
                id=convo.id,
                guest_id=convo.guest_id,
                conversation_type=convo.conversation_type,
                guest_username=guest.username,
                last_message=last,
            )
        )

    return ApplicantsOut(
        applications=[
            ApplicantApplicationOut(
                id=a.id,
                guest_id=a.guest_id,
                status=a.status,
                message=a.message,
                selected_at=a.selected_at,
                guest_username=u.username,
                guest_rating=u.rating,
            )
            for a, u in app_rows
        ],
        inquiries=inquiries,
    )
