"""
Host selects one applicant for a listing.

All steps run in the request's transaction:

1. target application pending -> accepted (conditional; the partial unique
   index rejects a second accepted row for the listing)
2. other pending applications -> rejected, rejection_notified=false
3. upsert a matched conversation for the selected guest
4. seed the transaction confirmation (deadline = now + 7 days)
5. listing open -> matched
6. notify the selected guest
7. notify rejected applicants not yet told, flipping rejection_notified

Step 7 is also callable on its own; the flag makes it safe to repeat.
"""
from __future__ import annotations

import logging

from fastapi import HTTPException
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.db import utcnow
from ticketshare.models.application import Application
from ticketshare.models.conversation import Conversation
from ticketshare.models.listing import Listing
from ticketshare.schemas.application import SelectOut
from ticketshare.services.audit import audit
from ticketshare.services.auth import Actor
from ticketshare.services.confirmations import ensure_confirmation
from ticketshare.services.engagement import find_conversation
from ticketshare.services.listings import claim_open_listing, get_listing_or_404
from ticketshare.services.notifications import DomainEvent, NotificationEmitter

log = logging.getLogger(__name__)


async def _upsert_matched_conversation(
    db: AsyncSession, listing: Listing, guest_id: str, actor: Actor
) -> Conversation:
    now = utcnow()
    convo = await find_conversation(db, listing.id, guest_id)
    if convo is None:
        convo = Conversation(
            listing_id=listing.id,
            host_id=listing.host_id,
            guest_id=guest_id,
            conversation_type="matched",
            inquiry_started_at=now,
            matched_at=now,
            created_by=actor.user_id,
            updated_by=actor.user_id,
        )
        try:
            async with db.begin_nested():
                db.add(convo)
                await db.flush()
            return convo
        except IntegrityError:
            convo = await find_conversation(db, listing.id, guest_id)
            if convo is None:
                raise

    convo.conversation_type = "matched"
    convo.matched_at = now
    convo.updated_by = actor.user_id
    await db.flush()
    return convo


async def notify_pending_rejections(
    db: AsyncSession,
    notifier: NotificationEmitter,
    *,
    listing: Listing,
) -> int:
    """Tell every rejected applicant of `listing` exactly once. Returns how many were told."""
    candidates = (
        await db.execute(
            select(Application.id, Application.guest_id).where(
                Application.listing_id == listing.id,
                Application.status == "rejected",
                Application.rejection_notified.is_(False),
            )
        )
    ).all()

    told = 0
    for application_id, guest_id in candidates:
        claimed = await db.execute(
            update(Application)
            .where(Application.id == application_id, Application.rejection_notified.is_(False))
            .values(rejection_notified=True)
        )
        if (claimed.rowcount or 0) != 1:
            continue
        await notifier.emit(
            db,
            DomainEvent(
                type="application_rejected",
                recipient_id=guest_id,
                listing_id=listing.id,
                event_name=listing.event_name,
                extra={"application_id": application_id},
            ),
        )
        told += 1
    return told


async def _selectable_application(db: AsyncSession, listing: Listing, application_id: str) -> Application:
    already = (
        await db.execute(
            select(Application.id).where(Application.listing_id == listing.id, Application.status == "accepted")
        )
    ).first()
    if already:
        raise HTTPException(status_code=409, detail="An applicant has already been selected")

    target = (
        await db.execute(
            select(Application).where(Application.id == application_id, Application.listing_id == listing.id)
        )
    ).scalar_one_or_none()
    if not target:
        raise HTTPException(status_code=404, detail="Application not found")
    if target.status != "pending":
        raise HTTPException(
            status_code=400,
            detail={"error": "Application is not pending", "currentStatus": target.status},
        )
    if listing.status != "open":
        raise HTTPException(
            status_code=400,
            detail={"error": "Listing is no longer open", "currentStatus": listing.status},
        )
    return target


async def select_applicant(
    db: AsyncSession,
    notifier: NotificationEmitter,
    *,
    actor: Actor,
    listing_id: str,
    application_id: str | None,
) -> SelectOut:
    if not application_id:
        raise HTTPException(status_code=400, detail="Application ID is required")

    listing = await get_listing_or_404(db, listing_id, lock=True)
    if listing.host_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Only the host can select applicants")

    # these checks can pass in two requests at once; step 1 and step 5 settle the race
    target = await _selectable_application(db, listing, application_id)

    now = utcnow()

    # 1
    try:
        async with db.begin_nested():
            result = await db.execute(
                update(Application)
                .where(Application.id == target.id, Application.status == "pending")
                .values(status="accepted", selected_at=now, updated_by=actor.user_id)
            )
    except IntegrityError:
        raise HTTPException(status_code=409, detail="An applicant has already been selected") from None
    if (result.rowcount or 0) != 1:
        raise HTTPException(status_code=409, detail="Application changed while selecting")

    # 2
    await db.execute(
        update(Application)
        .where(
            Application.listing_id == listing.id,
            Application.id != target.id,
            Application.status == "pending",
        )
        .values(status="rejected", rejection_notified=False, updated_by=actor.user_id)
    )

    # 3, 4
    convo = await _upsert_matched_conversation(db, listing, target.guest_id, actor)
    await ensure_confirmation(db, convo, matched_at=now)

    # 5
    if not await claim_open_listing(db, listing.id, new_status="matched"):
        raise HTTPException(status_code=409, detail="Listing was matched by another request")

    # 6
    await notifier.emit(
        db,
        DomainEvent(
            type="application_accepted",
            recipient_id=target.guest_id,
            listing_id=listing.id,
            conversation_id=convo.id,
            event_name=listing.event_name,
            extra={"application_id": target.id},
        ),
    )

    # 7
    rejected = await notify_pending_rejections(db, notifier, listing=listing)

    await audit(
        db,
        actor_user_id=actor.user_id,
        action="listing.selected",
        target_type="listing",
        target_id=listing.id,
        detail={"application_id": target.id, "conversation_id": convo.id, "rejected": rejected},
    )
    log.info("listing %s: selected application %s, rejected %d", listing.id, target.id, rejected)
    return SelectOut(success=True, conversationId=convo.id)
