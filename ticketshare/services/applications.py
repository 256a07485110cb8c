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
from ticketshare.schemas.application import ApplicationOut
from ticketshare.services.audit import audit
from ticketshare.services.auth import Actor
from ticketshare.services.engagement import find_conversation
from ticketshare.services.listings import get_listing_or_404
from ticketshare.services.notifications import DomainEvent, NotificationEmitter

log = logging.getLogger(__name__)

HOST_STATUSES = ("accepted", "rejected")
GUEST_STATUSES = ("cancelled",)


def application_out(a: Application) -> ApplicationOut:
    return ApplicationOut(
        id=a.id,
        listing_id=a.listing_id,
        guest_id=a.guest_id,
        status=a.status,
        message=a.message,
        selected_at=a.selected_at,
        rejection_notified=a.rejection_notified,
    )


async def get_application_or_404(db: AsyncSession, application_id: str) -> Application:
    row = (await db.execute(select(Application).where(Application.id == application_id))).scalar_one_or_none()
    if not row:
        raise HTTPException(status_code=404, detail="Application not found")
    return row


async def create_application(
    db: AsyncSession,
    notifier: NotificationEmitter,
    *,
    actor: Actor,
    listing_id: str,
    message: str | None,
) -> Application:
    if not actor.has_verification("applicant"):
        raise HTTPException(
            status_code=403,
            detail={
                "error": "EMAIL_VERIFICATION_REQUIRED",
                "message": "Email verification required to apply",
                "currentLevel": actor.verification_level,
            },
        )

    listing = await get_listing_or_404(db, listing_id)
    if listing.host_id == actor.user_id:
        raise HTTPException(status_code=400, detail="Cannot apply to your own listing")
    if listing.status != "open":
        raise HTTPException(
            status_code=400,
            detail={"error": "Listing is no longer open", "currentStatus": listing.status},
        )

    # one live application per guest per listing
    existing = (
        await db.execute(
            select(Application.id).where(
                Application.listing_id == listing.id,
                Application.guest_id == actor.user_id,
                Application.status != "cancelled",
            )
        )
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail="Already applied to this listing")

    row = Application(
        listing_id=listing.id,
        guest_id=actor.user_id,
        status="pending",
        message=(message or "").strip() or None,
        created_by=actor.user_id,
        updated_by=actor.user_id,
    )
    db.add(row)
    await db.flush()

    await notifier.emit(
        db,
        DomainEvent(
            type="new_application",
            recipient_id=listing.host_id,
            listing_id=listing.id,
            event_name=listing.event_name,
            extra={"application_id": row.id},
        ),
    )
    return row


async def list_my_applications(db: AsyncSession, *, actor: Actor) -> list[Application]:
    stmt = (
        select(Application)
        .where(Application.guest_id == actor.user_id)
        .order_by(Application.created_at.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def update_status(db: AsyncSession, *, actor: Actor, application_id: str, status: str) -> Application:
    if status not in HOST_STATUSES + GUEST_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status")

    app_row = await get_application_or_404(db, application_id)
    host_id = (await db.execute(select(Listing.host_id).where(Listing.id == app_row.listing_id))).scalar_one()

    if status in GUEST_STATUSES and app_row.guest_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Only applicant can cancel")
    if status in HOST_STATUSES and host_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Only host can accept/reject")

    values: dict = {"status": status, "updated_by": actor.user_id}
    if status == "accepted":
        values["selected_at"] = utcnow()

    try:
        async with db.begin_nested():
            result = await db.execute(
                update(Application)
                .where(Application.id == app_row.id, Application.status == "pending")
                .values(**values)
            )
    except IntegrityError:
        raise HTTPException(status_code=409, detail="Another application is already accepted") from None

    if (result.rowcount or 0) == 0:
        await db.refresh(app_row)
        raise HTTPException(
            status_code=400,
            detail={"error": "Application is not pending", "currentStatus": app_row.status},
        )

    if status == "accepted" and not await find_conversation(db, app_row.listing_id, app_row.guest_id):
        try:
            async with db.begin_nested():
                db.add(
                    Conversation(
                        listing_id=app_row.listing_id,
                        host_id=host_id,
                        guest_id=app_row.guest_id,
                        conversation_type="inquiry",
                        inquiry_started_at=utcnow(),
                        created_by=actor.user_id,
                        updated_by=actor.user_id,
                    )
                )
                await db.flush()
        except IntegrityError:
            log.info("application %s: conversation created concurrently", app_row.id)

    await db.refresh(app_row)
    await audit(
        db,
        actor_user_id=actor.user_id,
        action=f"application.{status}",
        target_type="application",
        target_id=app_row.id,
    )
    return app_row


async def withdraw(db: AsyncSession, *, actor: Actor, application_id: str) -> Application:
    app_row = await get_application_or_404(db, application_id)
    if app_row.guest_id != actor.user_id:
        raise HTTPException(status_code=403, detail="Only applicant can withdraw")
    if app_row.status != "pending":
        raise HTTPException(
            status_code=400,
            detail={"error": "Can only withdraw pending applications", "currentStatus": app_row.status},
        )

    result = await db.execute(
        update(Application)
        .where(Application.id == app_row.id, Application.status == "pending")
        .values(status="cancelled", updated_by=actor.user_id)
    )
    await db.refresh(app_row)
    if (result.rowcount or 0) == 0:
        raise HTTPException(
            status_code=400,
            detail={"error": "Can only withdraw pending applications", "currentStatus": app_row.status},
        )
    return app_row
