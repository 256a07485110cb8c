from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.db import get_db
from ticketshare.models.notification import Notification
from ticketshare.schemas.common import SuccessOut
from ticketshare.schemas.notification import MarkReadRequest, NotificationListOut, NotificationOut
from ticketshare.services.auth import Actor, get_actor

router = APIRouter()


def _out(n: Notification) -> NotificationOut:
    return NotificationOut(
        id=n.id,
        type=n.type,
        title=n.title,
        message=n.message,
        data=n.data or {},
        is_read=n.is_read,
        created_at=n.created_at,
    )


@router.get("/notifications", response_model=NotificationListOut)
async def list_notifications(
    unread_only: bool = Query(default=False, alias="unreadOnly"),
    limit: int = Query(default=50, ge=1, le=200),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> NotificationListOut:
    stmt = select(Notification).where(Notification.user_id == actor.user_id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    rows = (await db.execute(stmt.order_by(Notification.created_at.desc()).limit(limit))).scalars().all()

    unread = (
        await db.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == actor.user_id, Notification.is_read.is_(False))
        )
    ).scalar_one()

    return NotificationListOut(notifications=[_out(n) for n in rows], unreadCount=unread)


@router.put("/notifications", response_model=SuccessOut)
async def mark_notifications_read(
    payload: MarkReadRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> SuccessOut:
    stmt = update(Notification).where(Notification.user_id == actor.user_id, Notification.is_read.is_(False))
    if not payload.markAll:
        if not payload.ids:
            raise HTTPException(status_code=400, detail="Provide markAll or ids")
        stmt = stmt.where(Notification.id.in_(payload.ids))

    await db.execute(stmt.values(is_read=True))
    await db.commit()
    return SuccessOut()


@router.put("/notifications/{notification_id}", response_model=NotificationOut)
async def mark_notification_read(
    notification_id: str,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> NotificationOut:
    row = (
        await db.execute(
            select(Notification).where(Notification.id == notification_id, Notification.user_id == actor.user_id)
        )
    ).scalar_one_or_none()
    if not row:
        raise HTTPException(status_code=404, detail="Notification not found")

    row.is_read = True
    resp = _out(row)
    await db.commit()
    return resp
