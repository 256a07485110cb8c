from __future__ import annotations

import logging

from fastapi import HTTPException
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.models.application import Application
from ticketshare.models.listing import Listing
from ticketshare.models.user import User
from ticketshare.models.user_block import UserBlock
from ticketshare.schemas.review import OtherUserOut
from ticketshare.schemas.user import BlockListOut, BlockOut, PublicProfileOut
from ticketshare.services.audit import audit
from ticketshare.services.auth import Actor

log = logging.getLogger(__name__)


async def get_user_or_404(db: AsyncSession, user_id: str) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def successful_meetups(db: AsyncSession, user_id: str) -> int:
    hosted = (
        await db.execute(
            select(func.count()).select_from(Listing).where(Listing.host_id == user_id, Listing.status == "closed")
        )
    ).scalar_one()
    joined = (
        await db.execute(
            select(func.count())
            .select_from(Application)
            .where(Application.guest_id == user_id, Application.status == "accepted")
        )
    ).scalar_one()
    return int(hosted) + int(joined)


async def public_profile(db: AsyncSession, user_id: str) -> PublicProfileOut:
    user = await get_user_or_404(db, user_id)
    return PublicProfileOut(
        id=user.id,
        username=user.username,
        avatarUrl=user.avatar_url,
        rating=user.rating,
        reviewCount=user.review_count,
        verification_level=user.verification_level or "unverified",
        successfulMeetups=await successful_meetups(db, user.id),
        createdAt=user.created_at,
    )


# ---------- blocks ----------

async def block_user(db: AsyncSession, *, actor: Actor, blocked_id: str | None) -> UserBlock:
    if not blocked_id:
        raise HTTPException(status_code=400, detail="blocked_id is required")
    if blocked_id == actor.user_id:
        raise HTTPException(status_code=400, detail="Cannot block yourself")
    await get_user_or_404(db, blocked_id)

    existing = (
        await db.execute(
            select(UserBlock.id).where(UserBlock.blocker_id == actor.user_id, UserBlock.blocked_id == blocked_id)
        )
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="User is already blocked")

    row = UserBlock(blocker_id=actor.user_id, blocked_id=blocked_id)
    try:
        async with db.begin_nested():
            db.add(row)
            await db.flush()
    except IntegrityError:
        raise HTTPException(status_code=400, detail="User is already blocked") from None

    await audit(db, actor_user_id=actor.user_id, action="user.blocked", target_type="user", target_id=blocked_id)
    return row


async def unblock_user(db: AsyncSession, *, actor: Actor, blocked_id: str | None) -> bool:
    """Returns whether a block was removed; removing a missing block is not an error."""
    if not blocked_id:
        raise HTTPException(status_code=400, detail="blocked_id is required")

    result = await db.execute(
        delete(UserBlock).where(UserBlock.blocker_id == actor.user_id, UserBlock.blocked_id == blocked_id)
    )
    removed = (result.rowcount or 0) > 0
    if removed:
        await audit(db, actor_user_id=actor.user_id, action="user.unblocked", target_type="user", target_id=blocked_id)
    return removed


async def list_blocks(db: AsyncSession, *, actor: Actor) -> BlockListOut:
    rows = (
        await db.execute(
            select(UserBlock, User)
            .join(User, User.id == UserBlock.blocked_id)
            .where(UserBlock.blocker_id == actor.user_id)
            .order_by(UserBlock.created_at.desc())
        )
    ).all()
    return BlockListOut(
        blocks=[
            BlockOut(
                id=block.id,
                blocked_id=block.blocked_id,
                created_at=block.created_at,
                blocked=OtherUserOut(id=user.id, username=user.username, avatarUrl=user.avatar_url),
            )
            for block, user in rows
        ]
    )
