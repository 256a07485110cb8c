from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from fastapi import HTTPException
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.config import settings
from ticketshare.core.db import as_utc, utcnow
from ticketshare.models.conversation import Conversation
from ticketshare.models.listing import Listing
from ticketshare.models.review import Review
from ticketshare.models.transaction_confirmation import TransactionConfirmation
from ticketshare.models.user import User
from ticketshare.schemas.common import paginate
from ticketshare.schemas.review import (
    CompletedItemOut,
    CompletedPageOut,
    MyReviewOut,
    OtherUserOut,
    PendingReviewOut,
    ReviewCreate,
    ReviewOut,
    SweepOut,
    UserReviewsOut,
)
from ticketshare.services.auth import Actor
from ticketshare.services.notifications import DomainEvent, NotificationEmitter

log = logging.getLogger(__name__)


def review_out(r: Review) -> ReviewOut:
    return ReviewOut(
        id=r.id,
        listing_id=r.listing_id,
        reviewer_id=r.reviewer_id,
        reviewee_id=r.reviewee_id,
        rating=r.rating,
        comment=r.comment,
        is_auto=r.is_auto,
        created_at=r.created_at,
    )


def _other_user(u: User | None, *, with_rating: bool = False) -> OtherUserOut:
    if u is None:
        return OtherUserOut(id="", username=None, avatarUrl=None)
    return OtherUserOut(
        id=u.id,
        username=u.username,
        avatarUrl=u.avatar_url,
        rating=u.rating if with_rating else None,
    )


def round_rating(mean: float) -> float:
    # half-up to one decimal; float round() would send 4.25 to 4.2
    return float(Decimal(str(mean)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))


async def recompute_user_rating(db: AsyncSession, user_id: str) -> None:
    total, count = (
        await db.execute(
            select(func.coalesce(func.sum(Review.rating), 0), func.count(Review.id)).where(
                Review.reviewee_id == user_id
            )
        )
    ).one()
    if not count:
        return
    await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(rating=round_rating(total / count), review_count=count)
    )


async def _review_exists(db: AsyncSession, listing_id: str, reviewer_id: str, reviewee_id: str) -> bool:
    stmt = select(Review.id).where(
        Review.listing_id == listing_id,
        Review.reviewer_id == reviewer_id,
        Review.reviewee_id == reviewee_id,
    )
    return (await db.execute(stmt)).first() is not None


async def _insert_review(db: AsyncSession, review: Review) -> bool:
    """Insert unless the (listing, reviewer, reviewee) triple already exists."""
    try:
        async with db.begin_nested():
            db.add(review)
            await db.flush()
    except IntegrityError:
        return False
    return True


# ---------- explicit reviews ----------

async def submit_review(
    db: AsyncSession,
    notifier: NotificationEmitter,
    *,
    actor: Actor,
    data: ReviewCreate,
) -> Review:
    if data.reviewee_id == actor.user_id:
        raise HTTPException(status_code=400, detail="Cannot review yourself")

    txc = (
        await db.execute(
            select(TransactionConfirmation).where(
                TransactionConfirmation.listing_id == data.listing_id,
                TransactionConfirmation.completed_at.is_not(None),
                or_(
                    and_(
                        TransactionConfirmation.host_id == actor.user_id,
                        TransactionConfirmation.guest_id == data.reviewee_id,
                    ),
                    and_(
                        TransactionConfirmation.guest_id == actor.user_id,
                        TransactionConfirmation.host_id == data.reviewee_id,
                    ),
                ),
            )
        )
    ).scalar_one_or_none()
    if not txc:
        raise HTTPException(status_code=403, detail="No completed transaction with this user")

    if await _review_exists(db, data.listing_id, actor.user_id, data.reviewee_id):
        raise HTTPException(status_code=409, detail="Already reviewed")

    review = Review(
        listing_id=data.listing_id,
        reviewer_id=actor.user_id,
        reviewee_id=data.reviewee_id,
        rating=data.rating,
        comment=(data.comment or "").strip() or None,
        is_auto=False,
    )
    if not await _insert_review(db, review):
        raise HTTPException(status_code=409, detail="Already reviewed")

    await recompute_user_rating(db, data.reviewee_id)

    event_name = (
        await db.execute(select(Listing.event_name).where(Listing.id == data.listing_id))
    ).scalar_one_or_none() or ""
    await notifier.emit(
        db,
        DomainEvent(
            type="new_review",
            recipient_id=data.reviewee_id,
            listing_id=data.listing_id,
            event_name=event_name,
            extra={"rating": data.rating, "review_id": review.id},
        ),
    )
    return review


# ---------- sweep ----------

async def run_auto_review_sweep(db: AsyncSession, *, now: datetime | None = None) -> SweepOut:
    """
    Fill in a 5-star review for each direction of every transaction whose two
    confirmations are both older than auto_review_after_days. Existing
    reviews are left alone, so re-running is a no-op.
    """
    now = now or utcnow()
    cutoff = now - timedelta(days=settings.auto_review_after_days)

    conversations = (
        await db.execute(
            select(Conversation.id, Conversation.listing_id, Conversation.host_id, Conversation.guest_id).where(
                Conversation.host_confirmed_at.is_not(None),
                Conversation.guest_confirmed_at.is_not(None),
                Conversation.host_confirmed_at < cutoff,
                Conversation.guest_confirmed_at < cutoff,
            )
        )
    ).all()

    created = 0
    for convo_id, listing_id, host_id, guest_id in conversations:
        for reviewer_id, reviewee_id in ((host_id, guest_id), (guest_id, host_id)):
            if await _review_exists(db, listing_id, reviewer_id, reviewee_id):
                continue
            inserted = await _insert_review(
                db,
                Review(
                    listing_id=listing_id,
                    reviewer_id=reviewer_id,
                    reviewee_id=reviewee_id,
                    rating=5,
                    comment=None,
                    is_auto=True,
                ),
            )
            if inserted:
                created += 1
                await recompute_user_rating(db, reviewee_id)

    # TODO: deadline-expiry auto completion (set TransactionConfirmation.auto_completed) once product defines it
    log.info("auto-review sweep: %d conversations, %d reviews created", len(conversations), created)
    return SweepOut(success=True, processedConversations=len(conversations), createdReviews=created)


# ---------- read views ----------

def _completed_filter(user_id: str):
    return and_(
        or_(Conversation.host_id == user_id, Conversation.guest_id == user_id),
        Conversation.host_confirmed_at.is_not(None),
        Conversation.guest_confirmed_at.is_not(None),
    )


async def _users_by_id(db: AsyncSession, ids: set[str]) -> dict[str, User]:
    if not ids:
        return {}
    rows = (await db.execute(select(User).where(User.id.in_(ids)))).scalars().all()
    return {u.id: u for u in rows}


async def _event_names(db: AsyncSession, ids: set[str]) -> dict[str, str]:
    if not ids:
        return {}
    rows = (await db.execute(select(Listing.id, Listing.event_name).where(Listing.id.in_(ids)))).all()
    return {lid: name for lid, name in rows}


async def pending_reviews(db: AsyncSession, *, actor: Actor, now: datetime | None = None) -> list[PendingReviewOut]:
    now = now or utcnow()
    convos = (
        await db.execute(
            select(Conversation)
            .where(_completed_filter(actor.user_id))
            .order_by(Conversation.guest_confirmed_at.desc())
        )
    ).scalars().all()

    users = await _users_by_id(db, {c.host_id for c in convos} | {c.guest_id for c in convos})
    names = await _event_names(db, {c.listing_id for c in convos})

    out: list[PendingReviewOut] = []
    for c in convos:
        is_host = c.host_id == actor.user_id
        other_id = c.guest_id if is_host else c.host_id
        if await _review_exists(db, c.listing_id, actor.user_id, other_id):
            continue
        completed_at = as_utc(c.guest_confirmed_at)
        days_since = int((now - completed_at).total_seconds() // 86400)
        out.append(
            PendingReviewOut(
                conversationId=c.id,
                listingId=c.listing_id,
                eventName=names.get(c.listing_id),
                isHost=is_host,
                otherUser=_other_user(users.get(other_id)),
                completedAt=completed_at,
                daysRemaining=max(0, settings.auto_review_after_days - days_since),
            )
        )
    return out


async def completed_items(db: AsyncSession, *, actor: Actor, page: int = 1, limit: int = 10) -> CompletedPageOut:
    total = (
        await db.execute(select(func.count()).select_from(Conversation).where(_completed_filter(actor.user_id)))
    ).scalar_one()

    convos = (
        await db.execute(
            select(Conversation)
            .where(_completed_filter(actor.user_id))
            .order_by(Conversation.guest_confirmed_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()

    users = await _users_by_id(db, {c.host_id for c in convos} | {c.guest_id for c in convos})
    names = await _event_names(db, {c.listing_id for c in convos})

    items: list[CompletedItemOut] = []
    for c in convos:
        is_host = c.host_id == actor.user_id
        other_id = c.guest_id if is_host else c.host_id
        mine = (
            await db.execute(
                select(Review).where(
                    Review.listing_id == c.listing_id,
                    Review.reviewer_id == actor.user_id,
                    Review.reviewee_id == other_id,
                )
            )
        ).scalar_one_or_none()
        items.append(
            CompletedItemOut(
                id=c.id,
                listingId=c.listing_id,
                eventName=names.get(c.listing_id),
                isHost=is_host,
                otherUser=_other_user(users.get(other_id), with_rating=True),
                completedAt=as_utc(c.guest_confirmed_at),
                myReview=MyReviewOut(
                    id=mine.id,
                    rating=mine.rating,
                    comment=mine.comment,
                    isAuto=mine.is_auto,
                    createdAt=mine.created_at,
                )
                if mine
                else None,
            )
        )

    return CompletedPageOut(items=items, pagination=paginate(page, limit, total))


async def user_reviews(db: AsyncSession, *, user_id: str, page: int = 1, limit: int = 10) -> UserReviewsOut:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    total = (
        await db.execute(select(func.count()).select_from(Review).where(Review.reviewee_id == user_id))
    ).scalar_one()

    rows = (
        await db.execute(
            select(Review)
            .where(Review.reviewee_id == user_id)
            .order_by(Review.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
    ).scalars().all()

    distribution = {star: 0 for star in range(1, 6)}
    for rating, count in (
        await db.execute(
            select(Review.rating, func.count()).where(Review.reviewee_id == user_id).group_by(Review.rating)
        )
    ).all():
        distribution[rating] = count

    return UserReviewsOut(
        user=_other_user(user, with_rating=True),
        reviewCount=user.review_count,
        reviews=[review_out(r) for r in rows],
        ratingDistribution=distribution,
        pagination=paginate(page, limit, total),
    )
