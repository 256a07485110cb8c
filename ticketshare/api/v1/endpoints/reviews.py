from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ticketshare.core.db import get_db
from ticketshare.schemas.review import (
    CompletedPageOut,
    PendingReviewOut,
    ReviewCreate,
    ReviewOut,
    SweepOut,
    UserReviewsOut,
)
from ticketshare.services import reviews as review_service
from ticketshare.services.auth import Actor, get_actor
from ticketshare.services.cron import require_cron_secret
from ticketshare.services.notifications import NotificationEmitter, get_notifier

router = APIRouter()


@router.post("/reviews", response_model=ReviewOut, status_code=201)
async def create_review(
    payload: ReviewCreate,
    actor: Actor = Depends(get_actor),
    notifier: NotificationEmitter = Depends(get_notifier),
    db: AsyncSession = Depends(get_db),
) -> ReviewOut:
    review = await review_service.submit_review(db, notifier, actor=actor, data=payload)
    resp = review_service.review_out(review)
    await db.commit()
    return resp


@router.post("/reviews/auto-complete", response_model=SweepOut, dependencies=[Depends(require_cron_secret)])
async def auto_complete_reviews(db: AsyncSession = Depends(get_db)) -> SweepOut:
    resp = await review_service.run_auto_review_sweep(db)
    await db.commit()
    return resp


@router.get("/reviews/pending", response_model=list[PendingReviewOut])
async def pending_reviews(
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> list[PendingReviewOut]:
    return await review_service.pending_reviews(db, actor=actor)


@router.get("/profile/completed", response_model=CompletedPageOut)
async def completed_transactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
) -> CompletedPageOut:
    return await review_service.completed_items(db, actor=actor, page=page, limit=limit)


@router.get("/users/{user_id}/reviews", response_model=UserReviewsOut)
async def user_reviews(
    user_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
) -> UserReviewsOut:
    return await review_service.user_reviews(db, user_id=user_id, page=page, limit=limit)
