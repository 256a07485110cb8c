from datetime import datetime

from pydantic import BaseModel, Field

from ticketshare.schemas.common import Pagination


class ReviewCreate(BaseModel):
    listing_id: str
    reviewee_id: str
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=2000)


class ReviewOut(BaseModel):
    id: str
    listing_id: str
    reviewer_id: str
    reviewee_id: str
    rating: int
    comment: str | None
    is_auto: bool
    created_at: datetime | None


class OtherUserOut(BaseModel):
    id: str
    username: str | None
    avatarUrl: str | None
    rating: float | None = None


class PendingReviewOut(BaseModel):
    conversationId: str
    listingId: str
    eventName: str | None
    isHost: bool
    otherUser: OtherUserOut
    completedAt: datetime | None
    daysRemaining: int


class MyReviewOut(BaseModel):
    id: str
    rating: int
    comment: str | None
    isAuto: bool
    createdAt: datetime | None


class CompletedItemOut(BaseModel):
    id: str
    listingId: str
    eventName: str | None
    isHost: bool
    otherUser: OtherUserOut
    completedAt: datetime | None
    myReview: MyReviewOut | None


class CompletedPageOut(BaseModel):
    items: list[CompletedItemOut]
    pagination: Pagination


class UserReviewsOut(BaseModel):
    user: OtherUserOut
    reviewCount: int
    reviews: list[ReviewOut]
    ratingDistribution: dict[int, int]
    pagination: Pagination


class SweepOut(BaseModel):
    success: bool
    processedConversations: int
    createdReviews: int
