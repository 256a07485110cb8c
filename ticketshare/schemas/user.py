from datetime import datetime

from pydantic import BaseModel

from ticketshare.schemas.review import OtherUserOut


class PublicProfileOut(BaseModel):
    id: str
    username: str
    avatarUrl: str | None
    rating: float
    reviewCount: int
    verification_level: str
    # closed listings hosted plus applications accepted as a guest
    successfulMeetups: int
    createdAt: datetime | None


class BlockCreate(BaseModel):
    blocked_id: str | None = None


class BlockOut(BaseModel):
    id: str
    blocked_id: str
    created_at: datetime | None
    blocked: OtherUserOut


class BlockListOut(BaseModel):
    blocks: list[BlockOut]


class BlockResultOut(BaseModel):
    success: bool = True
    message: str
