from datetime import datetime

from pydantic import BaseModel, Field


class InquiryCreate(BaseModel):
    listingId: str | None = None
    message: str | None = Field(default=None, max_length=2000)


class InquiryOut(BaseModel):
    conversationId: str
    exists: bool
    type: str


class TransitionOut(BaseModel):
    success: bool
    conversation_type: str


class ConfirmRequest(BaseModel):
    action: str | None = None  # "confirm" | "cancel"


class ConfirmationState(BaseModel):
    id: str
    hostConfirmedAt: datetime | None
    guestConfirmedAt: datetime | None
    bothConfirmed: bool
    completedAt: datetime | None


class ConfirmOut(BaseModel):
    success: bool
    conversation: ConfirmationState


class DeadlineInfo(BaseModel):
    deadlineAt: datetime
    daysRemaining: int
    isExpired: bool
    autoCompleted: bool
    completedAt: datetime | None


class MessageCreate(BaseModel):
    content: str = Field(max_length=4000)


class MessageOut(BaseModel):
    id: str
    conversation_id: str
    sender_id: str
    content: str
    is_read: bool
    created_at: datetime | None


class ConversationOut(BaseModel):
    id: str
    listing_id: str
    host_id: str
    guest_id: str
    conversation_type: str
    isHost: bool
    otherUserId: str
    unreadCount: int = 0
    lastMessage: MessageOut | None = None
    hostConfirmedAt: datetime | None = None
    guestConfirmedAt: datetime | None = None
    bothConfirmed: bool = False
    cancellation_status: str | None = None


class ConversationDetailOut(BaseModel):
    conversation: ConversationOut
    deadlineInfo: DeadlineInfo | None
    messages: list[MessageOut]


class CancellationRequest(BaseModel):
    reason: str | None = None


class CancellationReply(BaseModel):
    action: str | None = None  # "accept" | "reject"


class CancellationOut(BaseModel):
    success: bool
    cancellation_status: str
    expires_at: datetime | None = None
