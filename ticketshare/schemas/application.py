from datetime import datetime

from pydantic import BaseModel, Field


class ApplicationCreate(BaseModel):
    message: str | None = Field(default=None, max_length=2000)


class ApplicationStatusUpdate(BaseModel):
    status: str


class ApplicationOut(BaseModel):
    id: str
    listing_id: str
    guest_id: str
    status: str
    message: str | None
    selected_at: datetime | None
    rejection_notified: bool


class SelectRequest(BaseModel):
    applicationId: str | None = None


class SelectOut(BaseModel):
    success: bool
    conversationId: str
    message: str = "Applicant selected successfully"
