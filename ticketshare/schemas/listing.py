from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ListingCreate(BaseModel):
    event_name: str = Field(min_length=1, max_length=200)
    event_date: str | None = Field(default=None, max_length=40)
    venue: str | None = Field(default=None, max_length=200)
    ticket_type: str = Field(default="find_companion", max_length=40)
    seat_grade: str | None = Field(default=None, max_length=80)
    asking_price_jpy: int | None = Field(default=None, ge=0)
    description: str = ""
    total_slots: int = Field(default=1, ge=1)


class ListingUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_name: str | None = Field(default=None, min_length=1, max_length=200)
    event_date: str | None = Field(default=None, max_length=40)
    venue: str | None = Field(default=None, max_length=200)
    ticket_type: str | None = Field(default=None, max_length=40)
    seat_grade: str | None = Field(default=None, max_length=80)
    asking_price_jpy: int | None = Field(default=None, ge=0)
    description: str | None = None
    total_slots: int | None = Field(default=None, ge=1)

    # drop every pending application (guests get notified)
    remove_applicants: bool = Field(default=False, alias="removeApplicants")


class ListingOut(BaseModel):
    id: str
    host_id: str
    event_name: str
    event_date: str | None
    venue: str | None
    ticket_type: str
    seat_grade: str | None
    asking_price_jpy: int | None
    description: str
    total_slots: int
    available_slots: int
    inquiry_count: int
    status: str
    closed_at: datetime | None = None
    created_at: datetime | None = None


class ApplicantApplicationOut(BaseModel):
    id: str
    guest_id: str
    status: str
    message: str | None
    selected_at: datetime | None
    guest_username: str | None
    guest_rating: float | None


class ApplicantInquiryOut(BaseModel):
    id: str
    guest_id: str
    conversation_type: str
    guest_username: str | None
    last_message: str | None


class ApplicantsOut(BaseModel):
    applications: list[ApplicantApplicationOut]
    inquiries: list[ApplicantInquiryOut]
