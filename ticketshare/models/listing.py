from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from ticketshare.models.base import AuditMixin, Base, gen_id


class Listing(AuditMixin, Base):
    __tablename__ = "listings"
    __table_args__ = (
        CheckConstraint("available_slots >= 0", name="ck_listing_available_slots_non_negative"),
        CheckConstraint("status IN ('open', 'matched', 'closed')", name="ck_listing_status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("lst"))

    host_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)

    event_name: Mapped[str] = mapped_column(String(200), nullable=False)
    event_date: Mapped[str | None] = mapped_column(String(40), nullable=True)
    venue: Mapped[str | None] = mapped_column(String(200), nullable=True)

    # "find_companion" | "sub_ticket_transfer" | "ticket_exchange"
    ticket_type: Mapped[str] = mapped_column(String(40), nullable=False, default="find_companion")
    seat_grade: Mapped[str | None] = mapped_column(String(80), nullable=True)
    asking_price_jpy: Mapped[int | None] = mapped_column(Integer, nullable=True)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    total_slots: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    available_slots: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    inquiry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # "open" | "matched" | "closed"; available_slots is 0 whenever status != "open"
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")

    # set when the host closes a matched listing after the handoff
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
