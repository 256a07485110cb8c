from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from ticketshare.models.base import AuditMixin, Base, CreatedAtMixin, gen_id


class Conversation(AuditMixin, Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("listing_id", "guest_id", name="uq_conversation_listing_guest"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("cnv"))

    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), nullable=False, index=True)
    host_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    guest_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)

    # "inquiry" -> "pending" -> "matched"
    conversation_type: Mapped[str] = mapped_column(String(20), nullable=False, default="inquiry")

    inquiry_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    matched_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # mirrored from transaction_confirmations for older readers
    host_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    guest_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # mutual cancellation of a match: "pending" | "rejected" | "cancelled"
    cancellation_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    cancellation_requested_by: Mapped[str | None] = mapped_column(String, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class Message(CreatedAtMixin, Base):
    __tablename__ = "messages"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("msg"))
    conversation_id: Mapped[str] = mapped_column(String, ForeignKey("conversations.id"), nullable=False, index=True)
    sender_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)

    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
