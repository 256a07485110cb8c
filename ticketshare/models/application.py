from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from ticketshare.models.base import AuditMixin, Base, gen_id


class Application(AuditMixin, Base):
    __tablename__ = "applications"
    __table_args__ = (
        # at most one selected applicant per listing
        Index(
            "uq_applications_one_accepted_per_listing",
            "listing_id",
            unique=True,
            postgresql_where=text("status = 'accepted'"),
            sqlite_where=text("status = 'accepted'"),
        ),
        Index("ix_applications_listing_status", "listing_id", "status"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("app"))

    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), nullable=False)
    guest_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)

    # "pending" | "accepted" | "rejected" | "cancelled"
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    message: Mapped[str | None] = mapped_column(Text, nullable=True)

    selected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # false until the guest has been told about the rejection
    rejection_notified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
