from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from ticketshare.models.base import Base, CreatedAtMixin, JSONType, gen_id


class Delivery(CreatedAtMixin, Base):
    """One webhook push of one notification to its recipient."""

    __tablename__ = "deliveries"
    __table_args__ = (
        Index("ix_deliveries_due", "status", "next_retry_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("dly"))

    notification_id: Mapped[str] = mapped_column(
        String, ForeignKey("notifications.id"), nullable=False, unique=True
    )
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    webhook_id: Mapped[str] = mapped_column(String, ForeignKey("user_webhooks.id"), nullable=False)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="pending")  # pending/publishing/success/failed/dead_lettered
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    status_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    retryable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    dead_lettered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class DeliveryAttempt(CreatedAtMixin, Base):
    __tablename__ = "delivery_attempts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("att"))
    delivery_id: Mapped[str] = mapped_column(String, ForeignKey("deliveries.id"), nullable=False, index=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False)  # success/failed
    request: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)  # meta only, never the url
    response: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    error_code: Mapped[str | None] = mapped_column(String(80), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
