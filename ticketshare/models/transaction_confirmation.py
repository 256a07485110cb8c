from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from ticketshare.models.base import AuditMixin, Base, gen_id


class TransactionConfirmation(AuditMixin, Base):
    __tablename__ = "transaction_confirmations"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("txc"))

    conversation_id: Mapped[str] = mapped_column(
        String, ForeignKey("conversations.id"), nullable=False, unique=True
    )
    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), nullable=False, index=True)
    host_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    guest_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)

    host_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    guest_confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    deadline_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # set once, the first time both confirmations are present; never cleared
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # reserved for deadline-driven completion; nothing sets it yet
    auto_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
