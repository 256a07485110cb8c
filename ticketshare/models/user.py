from datetime import datetime

from sqlalchemy import Boolean, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from ticketshare.models.base import AuditMixin, Base, CreatedAtMixin, gen_id


class User(AuditMixin, Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("usr"))

    username: Mapped[str] = mapped_column(String(80), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    # "user" | "sub_admin" | "super_admin"
    role: Mapped[str] = mapped_column(String(30), nullable=False, default="user")

    # "unverified" -> "applicant" (email verified) -> "host" (phone verified)
    verification_level: Mapped[str] = mapped_column(String(30), nullable=False, default="unverified")

    # Derived from reviews received; recomputed on every review insert
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    cancellation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class SessionToken(CreatedAtMixin, Base):
    """Bearer token minted by the identity provider for a signed-in user."""

    __tablename__ = "session_tokens"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("ses"))
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)

    token_prefix: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    token_hash: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
