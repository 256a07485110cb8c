from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ticketshare.models.base import Base, CreatedAtMixin, gen_id


class Review(CreatedAtMixin, Base):
    __tablename__ = "reviews"
    __table_args__ = (
        UniqueConstraint("listing_id", "reviewer_id", "reviewee_id", name="uq_review_listing_reviewer_reviewee"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_review_rating_range"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("rev"))

    listing_id: Mapped[str] = mapped_column(String, ForeignKey("listings.id"), nullable=False)
    reviewer_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    reviewee_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)

    rating: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)

    # written by the auto-review sweep rather than the reviewer
    is_auto: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
