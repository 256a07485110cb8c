from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ticketshare.models.base import Base, CreatedAtMixin, gen_id


class UserBlock(CreatedAtMixin, Base):
    __tablename__ = "user_blocks"
    __table_args__ = (UniqueConstraint("blocker_id", "blocked_id", name="uq_user_blocks_pair"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("blk"))

    blocker_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, index=True)
    blocked_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
