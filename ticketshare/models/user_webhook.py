from sqlalchemy import Boolean, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ticketshare.models.base import AuditMixin, Base, gen_id


class UserWebhook(AuditMixin, Base):
    __tablename__ = "user_webhooks"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("whk"))
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False, unique=True)

    name: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # Fernet token of the webhook url (the url itself is a credential)
    url_ciphertext: Mapped[str] = mapped_column(Text, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
