from ticketshare.models.base import Base  # noqa: F401

from ticketshare.models.user import SessionToken, User  # noqa: F401
from ticketshare.models.user_block import UserBlock  # noqa: F401
from ticketshare.models.listing import Listing  # noqa: F401
from ticketshare.models.application import Application  # noqa: F401
from ticketshare.models.conversation import Conversation, Message  # noqa: F401
from ticketshare.models.transaction_confirmation import TransactionConfirmation  # noqa: F401
from ticketshare.models.review import Review  # noqa: F401
from ticketshare.models.notification import Notification  # noqa: F401
from ticketshare.models.user_webhook import UserWebhook  # noqa: F401
from ticketshare.models.outbox import OutboxEvent  # noqa: F401
from ticketshare.models.delivery import Delivery, DeliveryAttempt  # noqa: F401
from ticketshare.models.audit_log import AuditLog  # noqa: F401
from ticketshare.models.idempotency import IdempotencyKey  # noqa: F401
