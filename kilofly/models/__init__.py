from kilofly.models.base import Base  # noqa: F401

from kilofly.models.user import User, AccessToken  # noqa: F401
from kilofly.models.listing import Listing, TransportRequest  # noqa: F401
from kilofly.models.reservation import Reservation, TrackingEvent  # noqa: F401
from kilofly.models.transaction import Transaction  # noqa: F401
from kilofly.models.wallet import Wallet, WalletTransaction  # noqa: F401
from kilofly.models.chat import Conversation, Message  # noqa: F401
from kilofly.models.notification import Notification, NotificationPreference, PushToken  # noqa: F401
from kilofly.models.push_delivery import PushDelivery, PushAttempt  # noqa: F401
from kilofly.models.exchange_rate import ExchangeRate  # noqa: F401
from kilofly.models.outbox import OutboxEvent  # noqa: F401
from kilofly.models.idempotency import IdempotencyKey  # noqa: F401
from kilofly.models.audit_log import AuditLog  # noqa: F401
