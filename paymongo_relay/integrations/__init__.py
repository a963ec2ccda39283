"""External service integrations."""
from .ghl_client import GhlClient, GhlError
from .notifier import LeadConnectorNotifier, NotificationError
from .paymongo_client import PayMongoClient, PayMongoError, PayMongoErrorType
from .webhook_handler import WebhookError, WebhookHandler

__all__ = [
    "GhlClient",
    "GhlError",
    "LeadConnectorNotifier",
    "NotificationError",
    "PayMongoClient",
    "PayMongoError",
    "PayMongoErrorType",
    "WebhookError",
    "WebhookHandler",
]
