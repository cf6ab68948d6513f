"""Infrastructure models package exports."""
from .base import Base, metadata
from .payment import PaymentModel, RefundModel
from .webhook import WebhookSubscriptionModel, WebhookEventModel

__all__ = [
    "Base",
    "metadata",
    "PaymentModel",
    "RefundModel",
    "WebhookSubscriptionModel",
    "WebhookEventModel",
]
