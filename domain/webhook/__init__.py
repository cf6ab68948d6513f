"""Webhook domain exports."""
from .entity import DeliveryStatus, WebhookDelivery, WebhookSubscription
from .repository import WebhookDeliveryRepository, WebhookSubscriptionRepository
from .signature import sign_payload, verify_signature

__all__ = [
    "DeliveryStatus",
    "WebhookDelivery",
    "WebhookSubscription",
    "WebhookDeliveryRepository",
    "WebhookSubscriptionRepository",
    "sign_payload",
    "verify_signature",
]
