"""
Webhook ports: outbound HTTP sender and the event publisher used by use-cases.
"""
from __future__ import annotations

from typing import Any, Iterable, Protocol, runtime_checkable

from application.dtos.webhooks import WebhookResponse
from domain.payment.events import PaymentEvent


@runtime_checkable
class WebhookSender(Protocol):
    """POST a signed body. Must not raise: transport failures map to status_code 0."""

    async def send(self, url: str, body: bytes, headers: dict[str, str]) -> WebhookResponse: ...


@runtime_checkable
class WebhookPublisher(Protocol):
    """Fire-and-forget publication of domain events; never raises into the caller."""

    async def publish(self, events: Iterable[PaymentEvent]) -> None: ...

    async def dispatch(self, merchant_id: str, event_type: str, data: dict[str, Any]) -> None: ...
