"""
Payment domain events.

Dataclass events record important payment lifecycle facts for downstream handling
(webhook delivery). Domain remains free of infrastructure imports: the explorer
link template is injected by whoever renders the webhook payload.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, ClassVar, Optional
import uuid

from domain.payment.entity import Payment, Refund


PAYMENT_CREATED = "payment.created"
PAYMENT_SUCCEEDED = "payment.succeeded"
PAYMENT_CONFIRMED = "payment.confirmed"  # legacy alias of payment.succeeded
PAYMENT_FAILED = "payment.failed"
PAYMENT_REFUNDED = "payment.refunded"

# Every webhook event type emitted for a settled payment. Retire the legacy
# alias by removing it here.
SUCCEEDED_EVENT_ALIASES: tuple[str, ...] = (PAYMENT_SUCCEEDED, PAYMENT_CONFIRMED)

WEBHOOK_EVENT_TYPES = frozenset({
    PAYMENT_CREATED,
    PAYMENT_SUCCEEDED,
    PAYMENT_CONFIRMED,
    PAYMENT_FAILED,
    PAYMENT_REFUNDED,
})

ExplorerLink = Callable[[str], str]


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


@dataclass
class PaymentEvent(ABC):
    payment: Payment
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    webhook_event_types: ClassVar[tuple[str, ...]] = ()

    @property
    def merchant_id(self) -> str:
        return self.payment.merchant_id

    @abstractmethod
    def to_webhook_data(self, explorer_link: ExplorerLink) -> dict:
        """渲染 webhook 请求体中的 data 部分"""


@dataclass
class PaymentCreated(PaymentEvent):
    webhook_event_types: ClassVar[tuple[str, ...]] = (PAYMENT_CREATED,)

    def to_webhook_data(self, explorer_link: ExplorerLink) -> dict:
        p = self.payment
        return {
            "id": p.id,
            "amount": str(p.amount),
            "currency": p.currency,
            "settlementCurrency": p.settlement_currency,
            "status": p.status.value,
            "merchantWallet": p.merchant_wallet,
            "expiresAt": _iso(p.expires_at),
        }


@dataclass
class PaymentSucceeded(PaymentEvent):
    webhook_event_types: ClassVar[tuple[str, ...]] = SUCCEEDED_EVENT_ALIASES

    def to_webhook_data(self, explorer_link: ExplorerLink) -> dict:
        p = self.payment
        return {
            "id": p.id,
            "amount": str(p.amount),
            "currency": p.currency,
            "settlementCurrency": p.settlement_currency,
            "status": p.status.value,
            "txHash": p.tx_hash,
            "payerWallet": p.payer_wallet,
            "explorerLink": explorer_link(p.tx_hash) if p.tx_hash else None,
            "settlementTime": p.settlement_time,
        }


@dataclass
class PaymentFailed(PaymentEvent):
    reason: Optional[str] = None

    webhook_event_types: ClassVar[tuple[str, ...]] = (PAYMENT_FAILED,)

    def to_webhook_data(self, explorer_link: ExplorerLink) -> dict:
        p = self.payment
        return {
            "id": p.id,
            "amount": str(p.amount),
            "currency": p.currency,
            "status": p.status.value,
            "txHash": p.tx_hash,
            "reason": self.reason,
        }


@dataclass
class PaymentRefunded(PaymentEvent):
    refund: Optional[Refund] = None

    webhook_event_types: ClassVar[tuple[str, ...]] = (PAYMENT_REFUNDED,)

    def to_webhook_data(self, explorer_link: ExplorerLink) -> dict:
        p = self.payment
        r = self.refund
        data = {
            "payment": {
                "id": p.id,
                "amount": str(p.amount),
                "currency": p.currency,
                "status": p.status.value,
                "txHash": p.tx_hash,
            },
            "refund": None,
        }
        if r is not None:
            data["refund"] = {
                "id": r.id,
                "amount": str(r.amount),
                "currency": r.currency,
                "status": r.status.value,
                "txHash": r.tx_hash,
                "reason": r.reason,
                "explorerLink": explorer_link(r.tx_hash) if r.tx_hash else None,
            }
        return data
