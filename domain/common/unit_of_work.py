"""Unit of Work 抽象定义"""
from __future__ import annotations

from abc import ABC, abstractmethod

from domain.payment.repository import PaymentRepository, RefundRepository
from domain.webhook.repository import (
    WebhookDeliveryRepository,
    WebhookSubscriptionRepository,
)


class AbstractUnitOfWork(ABC):
    """应用层事务边界控制抽象"""

    payment_repository: PaymentRepository
    refund_repository: RefundRepository
    webhook_subscription_repository: WebhookSubscriptionRepository
    webhook_delivery_repository: WebhookDeliveryRepository

    def __init__(self, *, readonly: bool = False) -> None:
        self._committed = False
        self._readonly = readonly
        self.payment_repository = None  # type: ignore[assignment]
        self.refund_repository = None  # type: ignore[assignment]
        self.webhook_subscription_repository = None  # type: ignore[assignment]
        self.webhook_delivery_repository = None  # type: ignore[assignment]

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc:
            await self.rollback()
        else:
            # 只读或已显式提交时不再自动提交
            if not self._readonly and not self._committed:
                await self.commit()

    @abstractmethod
    async def commit(self) -> None:
        """提交事务"""
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """回滚事务"""
        ...
