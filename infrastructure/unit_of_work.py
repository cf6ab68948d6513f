"""SQLAlchemy Unit of Work 实现"""
from __future__ import annotations

from typing import Optional, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from domain.common.unit_of_work import AbstractUnitOfWork
from infrastructure.repositories.payment_repository import (
    SQLAlchemyPaymentRepository,
    SQLAlchemyRefundRepository,
)
from infrastructure.repositories.webhook_repository import (
    SQLAlchemyWebhookDeliveryRepository,
    SQLAlchemyWebhookSubscriptionRepository,
)


class SQLAlchemyUnitOfWork(AbstractUnitOfWork):
    """基于SQLAlchemy的Unit of Work；每次 async with 使用一个新会话和事务"""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        *,
        readonly: bool = False,
    ) -> None:
        super().__init__(readonly=readonly)
        self._session_factory = session_factory
        self.session: Optional[AsyncSession] = None

    async def __aenter__(self) -> "SQLAlchemyUnitOfWork":
        self._committed = False
        self.session = self._session_factory()
        self.payment_repository = SQLAlchemyPaymentRepository(self.session)
        self.refund_repository = SQLAlchemyRefundRepository(self.session)
        self.webhook_subscription_repository = SQLAlchemyWebhookSubscriptionRepository(self.session)
        self.webhook_delivery_repository = SQLAlchemyWebhookDeliveryRepository(self.session)
        await self.session.begin()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await super().__aexit__(exc_type, exc, tb)
        finally:
            if self.session is not None:
                await self.session.close()
                self.session = None
            self.payment_repository = None
            self.refund_repository = None
            self.webhook_subscription_repository = None
            self.webhook_delivery_repository = None

    async def commit(self) -> None:
        if self._readonly:
            self._committed = True
            return
        if self.session and self.session.in_transaction():
            await self.session.commit()
        self._committed = True

    async def rollback(self) -> None:
        if self.session and self.session.in_transaction():
            await self.session.rollback()
        self._committed = False


def uow_factory(session_factory: Callable[[], AsyncSession]) -> Callable[..., SQLAlchemyUnitOfWork]:
    """应用服务按需创建 UoW（每个用例一个事务）"""
    def _make(*, readonly: bool = False) -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)
    return _make
