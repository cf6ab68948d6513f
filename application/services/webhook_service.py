"""
Webhook 订阅管理应用服务
"""
from __future__ import annotations

import secrets
import uuid
from typing import Callable, List

from application.dtos.webhooks import (
    CreateWebhookSubscription,
    WebhookDeliveryResponse,
    WebhookSubscriptionResponse,
)
from core.logging_config import get_logger
from domain.common.exceptions import WebhookSubscriptionNotFoundException
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.webhook.entity import WebhookSubscription


logger = get_logger(__name__)


def _to_response(subscription: WebhookSubscription, *, secret: str | None = None) -> WebhookSubscriptionResponse:
    # 密钥只在注册时返回一次
    return WebhookSubscriptionResponse(
        id=subscription.id,
        merchant_id=subscription.merchant_id,
        url=subscription.url,
        events=list(subscription.events),
        active=subscription.active,
        created_at=subscription.created_at,
        secret=secret,
    )


class WebhookSubscriptionService:
    """注册、停用、查询订阅，以及按商户查看投递审计记录"""

    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork]):
        self._uow_factory = uow_factory

    async def register(self, merchant_id: str, req: CreateWebhookSubscription) -> WebhookSubscriptionResponse:
        """注册订阅；未提供 secret 时生成一个，仅在此处返回明文"""
        secret = req.secret or secrets.token_hex(32)
        async with self._uow_factory() as uow:
            subscription = await uow.webhook_subscription_repository.create(
                WebhookSubscription(
                    id=str(uuid.uuid4()),
                    merchant_id=merchant_id,
                    url=req.url,
                    events=req.events,
                    secret=secret,
                    active=True,
                    created_at=utcnow(),
                )
            )
        return _to_response(subscription, secret=secret)

    async def deactivate(self, merchant_id: str, subscription_id: str) -> WebhookSubscriptionResponse:
        async with self._uow_factory() as uow:
            subscription = await uow.webhook_subscription_repository.get_by_id(subscription_id)
            # 不暴露其它商户的订阅是否存在
            if subscription is None or subscription.merchant_id != merchant_id:
                raise WebhookSubscriptionNotFoundException(subscription_id)
            if subscription.active:
                subscription.active = False
                subscription = await uow.webhook_subscription_repository.update(subscription)
                logger.info("webhook_subscription_deactivated", subscription_id=subscription_id)
        return _to_response(subscription)

    async def list_subscriptions(self, merchant_id: str, *, active_only: bool = False) -> List[WebhookSubscriptionResponse]:
        async with self._uow_factory(readonly=True) as uow:
            subscriptions = await uow.webhook_subscription_repository.list_by_merchant(
                merchant_id, active_only=active_only
            )
        return [_to_response(s) for s in subscriptions]

    async def list_deliveries(self, merchant_id: str, limit: int = 100) -> List[WebhookDeliveryResponse]:
        """商户所有订阅的投递记录，最新在前"""
        async with self._uow_factory(readonly=True) as uow:
            subscriptions = await uow.webhook_subscription_repository.list_by_merchant(merchant_id)
            deliveries = await uow.webhook_delivery_repository.list_by_subscriptions(
                [s.id for s in subscriptions], limit=limit
            )
        return [WebhookDeliveryResponse.model_validate(d) for d in deliveries]
