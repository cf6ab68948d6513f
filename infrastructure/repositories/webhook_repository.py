"""
Webhook 仓储实现
"""
from typing import Optional, List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from domain.webhook.entity import DeliveryStatus, WebhookDelivery, WebhookSubscription
from domain.webhook.repository import WebhookDeliveryRepository, WebhookSubscriptionRepository
from infrastructure.models.webhook import WebhookEventModel, WebhookSubscriptionModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyWebhookSubscriptionRepository(WebhookSubscriptionRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WebhookSubscriptionModel) -> WebhookSubscription:
        return WebhookSubscription(
            id=model.id,
            merchant_id=model.merchant_id,
            url=model.url,
            events=list(model.events or []),
            secret=model.secret,
            active=bool(model.active),
            created_at=model.created_at,
        )

    async def create(self, subscription: WebhookSubscription) -> WebhookSubscription:
        db_sub = WebhookSubscriptionModel(
            id=subscription.id,
            merchant_id=subscription.merchant_id,
            url=subscription.url,
            events=list(subscription.events),
            secret=subscription.secret,
            active=subscription.active,
            created_at=subscription.created_at,
        )
        self.session.add(db_sub)
        await self.session.flush()
        await self.session.refresh(db_sub)
        logger.info(
            "webhook_subscription_created",
            subscription_id=db_sub.id,
            merchant_id=db_sub.merchant_id,
            events=db_sub.events,
        )
        return self._to_entity(db_sub)

    async def get_by_id(self, subscription_id: str) -> Optional[WebhookSubscription]:
        result = await self.session.execute(
            select(WebhookSubscriptionModel).where(WebhookSubscriptionModel.id == subscription_id)
        )
        db_sub = result.scalar_one_or_none()
        return self._to_entity(db_sub) if db_sub else None

    async def update(self, subscription: WebhookSubscription) -> WebhookSubscription:
        result = await self.session.execute(
            select(WebhookSubscriptionModel).where(WebhookSubscriptionModel.id == subscription.id)
        )
        db_sub = result.scalar_one_or_none()
        if not db_sub:
            raise ValueError(f"Webhook subscription with id {subscription.id} not found")

        db_sub.url = subscription.url
        db_sub.events = list(subscription.events)
        db_sub.active = subscription.active

        await self.session.flush()
        await self.session.refresh(db_sub)
        logger.info("webhook_subscription_updated", subscription_id=db_sub.id, active=db_sub.active)
        return self._to_entity(db_sub)

    async def list_by_merchant(self, merchant_id: str, *, active_only: bool = False) -> List[WebhookSubscription]:
        query = select(WebhookSubscriptionModel).where(WebhookSubscriptionModel.merchant_id == merchant_id)
        if active_only:
            query = query.where(WebhookSubscriptionModel.active.is_(True))
        query = query.order_by(WebhookSubscriptionModel.created_at.asc())
        result = await self.session.execute(query)
        return [self._to_entity(s) for s in result.scalars().all()]


class SQLAlchemyWebhookDeliveryRepository(WebhookDeliveryRepository):

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: WebhookEventModel) -> WebhookDelivery:
        return WebhookDelivery(
            id=model.id,
            subscription_id=model.subscription_id,
            event_type=model.event_type,
            payload=model.payload,
            status=DeliveryStatus(model.status),
            attempts=model.attempts or 0,
            last_attempt=model.last_attempt,
            response_code=model.response_code,
            response_body=model.response_body,
            created_at=model.created_at,
        )

    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        db_event = WebhookEventModel(
            id=delivery.id,
            subscription_id=delivery.subscription_id,
            event_type=delivery.event_type,
            payload=delivery.payload,
            status=delivery.status.value,
            attempts=delivery.attempts,
            last_attempt=delivery.last_attempt,
            response_code=delivery.response_code,
            response_body=delivery.response_body,
            created_at=delivery.created_at,
        )
        self.session.add(db_event)
        await self.session.flush()
        await self.session.refresh(db_event)
        return self._to_entity(db_event)

    async def get_by_id(self, delivery_id: str) -> Optional[WebhookDelivery]:
        result = await self.session.execute(
            select(WebhookEventModel).where(WebhookEventModel.id == delivery_id)
        )
        db_event = result.scalar_one_or_none()
        return self._to_entity(db_event) if db_event else None

    async def update(self, delivery: WebhookDelivery) -> WebhookDelivery:
        result = await self.session.execute(
            select(WebhookEventModel).where(WebhookEventModel.id == delivery.id)
        )
        db_event = result.scalar_one_or_none()
        if not db_event:
            raise ValueError(f"Webhook delivery with id {delivery.id} not found")

        db_event.status = delivery.status.value
        db_event.attempts = delivery.attempts
        db_event.last_attempt = delivery.last_attempt
        db_event.response_code = delivery.response_code
        db_event.response_body = delivery.response_body

        await self.session.flush()
        await self.session.refresh(db_event)
        return self._to_entity(db_event)

    async def list_pending(self, limit: int = 500) -> List[WebhookDelivery]:
        result = await self.session.execute(
            select(WebhookEventModel)
            .where(WebhookEventModel.status == DeliveryStatus.PENDING.value)
            .order_by(WebhookEventModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(e) for e in result.scalars().all()]

    async def list_by_subscriptions(self, subscription_ids: List[str], limit: int = 100) -> List[WebhookDelivery]:
        if not subscription_ids:
            return []
        result = await self.session.execute(
            select(WebhookEventModel)
            .where(WebhookEventModel.subscription_id.in_(subscription_ids))
            .order_by(WebhookEventModel.created_at.desc())
            .limit(limit)
        )
        return [self._to_entity(e) for e in result.scalars().all()]
