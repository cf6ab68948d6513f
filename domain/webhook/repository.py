"""
Webhook 仓储接口
"""
from abc import ABC, abstractmethod
from typing import List, Optional

from .entity import WebhookDelivery, WebhookSubscription


class WebhookSubscriptionRepository(ABC):

    @abstractmethod
    async def create(self, subscription: WebhookSubscription) -> WebhookSubscription:
        pass

    @abstractmethod
    async def get_by_id(self, subscription_id: str) -> Optional[WebhookSubscription]:
        pass

    @abstractmethod
    async def update(self, subscription: WebhookSubscription) -> WebhookSubscription:
        pass

    @abstractmethod
    async def list_by_merchant(self, merchant_id: str, *, active_only: bool = False) -> List[WebhookSubscription]:
        pass


class WebhookDeliveryRepository(ABC):

    @abstractmethod
    async def create(self, delivery: WebhookDelivery) -> WebhookDelivery:
        pass

    @abstractmethod
    async def get_by_id(self, delivery_id: str) -> Optional[WebhookDelivery]:
        pass

    @abstractmethod
    async def update(self, delivery: WebhookDelivery) -> WebhookDelivery:
        pass

    @abstractmethod
    async def list_pending(self, limit: int = 500) -> List[WebhookDelivery]:
        """status=pending 的投递记录（按创建时间升序）"""
        pass

    @abstractmethod
    async def list_by_subscriptions(self, subscription_ids: List[str], limit: int = 100) -> List[WebhookDelivery]:
        """按创建时间倒序"""
        pass
