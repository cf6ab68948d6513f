"""
Webhook 领域实体 - 订阅与投递记录
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from domain.common.timeutils import ensure_utc, utcnow


class DeliveryStatus(str, Enum):
    """投递状态枚举"""
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class WebhookSubscription:
    """商户注册的回调端点"""

    id: Optional[str]
    merchant_id: str
    url: str
    events: list[str]
    secret: str
    active: bool = True
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.events = list(self.events or [])
        self.created_at = ensure_utc(self.created_at)

    def wants(self, event_type: str) -> bool:
        return self.active and event_type in self.events


@dataclass
class WebhookDelivery:
    """
    单次事件到单个订阅的投递记录（审计轨迹）

    每次尝试后更新 attempts / last_attempt / response_code / response_body；
    到达 delivered 或最终 failed 后不再变更。
    """

    id: Optional[str]
    subscription_id: str
    event_type: str
    payload: str
    status: DeliveryStatus = DeliveryStatus.PENDING
    attempts: int = 0
    last_attempt: Optional[datetime] = None
    response_code: Optional[int] = None
    response_body: Optional[str] = None
    created_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = DeliveryStatus(self.status)
        self.last_attempt = ensure_utc(self.last_attempt)
        self.created_at = ensure_utc(self.created_at)

    @property
    def is_final(self) -> bool:
        return self.status in (DeliveryStatus.DELIVERED, DeliveryStatus.FAILED)

    def record_attempt(
        self,
        response_code: int,
        response_body: Optional[str],
        *,
        delivered: bool,
        final: bool,
        body_limit: int = 1000,
    ) -> None:
        """记录一次投递尝试；response_code 为 0 表示传输层失败"""
        if self.is_final:
            return
        self.attempts += 1
        self.last_attempt = utcnow()
        self.response_code = response_code
        self.response_body = (response_body or "")[:body_limit]
        if delivered:
            self.status = DeliveryStatus.DELIVERED
        elif final:
            self.status = DeliveryStatus.FAILED

    def abandon(self, reason: str) -> None:
        """订阅已停用或删除：不再尝试，直接标记 failed"""
        if self.is_final:
            return
        self.status = DeliveryStatus.FAILED
        self.last_attempt = utcnow()
        self.response_code = 0
        self.response_body = reason
