"""
Webhook 数据库模型 - 订阅与投递记录
"""
from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON, Boolean,
    Index, ForeignKey
)
from datetime import datetime, timezone

from .base import Base


class WebhookSubscriptionModel(Base):
    __tablename__ = "webhook_subscriptions"

    id = Column(String(36), primary_key=True)
    merchant_id = Column(String(64), nullable=False, index=True, comment="商户ID")
    url = Column(String(2048), nullable=False, comment="回调地址")
    events = Column(JSON, nullable=False, default=list, comment="订阅的事件类型列表")
    secret = Column(String(128), nullable=False, comment="签名密钥")
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_webhook_subscriptions_merchant_active", "merchant_id", "active"),
    )

    def __repr__(self):
        return f"<WebhookSubscriptionModel(id='{self.id}', url='{self.url}', active={self.active})>"


class WebhookEventModel(Base):
    """单次事件对单个订阅的投递记录"""
    __tablename__ = "webhook_events"

    id = Column(String(36), primary_key=True)
    subscription_id = Column(
        String(36),
        ForeignKey("webhook_subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event_type = Column(String(64), nullable=False, comment="事件类型")
    payload = Column(Text, nullable=False, comment="序列化后的请求体（签名原文）")
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="投递状态: pending/delivered/failed"
    )
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt = Column(DateTime(timezone=True), nullable=True)
    response_code = Column(Integer, nullable=True, comment="0 表示传输层失败")
    response_body = Column(Text, nullable=True, comment="截断后的响应体")
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
    )

    def __repr__(self):
        return (
            f"<WebhookEventModel(id='{self.id}', event_type='{self.event_type}', "
            f"status='{self.status}', attempts={self.attempts})>"
        )
