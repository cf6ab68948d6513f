"""
Webhook DTOs (Pydantic v2).
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from domain.payment.events import WEBHOOK_EVENT_TYPES


class WebhookResponse(BaseModel):
    """Outcome of one HTTP delivery attempt; status_code 0 means transport failure."""

    status_code: int
    body: str = ""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


class CreateWebhookSubscription(BaseModel):
    url: str
    events: list[str] = Field(min_length=1)
    secret: Optional[str] = Field(default=None, min_length=16)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        v = v.strip()
        if not (v.startswith("https://") or v.startswith("http://")):
            raise ValueError("url must be an http(s) URL")
        return v

    @field_validator("events")
    @classmethod
    def _validate_events(cls, v: list[str]) -> list[str]:
        unknown = sorted(set(v) - WEBHOOK_EVENT_TYPES)
        if unknown:
            raise ValueError(f"unknown event types: {', '.join(unknown)}")
        # 去重并保持顺序
        return list(dict.fromkeys(v))


class WebhookSubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    merchant_id: str
    url: str
    events: list[str]
    active: bool
    created_at: Optional[datetime] = None
    # 仅在注册时返回一次
    secret: Optional[str] = None


class WebhookDeliveryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    subscription_id: str
    event_type: str
    payload: str
    status: str
    attempts: int
    last_attempt: Optional[datetime] = None
    response_code: Optional[int] = None
    response_body: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _enum_value(cls, v):
        return getattr(v, "value", v)
