"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.types import condecimal

from domain.payment.validators import is_valid_tx_hash, is_valid_wallet_address


def _upper_currency(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    u = v.strip().upper()
    if not u or len(u) > 16 or not u.isalnum():
        raise ValueError("currency must be an alphanumeric asset symbol")
    return u


class CreatePaymentRequest(BaseModel):
    amount: condecimal(gt=0)  # type: ignore[valid-type]
    merchant_wallet: str
    currency: Optional[str] = None
    settlement_currency: Optional[str] = None
    description: Optional[str] = None
    customer_email: Optional[str] = None
    expires_in_minutes: Optional[int] = Field(default=None, gt=0)
    metadata: Optional[dict[str, Any]] = None

    @field_validator("currency", "settlement_currency")
    @classmethod
    def _validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return _upper_currency(v)

    @field_validator("merchant_wallet")
    @classmethod
    def _validate_wallet(cls, v: str) -> str:
        if not is_valid_wallet_address(v):
            raise ValueError("merchant_wallet must be a 0x-prefixed 40 hex character address")
        return v


class SubmitTransactionRequest(BaseModel):
    tx_hash: str
    payer_wallet: str
    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    gas_sponsored: Optional[bool] = None

    @field_validator("tx_hash")
    @classmethod
    def _validate_tx_hash(cls, v: str) -> str:
        if not is_valid_tx_hash(v):
            raise ValueError("tx_hash must be a 0x-prefixed 64 hex character hash")
        return v

    @field_validator("payer_wallet")
    @classmethod
    def _validate_payer_wallet(cls, v: str) -> str:
        if not is_valid_wallet_address(v):
            raise ValueError("payer_wallet must be a 0x-prefixed 40 hex character address")
        return v

    def metadata_updates(self) -> dict[str, Any]:
        """customerName / gasSponsored 合并进 metadata（键名与 webhook 载荷保持一致）"""
        updates: dict[str, Any] = {}
        if self.customer_name:
            updates["customerName"] = self.customer_name
        if self.gas_sponsored is not None:
            updates["gasSponsored"] = self.gas_sponsored
        return updates


class CreateRefundRequest(BaseModel):
    payment_id: str
    amount: Decimal
    currency: Optional[str] = None
    reason: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, v: Optional[str]) -> Optional[str]:
        return _upper_currency(v)


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    merchant_id: str
    amount: Decimal
    currency: str
    settlement_currency: Optional[str] = None
    status: str
    merchant_wallet: Optional[str] = None
    payer_wallet: Optional[str] = None
    tx_hash: Optional[str] = None
    settlement_time: Optional[int] = None
    description: Optional[str] = None
    customer_email: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    explorer_link: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("status", mode="before")
    @classmethod
    def _enum_value(cls, v: Any) -> Any:
        return getattr(v, "value", v)


class RefundResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    payment_id: str
    merchant_id: str
    amount: Decimal
    currency: str
    status: str
    tx_hash: Optional[str] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    explorer_link: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _enum_value(cls, v: Any) -> Any:
        return getattr(v, "value", v)
