"""
支付领域实体 - 支付聚合根
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from domain.common.timeutils import ensure_utc, utcnow
from domain.common.exceptions import (
    DomainValidationException,
    InvalidTransitionException,
    PaymentNotRefundableException,
    RefundExceedsPaymentException,
)
from domain.payment.state_machine import (
    NON_TERMINAL_STATUSES,
    PaymentAction,
    PaymentStatus,
    apply_transition,
)


class RefundStatus(str, Enum):
    """退款状态枚举"""
    PENDING = "pending"
    COMPLETED = "completed"


@dataclass
class Payment:
    """
    支付聚合根 - 管理支付生命周期

    业务规则：
    1. 金额必须大于0，使用 Decimal 表示
    2. 状态转换必须遵循状态机（domain.payment.state_machine）
    3. 进入 confirmed / failed 之前必须已有 tx_hash
    4. 已确认或已退款的支付不会被过期覆盖
    """

    id: Optional[str]
    merchant_id: str
    amount: Decimal
    currency: str
    status: PaymentStatus
    merchant_wallet: Optional[str] = None
    settlement_currency: Optional[str] = None

    # 链上信息
    payer_wallet: Optional[str] = None
    tx_hash: Optional[str] = None
    settlement_time: Optional[int] = None  # 创建到确认的秒数

    # 可选字段
    description: Optional[str] = None
    customer_email: Optional[str] = None

    # 时间戳
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    metadata: dict = field(default_factory=dict)

    def __post_init__(self):
        """初始化后验证"""
        self.amount = Decimal(str(self.amount))
        self.status = PaymentStatus(self.status)
        self._validate_amount()
        if not self.settlement_currency:
            self.settlement_currency = self.currency
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)
        self.expires_at = ensure_utc(self.expires_at)
        self.confirmed_at = ensure_utc(self.confirmed_at)
        if self.metadata is None:
            self.metadata = {}

    def _validate_amount(self) -> None:
        if not self.amount.is_finite() or self.amount <= 0:
            raise DomainValidationException(
                f"Payment amount must be positive: {self.amount}",
                field="amount",
            )

    @property
    def is_terminal(self) -> bool:
        return self.status not in NON_TERMINAL_STATUSES

    def is_expired_at(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < ensure_utc(now)

    def submit_transaction(self, tx_hash: str, payer_wallet: Optional[str]) -> bool:
        """
        记录付款方提交的交易，进入 pending

        同一 tx_hash 重复提交为空操作，返回 False
        """
        if self.status == PaymentStatus.PENDING and self.tx_hash == tx_hash:
            if payer_wallet and not self.payer_wallet:
                self.payer_wallet = payer_wallet
                self.updated_at = utcnow()
            return False
        self.status = apply_transition(self.status, PaymentAction.SUBMIT)
        self.tx_hash = tx_hash
        self.payer_wallet = payer_wallet or self.payer_wallet
        self.updated_at = utcnow()
        return True

    def confirm(
        self,
        tx_hash: Optional[str] = None,
        payer_wallet: Optional[str] = None,
        settled_at: Optional[datetime] = None,
    ) -> bool:
        """
        标记链上确认成功

        settled_at 优先使用链上区块时间，缺省时退回当前时间。
        已确认的支付再次确认为空操作（返回 False），但交易哈希不一致时拒绝。
        """
        target = apply_transition(self.status, PaymentAction.CONFIRM)
        if target is None:
            if tx_hash and self.tx_hash and tx_hash != self.tx_hash:
                raise InvalidTransitionException(
                    self.status.value,
                    "confirm payment",
                    reason="already confirmed by a different transaction",
                )
            return False

        tx_hash = tx_hash or self.tx_hash
        if not tx_hash:
            raise InvalidTransitionException(
                self.status.value, "confirm payment", reason="no transaction submitted"
            )

        confirmed_at = ensure_utc(settled_at) or utcnow()
        self.status = target
        self.tx_hash = tx_hash
        self.payer_wallet = payer_wallet or self.payer_wallet
        self.confirmed_at = confirmed_at
        if self.created_at is not None:
            self.settlement_time = max(0, int((confirmed_at - self.created_at).total_seconds()))
        else:
            self.settlement_time = 0
        self.updated_at = utcnow()
        return True

    def fail(self, reason: Optional[str] = None) -> bool:
        """标记失败，原因写入 metadata.failureReason"""
        target = apply_transition(self.status, PaymentAction.FAIL)
        if target is None:
            return False
        if not self.tx_hash:
            raise InvalidTransitionException(
                self.status.value, "fail payment", reason="no transaction submitted"
            )
        self.status = target
        if reason:
            self.update_metadata("failureReason", reason)
        self.updated_at = utcnow()
        return True

    def expire(self) -> bool:
        """过期；已有终态（尤其是 confirmed / refunded）时为空操作"""
        target = apply_transition(self.status, PaymentAction.EXPIRE)
        if target is None:
            return False
        self.status = target
        self.updated_at = utcnow()
        return True

    def ensure_refundable(self, amount: Decimal, *, has_completed_refund: bool) -> None:
        """
        退款前置校验

        业务规则：
        1. 只有 confirmed 且尚无已完成退款的支付才能退款
        2. 退款金额必须大于0且不超过支付金额
        """
        if self.status == PaymentStatus.REFUNDED or has_completed_refund:
            raise PaymentNotRefundableException(self.status.value, "Payment already refunded")
        if self.status != PaymentStatus.CONFIRMED:
            raise PaymentNotRefundableException(self.status.value)
        if amount <= 0:
            raise DomainValidationException(
                f"Refund amount must be positive: {amount}", field="amount"
            )
        if amount > self.amount:
            raise RefundExceedsPaymentException(amount, self.amount)

    def mark_refunded(self) -> bool:
        target = apply_transition(self.status, PaymentAction.REFUND)
        if target is None:
            return False
        self.status = target
        self.updated_at = utcnow()
        return True

    def update_metadata(self, key: str, value: Any) -> None:
        if self.metadata is None:
            self.metadata = {}
        self.metadata[key] = value
        self.updated_at = utcnow()


@dataclass
class Refund:
    """
    退款实体 - 隶属于一笔已确认的支付

    非托管：资金由商户钱包自行转回付款方，这里只记录意图与回执哈希。
    """

    id: Optional[str]
    payment_id: str
    merchant_id: str
    amount: Decimal
    currency: str
    status: RefundStatus
    tx_hash: Optional[str] = None
    reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.amount = Decimal(str(self.amount))
        self.status = RefundStatus(self.status)
        if not self.amount.is_finite() or self.amount <= 0:
            raise DomainValidationException(
                f"Refund amount must be positive: {self.amount}",
                field="amount",
            )
        self.created_at = ensure_utc(self.created_at)
        self.updated_at = ensure_utc(self.updated_at)

    def complete(self, tx_hash: str) -> bool:
        """标记完成；同一哈希重复完成为空操作，完成后不可再变更"""
        if self.status == RefundStatus.COMPLETED:
            if tx_hash != self.tx_hash:
                raise InvalidTransitionException(
                    self.status.value,
                    "complete refund",
                    reason="already completed by a different transaction",
                )
            return False
        self.status = RefundStatus.COMPLETED
        self.tx_hash = tx_hash
        self.updated_at = utcnow()
        return True
