"""
支付数据库模型 - SQLAlchemy ORM模型
注意：这是基础设施层的实现细节，不是领域模型
"""
from sqlalchemy import (
    Column, Integer, String, Numeric, DateTime, Text, JSON,
    Index, ForeignKey
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from .base import Base


class PaymentModel(Base):
    """
    支付数据库模型

    状态转换规则都在 domain.payment.entity.Payment 中，这里只做映射
    """
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, comment="支付ID (uuid4)")
    merchant_id = Column(String(64), nullable=False, index=True, comment="商户ID")

    # 金额（Numeric 保证精确，稳定币保留 6 位小数）
    amount = Column(Numeric(precision=18, scale=6), nullable=False, comment="支付金额")
    currency = Column(String(16), nullable=False, default="USDC", comment="付款币种")
    settlement_currency = Column(String(16), nullable=False, default="USDC", comment="结算币种")

    status = Column(
        String(20),
        nullable=False,
        default="created",
        index=True,
        comment="支付状态: created/pending/confirmed/failed/expired/refunded"
    )

    # 链上信息
    merchant_wallet = Column(String(42), nullable=True, comment="商户收款地址")
    payer_wallet = Column(String(42), nullable=True, comment="付款方地址")
    tx_hash = Column(String(66), nullable=True, index=True, comment="交易哈希")
    settlement_time = Column(Integer, nullable=True, comment="创建到确认的秒数")

    description = Column(Text, nullable=True)
    customer_email = Column(String(255), nullable=True)

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )
    expires_at = Column(DateTime(timezone=True), nullable=True, index=True, comment="过期时间")
    confirmed_at = Column(DateTime(timezone=True), nullable=True, comment="链上确认时间")

    # 使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突
    extra_metadata = Column("metadata", JSON, nullable=True, comment="扩展元数据")

    refunds = relationship("RefundModel", back_populates="payment", lazy="select")

    __table_args__ = (
        Index("ix_payments_merchant_status", "merchant_id", "status"),
        Index("ix_payments_status_expires", "status", "expires_at"),
    )

    def __repr__(self):
        return (
            f"<PaymentModel(id='{self.id}', merchant_id='{self.merchant_id}', "
            f"amount={self.amount}, status='{self.status}')>"
        )


class RefundModel(Base):
    """退款数据库模型（非托管，只记录意图与商户回执哈希）"""
    __tablename__ = "refunds"

    id = Column(String(36), primary_key=True)

    payment_id = Column(
        String(36),
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="关联的支付ID"
    )
    merchant_id = Column(String(64), nullable=False, index=True, comment="商户ID（冗余，便于查询）")

    amount = Column(Numeric(precision=18, scale=6), nullable=False, comment="退款金额")
    currency = Column(String(16), nullable=False, comment="币种")
    status = Column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="退款状态: pending/completed"
    )
    tx_hash = Column(String(66), nullable=True, comment="商户退款交易哈希")
    reason = Column(Text, nullable=True, comment="退款原因")

    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="创建时间"
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        comment="更新时间"
    )

    payment = relationship("PaymentModel", back_populates="refunds")

    __table_args__ = (
        Index("ix_refunds_payment_status", "payment_id", "status"),
    )

    def __repr__(self):
        return (
            f"<RefundModel(id='{self.id}', payment_id='{self.payment_id}', "
            f"amount={self.amount}, status='{self.status}')>"
        )
