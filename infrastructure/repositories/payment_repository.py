"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from typing import Optional, List
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func

from domain.payment.entity import Payment, Refund, PaymentStatus, RefundStatus
from domain.payment.repository import PaymentRepository, RefundRepository
from domain.payment.state_machine import NON_TERMINAL_STATUSES
from infrastructure.models.payment import PaymentModel, RefundModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPaymentRepository(PaymentRepository):
    """支付仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentModel) -> Payment:
        """将数据库模型转换为领域实体"""
        return Payment(
            id=model.id,
            merchant_id=model.merchant_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            settlement_currency=model.settlement_currency,
            status=PaymentStatus(model.status),
            merchant_wallet=model.merchant_wallet,
            payer_wallet=model.payer_wallet,
            tx_hash=model.tx_hash,
            settlement_time=model.settlement_time,
            description=model.description,
            customer_email=model.customer_email,
            created_at=model.created_at,
            updated_at=model.updated_at,
            expires_at=model.expires_at,
            confirmed_at=model.confirmed_at,
            # JSON 列不追踪原地修改，这里复制一份
            metadata=dict(model.extra_metadata or {}),
        )

    def _to_model(self, entity: Payment) -> PaymentModel:
        """将领域实体转换为数据库模型"""
        return PaymentModel(
            id=entity.id,
            merchant_id=entity.merchant_id,
            amount=entity.amount,
            currency=entity.currency,
            settlement_currency=entity.settlement_currency,
            status=entity.status.value,
            merchant_wallet=entity.merchant_wallet,
            payer_wallet=entity.payer_wallet,
            tx_hash=entity.tx_hash,
            settlement_time=entity.settlement_time,
            description=entity.description,
            customer_email=entity.customer_email,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            expires_at=entity.expires_at,
            confirmed_at=entity.confirmed_at,
            extra_metadata=dict(entity.metadata or {}),
        )

    async def _get_model(self, payment_id: str, *, for_update: bool = False) -> Optional[PaymentModel]:
        query = select(PaymentModel).where(PaymentModel.id == payment_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        db_payment = self._to_model(payment)
        self.session.add(db_payment)
        await self.session.flush()
        await self.session.refresh(db_payment)
        logger.info(
            "payment_created",
            payment_id=db_payment.id,
            merchant_id=db_payment.merchant_id,
            amount=str(db_payment.amount),
            currency=db_payment.currency,
        )
        return self._to_entity(db_payment)

    async def get_by_id(self, payment_id: str, *, for_update: bool = False) -> Optional[Payment]:
        """根据ID获取支付"""
        db_payment = await self._get_model(payment_id, for_update=for_update)
        return self._to_entity(db_payment) if db_payment else None

    async def update(self, payment: Payment) -> Payment:
        """更新支付记录"""
        db_payment = await self._get_model(payment.id)

        if not db_payment:
            raise ValueError(f"Payment with id {payment.id} not found")

        db_payment.status = payment.status.value
        db_payment.payer_wallet = payment.payer_wallet
        db_payment.tx_hash = payment.tx_hash
        db_payment.settlement_time = payment.settlement_time
        db_payment.customer_email = payment.customer_email
        db_payment.updated_at = payment.updated_at
        db_payment.confirmed_at = payment.confirmed_at
        db_payment.extra_metadata = dict(payment.metadata or {})

        await self.session.flush()
        await self.session.refresh(db_payment)

        logger.info(
            "payment_updated",
            payment_id=db_payment.id,
            merchant_id=db_payment.merchant_id,
            status=db_payment.status
        )

        return self._to_entity(db_payment)

    async def list_awaiting_confirmation(self, limit: int = 500) -> List[Payment]:
        """pending 且已有 tx_hash 的支付，按创建时间升序"""
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.status == PaymentStatus.PENDING.value,
                PaymentModel.tx_hash.is_not(None),
            )
            .order_by(PaymentModel.created_at.asc())
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_expirable(self, now: datetime, limit: int = 500) -> List[Payment]:
        """未终态且已过截止时间的支付"""
        result = await self.session.execute(
            select(PaymentModel)
            .where(
                PaymentModel.status.in_([s.value for s in NON_TERMINAL_STATUSES]),
                PaymentModel.expires_at.is_not(None),
                PaymentModel.expires_at < now,
            )
            .order_by(PaymentModel.expires_at.asc())
            .limit(limit)
        )
        return [self._to_entity(p) for p in result.scalars().all()]

    async def list_by_merchant(
        self,
        merchant_id: str,
        skip: int = 0,
        limit: int = 100,
        status: Optional[PaymentStatus] = None
    ) -> List[Payment]:
        """获取商户的支付列表"""
        query = select(PaymentModel).where(PaymentModel.merchant_id == merchant_id)

        if status:
            query = query.where(PaymentModel.status == PaymentStatus(status).value)

        query = query.order_by(PaymentModel.created_at.desc()).offset(skip).limit(limit)

        result = await self.session.execute(query)
        return [self._to_entity(p) for p in result.scalars().all()]


class SQLAlchemyRefundRepository(RefundRepository):
    """退款仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: RefundModel) -> Refund:
        return Refund(
            id=model.id,
            payment_id=model.payment_id,
            merchant_id=model.merchant_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=RefundStatus(model.status),
            tx_hash=model.tx_hash,
            reason=model.reason,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Refund) -> RefundModel:
        return RefundModel(
            id=entity.id,
            payment_id=entity.payment_id,
            merchant_id=entity.merchant_id,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            tx_hash=entity.tx_hash,
            reason=entity.reason,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def create(self, refund: Refund) -> Refund:
        """创建退款记录"""
        db_refund = self._to_model(refund)
        self.session.add(db_refund)
        await self.session.flush()
        await self.session.refresh(db_refund)

        logger.info(
            "refund_created",
            refund_id=db_refund.id,
            payment_id=db_refund.payment_id,
            amount=str(db_refund.amount)
        )

        return self._to_entity(db_refund)

    async def get_by_id(self, refund_id: str, *, for_update: bool = False) -> Optional[Refund]:
        """根据ID获取退款"""
        query = select(RefundModel).where(RefundModel.id == refund_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        db_refund = result.scalar_one_or_none()
        return self._to_entity(db_refund) if db_refund else None

    async def update(self, refund: Refund) -> Refund:
        """更新退款记录"""
        result = await self.session.execute(
            select(RefundModel).where(RefundModel.id == refund.id)
        )
        db_refund = result.scalar_one_or_none()

        if not db_refund:
            raise ValueError(f"Refund with id {refund.id} not found")

        db_refund.status = refund.status.value
        db_refund.tx_hash = refund.tx_hash
        db_refund.updated_at = refund.updated_at

        await self.session.flush()
        await self.session.refresh(db_refund)

        logger.info(
            "refund_updated",
            refund_id=db_refund.id,
            payment_id=db_refund.payment_id,
            status=db_refund.status
        )

        return self._to_entity(db_refund)

    async def list_by_payment(self, payment_id: str) -> List[Refund]:
        """获取支付的退款列表"""
        result = await self.session.execute(
            select(RefundModel)
            .where(RefundModel.payment_id == payment_id)
            .order_by(RefundModel.created_at.desc())
        )
        return [self._to_entity(r) for r in result.scalars().all()]

    async def has_completed_for_payment(self, payment_id: str) -> bool:
        result = await self.session.execute(
            select(func.count(RefundModel.id)).where(
                RefundModel.payment_id == payment_id,
                RefundModel.status == RefundStatus.COMPLETED.value
            )
        )
        return result.scalar_one() > 0
