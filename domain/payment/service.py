"""
支付领域服务 - 编排支付与退款的状态转换并收集领域事件
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
import uuid

from .entity import Payment, Refund, PaymentStatus, RefundStatus
from .repository import PaymentRepository, RefundRepository
from .events import (
    PaymentCreated,
    PaymentEvent,
    PaymentFailed,
    PaymentRefunded,
    PaymentSucceeded,
)
from domain.common.timeutils import utcnow
from domain.common.exceptions import (
    DomainValidationException,
    PaymentNotFoundException,
    PaymentNotRefundableException,
    RefundNotFoundException,
)


class PaymentDomainService:
    """
    支付领域服务

    职责：
    1. 加载聚合并调用实体上的状态转换
    2. 只有实际发生转换时才记录领域事件（重复确认不会重复通知）
    3. 退款业务规则（归属、状态、金额、币种）
    """

    def __init__(
        self,
        payment_repository: PaymentRepository,
        refund_repository: RefundRepository
    ):
        self.payment_repository = payment_repository
        self.refund_repository = refund_repository
        self.events: List[PaymentEvent] = []  # 领域事件收集

    async def _load_payment(self, payment_id: str, *, for_update: bool = True) -> Payment:
        payment = await self.payment_repository.get_by_id(payment_id, for_update=for_update)
        if not payment:
            raise PaymentNotFoundException(payment_id)
        return payment

    async def create_payment(
        self,
        merchant_id: str,
        amount: Decimal,
        currency: str,
        merchant_wallet: str,
        expires_at: datetime,
        settlement_currency: Optional[str] = None,
        description: Optional[str] = None,
        customer_email: Optional[str] = None,
        metadata: Optional[dict] = None
    ) -> Payment:
        """创建支付记录（实体内部会进行金额校验）"""
        now = utcnow()
        payment = Payment(
            id=str(uuid.uuid4()),
            merchant_id=merchant_id,
            amount=amount,
            currency=currency,
            settlement_currency=settlement_currency or currency,
            status=PaymentStatus.CREATED,
            merchant_wallet=merchant_wallet,
            description=description,
            customer_email=customer_email,
            created_at=now,
            updated_at=now,
            expires_at=expires_at,
            metadata=metadata or {},
        )
        created = await self.payment_repository.create(payment)
        self.events.append(PaymentCreated(payment=created))
        return created

    async def submit_transaction(
        self,
        payment_id: str,
        tx_hash: str,
        payer_wallet: Optional[str],
        customer_email: Optional[str] = None,
        metadata_updates: Optional[dict] = None,
    ) -> Payment:
        payment = await self._load_payment(payment_id)
        changed = payment.submit_transaction(tx_hash, payer_wallet)
        if customer_email and customer_email != payment.customer_email:
            payment.customer_email = customer_email
            changed = True
        for key, value in (metadata_updates or {}).items():
            payment.update_metadata(key, value)
            changed = True
        if not changed:
            return payment
        return await self.payment_repository.update(payment)

    async def confirm_payment(
        self,
        payment_id: str,
        tx_hash: Optional[str] = None,
        payer_wallet: Optional[str] = None,
        settled_at: Optional[datetime] = None,
    ) -> Payment:
        """
        确认支付成功

        已确认的支付再次确认直接返回现有记录，不产生事件
        """
        payment = await self._load_payment(payment_id)
        if not payment.confirm(tx_hash, payer_wallet, settled_at):
            return payment
        updated = await self.payment_repository.update(payment)
        self.events.append(PaymentSucceeded(payment=updated))
        return updated

    async def fail_payment(self, payment_id: str, reason: Optional[str] = None) -> Payment:
        """标记支付失败"""
        payment = await self._load_payment(payment_id)
        if not payment.fail(reason):
            return payment
        updated = await self.payment_repository.update(payment)
        self.events.append(PaymentFailed(payment=updated, reason=reason))
        return updated

    async def expire_payment(self, payment_id: str) -> Payment:
        """
        过期支付

        在同一事务内重新读取当前状态，已确认/已退款时直接返回
        """
        payment = await self._load_payment(payment_id)
        if not payment.expire():
            return payment
        return await self.payment_repository.update(payment)

    async def create_refund(
        self,
        payment_id: str,
        merchant_id: str,
        amount: Decimal,
        currency: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Refund:
        """
        创建退款意图

        业务规则：
        1. 支付必须存在且属于该商户
        2. 支付为 confirmed 且没有已完成的退款
        3. 退款金额不超过支付金额，币种与支付一致
        """
        payment = await self._load_payment(payment_id)
        if payment.merchant_id != merchant_id:
            raise PaymentNotFoundException(payment_id)

        has_completed = await self.refund_repository.has_completed_for_payment(payment_id)
        payment.ensure_refundable(amount, has_completed_refund=has_completed)

        currency = (currency or payment.currency).upper()
        if currency not in {payment.currency.upper(), (payment.settlement_currency or "").upper()}:
            raise DomainValidationException(
                f"Refund currency {currency} does not match payment currency {payment.currency}",
                field="currency",
            )

        now = utcnow()
        refund = Refund(
            id=str(uuid.uuid4()),
            payment_id=payment_id,
            merchant_id=merchant_id,
            amount=amount,
            currency=currency,
            status=RefundStatus.PENDING,
            reason=reason,
            created_at=now,
            updated_at=now,
        )
        return await self.refund_repository.create(refund)

    async def complete_refund(self, refund_id: str, tx_hash: str) -> tuple[Refund, Payment]:
        """
        完成退款：退款记为 completed，父支付转为 refunded

        返回：(更新后的Refund, 更新后的Payment)
        """
        refund = await self.refund_repository.get_by_id(refund_id, for_update=True)
        if not refund:
            raise RefundNotFoundException(refund_id)
        payment = await self._load_payment(refund.payment_id)

        # 同一支付只能有一笔退款完成；其余 pending 意图不能再把 refunded 支付“再退一次”
        if refund.status == RefundStatus.PENDING and payment.status != PaymentStatus.CONFIRMED:
            reason = "Payment already refunded" if payment.status == PaymentStatus.REFUNDED else None
            raise PaymentNotRefundableException(payment.status.value, reason)

        if not refund.complete(tx_hash):
            return refund, payment

        payment.mark_refunded()
        updated_refund = await self.refund_repository.update(refund)
        updated_payment = await self.payment_repository.update(payment)

        self.events.append(PaymentRefunded(payment=updated_payment, refund=updated_refund))
        return updated_refund, updated_payment

    def clear_events(self) -> List[PaymentEvent]:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
