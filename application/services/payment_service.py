"""
支付应用服务 - 编排支付用例

每个用例一个事务；领域事件在事务提交之后才交给 WebhookPublisher，
回滚的转换不会产生通知。
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, Tuple

from application.dtos.payments import (
    CreatePaymentRequest,
    PaymentResponse,
    SubmitTransactionRequest,
)
from application.ports.chain import ChainClient
from application.ports.webhooks import WebhookPublisher
from core.logging_config import get_logger
from domain.common.exceptions import DomainValidationException, PaymentNotFoundException
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Payment, PaymentStatus
from domain.payment.events import PaymentEvent
from domain.payment.service import PaymentDomainService
from domain.payment.validators import is_valid_tx_hash, is_valid_wallet_address
from infrastructure.resilience import retry_transient


logger = get_logger(__name__)

Transition = Callable[[PaymentDomainService], Awaitable[Payment]]


class PaymentApplicationService:
    """支付应用服务 - 创建、提交交易、确认 / 失败 / 过期"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        publisher: WebhookPublisher,
        chain: Optional[ChainClient] = None,
        *,
        default_currency: str = "USDC",
        default_expiry_minutes: int = 30,
        store_retry_attempts: int = 3,
        store_retry_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._uow_factory = uow_factory
        self._publisher = publisher
        self._chain = chain
        self.default_currency = default_currency.upper()
        self.default_expiry_minutes = default_expiry_minutes
        self._store_retry_attempts = store_retry_attempts
        self._store_retry_delay = store_retry_delay
        self._sleep = sleep

    def _to_response(self, payment: Payment) -> PaymentResponse:
        response = PaymentResponse.model_validate(payment)
        if payment.tx_hash and self._chain is not None:
            response.explorer_link = self._chain.explorer_link(payment.tx_hash)
        return response

    async def _transition(self, op: Transition) -> Payment:
        """在独立事务中执行一次状态转换，提交成功后发布事件"""

        async def _run() -> Tuple[Payment, List[PaymentEvent]]:
            async with self._uow_factory() as uow:
                domain_service = PaymentDomainService(uow.payment_repository, uow.refund_repository)
                payment = await op(domain_service)
                events = domain_service.clear_events()
            return payment, events

        payment, events = await retry_transient(
            _run,
            attempts=self._store_retry_attempts,
            initial_delay=self._store_retry_delay,
            sleep=self._sleep,
        )
        if events:
            await self._publisher.publish(events)
        return payment

    async def create_payment(self, merchant_id: str, req: CreatePaymentRequest) -> PaymentResponse:
        """创建支付；币种默认 USDC，结算币种默认与付款币种一致"""
        currency = req.currency or self.default_currency
        expires_in = req.expires_in_minutes or self.default_expiry_minutes
        expires_at = utcnow() + timedelta(minutes=expires_in)

        payment = await self._transition(
            lambda svc: svc.create_payment(
                merchant_id=merchant_id,
                amount=req.amount,
                currency=currency,
                merchant_wallet=req.merchant_wallet,
                expires_at=expires_at,
                settlement_currency=req.settlement_currency or currency,
                description=req.description,
                customer_email=req.customer_email,
                metadata=req.metadata,
            )
        )
        logger.info(
            "payment_create_request",
            payment_id=payment.id,
            merchant_id=merchant_id,
            amount=str(payment.amount),
            currency=payment.currency,
            expires_at=payment.expires_at.isoformat() if payment.expires_at else None,
        )
        return self._to_response(payment)

    async def submit_transaction(self, payment_id: str, req: SubmitTransactionRequest) -> PaymentResponse:
        """付款方提交交易哈希；同一哈希重复提交不会产生新的事件"""
        payment = await self._transition(
            lambda svc: svc.submit_transaction(
                payment_id,
                req.tx_hash,
                req.payer_wallet,
                customer_email=req.customer_email,
                metadata_updates=req.metadata_updates(),
            )
        )
        logger.info("payment_tx_submitted", payment_id=payment_id, tx_hash=req.tx_hash)
        return self._to_response(payment)

    async def confirm_payment(
        self,
        payment_id: str,
        tx_hash: Optional[str] = None,
        payer_wallet: Optional[str] = None,
        *,
        block_number: Optional[int] = None,
        settled_at: Optional[datetime] = None,
    ) -> PaymentResponse:
        """
        确认支付

        settled_at 未给出时尝试用链上区块时间（按 block_number，或通过回执查得），
        链查询失败时退回当前时间。
        """
        if tx_hash is not None and not is_valid_tx_hash(tx_hash):
            raise DomainValidationException("Invalid transaction hash", field="tx_hash")
        if payer_wallet and not is_valid_wallet_address(payer_wallet):
            raise DomainValidationException("Invalid payer wallet address", field="payer_wallet")

        if settled_at is None:
            settled_at = await self._resolve_settled_at(payment_id, tx_hash, block_number)

        payment = await self._transition(
            lambda svc: svc.confirm_payment(payment_id, tx_hash, payer_wallet, settled_at)
        )
        logger.info(
            "payment_confirmed",
            payment_id=payment_id,
            tx_hash=payment.tx_hash,
            settlement_time=payment.settlement_time,
        )
        return self._to_response(payment)

    async def fail_payment(self, payment_id: str, reason: Optional[str] = None) -> PaymentResponse:
        payment = await self._transition(lambda svc: svc.fail_payment(payment_id, reason))
        logger.info("payment_failed", payment_id=payment_id, reason=reason)
        return self._to_response(payment)

    async def expire_payment(self, payment_id: str) -> PaymentResponse:
        """过期；事务内重新读取状态，已确认 / 已退款的支付保持不变"""
        payment = await self._transition(lambda svc: svc.expire_payment(payment_id))
        if payment.status == PaymentStatus.EXPIRED:
            logger.info("payment_expired", payment_id=payment_id)
        return self._to_response(payment)

    async def get_payment(self, payment_id: str, merchant_id: Optional[str] = None) -> PaymentResponse:
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
        if payment is None or (merchant_id is not None and payment.merchant_id != merchant_id):
            raise PaymentNotFoundException(payment_id)
        return self._to_response(payment)

    async def list_payments(
        self,
        merchant_id: str,
        skip: int = 0,
        limit: int = 100,
        status: Optional[PaymentStatus] = None,
    ) -> List[PaymentResponse]:
        async with self._uow_factory(readonly=True) as uow:
            payments = await uow.payment_repository.list_by_merchant(merchant_id, skip, limit, status)
        return [self._to_response(p) for p in payments]

    async def _resolve_settled_at(
        self,
        payment_id: str,
        tx_hash: Optional[str],
        block_number: Optional[int],
    ) -> Optional[datetime]:
        if self._chain is None:
            return None
        try:
            if block_number is None:
                if tx_hash is None:
                    async with self._uow_factory(readonly=True) as uow:
                        current = await uow.payment_repository.get_by_id(payment_id)
                    tx_hash = current.tx_hash if current else None
                if tx_hash is None:
                    return None
                receipt = await self._chain.get_transaction_receipt(tx_hash)
                block_number = receipt.block_number
            if block_number is None:
                return None
            return await self._chain.get_block_timestamp(block_number)
        except Exception as exc:
            logger.warning("payment_block_time_unavailable", payment_id=payment_id, error=str(exc))
            return None
