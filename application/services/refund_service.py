"""
退款应用服务（非托管）

创建退款意图不触碰链上状态；商户自己的钱包完成转账后，
以交易哈希作为回执调用 complete_refund。
"""
from __future__ import annotations

from typing import Callable, List, Optional

from application.dtos.payments import CreateRefundRequest, RefundResponse
from application.ports.webhooks import WebhookPublisher
from core.logging_config import get_logger
from domain.common.exceptions import (
    DomainValidationException,
    PaymentNotFoundException,
    RefundNotFoundException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Refund
from domain.payment.events import ExplorerLink
from domain.payment.service import PaymentDomainService
from domain.payment.validators import is_valid_tx_hash


logger = get_logger(__name__)


class RefundApplicationService:

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        publisher: WebhookPublisher,
        explorer_link: Optional[ExplorerLink] = None,
    ):
        self._uow_factory = uow_factory
        self._publisher = publisher
        self._explorer_link = explorer_link

    def _to_response(self, refund: Refund) -> RefundResponse:
        response = RefundResponse.model_validate(refund)
        if refund.tx_hash and self._explorer_link is not None:
            response.explorer_link = self._explorer_link(refund.tx_hash)
        return response

    async def create_refund_intent(self, merchant_id: str, req: CreateRefundRequest) -> RefundResponse:
        """
        创建退款意图

        业务规则见 PaymentDomainService.create_refund：归属、confirmed、
        尚无已完成退款、金额不超过原支付、币种一致。
        """
        async with self._uow_factory() as uow:
            domain_service = PaymentDomainService(uow.payment_repository, uow.refund_repository)
            refund = await domain_service.create_refund(
                payment_id=req.payment_id,
                merchant_id=merchant_id,
                amount=req.amount,
                currency=req.currency,
                reason=req.reason,
            )
        logger.info(
            "refund_intent_created",
            refund_id=refund.id,
            payment_id=refund.payment_id,
            merchant_id=merchant_id,
            amount=str(refund.amount),
        )
        return self._to_response(refund)

    async def complete_refund(
        self,
        refund_id: str,
        tx_hash: str,
        merchant_id: Optional[str] = None,
    ) -> RefundResponse:
        """
        完成退款：退款 completed，父支付 refunded，并发送一次 payment.refunded

        同一哈希重复完成为空操作，不会重复通知。
        """
        if not is_valid_tx_hash(tx_hash):
            raise DomainValidationException("Invalid transaction hash", field="tx_hash")
        async with self._uow_factory() as uow:
            if merchant_id is not None:
                existing = await uow.refund_repository.get_by_id(refund_id)
                if existing is None or existing.merchant_id != merchant_id:
                    raise RefundNotFoundException(refund_id)
            domain_service = PaymentDomainService(uow.payment_repository, uow.refund_repository)
            refund, payment = await domain_service.complete_refund(refund_id, tx_hash)
            events = domain_service.clear_events()

        if events:
            logger.info(
                "refund_completed",
                refund_id=refund.id,
                payment_id=payment.id,
                tx_hash=refund.tx_hash,
            )
            await self._publisher.publish(events)
        return self._to_response(refund)

    async def get_refund(self, refund_id: str, merchant_id: Optional[str] = None) -> RefundResponse:
        async with self._uow_factory(readonly=True) as uow:
            refund = await uow.refund_repository.get_by_id(refund_id)
        if refund is None or (merchant_id is not None and refund.merchant_id != merchant_id):
            raise RefundNotFoundException(refund_id)
        return self._to_response(refund)

    async def list_refunds(self, payment_id: str, merchant_id: Optional[str] = None) -> List[RefundResponse]:
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.payment_repository.get_by_id(payment_id)
            if payment is None or (merchant_id is not None and payment.merchant_id != merchant_id):
                raise PaymentNotFoundException(payment_id)
            refunds = await uow.refund_repository.list_by_payment(payment_id)
        return [self._to_response(r) for r in refunds]
