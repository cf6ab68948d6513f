import json
from decimal import Decimal

import pytest

from application.dtos.payments import (
    CreatePaymentRequest,
    CreateRefundRequest,
    SubmitTransactionRequest,
)
from application.dtos.webhooks import CreateWebhookSubscription
from domain.common.exceptions import (
    DomainValidationException,
    InvalidTransitionException,
    PaymentNotFoundException,
    PaymentNotRefundableException,
    RefundExceedsPaymentException,
    RefundNotFoundException,
)
from domain.payment.events import PAYMENT_REFUNDED
from tests.fakes import MERCHANT_WALLET, PAYER_WALLET, tx_hash


async def confirmed_payment(app, n: int, amount="25.00", merchant_id="m1"):
    payment = await app.payments.create_payment(
        merchant_id,
        CreatePaymentRequest(amount=Decimal(amount), merchant_wallet=MERCHANT_WALLET),
    )
    await app.payments.submit_transaction(
        payment.id, SubmitTransactionRequest(tx_hash=tx_hash(n), payer_wallet=PAYER_WALLET)
    )
    return await app.payments.confirm_payment(payment.id)


@pytest.mark.asyncio
async def test_full_refund_flow_notifies_once(app, sender):
    await app.webhooks.register(
        "m1", CreateWebhookSubscription(url="https://merchant.test/refunds", events=[PAYMENT_REFUNDED])
    )
    payment = await confirmed_payment(app, 1)
    assert payment.status == "confirmed"

    refund = await app.refunds.create_refund_intent(
        "m1", CreateRefundRequest(payment_id=payment.id, amount=Decimal("25.00"), reason="customer request")
    )
    assert refund.status == "pending"
    assert refund.currency == "USDC"
    # intent alone does not touch the payment
    assert (await app.payments.get_payment(payment.id)).status == "confirmed"

    completed = await app.refunds.complete_refund(refund.id, tx_hash(1001))
    assert completed.status == "completed"
    assert completed.tx_hash == tx_hash(1001)
    assert completed.explorer_link == f"https://explorer.test/tx/{tx_hash(1001)}"
    assert (await app.payments.get_payment(payment.id)).status == "refunded"

    # completing again with the same hash is a no-op
    again = await app.refunds.complete_refund(refund.id, tx_hash(1001))
    assert again.status == "completed"

    await app.dispatcher.drain()
    deliveries = await app.webhooks.list_deliveries("m1")
    assert [d.event_type for d in deliveries] == [PAYMENT_REFUNDED]
    body = json.loads(deliveries[0].payload)
    assert body["data"]["payment"]["status"] == "refunded"
    assert body["data"]["refund"]["id"] == refund.id
    assert body["data"]["refund"]["txHash"] == tx_hash(1001)
    assert len(sender.calls) == 1


@pytest.mark.asyncio
async def test_partial_refund_allowed_and_listed(app):
    payment = await confirmed_payment(app, 2)
    refund = await app.refunds.create_refund_intent(
        "m1", CreateRefundRequest(payment_id=payment.id, amount=Decimal("5"))
    )
    listed = await app.refunds.list_refunds(payment.id, merchant_id="m1")
    assert [r.id for r in listed] == [refund.id]
    assert (await app.refunds.get_refund(refund.id, merchant_id="m1")).amount == Decimal("5")


@pytest.mark.asyncio
async def test_refund_requires_confirmed_payment(app):
    payment = await app.payments.create_payment(
        "m1", CreatePaymentRequest(amount=Decimal("25"), merchant_wallet=MERCHANT_WALLET)
    )
    with pytest.raises(PaymentNotRefundableException):
        await app.refunds.create_refund_intent(
            "m1", CreateRefundRequest(payment_id=payment.id, amount=Decimal("1"))
        )


@pytest.mark.asyncio
async def test_refund_amount_guards(app):
    payment = await confirmed_payment(app, 3)
    with pytest.raises(RefundExceedsPaymentException):
        await app.refunds.create_refund_intent(
            "m1", CreateRefundRequest(payment_id=payment.id, amount=Decimal("25.01"))
        )
    with pytest.raises(DomainValidationException):
        await app.refunds.create_refund_intent(
            "m1", CreateRefundRequest(payment_id=payment.id, amount=Decimal("0"))
        )


@pytest.mark.asyncio
async def test_refund_currency_must_match(app):
    payment = await confirmed_payment(app, 4)
    with pytest.raises(DomainValidationException):
        await app.refunds.create_refund_intent(
            "m1", CreateRefundRequest(payment_id=payment.id, amount=Decimal("1"), currency="eurc")
        )


@pytest.mark.asyncio
async def test_refund_scoped_to_owning_merchant(app):
    payment = await confirmed_payment(app, 5)
    with pytest.raises(PaymentNotFoundException):
        await app.refunds.create_refund_intent(
            "m2", CreateRefundRequest(payment_id=payment.id, amount=Decimal("1"))
        )

    refund = await app.refunds.create_refund_intent(
        "m1", CreateRefundRequest(payment_id=payment.id, amount=Decimal("1"))
    )
    with pytest.raises(RefundNotFoundException):
        await app.refunds.complete_refund(refund.id, tx_hash(1005), merchant_id="m2")
    with pytest.raises(RefundNotFoundException):
        await app.refunds.get_refund(refund.id, merchant_id="m2")


@pytest.mark.asyncio
async def test_second_refund_rejected_after_completion(app):
    payment = await confirmed_payment(app, 6)
    first = await app.refunds.create_refund_intent(
        "m1", CreateRefundRequest(payment_id=payment.id, amount=Decimal("10"))
    )
    await app.refunds.complete_refund(first.id, tx_hash(1006))

    with pytest.raises(PaymentNotRefundableException):
        await app.refunds.create_refund_intent(
            "m1", CreateRefundRequest(payment_id=payment.id, amount=Decimal("1"))
        )


@pytest.mark.asyncio
async def test_completed_refund_is_immutable(app):
    payment = await confirmed_payment(app, 7)
    refund = await app.refunds.create_refund_intent(
        "m1", CreateRefundRequest(payment_id=payment.id, amount=Decimal("25"))
    )
    await app.refunds.complete_refund(refund.id, tx_hash(1007))

    with pytest.raises(InvalidTransitionException):
        await app.refunds.complete_refund(refund.id, tx_hash(2007))
    with pytest.raises(DomainValidationException):
        await app.refunds.complete_refund(refund.id, "0xnothex")
    with pytest.raises(RefundNotFoundException):
        await app.refunds.complete_refund("missing", tx_hash(3007))


@pytest.mark.asyncio
async def test_only_one_of_two_pending_refunds_can_complete(app, sender):
    await app.webhooks.register(
        "m1", CreateWebhookSubscription(url="https://merchant.test/refunds", events=[PAYMENT_REFUNDED])
    )
    payment = await confirmed_payment(app, 8, amount="50.00")
    first = await app.refunds.create_refund_intent(
        "m1", CreateRefundRequest(payment_id=payment.id, amount=Decimal("50"))
    )
    second = await app.refunds.create_refund_intent(
        "m1", CreateRefundRequest(payment_id=payment.id, amount=Decimal("50"))
    )

    await app.refunds.complete_refund(first.id, tx_hash(1008))
    with pytest.raises(PaymentNotRefundableException):
        await app.refunds.complete_refund(second.id, tx_hash(2008))

    refunds = {r.id: r for r in await app.refunds.list_refunds(payment.id)}
    assert refunds[first.id].status == "completed"
    assert refunds[second.id].status == "pending"
    assert refunds[second.id].tx_hash is None
    completed_total = sum(r.amount for r in refunds.values() if r.status == "completed")
    assert completed_total == Decimal("50")

    await app.dispatcher.drain()
    deliveries = await app.webhooks.list_deliveries("m1")
    assert [d.event_type for d in deliveries] == [PAYMENT_REFUNDED]
    assert len(sender.calls) == 1
