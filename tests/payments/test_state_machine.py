from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import (
    DomainValidationException,
    InvalidTransitionException,
    PaymentNotRefundableException,
    RefundExceedsPaymentException,
)
from domain.payment.entity import Payment, PaymentStatus, Refund, RefundStatus
from domain.payment.events import PaymentEvent, PaymentSucceeded
from domain.payment.state_machine import PaymentAction, apply_transition, is_terminal


TX = "0x" + "1" * 64
OTHER_TX = "0x" + "2" * 64
CREATED_AT = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_payment(status=PaymentStatus.CREATED, tx_hash=None, amount="10.00") -> Payment:
    return Payment(
        id="pay_1",
        merchant_id="m1",
        amount=Decimal(amount),
        currency="USDC",
        status=status,
        merchant_wallet="0x" + "a" * 40,
        tx_hash=tx_hash,
        created_at=CREATED_AT,
        updated_at=CREATED_AT,
        expires_at=CREATED_AT + timedelta(minutes=30),
    )


@pytest.mark.parametrize(
    "current, action, expected",
    [
        (PaymentStatus.CREATED, PaymentAction.SUBMIT, PaymentStatus.PENDING),
        (PaymentStatus.PENDING, PaymentAction.CONFIRM, PaymentStatus.CONFIRMED),
        (PaymentStatus.PENDING, PaymentAction.FAIL, PaymentStatus.FAILED),
        (PaymentStatus.CREATED, PaymentAction.EXPIRE, PaymentStatus.EXPIRED),
        (PaymentStatus.PENDING, PaymentAction.EXPIRE, PaymentStatus.EXPIRED),
        (PaymentStatus.CONFIRMED, PaymentAction.REFUND, PaymentStatus.REFUNDED),
    ],
)
def test_allowed_transitions(current, action, expected):
    assert apply_transition(current, action) == expected


@pytest.mark.parametrize(
    "current, action",
    [
        (PaymentStatus.CONFIRMED, PaymentAction.CONFIRM),
        (PaymentStatus.FAILED, PaymentAction.FAIL),
        (PaymentStatus.CONFIRMED, PaymentAction.EXPIRE),
        (PaymentStatus.REFUNDED, PaymentAction.EXPIRE),
        (PaymentStatus.EXPIRED, PaymentAction.EXPIRE),
        (PaymentStatus.REFUNDED, PaymentAction.REFUND),
    ],
)
def test_repeated_outcomes_are_no_ops(current, action):
    assert apply_transition(current, action) is None


@pytest.mark.parametrize(
    "current, action",
    [
        (PaymentStatus.CONFIRMED, PaymentAction.SUBMIT),
        (PaymentStatus.FAILED, PaymentAction.SUBMIT),
        (PaymentStatus.EXPIRED, PaymentAction.SUBMIT),
        (PaymentStatus.REFUNDED, PaymentAction.SUBMIT),
        (PaymentStatus.REFUNDED, PaymentAction.CONFIRM),
        (PaymentStatus.EXPIRED, PaymentAction.CONFIRM),
        (PaymentStatus.CONFIRMED, PaymentAction.FAIL),
        (PaymentStatus.PENDING, PaymentAction.REFUND),
    ],
)
def test_rejected_transitions(current, action):
    with pytest.raises(InvalidTransitionException) as exc:
        apply_transition(current, action)
    assert exc.value.current_status == current.value


def test_terminal_statuses():
    assert not is_terminal(PaymentStatus.CREATED)
    assert not is_terminal(PaymentStatus.PENDING)
    for status in (PaymentStatus.CONFIRMED, PaymentStatus.FAILED, PaymentStatus.EXPIRED, PaymentStatus.REFUNDED):
        assert is_terminal(status)


def test_amount_must_be_positive():
    with pytest.raises(DomainValidationException):
        make_payment(amount="0")
    with pytest.raises(DomainValidationException):
        make_payment(amount="-1")


def test_submit_then_resubmit_same_hash_is_no_op():
    payment = make_payment()
    assert payment.submit_transaction(TX, "0x" + "b" * 40) is True
    assert payment.status == PaymentStatus.PENDING
    assert payment.submit_transaction(TX, "0x" + "b" * 40) is False


def test_confirm_requires_tx_hash():
    payment = make_payment()
    with pytest.raises(InvalidTransitionException):
        payment.confirm()


def test_confirm_uses_block_time_for_settlement():
    payment = make_payment(PaymentStatus.PENDING, tx_hash=TX)
    assert payment.confirm(settled_at=CREATED_AT + timedelta(seconds=42)) is True
    assert payment.status == PaymentStatus.CONFIRMED
    assert payment.settlement_time == 42
    assert payment.confirmed_at == CREATED_AT + timedelta(seconds=42)


def test_confirm_settlement_time_never_negative():
    payment = make_payment(PaymentStatus.PENDING, tx_hash=TX)
    payment.confirm(settled_at=CREATED_AT - timedelta(seconds=5))
    assert payment.settlement_time == 0


def test_confirm_twice_is_no_op_but_rejects_other_hash():
    payment = make_payment(PaymentStatus.PENDING, tx_hash=TX)
    payment.confirm(TX)
    first_confirmed_at = payment.confirmed_at
    assert payment.confirm(TX) is False
    assert payment.confirmed_at == first_confirmed_at
    with pytest.raises(InvalidTransitionException):
        payment.confirm(OTHER_TX)


def test_fail_records_reason_in_metadata():
    payment = make_payment(PaymentStatus.PENDING, tx_hash=TX)
    assert payment.fail("transaction reverted") is True
    assert payment.metadata["failureReason"] == "transaction reverted"
    assert payment.fail("again") is False
    assert payment.metadata["failureReason"] == "transaction reverted"


def test_fail_requires_submitted_transaction():
    with pytest.raises(InvalidTransitionException):
        make_payment().fail("nothing submitted")


def test_expire_never_overrides_confirmation():
    payment = make_payment(PaymentStatus.PENDING, tx_hash=TX)
    payment.confirm(TX)
    assert payment.expire() is False
    assert payment.status == PaymentStatus.CONFIRMED


def test_status_never_returns_to_pending():
    for status in (PaymentStatus.CONFIRMED, PaymentStatus.FAILED, PaymentStatus.EXPIRED, PaymentStatus.REFUNDED):
        payment = make_payment(status, tx_hash=TX)
        with pytest.raises(InvalidTransitionException):
            payment.submit_transaction(OTHER_TX, None)
        assert payment.status == status


def test_refund_guards():
    pending = make_payment(PaymentStatus.PENDING, tx_hash=TX)
    with pytest.raises(PaymentNotRefundableException):
        pending.ensure_refundable(Decimal("1"), has_completed_refund=False)

    confirmed = make_payment(PaymentStatus.CONFIRMED, tx_hash=TX)
    with pytest.raises(RefundExceedsPaymentException):
        confirmed.ensure_refundable(Decimal("10.01"), has_completed_refund=False)
    with pytest.raises(PaymentNotRefundableException):
        confirmed.ensure_refundable(Decimal("1"), has_completed_refund=True)
    confirmed.ensure_refundable(Decimal("10.00"), has_completed_refund=False)


def test_refund_completion_is_immutable():
    refund = Refund(
        id="ref_1",
        payment_id="pay_1",
        merchant_id="m1",
        amount=Decimal("5"),
        currency="USDC",
        status=RefundStatus.PENDING,
    )
    assert refund.complete(TX) is True
    assert refund.complete(TX) is False
    with pytest.raises(InvalidTransitionException):
        refund.complete(OTHER_TX)
    assert refund.tx_hash == TX


def test_base_payment_event_cannot_be_instantiated():
    with pytest.raises(TypeError):
        PaymentEvent(payment=make_payment())
    event = PaymentSucceeded(payment=make_payment(PaymentStatus.CONFIRMED, tx_hash=TX))
    assert event.merchant_id == "m1"
