import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from application.dtos.payments import CreatePaymentRequest, SubmitTransactionRequest
from application.dtos.webhooks import CreateWebhookSubscription
from application.services.tx_watcher import (
    CONFIRMATION_TIMEOUT_REASON,
    TransactionWatcher,
    WatcherStateTable,
    compute_backoff,
)
from domain.payment.events import PAYMENT_CONFIRMED, PAYMENT_SUCCEEDED
from infrastructure.external.chain import ChainRPCError
from tests.fakes import MERCHANT_WALLET, PAYER_WALLET, NoSleep, tx_hash


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_watcher(app, make_uow, chain, clock=None, **overrides):
    options = dict(
        initial_backoff=5.0,
        max_backoff=60.0,
        max_retries=20,
        concurrency=1,
        store_retry_delay=0,
        sleep=NoSleep(),
    )
    options.update(overrides)
    return TransactionWatcher(
        make_uow,
        chain,
        app.payments,
        state_table=WatcherStateTable(),
        clock=clock or FakeClock(),
        **options,
    )


async def pending_payment(app, n: int, amount="10.00", expires_in_minutes=None):
    payment = await app.payments.create_payment(
        "m1",
        CreatePaymentRequest(
            amount=Decimal(amount),
            merchant_wallet=MERCHANT_WALLET,
            expires_in_minutes=expires_in_minutes,
        ),
    )
    return await app.payments.submit_transaction(
        payment.id, SubmitTransactionRequest(tx_hash=tx_hash(n), payer_wallet=PAYER_WALLET)
    )


def test_compute_backoff_doubles_until_cap():
    values = [compute_backoff(n, 5, 60) for n in range(1, 7)]
    assert values == [10, 20, 40, 60, 60, 60]


@pytest.mark.asyncio
async def test_watcher_confirms_and_notifies_both_event_aliases(app, make_uow, chain, sender):
    await app.webhooks.register(
        "m1",
        CreateWebhookSubscription(url="https://merchant.test/a", events=[PAYMENT_SUCCEEDED, PAYMENT_CONFIRMED]),
    )
    await app.webhooks.register(
        "m1",
        CreateWebhookSubscription(url="https://merchant.test/b", events=[PAYMENT_SUCCEEDED, PAYMENT_CONFIRMED]),
    )
    payment = await pending_payment(app, 1, amount="10.00")
    chain.confirm(tx_hash(1), block_number=42, at=datetime.now(timezone.utc) + timedelta(seconds=12))

    watcher = make_watcher(app, make_uow, chain)
    await watcher.run_cycle()

    confirmed = await app.payments.get_payment(payment.id)
    assert confirmed.status == "confirmed"
    assert confirmed.settlement_time is not None
    assert payment.id not in watcher.state

    await app.dispatcher.drain()
    deliveries = await app.webhooks.list_deliveries("m1")
    assert len(deliveries) == 4
    assert sorted(d.event_type for d in deliveries) == sorted([PAYMENT_SUCCEEDED, PAYMENT_CONFIRMED] * 2)
    assert all(d.status == "delivered" for d in deliveries)
    assert {Decimal(json.loads(d.payload)["data"]["amount"]) for d in deliveries} == {Decimal("10")}
    assert len(sender.calls) == 4

    # a later cycle finds nothing to do and sends nothing new
    await watcher.run_cycle()
    await app.dispatcher.drain()
    assert len(await app.webhooks.list_deliveries("m1")) == 4


@pytest.mark.asyncio
async def test_watcher_fails_reverted_transaction(app, make_uow, chain):
    payment = await pending_payment(app, 2)
    chain.revert(tx_hash(2))

    watcher = make_watcher(app, make_uow, chain)
    await watcher.check_pending_payments()

    failed = await app.payments.get_payment(payment.id)
    assert failed.status == "failed"
    assert failed.metadata["failureReason"] == "transaction reverted"


@pytest.mark.asyncio
async def test_backoff_is_respected_and_monotonic(app, make_uow, chain):
    payment = await pending_payment(app, 3)
    clock = FakeClock()
    watcher = make_watcher(app, make_uow, chain, clock=clock)

    backoffs = []
    for _ in range(6):
        await watcher.check_pending_payments()
        state = watcher.state.get(payment.id)
        backoffs.append(state.backoff)
        calls = len(chain.receipt_calls)

        # inside the backoff window the chain is not queried again
        clock.advance(state.backoff - 1)
        await watcher.check_pending_payments()
        assert len(chain.receipt_calls) == calls
        clock.advance(1)

    assert backoffs == [10, 20, 40, 60, 60, 60]
    for previous, current in zip(backoffs, backoffs[1:]):
        assert current == min(previous * 2, 60)


@pytest.mark.asyncio
async def test_payment_fails_exactly_at_retry_ceiling(app, make_uow, chain):
    payment = await pending_payment(app, 4)
    clock = FakeClock()
    watcher = make_watcher(app, make_uow, chain, clock=clock, max_retries=5)

    for attempt in range(1, 5):
        await watcher.check_pending_payments()
        assert watcher.state.get(payment.id).attempts == attempt
        assert (await app.payments.get_payment(payment.id)).status == "pending"
        clock.advance(60)

    await watcher.check_pending_payments()
    timed_out = await app.payments.get_payment(payment.id)
    assert timed_out.status == "failed"
    assert timed_out.metadata["failureReason"] == CONFIRMATION_TIMEOUT_REASON
    assert payment.id not in watcher.state


@pytest.mark.asyncio
async def test_chain_errors_back_off_without_failing_payment(app, make_uow, chain):
    payment = await pending_payment(app, 5)
    chain.break_with(tx_hash(5), ChainRPCError("RPC timeout after 30s", method="eth_getTransactionReceipt"))
    clock = FakeClock()
    watcher = make_watcher(app, make_uow, chain, clock=clock, max_retries=3)

    await watcher.check_pending_payments()
    state = watcher.state.get(payment.id)
    assert (state.attempts, state.errors, state.backoff) == (1, 1, 10)

    for _ in range(2):
        clock.advance(60)
        await watcher.check_pending_payments()

    # ceiling reached through errors: state dropped, payment untouched
    assert payment.id not in watcher.state
    assert (await app.payments.get_payment(payment.id)).status == "pending"

    # once the chain recovers the payment is picked up again from scratch
    chain.confirm(tx_hash(5))
    clock.advance(60)
    await watcher.check_pending_payments()
    assert (await app.payments.get_payment(payment.id)).status == "confirmed"


@pytest.mark.asyncio
async def test_unsubmitted_payment_expires_without_success_webhook(app, make_uow, chain):
    await app.webhooks.register(
        "m1",
        CreateWebhookSubscription(url="https://merchant.test/a", events=[PAYMENT_SUCCEEDED, PAYMENT_CONFIRMED]),
    )
    payment = await app.payments.create_payment(
        "m1",
        CreatePaymentRequest(amount=Decimal("3"), merchant_wallet=MERCHANT_WALLET, expires_in_minutes=1),
    )

    watcher = make_watcher(
        app, make_uow, chain, now=lambda: datetime.now(timezone.utc) + timedelta(minutes=2)
    )
    await watcher.run_cycle()

    assert (await app.payments.get_payment(payment.id)).status == "expired"
    await app.dispatcher.drain()
    assert await app.webhooks.list_deliveries("m1") == []


@pytest.mark.asyncio
async def test_not_yet_due_payment_is_left_alone(app, make_uow, chain):
    payment = await app.payments.create_payment(
        "m1",
        CreatePaymentRequest(amount=Decimal("3"), merchant_wallet=MERCHANT_WALLET, expires_in_minutes=10),
    )
    watcher = make_watcher(app, make_uow, chain)
    await watcher.run_cycle()
    assert (await app.payments.get_payment(payment.id)).status == "created"


@pytest.mark.asyncio
async def test_confirmation_wins_over_expiry_in_same_cycle(app, make_uow, chain):
    payment = await pending_payment(app, 6, expires_in_minutes=1)
    chain.confirm(tx_hash(6))

    watcher = make_watcher(
        app, make_uow, chain, now=lambda: datetime.now(timezone.utc) + timedelta(minutes=5)
    )
    await watcher.run_cycle()

    assert (await app.payments.get_payment(payment.id)).status == "confirmed"


@pytest.mark.asyncio
async def test_expiry_sweep_checks_receipt_before_expiring(app, make_uow, chain):
    payment = await pending_payment(app, 7, expires_in_minutes=1)
    chain.confirm(tx_hash(7))

    watcher = make_watcher(
        app, make_uow, chain, now=lambda: datetime.now(timezone.utc) + timedelta(minutes=5)
    )
    # run only the expiry sweep, as if the confirmation sweep had skipped it
    await watcher.expire_overdue_payments()

    assert (await app.payments.get_payment(payment.id)).status == "confirmed"


@pytest.mark.asyncio
async def test_expiry_sweep_skips_when_chain_unreachable(app, make_uow, chain):
    payment = await pending_payment(app, 8, expires_in_minutes=1)
    chain.break_with(tx_hash(8), ConnectionRefusedError("connection refused"))

    watcher = make_watcher(
        app, make_uow, chain, now=lambda: datetime.now(timezone.utc) + timedelta(minutes=5)
    )
    await watcher.expire_overdue_payments()
    assert (await app.payments.get_payment(payment.id)).status == "pending"

    chain.receipts.pop(tx_hash(8))
    await watcher.expire_overdue_payments()
    assert (await app.payments.get_payment(payment.id)).status == "expired"


@pytest.mark.asyncio
async def test_state_tables_are_isolated_between_watchers(app, make_uow, chain):
    payment = await pending_payment(app, 9)
    first = make_watcher(app, make_uow, chain)
    second = make_watcher(app, make_uow, chain)

    await first.check_pending_payments()
    assert payment.id in first.state
    assert payment.id not in second.state
