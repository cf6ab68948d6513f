"""
交易确认轮询器

每个周期依次执行：
1. 确认扫描：pending 且有 tx_hash 的支付，查询回执并驱动 confirm / fail
2. 过期扫描：已过截止时间且仍为 created / pending 的支付

过期扫描总在确认扫描之后运行，且 expire 在事务内重新读取状态，
已确认的支付不会被过期覆盖。
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, List, Optional

from application.dtos.chain import TransactionStatus
from application.ports.chain import ChainClient
from application.services.payment_service import PaymentApplicationService
from core.logging_config import get_logger
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Payment, PaymentStatus
from infrastructure.resilience import retry_transient


logger = get_logger(__name__)

CONFIRMATION_TIMEOUT_REASON = "confirmation timeout"


@dataclass
class CheckState:
    """单笔支付的轮询状态（进程内，不持久化）"""
    attempts: int = 0
    errors: int = 0
    last_check: Optional[float] = None
    backoff: float = 0.0


class WatcherStateTable:
    """按支付ID索引的轮询状态表，由调用方持有并注入 watcher"""

    def __init__(self) -> None:
        self._states: Dict[str, CheckState] = {}

    def get(self, payment_id: str) -> Optional[CheckState]:
        return self._states.get(payment_id)

    def get_or_create(self, payment_id: str) -> CheckState:
        state = self._states.get(payment_id)
        if state is None:
            state = self._states[payment_id] = CheckState()
        return state

    def discard(self, payment_id: str) -> None:
        self._states.pop(payment_id, None)

    def retain_only(self, payment_ids: Iterable[str]) -> None:
        """丢弃已不再等待确认的支付（例如被直接确认）"""
        keep = set(payment_ids)
        for payment_id in list(self._states):
            if payment_id not in keep:
                del self._states[payment_id]

    def __contains__(self, payment_id: object) -> bool:
        return payment_id in self._states

    def __len__(self) -> int:
        return len(self._states)


def compute_backoff(attempts: int, initial: float, maximum: float) -> float:
    """min(initial * 2^attempts, maximum)"""
    return min(initial * (2 ** attempts), maximum)


class TransactionWatcher:
    """后台轮询链上回执，把 pending 支付推进到终态"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        chain: ChainClient,
        payments: PaymentApplicationService,
        *,
        state_table: Optional[WatcherStateTable] = None,
        poll_interval: float = 10.0,
        initial_backoff: float = 5.0,
        max_backoff: float = 60.0,
        max_retries: int = 20,
        concurrency: int = 8,
        batch_size: int = 500,
        store_retry_attempts: int = 3,
        store_retry_delay: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._uow_factory = uow_factory
        self._chain = chain
        self._payments = payments
        self.state = state_table if state_table is not None else WatcherStateTable()
        self.poll_interval = poll_interval
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.max_retries = max_retries
        self.batch_size = batch_size
        self._concurrency = max(1, concurrency)
        self._store_retry_attempts = store_retry_attempts
        self._store_retry_delay = store_retry_delay
        self._clock = clock
        self._now = now
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    # 生命周期

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self.run_forever(), name="tx-watcher")
            logger.info(
                "watcher_started",
                poll_interval=self.poll_interval,
                max_retries=self.max_retries,
            )

    async def stop(self) -> None:
        self._stopping.set()
        task, self._task = self._task, None
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        logger.info("watcher_stopped")

    async def run_forever(self) -> None:
        while not self._stopping.is_set():
            await self.run_cycle()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def run_cycle(self) -> None:
        """一个轮询周期：先确认，后过期；任何错误只记录日志，等待下个周期"""
        try:
            await self.check_pending_payments()
        except Exception:
            logger.exception("watcher_confirmation_sweep_failed")
        try:
            await self.expire_overdue_payments()
        except Exception:
            logger.exception("watcher_expiry_sweep_failed")

    # 确认扫描

    async def _read(self, query: Callable[[AbstractUnitOfWork], Awaitable[List[Payment]]]) -> List[Payment]:
        async def _run() -> List[Payment]:
            async with self._uow_factory(readonly=True) as uow:
                return await query(uow)

        return await retry_transient(
            _run,
            attempts=self._store_retry_attempts,
            initial_delay=self._store_retry_delay,
            sleep=self._sleep,
        )

    async def _bounded(self, payments: List[Payment], handler: Callable[[Payment], Awaitable[None]]) -> None:
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _guarded(payment: Payment) -> None:
            async with semaphore:
                await handler(payment)

        await asyncio.gather(*(_guarded(p) for p in payments))

    async def check_pending_payments(self) -> None:
        payments = await self._read(
            lambda uow: uow.payment_repository.list_awaiting_confirmation(limit=self.batch_size)
        )
        self.state.retain_only(p.id for p in payments)
        await self._bounded(payments, self.check_payment)

    async def check_payment(self, payment: Payment) -> None:
        if not payment.tx_hash:
            return

        state = self.state.get_or_create(payment.id)
        now = self._clock()
        if state.last_check is not None and now - state.last_check < state.backoff:
            return

        try:
            receipt = await self._chain.get_transaction_receipt(payment.tx_hash)
            if await self._apply_receipt(payment, receipt):
                self.state.discard(payment.id)
                return

            state.attempts += 1
            self._reschedule(state, now)
            if state.attempts >= self.max_retries:
                await self._payments.fail_payment(payment.id, CONFIRMATION_TIMEOUT_REASON)
                self.state.discard(payment.id)
                logger.warning(
                    "watcher_confirmation_timeout",
                    payment_id=payment.id,
                    tx_hash=payment.tx_hash,
                    attempts=state.attempts,
                )
                return
            logger.debug(
                "watcher_check_backoff",
                payment_id=payment.id,
                attempts=state.attempts,
                backoff=state.backoff,
            )
        except Exception as exc:
            # 基础设施故障按“尚未上链”处理：计数并退避，不直接判定支付失败
            state.attempts += 1
            state.errors += 1
            self._reschedule(state, now)
            if state.attempts >= self.max_retries:
                self.state.discard(payment.id)
                logger.error(
                    "watcher_check_abandoned",
                    payment_id=payment.id,
                    tx_hash=payment.tx_hash,
                    attempts=state.attempts,
                    errors=state.errors,
                    error=str(exc),
                )
                return
            logger.warning(
                "watcher_check_error",
                payment_id=payment.id,
                attempts=state.attempts,
                errors=state.errors,
                backoff=state.backoff,
                error=str(exc),
            )

    def _reschedule(self, state: CheckState, now: float) -> None:
        state.last_check = now
        state.backoff = compute_backoff(state.attempts, self.initial_backoff, self.max_backoff)

    async def _apply_receipt(self, payment: Payment, receipt: TransactionStatus) -> bool:
        """回执已有结论时执行转换并返回 True；尚未上链返回 False"""
        if receipt.confirmed:
            settled_at = await self._block_time(payment, receipt.block_number)
            await self._payments.confirm_payment(
                payment.id,
                payment.tx_hash,
                payment.payer_wallet,
                settled_at=settled_at,
            )
            return True
        if receipt.failed:
            await self._payments.fail_payment(payment.id, receipt.error or "transaction failed")
            return True
        return False

    async def _block_time(self, payment: Payment, block_number: Optional[int]) -> Optional[datetime]:
        if block_number is None:
            return None
        try:
            return await self._chain.get_block_timestamp(block_number)
        except Exception as exc:
            logger.warning("watcher_block_time_unavailable", payment_id=payment.id, error=str(exc))
            return None

    # 过期扫描

    async def expire_overdue_payments(self) -> None:
        payments = await self._read(
            lambda uow: uow.payment_repository.list_expirable(self._now(), limit=self.batch_size)
        )
        await self._bounded(payments, self.expire_payment)

    async def expire_payment(self, payment: Payment) -> None:
        try:
            if payment.status == PaymentStatus.PENDING and payment.tx_hash:
                # 过期前最后查一次回执：已上链的交易优先于过期
                receipt = await self._chain.get_transaction_receipt(payment.tx_hash)
                if await self._apply_receipt(payment, receipt):
                    self.state.discard(payment.id)
                    return
            await self._payments.expire_payment(payment.id)
            self.state.discard(payment.id)
        except Exception as exc:
            logger.warning("watcher_expire_skipped", payment_id=payment.id, error=str(exc))
