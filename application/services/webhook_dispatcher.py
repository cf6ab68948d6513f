"""
Webhook 投递器

dispatch() 只负责落库投递记录并入队，立即返回；
固定数量的 worker 从有界队列中取出记录，按 [1s, 5s, 15s] 节奏重试投递。
投递失败永远不会影响支付处理。
"""
from __future__ import annotations

import asyncio
import json
import uuid
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt

from application.dtos.webhooks import WebhookResponse
from application.ports.webhooks import WebhookSender
from core.logging_config import get_logger
from domain.common.timeutils import utcnow
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.events import ExplorerLink, PaymentEvent
from domain.webhook.entity import DeliveryStatus, WebhookDelivery, WebhookSubscription
from domain.webhook.signature import sign_payload
from infrastructure.resilience import retry_transient


logger = get_logger(__name__)

DEFAULT_RETRY_DELAYS: tuple[float, ...] = (1.0, 5.0, 15.0)


def serialize_event(event_type: str, data: dict[str, Any]) -> str:
    """请求体原文；签名针对这串字节计算，落库后原样重发"""
    return json.dumps(
        {"type": event_type, "data": data},
        separators=(",", ":"),
        ensure_ascii=False,
        default=str,
    )


def retry_delay_for(attempts: int, delays: Sequence[float]) -> float:
    """第 attempts 次失败后的等待时间；超出表长时重复最后一个值"""
    if not delays:
        return 0.0
    index = max(0, attempts - 1)
    return float(delays[min(index, len(delays) - 1)])


class WebhookDispatcher:
    """实现 application.ports.webhooks.WebhookPublisher"""

    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        sender: WebhookSender,
        explorer_link: ExplorerLink,
        *,
        retry_delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
        max_attempts: int = 3,
        body_limit: int = 1000,
        queue_max: int = 1000,
        workers: int = 4,
        signature_header: str = "x-event-signature",
        event_type_header: str = "x-event-type",
        store_retry_attempts: int = 3,
        store_retry_delay: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._uow_factory = uow_factory
        self._sender = sender
        self._explorer_link = explorer_link
        self.retry_delays = tuple(retry_delays)
        self.max_attempts = max(1, max_attempts)
        self.body_limit = body_limit
        self.signature_header = signature_header
        self.event_type_header = event_type_header
        self._sleep = sleep
        self._store_retry_attempts = store_retry_attempts
        self._store_retry_delay = store_retry_delay
        self._worker_count = max(1, workers)
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max(1, queue_max))
        self._queued: set[str] = set()
        self._workers: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self, *, requeue_pending: bool = True) -> None:
        """启动 worker；可选地把上次进程遗留的 pending 记录重新入队"""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker_loop(n), name=f"webhook-worker-{n}")
            for n in range(self._worker_count)
        ]
        logger.info("webhook_dispatcher_started", workers=self._worker_count)
        if requeue_pending:
            await self.requeue_pending()

    async def stop(self) -> None:
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        logger.info("webhook_dispatcher_stopped", pending=self._queue.qsize())

    async def drain(self) -> None:
        """等待队列中的投递全部处理完（测试与优雅停机使用）"""
        await self._queue.join()

    async def requeue_pending(self, limit: int = 500) -> int:
        async with self._uow_factory(readonly=True) as uow:
            pending = await uow.webhook_delivery_repository.list_pending(limit=limit)
        count = sum(1 for delivery in pending if self._enqueue(delivery.id))
        if count:
            logger.info("webhook_deliveries_requeued", count=count)
        return count

    async def publish(self, events: Iterable[PaymentEvent]) -> None:
        """把领域事件展开为 webhook 事件类型（包含兼容别名）并分发"""
        for event in events:
            try:
                data = event.to_webhook_data(self._explorer_link)
            except Exception:
                logger.exception("webhook_event_render_failed", event_id=event.event_id)
                continue
            for event_type in event.webhook_event_types:
                await self.dispatch(event.merchant_id, event_type, data)

    async def dispatch(self, merchant_id: str, event_type: str, data: dict[str, Any]) -> None:
        """
        为商户所有订阅了该事件的活跃端点创建投递记录并入队

        不等待投递完成，也不向调用方抛出异常。
        """
        try:
            payload = serialize_event(event_type, data)
            async with self._uow_factory() as uow:
                subscriptions = await uow.webhook_subscription_repository.list_by_merchant(
                    merchant_id, active_only=True
                )
                deliveries = []
                for subscription in subscriptions:
                    if not subscription.wants(event_type):
                        continue
                    delivery = await uow.webhook_delivery_repository.create(
                        WebhookDelivery(
                            id=str(uuid.uuid4()),
                            subscription_id=subscription.id,
                            event_type=event_type,
                            payload=payload,
                            status=DeliveryStatus.PENDING,
                            attempts=0,
                            created_at=utcnow(),
                        )
                    )
                    deliveries.append(delivery)
        except Exception:
            logger.exception("webhook_dispatch_failed", merchant_id=merchant_id, event_type=event_type)
            return

        logger.info(
            "webhook_dispatched",
            merchant_id=merchant_id,
            event_type=event_type,
            deliveries=len(deliveries),
        )
        for delivery in deliveries:
            self._enqueue(delivery.id)

    def _enqueue(self, delivery_id: str) -> bool:
        if delivery_id in self._queued:
            return False
        try:
            self._queue.put_nowait(delivery_id)
        except asyncio.QueueFull:
            # 记录保持 pending，下次启动时重新入队
            logger.warning("webhook_queue_full", delivery_id=delivery_id, size=self._queue.qsize())
            return False
        self._queued.add(delivery_id)
        return True

    async def _worker_loop(self, n: int) -> None:
        while True:
            delivery_id = await self._queue.get()
            try:
                await self.deliver(delivery_id)
            except Exception:
                logger.exception("webhook_delivery_crashed", delivery_id=delivery_id, worker=n)
            finally:
                self._queued.discard(delivery_id)
                self._queue.task_done()

    async def _store(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        """投递记录的读写与支付转换一样，对瞬时存储故障做本地重试"""
        return await retry_transient(
            operation,
            attempts=self._store_retry_attempts,
            initial_delay=self._store_retry_delay,
            sleep=self._sleep,
        )

    async def _load(self, delivery_id: str) -> Optional[WebhookDelivery]:
        async def _read() -> Optional[WebhookDelivery]:
            async with self._uow_factory(readonly=True) as uow:
                return await uow.webhook_delivery_repository.get_by_id(delivery_id)

        return await self._store(_read)

    async def _load_subscription(self, subscription_id: str) -> Optional[WebhookSubscription]:
        async def _read() -> Optional[WebhookSubscription]:
            async with self._uow_factory(readonly=True) as uow:
                return await uow.webhook_subscription_repository.get_by_id(subscription_id)

        return await self._store(_read)

    async def deliver(self, delivery_id: str) -> Optional[WebhookDelivery]:
        """
        投递一条记录直到成功、用尽尝试次数或订阅失效

        每次尝试前重新读取订阅：已停用或已删除的订阅不再接收请求，
        记录直接标记为 failed，避免每次启动都被重新入队。

        Returns:
            最终的投递记录；记录不存在时返回 None
        """
        delivery = await self._load(delivery_id)
        if delivery is None:
            logger.warning("webhook_delivery_missing", delivery_id=delivery_id)
            return None
        if delivery.is_final:
            return delivery

        remaining = self.max_attempts - delivery.attempts
        if remaining <= 0:
            # 历史记录已用尽次数但未标记终态
            delivery.status = DeliveryStatus.FAILED
            return await self._save(delivery)

        body = delivery.payload.encode("utf-8")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(remaining),
            wait=lambda _state: retry_delay_for(delivery.attempts, self.retry_delays),
            retry=retry_if_result(lambda finished: not finished),
            retry_error_callback=lambda _state: False,
            sleep=self._sleep,
        )
        async for attempt in retrying:
            with attempt:
                subscription = await self._load_subscription(delivery.subscription_id)
                if subscription is None or not subscription.active:
                    finished = await self._abandon(delivery, "subscription inactive")
                else:
                    headers = {
                        self.signature_header: sign_payload(body, subscription.secret),
                        self.event_type_header: delivery.event_type,
                    }
                    finished = await self._attempt(delivery, subscription, body, headers)
            if not attempt.retry_state.outcome.failed:
                attempt.retry_state.set_result(finished)

        if delivery.status == DeliveryStatus.FAILED:
            logger.warning(
                "webhook_delivery_failed",
                delivery_id=delivery.id,
                subscription_id=delivery.subscription_id,
                event_type=delivery.event_type,
                attempts=delivery.attempts,
                response_code=delivery.response_code,
            )
        return delivery

    async def _abandon(self, delivery: WebhookDelivery, reason: str) -> bool:
        delivery.abandon(reason)
        await self._save(delivery)
        logger.warning(
            "webhook_delivery_abandoned",
            delivery_id=delivery.id,
            subscription_id=delivery.subscription_id,
            reason=reason,
        )
        return True

    async def _attempt(
        self,
        delivery: WebhookDelivery,
        subscription: WebhookSubscription,
        body: bytes,
        headers: dict[str, str],
    ) -> bool:
        try:
            response = await self._sender.send(subscription.url, body, headers)
        except Exception as exc:
            # 发送器约定不抛异常，这里兜底按传输失败处理
            response = WebhookResponse(status_code=0, body=str(exc))

        delivered = response.is_success
        final = delivered or delivery.attempts + 1 >= self.max_attempts
        delivery.record_attempt(
            response.status_code,
            response.body,
            delivered=delivered,
            final=final,
            body_limit=self.body_limit,
        )
        await self._save(delivery)
        logger.info(
            "webhook_delivery_attempt",
            delivery_id=delivery.id,
            event_type=delivery.event_type,
            attempt=delivery.attempts,
            response_code=response.status_code,
            delivered=delivered,
        )
        return delivered

    async def _save(self, delivery: WebhookDelivery) -> WebhookDelivery:
        async def _write() -> WebhookDelivery:
            async with self._uow_factory() as uow:
                return await uow.webhook_delivery_repository.update(delivery)

        return await self._store(_write)
