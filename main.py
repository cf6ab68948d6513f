"""
应用主入口 - 组装服务并运行后台循环（webhook 投递 worker + 交易确认轮询）

HTTP 路由层作为外部协作者，通过 Application 上暴露的应用服务调用用例。
"""
from __future__ import annotations

import asyncio
import signal
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from application.ports.chain import ChainClient
from application.ports.webhooks import WebhookSender
from application.services.payment_service import PaymentApplicationService
from application.services.refund_service import RefundApplicationService
from application.services.tx_watcher import TransactionWatcher, WatcherStateTable
from application.services.webhook_dispatcher import WebhookDispatcher
from application.services.webhook_service import WebhookSubscriptionService
from core.config import Settings, settings as default_settings
from core.logging_config import get_logger, configure_logging
from infrastructure.database import create_tables, dispose_engine, get_session_factory
from infrastructure.external.chain import ArcChainClient
from infrastructure.external.webhooks import HttpxWebhookSender
from infrastructure.unit_of_work import uow_factory


configure_logging()
logger = get_logger(__name__)


@dataclass
class Application:
    settings: Settings
    chain: ChainClient
    sender: WebhookSender
    dispatcher: WebhookDispatcher
    payments: PaymentApplicationService
    refunds: RefundApplicationService
    webhooks: WebhookSubscriptionService
    watcher: TransactionWatcher
    _closers: list = field(default_factory=list)

    async def start(self) -> None:
        await self.dispatcher.start()
        self.watcher.start()
        logger.info(
            "application_started",
            project=self.settings.PROJECT_NAME,
            version=self.settings.VERSION,
            environment=self.settings.ENVIRONMENT,
            chain_id=self.chain.chain_config().chain_id,
        )

    async def stop(self) -> None:
        await self.watcher.stop()
        await self.dispatcher.stop()
        for close in self._closers:
            await close()
        logger.info("application_stopped")


def build_application(
    cfg: Settings = default_settings,
    *,
    session_factory: Optional[Callable[[], AsyncSession]] = None,
    chain: Optional[ChainClient] = None,
    sender: Optional[WebhookSender] = None,
) -> Application:
    """组装根：所有可调参数来自配置，外部依赖可替换（测试注入假实现）"""
    closers = []
    make_uow = uow_factory(session_factory or get_session_factory())

    if chain is None:
        arc = ArcChainClient(
            chain_id=cfg.chain.chain_id,
            rpc_url=cfg.chain.rpc_url,
            explorer_url=cfg.chain.explorer_url,
            timeout=cfg.chain.timeout,
            max_retries=cfg.chain.max_retries,
            retry_delay=cfg.chain.retry_delay,
        )
        closers.append(arc.close)
        chain = arc
    if sender is None:
        http_sender = HttpxWebhookSender(
            timeout=cfg.webhook.timeout,
            body_limit=cfg.webhook.response_body_limit,
        )
        closers.append(http_sender.close)
        sender = http_sender

    dispatcher = WebhookDispatcher(
        make_uow,
        sender,
        chain.explorer_link,
        retry_delays=cfg.webhook.retry_delays,
        max_attempts=cfg.webhook.max_attempts,
        body_limit=cfg.webhook.response_body_limit,
        queue_max=cfg.webhook.queue_max,
        workers=cfg.webhook.workers,
        signature_header=cfg.webhook.signature_header,
        event_type_header=cfg.webhook.event_type_header,
        store_retry_attempts=cfg.store_retry.attempts,
        store_retry_delay=cfg.store_retry.initial_delay,
    )
    payments = PaymentApplicationService(
        make_uow,
        dispatcher,
        chain,
        default_currency=cfg.payment.default_currency,
        default_expiry_minutes=cfg.payment.default_expiry_minutes,
        store_retry_attempts=cfg.store_retry.attempts,
        store_retry_delay=cfg.store_retry.initial_delay,
    )
    watcher = TransactionWatcher(
        make_uow,
        chain,
        payments,
        state_table=WatcherStateTable(),
        poll_interval=cfg.watcher.poll_interval,
        initial_backoff=cfg.watcher.initial_backoff,
        max_backoff=cfg.watcher.max_backoff,
        max_retries=cfg.watcher.max_retries,
        concurrency=cfg.watcher.concurrency,
        batch_size=cfg.watcher.batch_size,
        store_retry_attempts=cfg.store_retry.attempts,
        store_retry_delay=cfg.store_retry.initial_delay,
    )
    return Application(
        settings=cfg,
        chain=chain,
        sender=sender,
        dispatcher=dispatcher,
        payments=payments,
        refunds=RefundApplicationService(make_uow, dispatcher, chain.explorer_link),
        webhooks=WebhookSubscriptionService(make_uow),
        watcher=watcher,
        _closers=closers,
    )


async def run() -> None:
    # 开发环境自动建表；生产环境由迁移工具管理表结构
    if default_settings.DEBUG:
        await create_tables()
        logger.info("database_initialized", message="Database tables created (development)")

    app = build_application()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows 事件循环不支持信号处理器
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))

    await app.start()
    try:
        await stop_event.wait()
    finally:
        await app.stop()
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(run())
