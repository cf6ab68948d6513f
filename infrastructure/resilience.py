"""
瞬时故障识别与本地重试

数据库 / RPC 的连接类故障在调用点做有限次数的指数退避重试，
与支付级别的轮询退避（TransactionWatcher）相互独立。
"""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
from sqlalchemy.exc import DBAPIError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from core.logging_config import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

# PostgreSQL SQLSTATE：管理员/崩溃/空闲超时断开，连接不存在，连接失败
TRANSIENT_SQLSTATES = frozenset({"57P01", "57P02", "57P03", "08003", "08006"})

TRANSIENT_MESSAGES = (
    "connection terminated",
    "connection closed",
    "connection refused",
    "connection reset",
    "econnreset",
    "econnrefused",
    "etimedout",
)

TRANSIENT_ERRNO_NAMES = frozenset({"econnreset", "econnrefused", "etimedout"})


def _sqlstate(exc: BaseException) -> Optional[str]:
    for attr in ("sqlstate", "pgcode"):
        value = getattr(exc, attr, None)
        if isinstance(value, str):
            return value.upper()
    return None


def _iter_chain(exc: BaseException):
    """遍历 __cause__ / __context__ / DBAPIError.orig，防止循环引用"""
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if isinstance(current, DBAPIError) and current.orig is not None:
            yield current.orig
            orig_cause = current.orig.__cause__
            if orig_cause is not None and id(orig_cause) not in seen:
                seen.add(id(orig_cause))
                yield orig_cause
        current = current.__cause__ or current.__context__


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "store_transient_error_retry",
        attempt=retry_state.attempt_number,
        delay=retry_state.next_action.sleep if retry_state.next_action else None,
        error=str(exc),
    )


def is_transient_error(exc: Optional[BaseException]) -> bool:
    """判断是否为可重试的连接类故障（其它错误应直接向上抛出）"""
    if exc is None:
        return False
    for err in _iter_chain(exc):
        if isinstance(err, (ConnectionResetError, ConnectionRefusedError, TimeoutError, asyncio.TimeoutError)):
            return True
        if isinstance(err, (httpx.TimeoutException, httpx.NetworkError)):
            return True
        if isinstance(err, DBAPIError) and err.connection_invalidated:
            return True
        if _sqlstate(err) in TRANSIENT_SQLSTATES:
            return True
        code = getattr(err, "code", None)
        if isinstance(code, str) and code.lower() in TRANSIENT_ERRNO_NAMES:
            return True
        message = str(err).lower()
        if any(marker in message for marker in TRANSIENT_MESSAGES):
            return True
    return False


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    initial_delay: float = 1.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    对瞬时故障做指数退避重试（1s、2s、4s ...），非瞬时错误立即抛出

    Args:
        operation: 无参协程工厂，每次重试重新调用
        attempts: 总尝试次数
        initial_delay: 首次重试前等待秒数
    """
    retrying = AsyncRetrying(
        reraise=True,
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=initial_delay, min=initial_delay, max=initial_delay * 4),
        retry=retry_if_exception(is_transient_error),
        before_sleep=_log_retry,
        sleep=sleep,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()
    raise RuntimeError("retry loop exited without result")
