"""
JSON-RPC 2.0 客户端基类

提供：
- 自动重试（超时、网络错误、429/5xx）
- JSON-RPC error 对象到 ChainRPCError 的映射
- 超时控制
"""
from __future__ import annotations

import itertools
import logging
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.logging_config import get_logger
from .exceptions import ChainRPCError, RetryableRPCError


logger = get_logger(__name__)

RETRY_STATUS_CODES = {429, 500, 502, 503, 504}


class JsonRpcClient:
    """
    JSON-RPC 客户端基类

    子类在此之上实现具体的 eth_* 调用
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            rpc_url: 节点 RPC 地址
            timeout: 单次请求超时（秒）
            max_retries: 失败后的最大重试次数（总尝试次数为 max_retries + 1）
            retry_delay: 首次重试等待（秒），之后指数增长
            transport: 自定义 httpx 传输层（测试时使用 MockTransport）
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._transport = transport
        self._ids = itertools.count(1)
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """获取或创建HTTP客户端"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def call(self, method: str, params: list[Any]) -> Any:
        """
        发送一次 JSON-RPC 调用并返回 result 字段

        Raises:
            ChainRPCError: 传输失败（重试耗尽）、非 2xx 响应或 JSON-RPC error
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        async def _send_once() -> Any:
            response = await self.client.post(self.rpc_url, json=payload)
            if response.status_code in RETRY_STATUS_CODES:
                raise RetryableRPCError(
                    f"Transient RPC status {response.status_code}",
                    method=method,
                    status_code=response.status_code,
                )
            if response.status_code >= 400:
                raise ChainRPCError(
                    f"RPC request failed with status {response.status_code}",
                    method=method,
                    status_code=response.status_code,
                )
            try:
                body = response.json()
            except ValueError as exc:
                raise ChainRPCError("RPC response is not valid JSON", method=method) from exc

            error = body.get("error") if isinstance(body, dict) else None
            if error:
                raise ChainRPCError(
                    str(error.get("message") or "JSON-RPC error"),
                    method=method,
                    rpc_code=error.get("code"),
                )
            if not isinstance(body, dict) or "result" not in body:
                raise ChainRPCError("RPC response has no result", method=method)
            return body["result"]

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(
                multiplier=self.retry_delay,
                min=self.retry_delay,
                max=self.retry_delay * 8
            ),
            retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError, RetryableRPCError)),
            before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await _send_once()
        except httpx.TimeoutException as exc:
            logger.warning("chain_rpc_timeout", method=method, timeout=self.timeout)
            raise ChainRPCError(f"RPC timeout after {self.timeout}s", method=method) from exc
        except httpx.TransportError as exc:
            logger.warning("chain_rpc_network_error", method=method, error=str(exc))
            raise ChainRPCError(f"RPC network error: {exc}", method=method) from exc
        except RetryableRPCError as exc:
            logger.warning("chain_rpc_retries_exhausted", method=method, status_code=exc.status_code)
            raise ChainRPCError(exc.message, method=method, status_code=exc.status_code) from exc
        raise ChainRPCError("RPC retry loop exited without result", method=method)
