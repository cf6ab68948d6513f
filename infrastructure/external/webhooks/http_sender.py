"""
基于 httpx 的 webhook 发送器

单次 POST，不在此处重试（重试节奏由 WebhookDispatcher 控制）。
"""
from __future__ import annotations

from typing import Optional

import httpx

from application.dtos.webhooks import WebhookResponse
from core.logging_config import get_logger


logger = get_logger(__name__)


class HttpxWebhookSender:
    """实现 application.ports.webhooks.WebhookSender"""

    def __init__(
        self,
        timeout: float = 10.0,
        body_limit: int = 1000,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.body_limit = body_limit
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=False,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(self, url: str, body: bytes, headers: dict[str, str]) -> WebhookResponse:
        request_headers = {"Content-Type": "application/json", **headers}
        try:
            response = await self.client.post(url, content=body, headers=request_headers)
        except httpx.TimeoutException:
            logger.warning("webhook_send_timeout", url=url, timeout=self.timeout)
            return WebhookResponse(status_code=0, body=f"timeout after {self.timeout}s")
        except httpx.HTTPError as exc:
            logger.warning("webhook_send_transport_error", url=url, error=str(exc))
            return WebhookResponse(status_code=0, body=str(exc)[: self.body_limit])
        return WebhookResponse(status_code=response.status_code, body=response.text[: self.body_limit])
