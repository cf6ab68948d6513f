"""
Arc 链客户端：交易回执、交易详情、区块时间与浏览器链接
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from application.dtos.chain import ChainConfig, TransactionStatus
from core.logging_config import get_logger
from shared.codes.payment_codes import RECEIPT_STATUS_TO_OUTCOME
from .base import JsonRpcClient


logger = get_logger(__name__)


def _hex_to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value, 16)
    except (TypeError, ValueError):
        return None


class ArcChainClient(JsonRpcClient):
    """只读链客户端，实现 application.ports.chain.ChainClient"""

    def __init__(
        self,
        *,
        chain_id: int,
        rpc_url: str,
        explorer_url: str,
        timeout: float = 30.0,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            rpc_url=rpc_url,
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
            transport=transport,
        )
        self.chain_id = chain_id
        self.explorer_url = explorer_url.rstrip("/")

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionStatus:
        """
        查询交易回执

        没有回执（尚未上链）时返回 confirmed=False, failed=False。
        回执 status 为 0x0 表示交易回滚。
        """
        receipt = await self.call("eth_getTransactionReceipt", [tx_hash])
        if not receipt:
            return TransactionStatus()

        raw_status = receipt.get("status")
        outcome = RECEIPT_STATUS_TO_OUTCOME.get(raw_status)
        block_number = _hex_to_int(receipt.get("blockNumber"))
        block_hash = receipt.get("blockHash")

        if outcome is None:
            logger.warning("chain_receipt_unknown_status", tx_hash=tx_hash, status=raw_status)
            return TransactionStatus(block_number=block_number, block_hash=block_hash,
                                     error=f"unknown receipt status {raw_status}")

        return TransactionStatus(
            confirmed=outcome == "confirmed",
            failed=outcome == "failed",
            block_number=block_number,
            block_hash=block_hash,
            error="transaction reverted" if outcome == "failed" else None,
        )

    async def get_transaction(self, tx_hash: str) -> Optional[dict[str, Any]]:
        """eth_getTransactionByHash；未知交易返回 None"""
        return await self.call("eth_getTransactionByHash", [tx_hash]) or None

    async def get_block_timestamp(self, block_number: int) -> Optional[datetime]:
        """区块时间戳（UTC）；区块不存在时返回 None"""
        block = await self.call("eth_getBlockByNumber", [hex(block_number), False])
        if not block:
            return None
        seconds = _hex_to_int(block.get("timestamp"))
        if seconds is None:
            return None
        return datetime.fromtimestamp(seconds, tz=timezone.utc)

    def explorer_link(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/{tx_hash}"

    def chain_config(self) -> ChainConfig:
        return ChainConfig(chain_id=self.chain_id, rpc_url=self.rpc_url, explorer_url=self.explorer_url)
