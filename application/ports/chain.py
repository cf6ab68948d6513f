"""
Chain client port: read-only JSON-RPC queries against an EVM compatible chain.

Application depends on this Protocol; infrastructure provides the httpx adapter.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol, runtime_checkable

from application.dtos.chain import ChainConfig, TransactionStatus


@runtime_checkable
class ChainClient(Protocol):
    """Implementations raise on transport / RPC errors; a missing receipt is not an error."""

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionStatus: ...

    async def get_transaction(self, tx_hash: str) -> Optional[dict[str, Any]]: ...

    async def get_block_timestamp(self, block_number: int) -> Optional[datetime]: ...

    def explorer_link(self, tx_hash: str) -> str: ...

    def chain_config(self) -> ChainConfig: ...
