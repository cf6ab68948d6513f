"""
Chain DTOs: normalized JSON-RPC results consumed by the watcher.
"""
from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, ConfigDict, model_validator


class TransactionStatus(BaseModel):
    """Receipt tri-state: confirmed, failed, or neither (not yet mined)."""

    model_config = ConfigDict(frozen=True)

    confirmed: bool = False
    failed: bool = False
    block_number: Optional[int] = None
    block_hash: Optional[str] = None
    error: Optional[str] = None

    @model_validator(mode="after")
    def _exclusive(self) -> "TransactionStatus":
        if self.confirmed and self.failed:
            raise ValueError("a receipt cannot be both confirmed and failed")
        return self

    @property
    def is_pending(self) -> bool:
        return not self.confirmed and not self.failed


class ChainConfig(BaseModel):
    chain_id: int
    rpc_url: str
    explorer_url: str
