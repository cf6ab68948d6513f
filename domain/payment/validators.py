"""
链上标识格式校验（EVM 兼容链）
"""
from __future__ import annotations

import re

_WALLET_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")


def is_valid_wallet_address(address: str | None) -> bool:
    return bool(address) and _WALLET_RE.match(address) is not None


def is_valid_tx_hash(tx_hash: str | None) -> bool:
    return bool(tx_hash) and _TX_HASH_RE.match(tx_hash) is not None
