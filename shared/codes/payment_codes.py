"""
Payment specific codes and on-chain receipt status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Payment lifecycle (201xx)
    PAYMENT_NOT_FOUND = 20101
    INVALID_TRANSITION = 20102
    PAYMENT_NOT_REFUNDABLE = 20103
    REFUND_EXCEEDS_PAYMENT = 20104
    REFUND_NOT_FOUND = 20105

    # Webhooks (202xx)
    SUBSCRIPTION_NOT_FOUND = 20201

    # Chain/Network errors (6xxxx)
    CHAIN_RPC_ERROR = 60000
    CHAIN_RPC_RECOVERABLE = 60001


# eth_getTransactionReceipt `status` field → outcome.
# Pre-Byzantium receipts carry no status; a mined receipt without one is
# treated as success.
RECEIPT_STATUS_TO_OUTCOME = {
    "0x1": "confirmed",
    "0x": "confirmed",
    None: "confirmed",
    "0x0": "failed",
}
