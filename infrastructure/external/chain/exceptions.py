"""
Exceptions raised by the JSON-RPC chain client, mapped to BusinessException.
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class ChainRPCError(BusinessException):
    """传输失败、HTTP 错误或 JSON-RPC error 对象；调用方视为可重试"""

    def __init__(
        self,
        message: str,
        *,
        method: str,
        rpc_code: Optional[int] = None,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        full_details = {"method": method, "rpc_code": rpc_code, "status_code": status_code}
        if details:
            full_details.update(details)
        super().__init__(
            code=PaymentCode.CHAIN_RPC_ERROR,
            message=message,
            error_type="ChainRPCError",
            details=full_details,
        )
        self.method = method
        self.rpc_code = rpc_code
        self.status_code = status_code


class RetryableRPCError(ChainRPCError):
    """429 / 5xx：在客户端内部重试，耗尽后以 ChainRPCError 抛出"""

    def __init__(self, message: str, *, method: str, status_code: Optional[int] = None):
        super().__init__(message, method=method, status_code=status_code)
        self.code = PaymentCode.CHAIN_RPC_RECOVERABLE
        self.error_type = "ChainRPCRecoverableError"
