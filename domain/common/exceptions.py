"""领域层业务异常定义，供领域、应用与基础设施使用。

所有可预期的业务失败都继承 BusinessException，携带统一的业务码，
调用方（路由层等外部协作者）据此映射为对外的错误响应。
"""
from __future__ import annotations

from typing import Optional

from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
        )


class InvalidTransitionException(BusinessException):
    """状态机拒绝的状态转换"""

    def __init__(self, current_status: str, action: str, reason: Optional[str] = None):
        message = f"Cannot {action} with status {current_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            code=PaymentCode.INVALID_TRANSITION,
            message=message,
            error_type="InvalidTransition",
            details={"current_status": current_status, "action": action},
            field="status",
        )
        self.current_status = current_status
        self.action = action


class PaymentNotFoundException(BusinessException):
    def __init__(self, payment_id: str):
        super().__init__(
            code=PaymentCode.PAYMENT_NOT_FOUND,
            message=f"Payment not found: {payment_id}",
            error_type="PaymentNotFound",
            details={"payment_id": payment_id},
        )


class RefundNotFoundException(BusinessException):
    def __init__(self, refund_id: str):
        super().__init__(
            code=PaymentCode.REFUND_NOT_FOUND,
            message=f"Refund not found: {refund_id}",
            error_type="RefundNotFound",
            details={"refund_id": refund_id},
        )


class PaymentNotRefundableException(BusinessException):
    def __init__(self, status: str, reason: Optional[str] = None):
        super().__init__(
            code=PaymentCode.PAYMENT_NOT_REFUNDABLE,
            message=reason or f"Can only refund confirmed payments (status: {status})",
            error_type="PaymentNotRefundable",
            details={"status": status},
            field="status",
        )


class RefundExceedsPaymentException(BusinessException):
    def __init__(self, refund_amount, payment_amount):
        super().__init__(
            code=PaymentCode.REFUND_EXCEEDS_PAYMENT,
            message=f"Refund amount {refund_amount} cannot exceed payment amount {payment_amount}",
            error_type="RefundExceedsPayment",
            details={"refund_amount": str(refund_amount), "payment_amount": str(payment_amount)},
            field="amount",
        )


class WebhookSubscriptionNotFoundException(BusinessException):
    def __init__(self, subscription_id: str):
        super().__init__(
            code=PaymentCode.SUBSCRIPTION_NOT_FOUND,
            message=f"Webhook subscription not found: {subscription_id}",
            error_type="WebhookSubscriptionNotFound",
            details={"subscription_id": subscription_id},
        )
