"""
支付状态机 - 纯转换规则，不涉及持久化与副作用

created → pending → confirmed → refunded
pending → failed
created | pending → expired
"""
from __future__ import annotations

from enum import Enum
from typing import Optional

from domain.common.exceptions import InvalidTransitionException


class PaymentStatus(str, Enum):
    """支付状态枚举"""
    CREATED = "created"       # 已创建，等待付款方提交交易
    PENDING = "pending"       # 交易已提交，等待链上确认
    CONFIRMED = "confirmed"   # 链上确认成功
    FAILED = "failed"         # 交易回滚或确认超时
    EXPIRED = "expired"       # 截止时间前未确认
    REFUNDED = "refunded"     # 商户已退款


class PaymentAction(str, Enum):
    """支付动作"""
    SUBMIT = "submit"    # 提交交易
    CONFIRM = "confirm"  # 链上确认
    FAIL = "fail"
    EXPIRE = "expire"
    REFUND = "refund"    # 退款完成


NON_TERMINAL_STATUSES = frozenset({PaymentStatus.CREATED, PaymentStatus.PENDING})

TRANSITIONS: dict[PaymentStatus, dict[PaymentAction, PaymentStatus]] = {
    PaymentStatus.CREATED: {
        PaymentAction.SUBMIT: PaymentStatus.PENDING,
        PaymentAction.CONFIRM: PaymentStatus.CONFIRMED,
        PaymentAction.FAIL: PaymentStatus.FAILED,
        PaymentAction.EXPIRE: PaymentStatus.EXPIRED,
    },
    PaymentStatus.PENDING: {
        PaymentAction.SUBMIT: PaymentStatus.PENDING,
        PaymentAction.CONFIRM: PaymentStatus.CONFIRMED,
        PaymentAction.FAIL: PaymentStatus.FAILED,
        PaymentAction.EXPIRE: PaymentStatus.EXPIRED,
    },
    PaymentStatus.CONFIRMED: {
        PaymentAction.REFUND: PaymentStatus.REFUNDED,
    },
}

# Statuses in which re-applying an action is a no-op instead of an error.
# Expiry always loses against an outcome that has already landed.
NO_OP_STATUSES: dict[PaymentAction, frozenset[PaymentStatus]] = {
    PaymentAction.CONFIRM: frozenset({PaymentStatus.CONFIRMED}),
    PaymentAction.FAIL: frozenset({PaymentStatus.FAILED}),
    PaymentAction.EXPIRE: frozenset({
        PaymentStatus.CONFIRMED,
        PaymentStatus.REFUNDED,
        PaymentStatus.FAILED,
        PaymentStatus.EXPIRED,
    }),
    PaymentAction.REFUND: frozenset({PaymentStatus.REFUNDED}),
}


def apply_transition(current: PaymentStatus, action: PaymentAction) -> Optional[PaymentStatus]:
    """
    计算下一个状态

    Returns:
        新状态；当动作在当前状态下是幂等空操作时返回 None

    Raises:
        InvalidTransitionException: 当前状态不允许该动作
    """
    current = PaymentStatus(current)
    if current in NO_OP_STATUSES.get(action, ()):
        return None
    target = TRANSITIONS.get(current, {}).get(action)
    if target is None:
        raise InvalidTransitionException(current.value, f"{action.value} payment")
    return target


def is_terminal(status: PaymentStatus) -> bool:
    return PaymentStatus(status) not in NON_TERMINAL_STATUSES
