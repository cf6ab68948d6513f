"""
支付仓储接口 - 定义支付数据访问的抽象接口
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, List

from .entity import Payment, Refund, PaymentStatus


class PaymentRepository(ABC):
    """支付仓储抽象接口 - 只定义能做什么，不管怎么做"""

    @abstractmethod
    async def create(self, payment: Payment) -> Payment:
        """创建支付记录"""
        pass

    @abstractmethod
    async def get_by_id(self, payment_id: str, *, for_update: bool = False) -> Optional[Payment]:
        """根据ID获取支付；for_update 时加行锁"""
        pass

    @abstractmethod
    async def update(self, payment: Payment) -> Payment:
        """更新支付记录"""
        pass

    @abstractmethod
    async def list_awaiting_confirmation(self, limit: int = 500) -> List[Payment]:
        """pending 且已有 tx_hash 的支付"""
        pass

    @abstractmethod
    async def list_expirable(self, now: datetime, limit: int = 500) -> List[Payment]:
        """created / pending 且 expires_at 早于 now 的支付"""
        pass

    @abstractmethod
    async def list_by_merchant(
        self,
        merchant_id: str,
        skip: int = 0,
        limit: int = 100,
        status: Optional[PaymentStatus] = None
    ) -> List[Payment]:
        """获取商户的支付列表"""
        pass


class RefundRepository(ABC):
    """退款仓储抽象接口"""

    @abstractmethod
    async def create(self, refund: Refund) -> Refund:
        """创建退款记录"""
        pass

    @abstractmethod
    async def get_by_id(self, refund_id: str, *, for_update: bool = False) -> Optional[Refund]:
        """根据ID获取退款"""
        pass

    @abstractmethod
    async def update(self, refund: Refund) -> Refund:
        """更新退款记录"""
        pass

    @abstractmethod
    async def list_by_payment(self, payment_id: str) -> List[Refund]:
        """获取支付的退款列表"""
        pass

    @abstractmethod
    async def has_completed_for_payment(self, payment_id: str) -> bool:
        """支付是否已有完成的退款"""
        pass
