"""
支付仓储接口 - 定义购买单、交易、Webhook 与权益的数据访问抽象
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .entity import (
    Entitlement,
    Purchase,
    Transaction,
    TransactionStatus,
    WebhookEvent,
    WebhookStatus,
)


class PurchaseRepository(ABC):
    """购买单仓储"""

    @abstractmethod
    async def create(self, purchase: Purchase) -> Purchase:
        pass

    @abstractmethod
    async def get_by_id(self, purchase_id: int) -> Optional[Purchase]:
        pass

    @abstractmethod
    async def update(self, purchase: Purchase) -> Purchase:
        """按主键更新单行"""
        pass


class TransactionRepository(ABC):
    """交易仓储 - 支持按网关外部ID唯一查询"""

    @abstractmethod
    async def create(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def get_by_id(self, transaction_id: int) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def get_by_external_id(self, external_id: str) -> Optional[Transaction]:
        """根据网关交易ID获取交易"""
        pass

    @abstractmethod
    async def list_by_payment_link_id(self, payment_link_id: str) -> List[Transaction]:
        """获取支付链接下的全部交易，按创建时间升序"""
        pass

    @abstractmethod
    async def list_by_purchase(self, purchase_id: int) -> List[Transaction]:
        pass

    @abstractmethod
    async def list_by_status_before(
        self,
        status: TransactionStatus,
        created_before: datetime,
        limit: int = 100,
    ) -> List[Transaction]:
        """获取早于指定时间仍处于某状态的交易（按创建时间升序）"""
        pass

    @abstractmethod
    async def update(self, transaction: Transaction) -> Transaction:
        pass


class WebhookEventRepository(ABC):
    """Webhook 事件仓储"""

    @abstractmethod
    async def create(self, event: WebhookEvent) -> WebhookEvent:
        pass

    @abstractmethod
    async def get_by_id(self, webhook_id: int) -> Optional[WebhookEvent]:
        pass

    @abstractmethod
    async def list_orphans_by_external_id(self, external_id: str) -> List[WebhookEvent]:
        """获取引用该网关交易ID的孤儿事件，按接收时间升序"""
        pass

    @abstractmethod
    async def list_orphans_by_payment_link_id(self, payment_link_id: str) -> List[WebhookEvent]:
        """获取携带该支付链接ID的孤儿事件，按接收时间升序"""
        pass

    @abstractmethod
    async def list_events(
        self,
        status: Optional[WebhookStatus] = None,
        orphaned: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[WebhookEvent]:
        pass

    @abstractmethod
    async def update(self, event: WebhookEvent) -> WebhookEvent:
        pass

    @abstractmethod
    async def delete_orphans_before(self, cutoff: datetime) -> int:
        """删除早于截止时间仍未关联的事件，返回删除数量"""
        pass


class EntitlementRepository(ABC):
    """会话权益仓储"""

    @abstractmethod
    async def exists_for_purchase(self, purchase_id: int) -> bool:
        pass

    @abstractmethod
    async def list_by_purchase(self, purchase_id: int) -> List[Entitlement]:
        pass

    @abstractmethod
    async def create_many(self, entitlements: List[Entitlement]) -> List[Entitlement]:
        """批量创建；同一购买单与服务重复创建时抛出 EntitlementConflict"""
        pass


class EntitlementConflict(Exception):
    """并发发放导致的唯一约束冲突"""
