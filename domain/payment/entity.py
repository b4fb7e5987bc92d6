"""
支付领域实体 - 购买单、网关交易、Webhook 事件与会话权益
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from domain.common.exceptions import DomainValidationException


class PurchaseStatus(str, Enum):
    """购买单状态"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class TransactionStatus(str, Enum):
    """网关交易状态"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class WebhookStatus(str, Enum):
    """Webhook 事件处理状态"""
    RECEIVED = "received"       # 已接收（未关联时即孤儿事件）
    PROCESSING = "processing"   # 已关联交易，待应用
    PROCESSED = "processed"
    FAILED = "failed"


class EntitlementStatus(str, Enum):
    """会话权益状态"""
    ACTIVE = "active"
    EXPIRED = "expired"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


class GatewayStatus(str, Enum):
    """网关侧交易状态（Wompi）"""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    VOIDED = "VOIDED"
    ERROR = "ERROR"


class WebhookEventKind(str, Enum):
    """网关推送事件类型（封闭集合，未知类型归入 UNKNOWN）"""
    TRANSACTION_UPDATED = "transaction.updated"
    PAYMENT_LINK_PAID = "payment_link.paid"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "WebhookEventKind":
        try:
            return cls(raw)
        except ValueError:
            return cls.UNKNOWN


TRANSACTION_FINAL_STATUSES = frozenset(
    {
        TransactionStatus.COMPLETED,
        TransactionStatus.FAILED,
        TransactionStatus.CANCELLED,
        TransactionStatus.REFUNDED,
    }
)
PURCHASE_FINAL_STATUSES = frozenset(
    {
        PurchaseStatus.COMPLETED,
        PurchaseStatus.FAILED,
        PurchaseStatus.CANCELLED,
        PurchaseStatus.REFUNDED,
    }
)


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """确保时间为 UTC 时区"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Purchase:
    """
    购买单 - 用户为套餐或单项服务付款的意图

    业务规则：
    1. 套餐与服务二选一（恰好一个）
    2. 金额必须大于0
    3. 仅由交易结果驱动状态变化，本子系统不删除购买单
    """

    id: Optional[int]
    user_id: int
    amount: Decimal
    currency: str
    status: PurchaseStatus
    package_id: Optional[int] = None
    service_id: Optional[int] = None
    reference: Optional[str] = None
    payment_method: Optional[str] = None
    expires_at: Optional[datetime] = None
    payment_details: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if (self.package_id is None) == (self.service_id is None):
            raise DomainValidationException(
                "购买单必须且只能指定套餐或服务之一",
                field="package_id",
            )
        if self.amount <= 0:
            raise DomainValidationException(
                f"购买金额必须大于0: {self.amount}",
                field="amount",
            )
        if not self.currency or len(self.currency) != 3 or not self.currency.isalpha():
            raise DomainValidationException(
                f"无效的货币代码: {self.currency}",
                field="currency",
            )
        self.currency = self.currency.upper()
        if self.payment_details is None:
            self.payment_details = {}
        self.expires_at = _ensure_utc(self.expires_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)

    @property
    def amount_in_cents(self) -> int:
        return int(self.amount * 100)

    def is_final_status(self) -> bool:
        return self.status in PURCHASE_FINAL_STATUSES

    def apply_status(self, status: PurchaseStatus) -> bool:
        """应用映射后的状态，返回是否发生变化

        已处于终态时不会回退到 pending。
        """
        if status == self.status:
            return False
        if status == PurchaseStatus.PENDING and self.is_final_status():
            return False
        self.status = status
        self.updated_at = _now()
        return True

    def attach_reference(self, reference: str) -> None:
        self.reference = reference
        self.updated_at = _now()

    def mark_failed(self, reason: Optional[str] = None) -> None:
        self.status = PurchaseStatus.FAILED
        if reason:
            self.payment_details = {**self.payment_details, "failure_reason": reason}
        self.updated_at = _now()


@dataclass
class Transaction:
    """
    网关交易 - 一次网关侧支付尝试，归属于某个购买单

    业务规则：
    1. 外部交易ID一旦写入不可更改
    2. 重试会在同一购买单下产生新的交易
    """

    id: Optional[int]
    purchase_id: int
    provider: str
    amount: Decimal
    currency: str
    status: TransactionStatus
    reference: str
    external_id: Optional[str] = None
    payment_link_id: Optional[str] = None
    gateway_response: dict = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.amount <= 0:
            raise DomainValidationException(
                f"交易金额必须大于0: {self.amount}",
                field="amount",
            )
        if self.gateway_response is None:
            self.gateway_response = {}
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
        self.completed_at = _ensure_utc(self.completed_at)

    def is_final_status(self) -> bool:
        return self.status in TRANSACTION_FINAL_STATUSES

    def assign_external_id(self, external_id: str) -> None:
        """写入网关交易ID（不可变更）"""
        if self.external_id and self.external_id != external_id:
            raise DomainValidationException(
                f"交易 {self.id} 已绑定外部ID {self.external_id}，不能改为 {external_id}",
                field="external_id",
            )
        self.external_id = external_id
        self.updated_at = _now()

    def apply_status(self, status: TransactionStatus, gateway_response: Optional[dict] = None) -> bool:
        """应用映射后的状态并保存网关快照，返回状态是否变化"""
        if gateway_response is not None:
            self.gateway_response = gateway_response
            self.updated_at = _now()
        if status == self.status:
            return False
        if status in (TransactionStatus.PENDING, TransactionStatus.PROCESSING) and self.is_final_status():
            return False
        self.status = status
        self.updated_at = _now()
        if status == TransactionStatus.COMPLETED:
            self.completed_at = self.updated_at
        return True


@dataclass
class WebhookEvent:
    """
    Webhook 事件 - 每次推送都会落库（包括重复推送）

    transaction_id 为空表示孤儿事件；external_transaction_id 在入库时写入，
    用于交易创建后回填关联。
    """

    id: Optional[int]
    provider: str
    event_type: str
    payload: dict
    status: WebhookStatus
    external_transaction_id: Optional[str] = None
    transaction_id: Optional[int] = None
    payment_link_id: Optional[str] = None
    signature: Optional[str] = None
    received_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        if self.transaction_id is None and not self.external_transaction_id:
            raise DomainValidationException(
                "孤儿事件必须携带网关交易ID",
                field="external_transaction_id",
            )
        self.received_at = _ensure_utc(self.received_at)
        self.processed_at = _ensure_utc(self.processed_at)

    @property
    def is_orphaned(self) -> bool:
        return self.transaction_id is None

    @property
    def kind(self) -> WebhookEventKind:
        return WebhookEventKind.parse(self.event_type)

    @property
    def gateway_transaction(self) -> dict:
        return (self.payload.get("data") or {}).get("transaction") or {}

    def link_to(self, transaction_id: int) -> None:
        """关联到本地交易并进入处理中"""
        self.transaction_id = transaction_id
        self.status = WebhookStatus.PROCESSING
        self.error_message = None

    def mark_processed(self) -> None:
        self.status = WebhookStatus.PROCESSED
        self.processed_at = _now()
        self.error_message = None

    def mark_failed(self, message: str) -> None:
        self.status = WebhookStatus.FAILED
        self.processed_at = _now()
        self.error_message = message


@dataclass
class Entitlement:
    """会话权益 - 购买单完成后按服务发放的可消耗次数"""

    id: Optional[int]
    purchase_id: int
    user_id: int
    service_id: int
    sessions_purchased: int
    sessions_remaining: int
    expires_at: Optional[datetime]
    status: EntitlementStatus = EntitlementStatus.ACTIVE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if self.sessions_purchased <= 0:
            raise DomainValidationException(
                f"会话次数必须大于0: {self.sessions_purchased}",
                field="sessions_purchased",
            )
        if not 0 <= self.sessions_remaining <= self.sessions_purchased:
            raise DomainValidationException(
                f"剩余次数超出范围: {self.sessions_remaining}",
                field="sessions_remaining",
            )
        self.expires_at = _ensure_utc(self.expires_at)
        self.created_at = _ensure_utc(self.created_at)
        self.updated_at = _ensure_utc(self.updated_at)
