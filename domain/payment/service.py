"""
支付领域服务 - 状态映射与会话权益发放
"""
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from shared.codes.payment_codes import PROVIDER_STATUS_TO_INTERNAL
from .entity import (
    Entitlement,
    EntitlementStatus,
    Purchase,
    PurchaseStatus,
    TransactionStatus,
)
from .events import EntitlementsGranted, PurchaseCompleted, PurchaseFailed, PurchaseRefunded
from .repository import EntitlementConflict, EntitlementRepository
from domain.catalog.repository import CatalogRepository
from domain.common.exceptions import (
    CatalogItemNotFoundException,
    DomainValidationException,
)


def map_transaction_status(gateway_status: Optional[str], provider: str = "wompi") -> TransactionStatus:
    """网关状态 -> 交易状态（全函数：未知状态一律 pending）"""
    table = PROVIDER_STATUS_TO_INTERNAL.get(provider, {})
    internal = table.get((gateway_status or "").upper(), "pending")
    return TransactionStatus(internal)


def map_purchase_status(gateway_status: Optional[str], provider: str = "wompi") -> PurchaseStatus:
    """网关状态 -> 购买单状态，与交易状态使用同一张映射表"""
    return PurchaseStatus(map_transaction_status(gateway_status, provider).value)


def status_change_event(purchase: Purchase, provider: str, external_id: Optional[str] = None):
    """购买单进入终态时对应的领域事件（其它状态返回 None）"""
    if purchase.status == PurchaseStatus.COMPLETED:
        return PurchaseCompleted(purchase_id=purchase.id, provider=provider, external_id=external_id)
    if purchase.status == PurchaseStatus.FAILED:
        return PurchaseFailed(
            purchase_id=purchase.id,
            provider=provider,
            external_id=external_id,
            reason=purchase.payment_details.get("failure_reason"),
        )
    if purchase.status == PurchaseStatus.REFUNDED:
        return PurchaseRefunded(purchase_id=purchase.id, provider=provider, external_id=external_id)
    return None


def compute_expiry(validity_days: int, now: Optional[datetime] = None) -> datetime:
    """根据有效天数计算权益到期时间"""
    return (now or datetime.now(timezone.utc)) + timedelta(days=validity_days)


class EntitlementGranter:
    """
    会话权益发放 - 购买单完成后创建权益，且每个购买单只创建一次

    业务规则：
    1. 仅对 completed 的购买单发放
    2. 已存在任一权益时直接返回（幂等）
    3. 套餐按服务明细逐项发放；单项服务发放 1 次
    4. 并发发放产生唯一约束冲突时视为已发放
    """

    def __init__(
        self,
        entitlement_repository: EntitlementRepository,
        catalog_repository: CatalogRepository,
    ):
        self.entitlement_repository = entitlement_repository
        self.catalog_repository = catalog_repository
        self.events: List = []

    async def grant(self, purchase: Purchase) -> List[Entitlement]:
        if purchase.status != PurchaseStatus.COMPLETED:
            raise DomainValidationException(
                f"购买单 {purchase.id} 状态为 {purchase.status.value}，不能发放权益",
                field="status",
            )
        if await self.entitlement_repository.exists_for_purchase(purchase.id):
            return []

        entitlements = await self._build_entitlements(purchase)
        try:
            created = await self.entitlement_repository.create_many(entitlements)
        except EntitlementConflict:
            return []

        self.events.append(
            EntitlementsGranted(
                purchase_id=purchase.id,
                provider=str(purchase.payment_details.get("provider", "")),
                external_id=purchase.reference,
                count=len(created),
            )
        )
        return created

    async def _build_entitlements(self, purchase: Purchase) -> List[Entitlement]:
        if purchase.package_id is not None:
            package = await self.catalog_repository.get_package(purchase.package_id)
            if package is None:
                raise CatalogItemNotFoundException("package", purchase.package_id)
            if not package.services:
                raise DomainValidationException(
                    f"套餐 {package.id} 未包含任何服务",
                    field="package_id",
                )
            expires_at = purchase.expires_at or compute_expiry(package.validity_days)
            return [
                self._new_entitlement(purchase, line.service_id, line.sessions_included, expires_at)
                for line in package.services
            ]

        service = await self.catalog_repository.get_service(purchase.service_id)
        if service is None:
            raise CatalogItemNotFoundException("service", purchase.service_id)
        return [self._new_entitlement(purchase, service.id, 1, purchase.expires_at)]

    @staticmethod
    def _new_entitlement(
        purchase: Purchase,
        service_id: int,
        sessions: int,
        expires_at: Optional[datetime],
    ) -> Entitlement:
        now = datetime.now(timezone.utc)
        return Entitlement(
            id=None,
            purchase_id=purchase.id,
            user_id=purchase.user_id,
            service_id=service_id,
            sessions_purchased=sessions,
            sessions_remaining=sessions,
            expires_at=expires_at,
            status=EntitlementStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )

    def clear_events(self) -> List:
        """清空并返回领域事件"""
        events = self.events.copy()
        self.events.clear()
        return events
