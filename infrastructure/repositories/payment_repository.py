"""
支付仓储实现 - 使用SQLAlchemy实现数据访问
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from domain.payment.entity import (
    Entitlement,
    EntitlementStatus,
    Purchase,
    PurchaseStatus,
    Transaction,
    TransactionStatus,
    WebhookEvent,
    WebhookStatus,
)
from domain.payment.repository import (
    EntitlementConflict,
    EntitlementRepository,
    PurchaseRepository,
    TransactionRepository,
    WebhookEventRepository,
)
from infrastructure.models.payment import (
    PaymentTransactionModel,
    PaymentWebhookModel,
    PurchaseModel,
    UserSessionModel,
)
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyPurchaseRepository(PurchaseRepository):
    """购买单仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PurchaseModel) -> Purchase:
        return Purchase(
            id=model.id,
            user_id=model.user_id,
            package_id=model.package_id,
            service_id=model.service_id,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=PurchaseStatus(model.status),
            reference=model.reference,
            payment_method=model.payment_method,
            expires_at=model.expires_at,
            payment_details=model.payment_details or {},
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Purchase) -> PurchaseModel:
        return PurchaseModel(
            id=entity.id,
            user_id=entity.user_id,
            package_id=entity.package_id,
            service_id=entity.service_id,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            reference=entity.reference,
            payment_method=entity.payment_method,
            expires_at=entity.expires_at,
            payment_details=entity.payment_details,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def create(self, purchase: Purchase) -> Purchase:
        db_purchase = self._to_model(purchase)
        self.session.add(db_purchase)
        await self.session.flush()
        await self.session.refresh(db_purchase)
        logger.info(
            "purchase_created",
            purchase_id=db_purchase.id,
            user_id=db_purchase.user_id,
            package_id=db_purchase.package_id,
            service_id=db_purchase.service_id,
        )
        return self._to_entity(db_purchase)

    async def get_by_id(self, purchase_id: int) -> Optional[Purchase]:
        result = await self.session.execute(
            select(PurchaseModel).where(PurchaseModel.id == purchase_id)
        )
        db_purchase = result.scalar_one_or_none()
        return self._to_entity(db_purchase) if db_purchase else None

    async def update(self, purchase: Purchase) -> Purchase:
        result = await self.session.execute(
            select(PurchaseModel).where(PurchaseModel.id == purchase.id)
        )
        db_purchase = result.scalar_one_or_none()
        if not db_purchase:
            raise ValueError(f"Purchase with id {purchase.id} not found")

        db_purchase.status = purchase.status.value
        db_purchase.reference = purchase.reference
        db_purchase.payment_method = purchase.payment_method
        db_purchase.expires_at = purchase.expires_at
        db_purchase.payment_details = dict(purchase.payment_details)
        db_purchase.updated_at = purchase.updated_at or db_purchase.updated_at

        await self.session.flush()
        await self.session.refresh(db_purchase)
        logger.info("purchase_updated", purchase_id=db_purchase.id, status=db_purchase.status)
        return self._to_entity(db_purchase)


class SQLAlchemyTransactionRepository(TransactionRepository):
    """交易仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentTransactionModel) -> Transaction:
        return Transaction(
            id=model.id,
            purchase_id=model.purchase_id,
            provider=model.provider,
            external_id=model.external_id,
            payment_link_id=model.payment_link_id,
            reference=model.reference,
            amount=Decimal(str(model.amount)),
            currency=model.currency,
            status=TransactionStatus(model.status),
            gateway_response=model.gateway_response or {},
            created_at=model.created_at,
            updated_at=model.updated_at,
            completed_at=model.completed_at,
        )

    def _to_model(self, entity: Transaction) -> PaymentTransactionModel:
        return PaymentTransactionModel(
            id=entity.id,
            purchase_id=entity.purchase_id,
            provider=entity.provider,
            external_id=entity.external_id,
            payment_link_id=entity.payment_link_id,
            reference=entity.reference,
            amount=entity.amount,
            currency=entity.currency,
            status=entity.status.value,
            gateway_response=entity.gateway_response,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
            completed_at=entity.completed_at,
        )

    async def create(self, transaction: Transaction) -> Transaction:
        db_tx = self._to_model(transaction)
        self.session.add(db_tx)
        await self.session.flush()
        await self.session.refresh(db_tx)
        logger.info(
            "transaction_created",
            transaction_id=db_tx.id,
            purchase_id=db_tx.purchase_id,
            external_id=db_tx.external_id,
            status=db_tx.status,
        )
        return self._to_entity(db_tx)

    async def _get_one(self, *criteria) -> Optional[Transaction]:
        result = await self.session.execute(select(PaymentTransactionModel).where(*criteria))
        db_tx = result.scalars().first()
        return self._to_entity(db_tx) if db_tx else None

    async def get_by_id(self, transaction_id: int) -> Optional[Transaction]:
        return await self._get_one(PaymentTransactionModel.id == transaction_id)

    async def get_by_external_id(self, external_id: str) -> Optional[Transaction]:
        return await self._get_one(PaymentTransactionModel.external_id == external_id)

    async def list_by_payment_link_id(self, payment_link_id: str) -> List[Transaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.payment_link_id == payment_link_id)
            .order_by(PaymentTransactionModel.created_at.asc(), PaymentTransactionModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_purchase(self, purchase_id: int) -> List[Transaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.purchase_id == purchase_id)
            .order_by(PaymentTransactionModel.created_at.asc(), PaymentTransactionModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_by_status_before(
        self,
        status: TransactionStatus,
        created_before: datetime,
        limit: int = 100,
    ) -> List[Transaction]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.status == status.value,
                PaymentTransactionModel.created_at < created_before,
            )
            .order_by(PaymentTransactionModel.created_at.asc(), PaymentTransactionModel.id.asc())
            .limit(limit)
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, transaction: Transaction) -> Transaction:
        result = await self.session.execute(
            select(PaymentTransactionModel).where(PaymentTransactionModel.id == transaction.id)
        )
        db_tx = result.scalar_one_or_none()
        if not db_tx:
            raise ValueError(f"Transaction with id {transaction.id} not found")

        db_tx.external_id = transaction.external_id
        db_tx.payment_link_id = transaction.payment_link_id
        db_tx.status = transaction.status.value
        db_tx.gateway_response = dict(transaction.gateway_response)
        db_tx.completed_at = transaction.completed_at
        db_tx.updated_at = transaction.updated_at or db_tx.updated_at

        await self.session.flush()
        await self.session.refresh(db_tx)
        logger.info(
            "transaction_updated",
            transaction_id=db_tx.id,
            external_id=db_tx.external_id,
            status=db_tx.status,
        )
        return self._to_entity(db_tx)


class SQLAlchemyWebhookEventRepository(WebhookEventRepository):
    """Webhook 事件仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: PaymentWebhookModel) -> WebhookEvent:
        return WebhookEvent(
            id=model.id,
            transaction_id=model.transaction_id,
            provider=model.provider,
            event_type=model.event_type,
            external_transaction_id=model.external_transaction_id,
            payment_link_id=model.payment_link_id,
            payload=model.payload or {},
            signature=model.signature,
            status=WebhookStatus(model.status),
            received_at=model.received_at,
            processed_at=model.processed_at,
            error_message=model.error_message,
        )

    def _to_model(self, entity: WebhookEvent) -> PaymentWebhookModel:
        return PaymentWebhookModel(
            id=entity.id,
            transaction_id=entity.transaction_id,
            provider=entity.provider,
            event_type=entity.event_type,
            external_transaction_id=entity.external_transaction_id,
            payment_link_id=entity.payment_link_id,
            payload=entity.payload,
            signature=entity.signature,
            status=entity.status.value,
            received_at=entity.received_at,
            processed_at=entity.processed_at,
            error_message=entity.error_message,
        )

    async def create(self, event: WebhookEvent) -> WebhookEvent:
        db_event = self._to_model(event)
        self.session.add(db_event)
        await self.session.flush()
        await self.session.refresh(db_event)
        logger.info(
            "webhook_event_stored",
            webhook_id=db_event.id,
            event_type=db_event.event_type,
            external_transaction_id=db_event.external_transaction_id,
            orphaned=db_event.transaction_id is None,
        )
        return self._to_entity(db_event)

    async def get_by_id(self, webhook_id: int) -> Optional[WebhookEvent]:
        result = await self.session.execute(
            select(PaymentWebhookModel).where(PaymentWebhookModel.id == webhook_id)
        )
        db_event = result.scalar_one_or_none()
        return self._to_entity(db_event) if db_event else None

    async def list_orphans_by_external_id(self, external_id: str) -> List[WebhookEvent]:
        result = await self.session.execute(
            select(PaymentWebhookModel)
            .where(
                PaymentWebhookModel.external_transaction_id == external_id,
                PaymentWebhookModel.transaction_id.is_(None),
            )
            .order_by(PaymentWebhookModel.received_at.asc(), PaymentWebhookModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_orphans_by_payment_link_id(self, payment_link_id: str) -> List[WebhookEvent]:
        result = await self.session.execute(
            select(PaymentWebhookModel)
            .where(
                PaymentWebhookModel.payment_link_id == payment_link_id,
                PaymentWebhookModel.transaction_id.is_(None),
            )
            .order_by(PaymentWebhookModel.received_at.asc(), PaymentWebhookModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def list_events(
        self,
        status: Optional[WebhookStatus] = None,
        orphaned: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[WebhookEvent]:
        query = select(PaymentWebhookModel)
        if status is not None:
            query = query.where(PaymentWebhookModel.status == status.value)
        if orphaned is True:
            query = query.where(PaymentWebhookModel.transaction_id.is_(None))
        elif orphaned is False:
            query = query.where(PaymentWebhookModel.transaction_id.is_not(None))
        query = query.order_by(PaymentWebhookModel.received_at.desc(), PaymentWebhookModel.id.desc())
        result = await self.session.execute(query.offset(skip).limit(limit))
        return [self._to_entity(m) for m in result.scalars().all()]

    async def update(self, event: WebhookEvent) -> WebhookEvent:
        result = await self.session.execute(
            select(PaymentWebhookModel).where(PaymentWebhookModel.id == event.id)
        )
        db_event = result.scalar_one_or_none()
        if not db_event:
            raise ValueError(f"Webhook event with id {event.id} not found")

        db_event.transaction_id = event.transaction_id
        db_event.status = event.status.value
        db_event.processed_at = event.processed_at
        db_event.error_message = event.error_message

        await self.session.flush()
        await self.session.refresh(db_event)
        return self._to_entity(db_event)

    async def delete_orphans_before(self, cutoff: datetime) -> int:
        result = await self.session.execute(
            delete(PaymentWebhookModel).where(
                PaymentWebhookModel.transaction_id.is_(None),
                PaymentWebhookModel.received_at < cutoff,
            )
        )
        deleted = result.rowcount or 0
        logger.info("webhook_orphans_deleted", count=deleted, cutoff=cutoff.isoformat())
        return deleted


class SQLAlchemyEntitlementRepository(EntitlementRepository):
    """会话权益仓储的SQLAlchemy实现"""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _to_entity(self, model: UserSessionModel) -> Entitlement:
        return Entitlement(
            id=model.id,
            purchase_id=model.purchase_id,
            user_id=model.user_id,
            service_id=model.service_id,
            sessions_purchased=model.sessions_purchased,
            sessions_remaining=model.sessions_remaining,
            expires_at=model.expires_at,
            status=EntitlementStatus(model.status),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _to_model(self, entity: Entitlement) -> UserSessionModel:
        return UserSessionModel(
            purchase_id=entity.purchase_id,
            user_id=entity.user_id,
            service_id=entity.service_id,
            sessions_purchased=entity.sessions_purchased,
            sessions_remaining=entity.sessions_remaining,
            expires_at=entity.expires_at,
            status=entity.status.value,
            created_at=entity.created_at,
            updated_at=entity.updated_at,
        )

    async def exists_for_purchase(self, purchase_id: int) -> bool:
        result = await self.session.execute(
            select(UserSessionModel.id).where(UserSessionModel.purchase_id == purchase_id).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def list_by_purchase(self, purchase_id: int) -> List[Entitlement]:
        result = await self.session.execute(
            select(UserSessionModel)
            .where(UserSessionModel.purchase_id == purchase_id)
            .order_by(UserSessionModel.id.asc())
        )
        return [self._to_entity(m) for m in result.scalars().all()]

    async def create_many(self, entitlements: List[Entitlement]) -> List[Entitlement]:
        models = [self._to_model(e) for e in entitlements]
        # 保存点：并发发放冲突只回滚本批次，不影响外层事务
        try:
            async with self.session.begin_nested():
                self.session.add_all(models)
                await self.session.flush()
        except IntegrityError as e:
            logger.warning(
                "entitlement_create_conflict",
                purchase_ids=sorted({ent.purchase_id for ent in entitlements}),
                error=str(e.orig),
            )
            raise EntitlementConflict(str(e.orig)) from e

        for m in models:
            await self.session.refresh(m)
        logger.info(
            "entitlements_created",
            purchase_id=models[0].purchase_id if models else None,
            count=len(models),
        )
        return [self._to_entity(m) for m in models]
