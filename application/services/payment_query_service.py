"""
Read-only operational queries over transactions and stored webhooks.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from application.dtos.payments import TransactionView, WebhookEventView
from domain.common.exceptions import TransactionNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import Transaction, TransactionStatus, WebhookEvent, WebhookStatus


class PaymentQueryService:
    def __init__(self, uow_factory: Callable[..., AbstractUnitOfWork], *, pending_report_minutes: int = 30) -> None:
        self._uow_factory = uow_factory
        self._pending_report_minutes = pending_report_minutes

    async def pending_transactions(
        self,
        older_than_minutes: Optional[int] = None,
        *,
        limit: int = 100,
        now: Optional[datetime] = None,
    ) -> List[TransactionView]:
        """Transactions still pending after the given age, oldest first."""
        minutes = self._pending_report_minutes if older_than_minutes is None else older_than_minutes
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=minutes)
        async with self._uow_factory(readonly=True) as uow:
            rows = await uow.transaction_repository.list_by_status_before(
                TransactionStatus.PENDING, cutoff, limit
            )
        return [self._to_view(tx) for tx in rows]

    async def get_transaction(self, external_id: str) -> TransactionView:
        async with self._uow_factory(readonly=True) as uow:
            tx = await uow.transaction_repository.get_by_external_id(external_id)
            if tx is None:
                raise TransactionNotFoundException(external_id)
            purchase = await uow.purchase_repository.get_by_id(tx.purchase_id)
        return self._to_view(tx, purchase.status.value if purchase else None)

    async def webhook_events(
        self,
        status: Optional[WebhookStatus] = None,
        orphaned: Optional[bool] = None,
        skip: int = 0,
        limit: int = 100,
    ) -> List[WebhookEventView]:
        async with self._uow_factory(readonly=True) as uow:
            events = await uow.webhook_repository.list_events(status=status, orphaned=orphaned, skip=skip, limit=limit)
        return [self._to_event_view(e) for e in events]

    @staticmethod
    def _to_view(tx: Transaction, purchase_status: Optional[str] = None) -> TransactionView:
        return TransactionView(
            transaction_id=tx.id,
            purchase_id=tx.purchase_id,
            external_id=tx.external_id,
            payment_link_id=tx.payment_link_id,
            reference=tx.reference,
            status=tx.status.value,
            amount_in_cents=int(tx.amount * 100),
            currency=tx.currency,
            purchase_status=purchase_status,
            created_at=tx.created_at,
            completed_at=tx.completed_at,
        )

    @staticmethod
    def _to_event_view(event: WebhookEvent) -> WebhookEventView:
        return WebhookEventView(
            id=event.id,
            provider=event.provider,
            event_type=event.event_type,
            status=event.status.value,
            external_transaction_id=event.external_transaction_id,
            transaction_id=event.transaction_id,
            received_at=event.received_at,
            processed_at=event.processed_at,
            error_message=event.error_message,
        )
