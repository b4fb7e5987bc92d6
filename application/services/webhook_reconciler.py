"""
Application service reconciling gateway webhooks with local transactions.

Every verified delivery is persisted before anything else happens, so the
gateway's redelivery (triggered by a non-2xx answer) is only needed when the
event could not be stored at all. Deliveries that arrive before the local
transaction exists are kept as orphans and linked later by `backfill_orphans`
(gateway transaction id) or `backfill_payment_link` (hosted checkout link).

Applying an event runs in its own unit of work; a failure there marks the
stored event as failed and is reported through the receipt, never raised.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional

from application.dtos.payments import BackfillResult, WebhookReceipt
from application.ports.payment_gateway import WebhookVerifier
from core.logging_config import get_logger
from domain.common.exceptions import TransactionNotFoundException, WebhookEventNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import (
    PurchaseStatus,
    Transaction,
    TransactionStatus,
    WebhookEvent,
    WebhookEventKind,
    WebhookStatus,
)
from domain.payment.service import (
    EntitlementGranter,
    map_purchase_status,
    map_transaction_status,
    status_change_event,
)


logger = get_logger(__name__)

EventHandler = Callable[[AbstractUnitOfWork, WebhookEvent, Transaction], Awaitable[None]]

ERROR_MESSAGE_LIMIT = 1000


class WebhookReconciler:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        verifier: Optional[WebhookVerifier] = None,
        *,
        provider: str = "wompi",
        orphan_retention_days: int = 7,
    ) -> None:
        self._uow_factory = uow_factory
        self._verifier = verifier
        self.provider = verifier.provider if verifier is not None else provider
        self._orphan_retention_days = orphan_retention_days
        self._handlers: dict[WebhookEventKind, EventHandler] = {
            WebhookEventKind.TRANSACTION_UPDATED: self._on_transaction_updated,
            WebhookEventKind.PAYMENT_LINK_PAID: self._on_payment_link_paid,
            WebhookEventKind.UNKNOWN: self._on_unknown,
        }

    @property
    def handlers(self) -> Mapping[WebhookEventKind, EventHandler]:
        return self._handlers

    # Inbound deliveries

    async def ingest(self, headers: Mapping[str, str], body: bytes) -> WebhookReceipt:
        """Verify, persist and apply one webhook delivery.

        Verification errors propagate before anything is stored.
        """
        if self._verifier is None:
            raise RuntimeError("WebhookReconciler has no verifier configured")
        notification = self._verifier.parse(headers, body)
        logger.info(
            "webhook_received",
            provider=notification.provider,
            event_type=notification.event_type,
            external_id=notification.external_transaction_id,
            gateway_status=notification.gateway_status,
        )

        newly_linked: Optional[Transaction] = None
        async with self._uow_factory() as uow:
            tx, assigned = await self._resolve_transaction(
                uow, notification.external_transaction_id, notification.payment_link_id
            )
            event = WebhookEvent(
                id=None,
                provider=notification.provider,
                event_type=notification.event_type,
                payload=notification.payload,
                status=WebhookStatus.PROCESSING if tx else WebhookStatus.RECEIVED,
                external_transaction_id=notification.external_transaction_id,
                transaction_id=tx.id if tx else None,
                payment_link_id=notification.payment_link_id,
                signature=notification.signature,
                received_at=datetime.now(timezone.utc),
                error_message=None
                if tx
                else f"No local transaction for {notification.external_transaction_id} yet",
            )
            event = await uow.webhook_repository.create(event)
            if assigned:
                newly_linked = tx

        if event.is_orphaned:
            logger.info(
                "webhook_orphaned",
                webhook_id=event.id,
                external_id=event.external_transaction_id,
            )
            return self._receipt(event)

        if newly_linked is not None:
            # Earlier deliveries for this id could only be stored as orphans
            await self.backfill_orphans(newly_linked)
        return await self._apply_event(event.id)

    async def backfill_orphans(self, transaction: Transaction) -> BackfillResult:
        """Link and apply orphaned events that reference the transaction's gateway id."""
        external_id = transaction.external_id
        result = BackfillResult(external_id=external_id or "")
        if not external_id:
            return result

        async with self._uow_factory() as uow:
            orphans = await uow.webhook_repository.list_orphans_by_external_id(external_id)
            for orphan in orphans:
                orphan.link_to(transaction.id)
                await uow.webhook_repository.update(orphan)
        return await self._apply_backfill(transaction, orphans, result)

    async def backfill_payment_link(self, transaction: Transaction) -> BackfillResult:
        """Link orphans that carry the transaction's payment link id.

        A link delivery can land before the link's transaction is stored; each
        gateway id found on such orphans is bound the same way a live delivery is.
        """
        payment_link_id = transaction.payment_link_id
        result = BackfillResult(external_id=payment_link_id or "")
        if not payment_link_id:
            return result

        async with self._uow_factory() as uow:
            orphans = await uow.webhook_repository.list_orphans_by_payment_link_id(payment_link_id)
            for orphan in orphans:
                tx, _ = await self._resolve_transaction(uow, orphan.external_transaction_id, payment_link_id)
                orphan.link_to(tx.id)
                await uow.webhook_repository.update(orphan)
        return await self._apply_backfill(transaction, orphans, result)

    async def _apply_backfill(
        self,
        transaction: Transaction,
        orphans: list[WebhookEvent],
        result: BackfillResult,
    ) -> BackfillResult:
        result.linked = len(orphans)
        if not orphans:
            return result

        logger.info(
            "webhook_backfill_started",
            transaction_id=transaction.id,
            external_id=result.external_id,
            linked=result.linked,
        )
        for orphan in orphans:
            receipt = await self._apply_event(orphan.id)
            if receipt.status == WebhookStatus.PROCESSED.value:
                result.processed += 1
            else:
                result.failed += 1
        logger.info(
            "webhook_backfill_finished",
            transaction_id=transaction.id,
            external_id=result.external_id,
            processed=result.processed,
            failed=result.failed,
        )
        return result

    async def apply_gateway_status(
        self,
        transaction_id: int,
        gateway_status: str,
        gateway_response: Optional[dict[str, Any]] = None,
    ) -> Transaction:
        """Apply a status read directly from the gateway (create, confirm, refresh, void)."""
        async with self._uow_factory() as uow:
            tx = await uow.transaction_repository.get_by_id(transaction_id)
            if tx is None:
                raise TransactionNotFoundException(str(transaction_id))
            return await self._apply_status(uow, tx, gateway_status, gateway_response)

    # Operations

    async def replay(self, webhook_id: int) -> WebhookReceipt:
        """Re-run a stored event. Processed events are returned untouched."""
        async with self._uow_factory() as uow:
            event = await uow.webhook_repository.get_by_id(webhook_id)
            if event is None:
                raise WebhookEventNotFoundException(webhook_id)
            if event.status == WebhookStatus.PROCESSED:
                return self._receipt(event)

            if event.is_orphaned:
                tx, _ = await self._resolve_transaction(
                    uow, event.external_transaction_id, event.payment_link_id
                )
                if tx is None:
                    logger.info("webhook_replay_still_orphaned", webhook_id=webhook_id)
                    return self._receipt(event)
                event.link_to(tx.id)
            else:
                event.link_to(event.transaction_id)
            event = await uow.webhook_repository.update(event)

        logger.info("webhook_replay", webhook_id=webhook_id, transaction_id=event.transaction_id)
        return await self._apply_event(event.id)

    async def purge_orphans(self, retention_days: Optional[int] = None, *, now: Optional[datetime] = None) -> int:
        """Delete orphans older than the retention window; returns the number removed."""
        days = self._orphan_retention_days if retention_days is None else retention_days
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
        async with self._uow_factory() as uow:
            removed = await uow.webhook_repository.delete_orphans_before(cutoff)
        logger.info("webhook_orphans_purged", removed=removed, cutoff=cutoff.isoformat())
        return removed

    # Application of a linked event

    async def _apply_event(self, webhook_id: int) -> WebhookReceipt:
        try:
            async with self._uow_factory() as uow:
                event = await uow.webhook_repository.get_by_id(webhook_id)
                if event is None:
                    raise WebhookEventNotFoundException(webhook_id)
                tx = await uow.transaction_repository.get_by_id(event.transaction_id)
                if tx is None:
                    raise TransactionNotFoundException(str(event.transaction_id))
                await self._handlers[event.kind](uow, event, tx)
                event.mark_processed()
                event = await uow.webhook_repository.update(event)
        except Exception as exc:
            logger.error(
                "webhook_apply_failed",
                webhook_id=webhook_id,
                error=str(exc),
                exc_info=True,
            )
            event = await self._mark_failed(webhook_id, str(exc) or type(exc).__name__)
        else:
            logger.info(
                "webhook_processed",
                webhook_id=event.id,
                transaction_id=event.transaction_id,
                event_type=event.event_type,
            )
        return self._receipt(event)

    async def _mark_failed(self, webhook_id: int, message: str) -> WebhookEvent:
        async with self._uow_factory() as uow:
            event = await uow.webhook_repository.get_by_id(webhook_id)
            if event is None:
                raise WebhookEventNotFoundException(webhook_id)
            event.mark_failed(message[:ERROR_MESSAGE_LIMIT])
            return await uow.webhook_repository.update(event)

    async def _on_transaction_updated(self, uow: AbstractUnitOfWork, event: WebhookEvent, tx: Transaction) -> None:
        data = event.gateway_transaction
        await self._apply_status(uow, tx, data.get("status"), dict(data))

    async def _on_payment_link_paid(self, uow: AbstractUnitOfWork, event: WebhookEvent, tx: Transaction) -> None:
        data = event.gateway_transaction
        logger.info(
            "payment_link_paid",
            transaction_id=tx.id,
            payment_link_id=event.payment_link_id or tx.payment_link_id,
        )
        await self._apply_status(uow, tx, data.get("status"), dict(data))

    async def _on_unknown(self, uow: AbstractUnitOfWork, event: WebhookEvent, tx: Transaction) -> None:
        logger.info("webhook_event_ignored", webhook_id=event.id, event_type=event.event_type)

    async def _apply_status(
        self,
        uow: AbstractUnitOfWork,
        tx: Transaction,
        gateway_status: Optional[str],
        gateway_response: Optional[dict[str, Any]],
    ) -> Transaction:
        tx_status = map_transaction_status(gateway_status, tx.provider)
        changed = tx.apply_status(tx_status, gateway_response)
        tx = await uow.transaction_repository.update(tx)
        if changed:
            logger.info(
                "transaction_status_changed",
                transaction_id=tx.id,
                external_id=tx.external_id,
                gateway_status=gateway_status,
                status=tx.status.value,
            )

        purchase = await uow.purchase_repository.get_by_id(tx.purchase_id)
        if purchase is None:
            logger.error("purchase_missing_for_transaction", transaction_id=tx.id, purchase_id=tx.purchase_id)
            return tx
        if purchase.apply_status(map_purchase_status(gateway_status, tx.provider)):
            purchase = await uow.purchase_repository.update(purchase)
            self._publish([status_change_event(purchase, tx.provider, tx.external_id)])

        if purchase.status == PurchaseStatus.COMPLETED:
            granter = EntitlementGranter(uow.entitlement_repository, uow.catalog_repository)
            await granter.grant(purchase)
            self._publish(granter.clear_events())
        return tx

    @staticmethod
    def _publish(events: list) -> None:
        for domain_event in events:
            if domain_event is None:
                continue
            logger.info(
                "payment_domain_event",
                event_name=type(domain_event).__name__,
                purchase_id=domain_event.purchase_id,
                external_id=domain_event.external_id,
            )

    async def _resolve_transaction(
        self,
        uow: AbstractUnitOfWork,
        external_id: Optional[str],
        payment_link_id: Optional[str],
    ) -> tuple[Optional[Transaction], bool]:
        """Find the local transaction; returns (transaction, external id newly assigned)."""
        if external_id:
            tx = await uow.transaction_repository.get_by_external_id(external_id)
            if tx is not None:
                return tx, False
        if not (payment_link_id and external_id):
            return None, False

        link_txs = await uow.transaction_repository.list_by_payment_link_id(payment_link_id)
        if not link_txs:
            return None, False
        unbound = next((t for t in link_txs if t.external_id is None), None)
        if unbound is not None:
            unbound.assign_external_id(external_id)
            tx = await uow.transaction_repository.update(unbound)
        else:
            # Another attempt through the same link (e.g. a retry after a decline)
            first = link_txs[0]
            now = datetime.now(timezone.utc)
            tx = await uow.transaction_repository.create(
                Transaction(
                    id=None,
                    purchase_id=first.purchase_id,
                    provider=first.provider,
                    amount=first.amount,
                    currency=first.currency,
                    status=TransactionStatus.PENDING,
                    reference=first.reference,
                    external_id=external_id,
                    payment_link_id=payment_link_id,
                    created_at=now,
                    updated_at=now,
                )
            )
        logger.info(
            "payment_link_transaction_bound",
            transaction_id=tx.id,
            payment_link_id=payment_link_id,
            external_id=external_id,
        )
        return tx, True

    @staticmethod
    def _receipt(event: WebhookEvent) -> WebhookReceipt:
        return WebhookReceipt(
            webhook_id=event.id,
            status=event.status.value,
            orphaned=event.is_orphaned,
            transaction_id=event.transaction_id,
            error_message=event.error_message,
        )
