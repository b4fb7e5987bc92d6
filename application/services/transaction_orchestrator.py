"""
Application service creating gateway transactions for purchases.

The orchestrator depends only on the PaymentGateway port, the amount policy and
the unit-of-work factory; concrete gateways are injected from the composition
root. Status changes read back from the gateway are applied through the
WebhookReconciler so that webhooks and direct reads share one code path.
"""
from __future__ import annotations

import secrets
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Optional, TypeVar, Union

from application.dtos.payments import (
    AcceptanceTokens,
    ConfirmTransactionCommand,
    CreatePaymentLinkCommand,
    CreateTransactionCommand,
    GatewayPaymentLinkRequest,
    GatewayPublicConfig,
    GatewayTransactionRequest,
    TransactionResult,
    VoidTransactionCommand,
)
from application.ports.payment_gateway import (
    GatewayTerminalError,
    GatewayValidationError,
    PaymentGateway,
)
from application.services.webhook_reconciler import WebhookReconciler
from core.logging_config import get_logger
from domain.common.exceptions import CatalogItemNotFoundException, TransactionNotFoundException
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.amount_policy import AmountPolicy
from domain.payment.entity import Purchase, PurchaseStatus, Transaction, TransactionStatus
from domain.payment.service import compute_expiry, map_transaction_status


logger = get_logger(__name__)

T = TypeVar("T")
GatewayRequest = Union[GatewayTransactionRequest, GatewayPaymentLinkRequest]

# One submission plus one retry under a fresh reference
MAX_SUBMIT_ATTEMPTS = 2


def generate_reference(user_id: int) -> str:
    """TXN-<epoch ms>-<user>-<random>; unique per submission attempt."""
    return f"TXN-{int(time.time() * 1000)}-{user_id}-{secrets.token_hex(4)}"


def _cents(amount: Decimal) -> int:
    return int(amount * 100)


class TransactionOrchestrator:
    def __init__(
        self,
        uow_factory: Callable[..., AbstractUnitOfWork],
        gateway: PaymentGateway,
        amount_policy: AmountPolicy,
        reconciler: WebhookReconciler,
        *,
        service_validity_days: int = 30,
        link_expiry_hours: int = 24,
        reference_factory: Callable[[int], str] = generate_reference,
    ) -> None:
        self._uow_factory = uow_factory
        self.gateway = gateway
        self._amount_policy = amount_policy
        self._reconciler = reconciler
        self._service_validity_days = service_validity_days
        self._link_expiry_hours = link_expiry_hours
        self._new_reference = reference_factory

    # Creation

    async def create_transaction(self, cmd: CreateTransactionCommand) -> TransactionResult:
        self._amount_policy.ensure_valid(cmd.amount_in_cents, cmd.currency)
        purchase = await self._open_purchase(cmd, payment_method=cmd.payment_method_type)
        logger.info(
            "transaction_create_request",
            purchase_id=purchase.id,
            user_id=cmd.user_id,
            amount_in_cents=cmd.amount_in_cents,
            currency=cmd.currency,
            provider=self.gateway.provider,
        )

        request = GatewayTransactionRequest(
            reference=self._new_reference(cmd.user_id),
            amount_in_cents=cmd.amount_in_cents,
            currency=cmd.currency,
            customer_email=cmd.customer_email,
            payment_method_type=cmd.payment_method_type,
            payment_method=cmd.payment_method,
            acceptance_token=cmd.acceptance_token,
            accept_personal_auth=cmd.accept_personal_auth,
            redirect_url=cmd.redirect_url,
            customer_data=cmd.customer_data,
        )
        gateway_tx, request, attempts = await self._submit(purchase, request, self.gateway.create_transaction)

        tx = await self._record_transaction(
            purchase,
            request.reference,
            external_id=gateway_tx.id,
            gateway_response=gateway_tx.raw,
        )
        if map_transaction_status(gateway_tx.status, self.gateway.provider) != TransactionStatus.PENDING:
            tx = await self._reconciler.apply_gateway_status(tx.id, gateway_tx.status, gateway_tx.raw)

        backfill = await self._reconciler.backfill_orphans(tx)
        if backfill.linked:
            tx = await self._load_transaction(tx.id)

        logger.info(
            "transaction_created",
            purchase_id=purchase.id,
            transaction_id=tx.id,
            external_id=tx.external_id,
            gateway_status=gateway_tx.status,
            attempts=attempts,
            backfilled=backfill.linked,
        )
        return self._result(
            tx,
            gateway_status=gateway_tx.status,
            attempts=attempts,
            redirect_url=gateway_tx.redirect_url,
        )

    async def create_payment_link(self, cmd: CreatePaymentLinkCommand) -> TransactionResult:
        self._amount_policy.ensure_valid(cmd.amount_in_cents, cmd.currency)
        purchase = await self._open_purchase(cmd, payment_method="PAYMENT_LINK")
        logger.info(
            "payment_link_create_request",
            purchase_id=purchase.id,
            user_id=cmd.user_id,
            amount_in_cents=cmd.amount_in_cents,
            currency=cmd.currency,
        )

        expires_at = cmd.expires_at or datetime.now(timezone.utc) + timedelta(hours=self._link_expiry_hours)
        request = GatewayPaymentLinkRequest(
            reference=self._new_reference(cmd.user_id),
            name=cmd.name,
            description=cmd.description,
            amount_in_cents=cmd.amount_in_cents,
            currency=cmd.currency,
            collect_shipping=cmd.collect_shipping,
            redirect_url=cmd.redirect_url,
            expires_at=expires_at,
        )
        link, request, attempts = await self._submit(purchase, request, self.gateway.create_payment_link)

        tx = await self._record_transaction(
            purchase,
            request.reference,
            payment_link_id=link.id,
            gateway_response=link.raw,
        )
        backfill = await self._reconciler.backfill_payment_link(tx)
        if backfill.linked:
            tx = await self._load_transaction(tx.id)

        logger.info(
            "payment_link_created",
            purchase_id=purchase.id,
            transaction_id=tx.id,
            payment_link_id=link.id,
            attempts=attempts,
            backfilled=backfill.linked,
        )
        return self._result(tx, attempts=attempts, permalink=link.permalink)

    # Follow-up operations on an existing transaction

    async def confirm_transaction(self, external_id: str, cmd: ConfirmTransactionCommand) -> TransactionResult:
        tx = await self._load_by_external_id(external_id)
        gateway_tx = await self.gateway.confirm_transaction(external_id, cmd.proof)
        tx = await self._reconciler.apply_gateway_status(tx.id, gateway_tx.status, gateway_tx.raw)
        logger.info("transaction_confirmed", external_id=external_id, gateway_status=gateway_tx.status)
        return self._result(tx, gateway_status=gateway_tx.status, redirect_url=gateway_tx.redirect_url)

    async def refresh_transaction(self, external_id: str) -> TransactionResult:
        """Pull the current status from the gateway and apply it locally."""
        tx = await self._load_by_external_id(external_id)
        gateway_tx = await self.gateway.get_transaction(external_id)
        tx = await self._reconciler.apply_gateway_status(tx.id, gateway_tx.status, gateway_tx.raw)
        logger.info("transaction_refreshed", external_id=external_id, gateway_status=gateway_tx.status)
        return self._result(tx, gateway_status=gateway_tx.status)

    async def void_transaction(self, external_id: str, cmd: VoidTransactionCommand) -> TransactionResult:
        tx = await self._load_by_external_id(external_id)
        voided = await self.gateway.void_transaction(external_id, cmd.amount_in_cents, cmd.reason)
        tx = await self._reconciler.apply_gateway_status(tx.id, voided.status, voided.raw)
        logger.info(
            "transaction_voided",
            external_id=external_id,
            gateway_status=voided.status,
            amount_in_cents=cmd.amount_in_cents,
        )
        return self._result(tx, gateway_status=voided.status)

    async def get_acceptance_tokens(self) -> AcceptanceTokens:
        return await self.gateway.get_acceptance_tokens()

    def public_config(self) -> GatewayPublicConfig:
        return self.gateway.public_config()

    # Internals

    async def _submit(
        self,
        purchase: Purchase,
        request: GatewayRequest,
        call: Callable[[GatewayRequest], Awaitable[T]],
    ) -> tuple[T, GatewayRequest, int]:
        """Submit once; a validation rejection is retried once under a new reference.

        Transient errors propagate and leave the purchase pending.
        """
        for attempt in range(1, MAX_SUBMIT_ATTEMPTS + 1):
            try:
                return await call(request), request, attempt
            except GatewayValidationError as exc:
                if attempt >= MAX_SUBMIT_ATTEMPTS:
                    logger.warning(
                        "transaction_rejected",
                        purchase_id=purchase.id,
                        reference=request.reference,
                        attempts=attempt,
                        validation_messages=exc.validation_messages,
                    )
                    await self._fail_purchase(purchase.id, exc.message)
                    raise
                retry_reference = self._new_reference(purchase.user_id)
                logger.warning(
                    "transaction_retry_new_reference",
                    purchase_id=purchase.id,
                    previous_reference=request.reference,
                    reference=retry_reference,
                    validation_messages=exc.validation_messages,
                )
                request = request.model_copy(update={"reference": retry_reference})
            except GatewayTerminalError as exc:
                logger.error(
                    "transaction_terminal_error",
                    purchase_id=purchase.id,
                    reference=request.reference,
                    error=exc.message,
                )
                await self._fail_purchase(purchase.id, exc.message)
                raise
        raise AssertionError("unreachable")

    async def _open_purchase(
        self,
        cmd: Union[CreateTransactionCommand, CreatePaymentLinkCommand],
        *,
        payment_method: str,
    ) -> Purchase:
        now = datetime.now(timezone.utc)
        async with self._uow_factory() as uow:
            expires_at = await self._resolve_expiry(uow, cmd, now)
            purchase = Purchase(
                id=None,
                user_id=cmd.user_id,
                amount=Decimal(cmd.amount_in_cents) / 100,
                currency=cmd.currency,
                status=PurchaseStatus.PENDING,
                package_id=cmd.package_id,
                service_id=cmd.service_id,
                payment_method=payment_method,
                expires_at=expires_at,
                payment_details={"provider": self.gateway.provider, "amount_in_cents": cmd.amount_in_cents},
                created_at=now,
                updated_at=now,
            )
            return await uow.purchase_repository.create(purchase)

    async def _resolve_expiry(
        self,
        uow: AbstractUnitOfWork,
        cmd: Union[CreateTransactionCommand, CreatePaymentLinkCommand],
        now: datetime,
    ) -> datetime:
        if cmd.package_id is not None:
            package = await uow.catalog_repository.get_package(cmd.package_id)
            if package is None or not package.is_active:
                raise CatalogItemNotFoundException("package", cmd.package_id)
            return compute_expiry(package.validity_days, now)
        service = await uow.catalog_repository.get_service(cmd.service_id)
        if service is None or not service.is_active:
            raise CatalogItemNotFoundException("service", cmd.service_id)
        return compute_expiry(self._service_validity_days, now)

    async def _fail_purchase(self, purchase_id: int, reason: str) -> None:
        async with self._uow_factory() as uow:
            purchase = await uow.purchase_repository.get_by_id(purchase_id)
            if purchase is None:
                return
            purchase.mark_failed(reason)
            await uow.purchase_repository.update(purchase)

    async def _record_transaction(
        self,
        purchase: Purchase,
        reference: str,
        *,
        external_id: Optional[str] = None,
        payment_link_id: Optional[str] = None,
        gateway_response: Optional[dict] = None,
    ) -> Transaction:
        now = datetime.now(timezone.utc)
        async with self._uow_factory() as uow:
            tx = await uow.transaction_repository.create(
                Transaction(
                    id=None,
                    purchase_id=purchase.id,
                    provider=self.gateway.provider,
                    amount=purchase.amount,
                    currency=purchase.currency,
                    status=TransactionStatus.PENDING,
                    reference=reference,
                    external_id=external_id,
                    payment_link_id=payment_link_id,
                    gateway_response=gateway_response or {},
                    created_at=now,
                    updated_at=now,
                )
            )
            stored = await uow.purchase_repository.get_by_id(purchase.id)
            if stored is not None:
                stored.attach_reference(reference)
                await uow.purchase_repository.update(stored)
            return tx

    async def _load_transaction(self, transaction_id: int) -> Transaction:
        async with self._uow_factory(readonly=True) as uow:
            tx = await uow.transaction_repository.get_by_id(transaction_id)
        if tx is None:
            raise TransactionNotFoundException(str(transaction_id))
        return tx

    async def _load_by_external_id(self, external_id: str) -> Transaction:
        async with self._uow_factory(readonly=True) as uow:
            tx = await uow.transaction_repository.get_by_external_id(external_id)
        if tx is None:
            raise TransactionNotFoundException(external_id)
        return tx

    @staticmethod
    def _result(tx: Transaction, *, gateway_status: Optional[str] = None, attempts: int = 1,
                redirect_url: Optional[str] = None, permalink: Optional[str] = None) -> TransactionResult:
        return TransactionResult(
            external_id=tx.external_id,
            status=tx.status.value,
            gateway_status=gateway_status,
            amount_in_cents=_cents(tx.amount),
            currency=tx.currency,
            reference=tx.reference,
            purchase_id=tx.purchase_id,
            transaction_id=tx.id,
            attempts=attempts,
            redirect_url=redirect_url,
            permalink=permalink,
            payment_link_id=tx.payment_link_id,
        )
