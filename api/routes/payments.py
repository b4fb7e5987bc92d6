"""
Payments API routes.

Thin layer over the orchestrator, reconciler and query service; gateway
details stay in infrastructure. The webhook endpoint hands the raw body and
headers to the reconciler so the checksum is verified on the exact bytes sent.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.dependencies import get_orchestrator, get_query_service, get_reconciler
from application.dtos.payments import (
    ConfirmTransactionCommand,
    CreatePaymentLinkCommand,
    CreateTransactionCommand,
    VoidTransactionCommand,
)
from application.services.payment_query_service import PaymentQueryService
from application.services.transaction_orchestrator import TransactionOrchestrator
from application.services.webhook_reconciler import WebhookReconciler
from core.config import settings
from core.response import success_response
from domain.payment.entity import WebhookStatus


router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/webhooks/wompi", summary="Wompi event notification")
async def wompi_webhook(request: Request, reconciler: WebhookReconciler = Depends(get_reconciler)):
    raw_body = await request.body()
    headers = {k: v for k, v in request.headers.items()}
    receipt = await reconciler.ingest(headers, raw_body)
    # Orphaned and failed events are acknowledged too; only a storage failure returns 5xx
    return success_response(data=receipt.model_dump(mode="json"), message="Webhook received")


@router.get("/webhooks/events", summary="List stored webhook events")
async def list_webhook_events(
    status: Optional[WebhookStatus] = Query(default=None),
    orphaned: Optional[bool] = Query(default=None),
    skip: int = Query(default=0, ge=0),
    limit: int = Query(default=settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    queries: PaymentQueryService = Depends(get_query_service),
):
    events = await queries.webhook_events(status=status, orphaned=orphaned, skip=skip, limit=limit)
    return success_response(data=[e.model_dump(mode="json") for e in events])


@router.post("/webhooks/events/{webhook_id}/replay", summary="Replay a stored webhook event")
async def replay_webhook_event(webhook_id: int, reconciler: WebhookReconciler = Depends(get_reconciler)):
    receipt = await reconciler.replay(webhook_id)
    return success_response(data=receipt.model_dump(mode="json"), message="Webhook replayed")


@router.post("/transactions", summary="Create gateway transaction")
async def create_transaction(
    payload: CreateTransactionCommand,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.create_transaction(payload)
    return success_response(data=result.model_dump(mode="json"), message="Transaction created")


@router.post("/payment-links", summary="Create hosted payment link")
async def create_payment_link(
    payload: CreatePaymentLinkCommand,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.create_payment_link(payload)
    return success_response(data=result.model_dump(mode="json"), message="Payment link created")


@router.get("/transactions/{external_id}", summary="Get transaction")
async def get_transaction(
    external_id: str,
    refresh: bool = Query(default=False, description="Read the status from the gateway first"),
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
    queries: PaymentQueryService = Depends(get_query_service),
):
    if refresh:
        await orchestrator.refresh_transaction(external_id)
    view = await queries.get_transaction(external_id)
    return success_response(data=view.model_dump(mode="json"))


@router.post("/transactions/{external_id}/confirm", summary="Confirm transaction")
async def confirm_transaction(
    external_id: str,
    payload: ConfirmTransactionCommand,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.confirm_transaction(external_id, payload)
    return success_response(data=result.model_dump(mode="json"), message="Transaction confirmed")


@router.post("/transactions/{external_id}/void", summary="Void transaction")
async def void_transaction(
    external_id: str,
    payload: VoidTransactionCommand,
    orchestrator: TransactionOrchestrator = Depends(get_orchestrator),
):
    result = await orchestrator.void_transaction(external_id, payload)
    return success_response(data=result.model_dump(mode="json"), message="Transaction voided")


@router.get("/acceptance-tokens", summary="Merchant acceptance tokens")
async def acceptance_tokens(orchestrator: TransactionOrchestrator = Depends(get_orchestrator)):
    tokens = await orchestrator.get_acceptance_tokens()
    return success_response(data=tokens.model_dump(mode="json"))


@router.get("/config", summary="Public gateway configuration")
async def public_config(orchestrator: TransactionOrchestrator = Depends(get_orchestrator)):
    return success_response(data=orchestrator.public_config().model_dump(mode="json"))


@router.get("/reports/pending", summary="Transactions pending past the report window")
async def pending_report(
    older_than_minutes: Optional[int] = Query(default=None, ge=0),
    limit: int = Query(default=settings.MAX_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    queries: PaymentQueryService = Depends(get_query_service),
):
    rows = await queries.pending_transactions(older_than_minutes, limit=limit)
    return success_response(data=[r.model_dump(mode="json") for r in rows])
