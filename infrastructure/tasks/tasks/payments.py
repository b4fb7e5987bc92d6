"""Payment housekeeping tasks: orphan retention, pending report and operator replay.

Each task builds its services through the composition root and runs the
coroutine with ``asyncio.run``; the engine pool is disposed afterwards because
pooled connections are bound to the loop that opened them.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

from celery import shared_task

from ..utils.base_task import BaseTask
from application.services.payment_query_service import PaymentQueryService
from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.container import build_reconciler
from infrastructure.database import engine
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

logger = get_logger(__name__)

T = TypeVar("T")


def _run(factory: Callable[[], Awaitable[T]]) -> T:
    async def _main() -> T:
        try:
            return await factory()
        finally:
            await engine.dispose()

    return asyncio.run(_main())


@shared_task(name="payments.purge_orphan_webhooks", bind=True, base=BaseTask)
def purge_orphan_webhooks(self, retention_days: Optional[int] = None) -> dict[str, Any]:
    """Delete webhook events that never matched a transaction within the retention window."""
    reconciler = build_reconciler(payment_settings, SQLAlchemyUnitOfWork)
    removed = _run(lambda: reconciler.purge_orphans(retention_days))
    return {"removed": removed}


@shared_task(name="payments.report_pending_transactions", bind=True, base=BaseTask)
def report_pending_transactions(self, older_than_minutes: Optional[int] = None) -> dict[str, Any]:
    queries = PaymentQueryService(
        SQLAlchemyUnitOfWork,
        pending_report_minutes=payment_settings.purchase.pending_report_minutes,
    )
    rows = _run(lambda: queries.pending_transactions(older_than_minutes))
    for row in rows:
        logger.warning(
            "transaction_pending_too_long",
            transaction_id=row.transaction_id,
            external_id=row.external_id,
            payment_link_id=row.payment_link_id,
            reference=row.reference,
            created_at=row.created_at.isoformat() if row.created_at else None,
        )
    logger.info("pending_transactions_reported", count=len(rows))
    return {"count": len(rows), "external_ids": [r.external_id for r in rows]}


@shared_task(
    name="payments.replay_webhook",
    bind=True,
    base=BaseTask,
    autoretry_for=(ConnectionError,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": 3},
)
def replay_webhook(self, webhook_id: int) -> dict[str, Any]:
    """Operator-triggered replay of a failed or orphaned webhook event."""
    reconciler = build_reconciler(payment_settings, SQLAlchemyUnitOfWork)
    receipt = _run(lambda: reconciler.replay(webhook_id))
    return receipt.model_dump(mode="json")
