"""
组合根 - 组装支付应用服务及其基础设施依赖

API 与 Celery 任务都从这里获取服务实例，保证应用层只依赖端口。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional

from application.ports.payment_gateway import PaymentGateway, WebhookVerifier
from application.services.payment_query_service import PaymentQueryService
from application.services.transaction_orchestrator import TransactionOrchestrator
from application.services.webhook_reconciler import WebhookReconciler
from core.settings import PaymentSettings, payment_settings
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.amount_policy import AmountBounds, AmountPolicy
from infrastructure.external.payments import get_payment_gateway, get_webhook_verifier
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork


@dataclass
class PaymentServices:
    orchestrator: TransactionOrchestrator
    reconciler: WebhookReconciler
    queries: PaymentQueryService
    gateway: PaymentGateway

    async def aclose(self) -> None:
        await self.gateway.aclose()


def build_amount_policy(settings: Optional[PaymentSettings] = None) -> AmountPolicy:
    """根据配置的币种区间构建金额策略"""
    cfg = settings or payment_settings
    return AmountPolicy(
        {
            currency: AmountBounds(min_amount=b.min, max_amount=b.max)
            for currency, b in cfg.amount_bounds.items()
        }
    )


def build_reconciler(
    settings: Optional[PaymentSettings] = None,
    uow_factory: Callable[..., AbstractUnitOfWork] = SQLAlchemyUnitOfWork,
    verifier: Optional[WebhookVerifier] = None,
) -> WebhookReconciler:
    cfg = settings or payment_settings
    return WebhookReconciler(
        uow_factory,
        verifier or get_webhook_verifier(settings=cfg),
        orphan_retention_days=cfg.webhook.orphan_retention_days,
    )


def build_payment_services(
    settings: Optional[PaymentSettings] = None,
    uow_factory: Callable[..., AbstractUnitOfWork] = SQLAlchemyUnitOfWork,
    gateway: Optional[PaymentGateway] = None,
    verifier: Optional[WebhookVerifier] = None,
) -> PaymentServices:
    cfg = settings or payment_settings
    gateway = gateway or get_payment_gateway(settings=cfg)
    reconciler = build_reconciler(cfg, uow_factory, verifier)
    orchestrator = TransactionOrchestrator(
        uow_factory,
        gateway,
        build_amount_policy(cfg),
        reconciler,
        service_validity_days=cfg.purchase.service_validity_days,
        link_expiry_hours=cfg.purchase.link_expiry_hours,
    )
    queries = PaymentQueryService(uow_factory, pending_report_minutes=cfg.purchase.pending_report_minutes)
    return PaymentServices(
        orchestrator=orchestrator,
        reconciler=reconciler,
        queries=queries,
        gateway=gateway,
    )
