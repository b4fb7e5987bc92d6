"""
API依赖项 - 从应用状态获取支付服务实例
"""
from fastapi import Depends, Request

from application.services.payment_query_service import PaymentQueryService
from application.services.transaction_orchestrator import TransactionOrchestrator
from application.services.webhook_reconciler import WebhookReconciler
from infrastructure.container import PaymentServices


def get_payment_services(request: Request) -> PaymentServices:
    """服务在 lifespan 中组装并挂载到 app.state"""
    return request.app.state.payment_services


def get_orchestrator(services: PaymentServices = Depends(get_payment_services)) -> TransactionOrchestrator:
    return services.orchestrator


def get_reconciler(services: PaymentServices = Depends(get_payment_services)) -> WebhookReconciler:
    return services.reconciler


def get_query_service(services: PaymentServices = Depends(get_payment_services)) -> PaymentQueryService:
    return services.queries
