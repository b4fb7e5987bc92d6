"""
Factories for payment gateway clients and webhook verifiers.
"""
from __future__ import annotations

from typing import Optional

from core.settings import PaymentSettings, payment_settings
from application.ports.payment_gateway import PaymentGateway, WebhookVerifier


def get_payment_gateway(provider: Optional[str] = None, settings: Optional[PaymentSettings] = None) -> PaymentGateway:
    cfg = settings or payment_settings
    name = (provider or cfg.default_provider).lower()
    if name == "wompi":
        from .wompi_client import WompiClient
        return WompiClient(cfg)
    raise ValueError(f"Unsupported payment provider: {name}")


def get_webhook_verifier(provider: Optional[str] = None, settings: Optional[PaymentSettings] = None) -> WebhookVerifier:
    cfg = settings or payment_settings
    name = (provider or cfg.default_provider).lower()
    if name == "wompi":
        from .webhook_verifier import WompiWebhookVerifier
        return WompiWebhookVerifier(cfg)
    raise ValueError(f"Unsupported payment provider: {name}")
