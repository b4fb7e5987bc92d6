"""
Wompi REST adapter built on httpx.

Notes on the API:
- Private-key endpoints use `Authorization: Bearer prv_...`; merchant lookup uses the public key.
- Successful responses wrap the resource as `{"data": {...}}`.
- Input errors come back as 422 with `error.type == "INPUT_VALIDATION_ERROR"` and a
  `messages` mapping of field -> list of strings.
- When an integrity secret is configured, transactions carry
  `signature = sha256(reference + amount_in_cents + currency + secret)`.
"""
from __future__ import annotations

import hashlib
from typing import Any, Mapping, Optional

import httpx

from application.dtos.payments import (
    AcceptanceTokens,
    GatewayLink,
    GatewayPaymentLinkRequest,
    GatewayPublicConfig,
    GatewayTransaction,
    GatewayTransactionRequest,
    GatewayVoid,
)
from application.ports.payment_gateway import GatewayTerminalError
from core.settings import PaymentSettings, payment_settings
from infrastructure.external.payments.base import BasePaymentClient


CHECKOUT_LINK_BASE = "https://checkout.wompi.co/l/"


class WompiClient(BasePaymentClient):
    provider = "wompi"

    def __init__(
        self,
        settings: Optional[PaymentSettings] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._settings = settings or payment_settings
        wompi = self._settings.wompi
        super().__init__(
            base_url=wompi.base_url,
            timeouts=self._settings.timeouts.model_dump(),
            retry={"max": self._settings.retry.max, "base": self._settings.retry.base_backoff},
            transport=transport,
        )
        if not wompi.private_key or not wompi.public_key:
            raise RuntimeError("PAYMENT__WOMPI__PUBLIC_KEY / PAYMENT__WOMPI__PRIVATE_KEY not configured")
        self._wompi = wompi

    def default_headers(self) -> dict[str, str]:
        headers = super().default_headers()
        headers["Authorization"] = f"Bearer {self._wompi.private_key}"
        return headers

    def _integrity_signature(self, req: GatewayTransactionRequest) -> Optional[str]:
        secret = self._wompi.integrity_secret
        if not secret:
            return None
        raw = f"{req.reference}{req.amount_in_cents}{req.currency}{secret}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    # Outbound calls

    async def create_transaction(self, req: GatewayTransactionRequest) -> GatewayTransaction:
        payload: dict[str, Any] = {
            "amount_in_cents": req.amount_in_cents,
            "currency": req.currency,
            "customer_email": req.customer_email,
            "reference": req.reference,
            "payment_method": {"type": req.payment_method_type, **req.payment_method},
            "acceptance_token": req.acceptance_token,
        }
        if req.accept_personal_auth:
            payload["accept_personal_auth"] = req.accept_personal_auth
        if req.redirect_url or self._wompi.redirect_url:
            payload["redirect_url"] = req.redirect_url or self._wompi.redirect_url
        if req.customer_data:
            payload["customer_data"] = req.customer_data
        signature = self._integrity_signature(req)
        if signature:
            payload["signature"] = signature

        self._log("gateway_create_transaction", reference=req.reference, amount_in_cents=req.amount_in_cents)
        body = await self._request("POST", "/transactions", json=payload)
        return self._to_transaction(self._unwrap(body))

    async def create_payment_link(self, req: GatewayPaymentLinkRequest) -> GatewayLink:
        payload: dict[str, Any] = {
            "name": req.name,
            "description": req.description or req.name,
            # A link backs a single purchase
            "single_use": True,
            "collect_shipping": req.collect_shipping,
            "currency": req.currency,
            "amount_in_cents": req.amount_in_cents,
            "sku": req.reference,
        }
        if req.redirect_url or self._wompi.redirect_url:
            payload["redirect_url"] = req.redirect_url or self._wompi.redirect_url
        if req.expires_at:
            payload["expires_at"] = req.expires_at.isoformat()

        self._log("gateway_create_payment_link", reference=req.reference, amount_in_cents=req.amount_in_cents)
        body = await self._request("POST", "/payment_links", json=payload)
        data = self._unwrap(body)
        link_id = str(data["id"])
        return GatewayLink(
            id=link_id,
            permalink=data.get("permalink") or f"{CHECKOUT_LINK_BASE}{link_id}",
            active=bool(data.get("active", True)),
            single_use=bool(data.get("single_use", True)),
            amount_in_cents=data.get("amount_in_cents"),
            currency=data.get("currency"),
            raw=data,
        )

    async def confirm_transaction(self, transaction_id: str, proof: Mapping[str, Any]) -> GatewayTransaction:
        self._log("gateway_confirm_transaction", transaction_id=transaction_id)
        body = await self._request("POST", f"/transactions/{transaction_id}/confirm", json=dict(proof))
        return self._to_transaction(self._unwrap(body))

    async def get_transaction(self, transaction_id: str) -> GatewayTransaction:
        async def _do() -> dict[str, Any]:
            return await self._request("GET", f"/transactions/{transaction_id}")

        body = await self._retry(_do)
        return self._to_transaction(self._unwrap(body))

    async def void_transaction(
        self,
        transaction_id: str,
        amount_in_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> GatewayVoid:
        payload: dict[str, Any] = {}
        if amount_in_cents is not None:
            payload["amount_in_cents"] = amount_in_cents
        if reason:
            payload["reason"] = reason
        self._log("gateway_void_transaction", transaction_id=transaction_id, amount_in_cents=amount_in_cents)
        body = await self._request("POST", f"/transactions/{transaction_id}/void", json=payload)
        data = self._unwrap(body)
        tx = data.get("transaction") if isinstance(data.get("transaction"), dict) else data
        return GatewayVoid(
            transaction_id=str(tx.get("id") or transaction_id),
            status=str(tx.get("status") or "VOIDED"),
            raw=data,
        )

    async def get_acceptance_tokens(self) -> AcceptanceTokens:
        async def _do() -> dict[str, Any]:
            # Merchant lookup authenticates with the public key only
            return await self._request(
                "GET",
                f"/merchants/{self._wompi.public_key}",
                headers={"Authorization": f"Bearer {self._wompi.public_key}"},
            )

        data = self._unwrap(await self._retry(_do))
        acceptance = data.get("presigned_acceptance") or {}
        personal = data.get("presigned_personal_data_auth") or {}
        if not acceptance.get("acceptance_token"):
            raise GatewayTerminalError("Merchant response lacks an acceptance token", provider=self.provider)
        return AcceptanceTokens(
            acceptance_token=acceptance["acceptance_token"],
            permalink=acceptance.get("permalink"),
            personal_auth_token=personal.get("acceptance_token"),
            personal_auth_permalink=personal.get("permalink"),
        )

    def public_config(self) -> GatewayPublicConfig:
        bounds = self._settings.amount_bounds
        return GatewayPublicConfig(
            provider=self.provider,
            public_key=self._wompi.public_key,
            environment=self._wompi.environment,
            currencies=sorted(bounds),
            payment_methods=list(self._wompi.payment_methods),
            min_amounts={c: b.min for c, b in bounds.items()},
            max_amounts={c: b.max for c, b in bounds.items()},
        )

    # Mapping

    def _unwrap(self, body: dict[str, Any]) -> dict[str, Any]:
        data = body.get("data")
        if not isinstance(data, dict):
            raise GatewayTerminalError(
                "Unexpected gateway response shape",
                provider=self.provider,
                details={"body": body},
            )
        return data

    def _to_transaction(self, data: dict[str, Any]) -> GatewayTransaction:
        if not data.get("id") or not data.get("status"):
            raise GatewayTerminalError(
                "Gateway transaction lacks id or status",
                provider=self.provider,
                details={"data": data},
            )
        return GatewayTransaction(
            id=str(data["id"]),
            status=str(data["status"]).upper(),
            amount_in_cents=data.get("amount_in_cents"),
            currency=data.get("currency"),
            reference=data.get("reference"),
            payment_method_type=data.get("payment_method_type"),
            payment_link_id=data.get("payment_link_id"),
            redirect_url=data.get("redirect_url"),
            status_message=data.get("status_message"),
            raw=data,
        )

    def _error_message(self, body: dict[str, Any], resp: httpx.Response) -> tuple[str, dict]:
        error = body.get("error") if isinstance(body.get("error"), dict) else {}
        messages = error.get("messages") if isinstance(error.get("messages"), dict) else {}
        reason = error.get("reason") or error.get("message") or error.get("type")
        message = f"Wompi rejected the request: {reason}" if reason else f"Wompi responded with HTTP {resp.status_code}"
        return message, messages
