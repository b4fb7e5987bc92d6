"""
Wompi webhook verification: shape check plus checksum authenticity.

The event checksum is SHA256 over the values named in `signature.properties`
(resolved inside `data`), followed by `timestamp` and the events secret. The
same checksum is sent in the `X-Event-Checksum` header and in `signature.checksum`.
"""
from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any, Mapping, Optional

from application.dtos.payments import WebhookNotification
from application.ports.payment_gateway import WebhookAuthenticityError, WebhookPayloadInvalid
from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings


logger = get_logger(__name__)


def _resolve(data: Mapping[str, Any], dotted: str) -> Any:
    node: Any = data
    for part in dotted.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return None
        node = node[part]
    return node


def compute_event_checksum(payload: Mapping[str, Any], secret: str) -> Optional[str]:
    """Wompi event checksum, or None when the payload does not declare its properties."""
    signature = payload.get("signature") or {}
    properties = signature.get("properties") if isinstance(signature, Mapping) else None
    if not properties or payload.get("timestamp") is None:
        return None
    data = payload.get("data") or {}
    resolved = [_resolve(data, p) for p in properties]
    values = "".join("" if v is None else str(v) for v in resolved)
    raw = f"{values}{payload['timestamp']}{secret}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest().upper()


class WompiWebhookVerifier:
    provider = "wompi"

    def __init__(self, settings: Optional[PaymentSettings] = None):
        self._settings = settings or payment_settings
        self._header = self._settings.webhook.signature_header.lower()
        self._require_signature = self._settings.webhook.require_signature
        self._secret = self._settings.wompi.events_secret
        if not self._secret:
            logger.warning("webhook_events_secret_missing", provider=self.provider)

    def parse(self, headers: Mapping[str, str], body: bytes) -> WebhookNotification:
        payload = self._load(body)
        event_type = payload.get("event")
        data = payload.get("data")
        tx = data.get("transaction") if isinstance(data, Mapping) else None
        if not isinstance(event_type, str) or not event_type:
            raise WebhookPayloadInvalid("Webhook payload lacks an event type", provider=self.provider)
        if not isinstance(tx, Mapping) or not tx.get("id") or not tx.get("status"):
            raise WebhookPayloadInvalid(
                "Webhook payload lacks data.transaction.id or data.transaction.status",
                provider=self.provider,
            )

        signature = self._verify_signature(headers, body, payload)
        return WebhookNotification(
            provider=self.provider,
            event_type=event_type,
            external_transaction_id=str(tx["id"]),
            gateway_status=str(tx["status"]).upper(),
            payment_link_id=str(tx["payment_link_id"]) if tx.get("payment_link_id") else None,
            reference=tx.get("reference"),
            signature=signature,
            payload=payload,
        )

    def _load(self, body: bytes) -> dict[str, Any]:
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError) as exc:
            raise WebhookPayloadInvalid("Webhook body is not valid JSON", provider=self.provider) from exc
        if not isinstance(payload, dict):
            raise WebhookPayloadInvalid("Webhook body must be a JSON object", provider=self.provider)
        return payload

    def _verify_signature(self, headers: Mapping[str, str], body: bytes, payload: Mapping[str, Any]) -> Optional[str]:
        header_value = next((v for k, v in headers.items() if k.lower() == self._header), None)
        sig_block = payload.get("signature")
        body_value = sig_block.get("checksum") if isinstance(sig_block, Mapping) else None
        declared = header_value or body_value

        if not declared:
            if self._require_signature:
                raise WebhookAuthenticityError("Webhook signature missing", provider=self.provider)
            return None
        if header_value and body_value and not hmac.compare_digest(
            str(header_value).upper(), str(body_value).upper()
        ):
            raise WebhookAuthenticityError("Webhook checksum header does not match body", provider=self.provider)

        if self._secret:
            expected = compute_event_checksum(payload, self._secret)
            if expected is None:
                expected = hmac.new(self._secret.encode("utf-8"), body, hashlib.sha256).hexdigest().upper()
            if not hmac.compare_digest(expected, str(declared).upper()):
                raise WebhookAuthenticityError("Webhook checksum mismatch", provider=self.provider)
        return str(declared)
