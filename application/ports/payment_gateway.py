"""
Payment gateway ports (application/ports) exposing replaceable protocols.

Application depends on these Protocols and error types; infrastructure implements
the adapters and raises the errors below so callers can tell the failure kinds apart.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    AcceptanceTokens,
    GatewayLink,
    GatewayPaymentLinkRequest,
    GatewayPublicConfig,
    GatewayTransaction,
    GatewayTransactionRequest,
    GatewayVoid,
    WebhookNotification,
)
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


class GatewayError(BusinessException):
    """Base for outbound gateway failures."""

    def __init__(
        self,
        message: str,
        *,
        code: int,
        error_type: str,
        provider: str,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        self.provider = provider
        self.status_code = status_code
        full_details: dict[str, Any] = {"provider": provider, "status_code": status_code}
        if details:
            full_details.update(details)
        super().__init__(code=code, message=message, error_type=error_type, details=full_details)


class GatewayValidationError(GatewayError):
    """The gateway rejected the request content (caller-fixable)."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: Optional[int] = None,
        validation_messages: Optional[dict] = None,
    ):
        self.validation_messages = validation_messages or {}
        super().__init__(
            message,
            code=PaymentCode.GATEWAY_VALIDATION,
            error_type="GatewayValidationError",
            provider=provider,
            status_code=status_code,
            details={"messages": self.validation_messages},
        )


class GatewayTransientError(GatewayError):
    """Timeout, transport failure, throttling or 5xx; safe for the caller to resubmit."""

    def __init__(self, message: str, *, provider: str, status_code: Optional[int] = None):
        super().__init__(
            message,
            code=PaymentCode.PROVIDER_RECOVERABLE,
            error_type="GatewayTransientError",
            provider=provider,
            status_code=status_code,
        )


class GatewayTerminalError(GatewayError):
    """Not retryable (bad credentials, unknown resource, unexpected response)."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(
            message,
            code=PaymentCode.PROVIDER_ERROR,
            error_type="GatewayTerminalError",
            provider=provider,
            status_code=status_code,
            details=details,
        )


class WebhookPayloadInvalid(BusinessException):
    def __init__(self, message: str, *, provider: str):
        super().__init__(
            code=PaymentCode.WEBHOOK_INVALID,
            message=message,
            error_type="ValidationRejected",
            details={"provider": provider},
        )


class WebhookAuthenticityError(BusinessException):
    def __init__(self, message: str, *, provider: str):
        super().__init__(
            code=PaymentCode.SIGNATURE_ERROR,
            message=message,
            error_type="AuthenticityFailure",
            details={"provider": provider},
        )


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the external payment provider.

    Implementations are async and side-effect free beyond IO. Every call is
    bounded by the client timeout and raises a GatewayError subclass on failure.
    """

    provider: str

    async def create_transaction(self, req: GatewayTransactionRequest) -> GatewayTransaction: ...

    async def create_payment_link(self, req: GatewayPaymentLinkRequest) -> GatewayLink: ...

    async def confirm_transaction(self, transaction_id: str, proof: Mapping[str, Any]) -> GatewayTransaction: ...

    async def get_transaction(self, transaction_id: str) -> GatewayTransaction: ...

    async def void_transaction(
        self,
        transaction_id: str,
        amount_in_cents: Optional[int] = None,
        reason: Optional[str] = None,
    ) -> GatewayVoid: ...

    async def get_acceptance_tokens(self) -> AcceptanceTokens: ...

    def public_config(self) -> GatewayPublicConfig: ...

    async def aclose(self) -> None: ...


@runtime_checkable
class WebhookVerifier(Protocol):
    """Checks shape and authenticity of an inbound webhook before anything is stored."""

    provider: str

    def parse(self, headers: Mapping[str, str], body: bytes) -> WebhookNotification: ...
