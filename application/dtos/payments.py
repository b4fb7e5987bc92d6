"""
Payment DTOs (Pydantic v2) used at application boundaries.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Literal
from pydantic import BaseModel, Field, ConfigDict, EmailStr, field_validator, model_validator

PaymentMethodType = Literal["CARD", "NEQUI", "PSE", "BANCOLOMBIA_TRANSFER", "BANCOLOMBIA_COLLECT"]


def _upper_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    return u


class _PurchaseTarget(BaseModel):
    user_id: int = Field(gt=0)
    package_id: Optional[int] = Field(default=None, gt=0)
    service_id: Optional[int] = Field(default=None, gt=0)
    amount_in_cents: int = Field(gt=0)
    currency: str = Field(default="COP")

    @field_validator("currency")
    @classmethod
    def _validate_currency(cls, v: str) -> str:
        return _upper_currency(v)

    @model_validator(mode="after")
    def _exactly_one_target(self):
        if (self.package_id is None) == (self.service_id is None):
            raise ValueError("exactly one of package_id or service_id is required")
        return self


class CreateTransactionCommand(_PurchaseTarget):
    """Caller request for a direct (API) gateway transaction."""

    customer_email: EmailStr
    payment_method_type: PaymentMethodType = "CARD"
    # Method-specific fields (card token + installments, Nequi phone, PSE bank, ...)
    payment_method: dict[str, Any] = Field(default_factory=dict)
    acceptance_token: str
    accept_personal_auth: Optional[str] = None
    redirect_url: Optional[str] = None
    customer_data: Optional[dict[str, Any]] = None


class CreatePaymentLinkCommand(_PurchaseTarget):
    """Caller request for a hosted checkout link."""

    name: str = Field(min_length=1, max_length=120)
    description: str = Field(default="", max_length=255)
    collect_shipping: bool = False
    redirect_url: Optional[str] = None
    expires_at: Optional[datetime] = None


class ConfirmTransactionCommand(BaseModel):
    # Proof required by the method (e.g. OTP or async payment confirmation data)
    proof: dict[str, Any] = Field(default_factory=dict)


class VoidTransactionCommand(BaseModel):
    amount_in_cents: Optional[int] = Field(default=None, gt=0)
    reason: Optional[str] = Field(default=None, max_length=255)


class GatewayTransactionRequest(BaseModel):
    """Immutable outbound request; a retry is a copy with a new reference."""

    model_config = ConfigDict(frozen=True)

    reference: str
    amount_in_cents: int
    currency: str
    customer_email: str
    payment_method_type: str
    payment_method: dict[str, Any] = Field(default_factory=dict)
    acceptance_token: str
    accept_personal_auth: Optional[str] = None
    redirect_url: Optional[str] = None
    customer_data: Optional[dict[str, Any]] = None


class GatewayPaymentLinkRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    reference: str
    name: str
    description: str
    amount_in_cents: int
    currency: str
    collect_shipping: bool = False
    redirect_url: Optional[str] = None
    expires_at: Optional[datetime] = None


class GatewayTransaction(BaseModel):
    id: str
    status: str
    amount_in_cents: Optional[int] = None
    currency: Optional[str] = None
    reference: Optional[str] = None
    payment_method_type: Optional[str] = None
    payment_link_id: Optional[str] = None
    redirect_url: Optional[str] = None
    status_message: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class GatewayLink(BaseModel):
    id: str
    permalink: str
    active: bool = True
    single_use: bool = True
    amount_in_cents: Optional[int] = None
    currency: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class GatewayVoid(BaseModel):
    transaction_id: str
    status: str
    raw: dict[str, Any] = Field(default_factory=dict)


class AcceptanceTokens(BaseModel):
    acceptance_token: str
    permalink: Optional[str] = None
    personal_auth_token: Optional[str] = None
    personal_auth_permalink: Optional[str] = None


class GatewayPublicConfig(BaseModel):
    provider: str
    public_key: Optional[str] = None
    environment: str
    currencies: list[str]
    payment_methods: list[str]
    min_amounts: dict[str, int]
    max_amounts: dict[str, int]


class WebhookNotification(BaseModel):
    """A verified inbound webhook, reduced to what reconciliation needs."""

    provider: str
    event_type: str
    external_transaction_id: str
    gateway_status: str
    payment_link_id: Optional[str] = None
    reference: Optional[str] = None
    signature: Optional[str] = None
    payload: dict[str, Any]


class TransactionResult(BaseModel):
    external_id: Optional[str] = None
    status: str
    gateway_status: Optional[str] = None
    amount_in_cents: int
    currency: str
    reference: str
    purchase_id: int
    transaction_id: int
    attempts: int = 1
    redirect_url: Optional[str] = None
    permalink: Optional[str] = None
    payment_link_id: Optional[str] = None


class WebhookReceipt(BaseModel):
    webhook_id: int
    status: str
    orphaned: bool
    transaction_id: Optional[int] = None
    error_message: Optional[str] = None


class BackfillResult(BaseModel):
    external_id: str
    linked: int = 0
    processed: int = 0
    failed: int = 0


class TransactionView(BaseModel):
    transaction_id: int
    purchase_id: int
    external_id: Optional[str] = None
    payment_link_id: Optional[str] = None
    reference: str
    status: str
    amount_in_cents: int
    currency: str
    purchase_status: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WebhookEventView(BaseModel):
    id: int
    provider: str
    event_type: str
    status: str
    external_transaction_id: Optional[str] = None
    transaction_id: Optional[int] = None
    received_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None
