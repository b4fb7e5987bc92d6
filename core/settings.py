"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so gateway credentials load independently.
"""
from __future__ import annotations

from typing import Literal, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field, field_validator, model_validator


class PaymentTimeouts(BaseModel):
    connect: float = 3.0
    read: float = 10.0
    write: float = 10.0
    total: float = 15.0


class PaymentRetry(BaseModel):
    # Only idempotent reads are retried inside the client
    max: int = 2
    base_backoff: float = 0.2


class AmountBoundsSettings(BaseModel):
    min: int
    max: int


def _default_amount_bounds() -> dict[str, AmountBoundsSettings]:
    return {
        "COP": AmountBoundsSettings(min=100, max=200_000_000),
        "USD": AmountBoundsSettings(min=1, max=15_000),
    }


class WebhookSettings(BaseModel):
    signature_header: str = "X-Event-Checksum"
    require_signature: bool = True
    orphan_retention_days: int = 7


class PurchaseSettings(BaseModel):
    service_validity_days: int = 30
    link_expiry_hours: int = 24
    pending_report_minutes: int = 30


class WompiSettings(BaseModel):
    environment: Literal["sandbox", "production"] = "sandbox"
    public_key: Optional[str] = None
    private_key: Optional[str] = None
    events_secret: Optional[str] = None
    integrity_secret: Optional[str] = None
    sandbox_url: str = "https://sandbox.wompi.co/v1"
    production_url: str = "https://production.wompi.co/v1"
    redirect_url: Optional[str] = None
    payment_methods: list[str] = Field(
        default_factory=lambda: ["CARD", "NEQUI", "PSE", "BANCOLOMBIA_TRANSFER", "BANCOLOMBIA_COLLECT"]
    )

    @property
    def base_url(self) -> str:
        return self.production_url if self.environment == "production" else self.sandbox_url

    @field_validator("public_key")
    @classmethod
    def _check_public_key(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith("pub_"):
            raise ValueError('WOMPI public_key must start with "pub_"')
        return v

    @field_validator("private_key")
    @classmethod
    def _check_private_key(cls, v: Optional[str]) -> Optional[str]:
        if v and not v.startswith("prv_"):
            raise ValueError('WOMPI private_key must start with "prv_"')
        return v

    @model_validator(mode="after")
    def _reject_test_keys_in_production(self):
        if self.environment == "production":
            for key in (self.public_key, self.private_key):
                if key and ("_test_" in key or "sandbox" in key):
                    raise ValueError("Test keys cannot be used in production")
        return self


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="wompi", validation_alias="PAYMENT__DEFAULT_PROVIDER")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    purchase: PurchaseSettings = Field(default_factory=PurchaseSettings)
    amount_bounds: dict[str, AmountBoundsSettings] = Field(default_factory=_default_amount_bounds)

    wompi: WompiSettings = Field(default_factory=WompiSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="PAYMENT__",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
