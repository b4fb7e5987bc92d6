"""
Payment domain events.

Dataclass events record purchase lifecycle facts for downstream handling
(e.g., notifications, projections). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    purchase_id: int
    provider: str
    external_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class PurchaseCompleted(PaymentEvent):
    pass


@dataclass
class PurchaseFailed(PaymentEvent):
    reason: Optional[str] = None


@dataclass
class PurchaseRefunded(PaymentEvent):
    pass


@dataclass
class EntitlementsGranted(PaymentEvent):
    count: int = 0
