"""
Payment specific codes and gateway status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    PROVIDER_RECOVERABLE = 60001
    SIGNATURE_ERROR = 60002
    GATEWAY_VALIDATION = 60005

    # Payment business errors (61xxx)
    AMOUNT_REJECTED = 61000
    WEBHOOK_INVALID = 61001


# Gateway status -> internal transaction status. Anything missing maps to "pending".
PROVIDER_STATUS_TO_INTERNAL = {
    "wompi": {
        "APPROVED": "completed",
        "DECLINED": "failed",
        "ERROR": "failed",
        "VOIDED": "refunded",
        "PENDING": "pending",
    },
}
