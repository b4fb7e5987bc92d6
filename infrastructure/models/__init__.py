"""Infrastructure models package exports."""
from .base import Base, metadata
from .catalog import PackageModel, PackageServiceModel, ServiceModel
from .payment import (
    PaymentTransactionModel,
    PaymentWebhookModel,
    PurchaseModel,
    UserSessionModel,
)

__all__ = [
    "Base",
    "metadata",
    "PackageModel",
    "PackageServiceModel",
    "ServiceModel",
    "PurchaseModel",
    "PaymentTransactionModel",
    "PaymentWebhookModel",
    "UserSessionModel",
]
