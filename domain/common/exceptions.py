"""领域层业务异常定义，供领域与基础设施使用。

核心（core）层仅负责全局映射与异常处理，尽量避免领域层反向依赖核心层。
"""
from __future__ import annotations

from typing import Optional
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


class BusinessException(Exception):
    """业务异常基类"""

    def __init__(
        self,
        code: int,
        message: str,
        error_type: str = "BusinessError",
        details: Optional[dict] = None,
        field: Optional[str] = None,
        message_key: Optional[str] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.error_type = error_type
        self.details = details
        self.field = field
        self.message_key = message_key
        super().__init__(self.message)


class DomainValidationException(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        details: dict | None = None,
        message_key: str | None = None,
    ):
        super().__init__(
            code=BusinessCode.PARAM_VALIDATION_ERROR,
            message=message,
            error_type="DomainValidationError",
            details=details,
            field=field,
            message_key=message_key or "validation.domain",
        )


class AmountRejectedException(BusinessException):
    """金额超出币种允许区间，在调用网关与持久化之前拒绝"""

    def __init__(
        self,
        reason: str,
        *,
        amount_in_cents: int,
        currency: str,
        min_amount: Optional[int] = None,
        max_amount: Optional[int] = None,
    ):
        super().__init__(
            code=PaymentCode.AMOUNT_REJECTED,
            message=reason,
            error_type="ValidationRejected",
            details={
                "amount_in_cents": amount_in_cents,
                "currency": currency,
                "min_amount": min_amount,
                "max_amount": max_amount,
            },
            field="amount_in_cents",
            message_key="payment.amount.rejected",
        )


class CatalogItemNotFoundException(BusinessException):
    def __init__(self, kind: str, item_id: int):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"{kind.capitalize()} {item_id} not found or inactive",
            error_type="NotFound",
            details={"kind": kind, "id": item_id},
            field=f"{kind}_id",
            message_key="catalog.item.not_found",
        )


class TransactionNotFoundException(BusinessException):
    def __init__(self, identifier: str):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"Transaction not found: {identifier}",
            error_type="NotFound",
            details={"transaction": identifier},
            message_key="payment.transaction.not_found",
        )


class WebhookEventNotFoundException(BusinessException):
    def __init__(self, webhook_id: int):
        super().__init__(
            code=BusinessCode.NOT_FOUND,
            message=f"Webhook event not found: {webhook_id}",
            error_type="NotFound",
            details={"webhook_id": webhook_id},
            message_key="payment.webhook.not_found",
        )
