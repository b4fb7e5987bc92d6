"""
金额策略 - 按币种校验金额（最小货币单位）是否在允许区间内

纯函数，无副作用；必须在任何网关调用和持久化之前执行。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

from domain.common.exceptions import AmountRejectedException


@dataclass(frozen=True)
class AmountBounds:
    min_amount: int
    max_amount: int

    def __post_init__(self):
        if self.min_amount <= 0 or self.max_amount < self.min_amount:
            raise ValueError(f"invalid amount bounds: [{self.min_amount}, {self.max_amount}]")


@dataclass(frozen=True)
class AmountCheck:
    ok: bool
    currency: str
    min_amount: Optional[int] = None
    max_amount: Optional[int] = None
    reason: Optional[str] = None


class AmountPolicy:
    """币种区间校验"""

    def __init__(self, bounds: Mapping[str, AmountBounds]):
        self._bounds = {currency.upper(): b for currency, b in bounds.items()}

    @property
    def currencies(self) -> list[str]:
        return sorted(self._bounds)

    def bounds_for(self, currency: str) -> Optional[AmountBounds]:
        return self._bounds.get((currency or "").upper())

    def validate(self, amount_in_cents: int, currency: str) -> AmountCheck:
        code = (currency or "").upper()
        bounds = self._bounds.get(code)
        if bounds is None:
            return AmountCheck(ok=False, currency=code, reason=f"Unsupported currency: {currency}")
        if amount_in_cents < bounds.min_amount:
            return AmountCheck(
                ok=False,
                currency=code,
                min_amount=bounds.min_amount,
                max_amount=bounds.max_amount,
                reason=f"Amount {amount_in_cents} is below the minimum of {bounds.min_amount} for {code}",
            )
        if amount_in_cents > bounds.max_amount:
            return AmountCheck(
                ok=False,
                currency=code,
                min_amount=bounds.min_amount,
                max_amount=bounds.max_amount,
                reason=f"Amount {amount_in_cents} exceeds the maximum of {bounds.max_amount} for {code}",
            )
        return AmountCheck(ok=True, currency=code, min_amount=bounds.min_amount, max_amount=bounds.max_amount)

    def ensure_valid(self, amount_in_cents: int, currency: str) -> AmountCheck:
        """校验失败时抛出 AmountRejectedException"""
        check = self.validate(amount_in_cents, currency)
        if not check.ok:
            raise AmountRejectedException(
                check.reason or "Amount rejected",
                amount_in_cents=amount_in_cents,
                currency=check.currency,
                min_amount=check.min_amount,
                max_amount=check.max_amount,
            )
        return check
