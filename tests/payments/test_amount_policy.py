import pytest

from domain.common.exceptions import AmountRejectedException
from domain.payment.amount_policy import AmountBounds, AmountPolicy
from infrastructure.container import build_amount_policy


@pytest.fixture
def policy():
    return AmountPolicy(
        {
            "COP": AmountBounds(min_amount=100, max_amount=200_000_000),
            "USD": AmountBounds(min_amount=1, max_amount=15_000),
        }
    )


@pytest.mark.parametrize(
    "amount,currency",
    [(100, "COP"), (5_000_000, "COP"), (200_000_000, "COP"), (1, "USD"), (15_000, "usd")],
)
def test_accepts_amounts_within_bounds(policy, amount, currency):
    check = policy.validate(amount, currency)
    assert check.ok
    assert check.currency == currency.upper()


def test_rejects_below_minimum_with_bound_reported(policy):
    check = policy.validate(50, "COP")
    assert not check.ok
    assert check.min_amount == 100
    assert "minimum of 100" in check.reason


def test_rejects_above_maximum_with_bound_reported(policy):
    check = policy.validate(15_001, "USD")
    assert not check.ok
    assert check.max_amount == 15_000
    assert "maximum of 15000" in check.reason


def test_unsupported_currency_is_rejected(policy):
    check = policy.validate(1000, "EUR")
    assert not check.ok
    assert "Unsupported currency" in check.reason


def test_ensure_valid_raises_structured_rejection(policy):
    with pytest.raises(AmountRejectedException) as exc_info:
        policy.ensure_valid(50, "COP")
    exc = exc_info.value
    assert exc.error_type == "ValidationRejected"
    assert exc.details["min_amount"] == 100
    assert exc.details["amount_in_cents"] == 50
    assert exc.field == "amount_in_cents"


def test_invalid_bounds_cannot_be_configured():
    with pytest.raises(ValueError):
        AmountBounds(min_amount=500, max_amount=100)


def test_policy_built_from_settings_uses_configured_currencies():
    policy = build_amount_policy()
    assert policy.currencies == ["COP", "USD"]
    assert policy.bounds_for("cop").min_amount == 100
