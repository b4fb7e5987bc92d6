from decimal import Decimal

import pytest

from application.services.webhook_reconciler import WebhookReconciler
from domain.common.exceptions import DomainValidationException
from domain.payment.entity import (
    Purchase,
    PurchaseStatus,
    Transaction,
    TransactionStatus,
    WebhookEvent,
    WebhookEventKind,
    WebhookStatus,
)
from domain.payment.service import map_purchase_status, map_transaction_status


@pytest.mark.parametrize(
    "gateway_status,expected",
    [
        ("APPROVED", TransactionStatus.COMPLETED),
        ("approved", TransactionStatus.COMPLETED),
        ("DECLINED", TransactionStatus.FAILED),
        ("ERROR", TransactionStatus.FAILED),
        ("VOIDED", TransactionStatus.REFUNDED),
        ("PENDING", TransactionStatus.PENDING),
        ("SOMETHING_NEW", TransactionStatus.PENDING),
        ("", TransactionStatus.PENDING),
        (None, TransactionStatus.PENDING),
    ],
)
def test_transaction_status_mapping_is_total(gateway_status, expected):
    assert map_transaction_status(gateway_status) == expected


@pytest.mark.parametrize(
    "gateway_status,expected",
    [
        ("APPROVED", PurchaseStatus.COMPLETED),
        ("DECLINED", PurchaseStatus.FAILED),
        ("ERROR", PurchaseStatus.FAILED),
        ("VOIDED", PurchaseStatus.REFUNDED),
        ("IN_REVIEW", PurchaseStatus.PENDING),
    ],
)
def test_purchase_status_uses_same_mapping(gateway_status, expected):
    assert map_purchase_status(gateway_status) == expected


def test_unknown_provider_maps_to_pending():
    assert map_transaction_status("APPROVED", provider="other") == TransactionStatus.PENDING


def test_every_event_kind_has_a_handler():
    reconciler = WebhookReconciler(uow_factory=lambda **_: None)
    assert set(reconciler.handlers) == set(WebhookEventKind)


def test_event_kind_falls_back_to_unknown():
    assert WebhookEventKind.parse("transaction.updated") is WebhookEventKind.TRANSACTION_UPDATED
    assert WebhookEventKind.parse("nequi_token.updated") is WebhookEventKind.UNKNOWN
    assert WebhookEventKind.parse(None) is WebhookEventKind.UNKNOWN


def _transaction(status=TransactionStatus.PENDING):
    return Transaction(
        id=1,
        purchase_id=1,
        provider="wompi",
        amount=Decimal("50000"),
        currency="COP",
        status=status,
        reference="TXN-1",
    )


def test_final_transaction_does_not_regress_to_pending():
    tx = _transaction(TransactionStatus.COMPLETED)
    assert tx.apply_status(TransactionStatus.PENDING, {"status": "PENDING"}) is False
    assert tx.status == TransactionStatus.COMPLETED
    assert tx.gateway_response == {"status": "PENDING"}


def test_completion_sets_completed_at():
    tx = _transaction()
    assert tx.apply_status(TransactionStatus.COMPLETED) is True
    assert tx.completed_at is not None


def test_external_id_is_immutable_once_assigned():
    tx = _transaction()
    tx.assign_external_id("E1")
    tx.assign_external_id("E1")
    with pytest.raises(DomainValidationException):
        tx.assign_external_id("E9")


def test_purchase_requires_exactly_one_target():
    with pytest.raises(DomainValidationException):
        Purchase(id=None, user_id=1, amount=Decimal("1"), currency="COP", status=PurchaseStatus.PENDING)
    with pytest.raises(DomainValidationException):
        Purchase(
            id=None,
            user_id=1,
            amount=Decimal("1"),
            currency="COP",
            status=PurchaseStatus.PENDING,
            package_id=1,
            service_id=1,
        )


def test_orphaned_event_must_carry_external_id():
    with pytest.raises(DomainValidationException):
        WebhookEvent(id=None, provider="wompi", event_type="transaction.updated", payload={}, status=WebhookStatus.RECEIVED)
