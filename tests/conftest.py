"""Pytest bootstrap configuration.

Environment variables are set before any application module is imported so
that settings pick up an in-memory database and sandbox gateway keys. The
in-memory repositories below back the domain and application tests.
"""
import copy
import itertools
import json
import os
from datetime import datetime, timezone
from decimal import Decimal

os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("PAYMENT__WOMPI__PUBLIC_KEY", "pub_test_clinic")
os.environ.setdefault("PAYMENT__WOMPI__PRIVATE_KEY", "prv_test_clinic")
os.environ.setdefault("PAYMENT__WOMPI__EVENTS_SECRET", "test_events_secret")

import pytest

from application.dtos.payments import (
    AcceptanceTokens,
    GatewayLink,
    GatewayPublicConfig,
    GatewayTransaction,
    GatewayVoid,
)
from domain.catalog.entity import Package, PackageServiceLine, Service
from domain.catalog.repository import CatalogRepository
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import WebhookStatus
from domain.payment.repository import (
    EntitlementConflict,
    EntitlementRepository,
    PurchaseRepository,
    TransactionRepository,
    WebhookEventRepository,
)
from infrastructure.external.payments.webhook_verifier import compute_event_checksum


EVENTS_SECRET = "test_events_secret"


def _now():
    return datetime.now(timezone.utc)


class InMemoryStore:
    def __init__(self):
        self.purchases = {}
        self.transactions = {}
        self.webhooks = {}
        self.entitlements = {}
        self.packages = {}
        self.services = {}
        self._ids = itertools.count(1)
        self.commits = 0

    def next_id(self) -> int:
        return next(self._ids)

    def snapshot(self):
        return copy.deepcopy(
            (self.purchases, self.transactions, self.webhooks, self.entitlements)
        )

    def restore(self, snap):
        self.purchases, self.transactions, self.webhooks, self.entitlements = snap


class FakePurchaseRepository(PurchaseRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, purchase):
        purchase = copy.deepcopy(purchase)
        purchase.id = self.store.next_id()
        purchase.created_at = purchase.created_at or _now()
        self.store.purchases[purchase.id] = purchase
        return copy.deepcopy(purchase)

    async def get_by_id(self, purchase_id):
        found = self.store.purchases.get(purchase_id)
        return copy.deepcopy(found) if found else None

    async def update(self, purchase):
        self.store.purchases[purchase.id] = copy.deepcopy(purchase)
        return copy.deepcopy(purchase)


class FakeTransactionRepository(TransactionRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    def _check_unique(self, tx):
        for other in self.store.transactions.values():
            if other.id != tx.id and tx.external_id and other.external_id == tx.external_id:
                raise ValueError(f"duplicate external_id {tx.external_id}")

    async def create(self, transaction):
        tx = copy.deepcopy(transaction)
        tx.id = self.store.next_id()
        tx.created_at = tx.created_at or _now()
        self._check_unique(tx)
        self.store.transactions[tx.id] = tx
        return copy.deepcopy(tx)

    async def get_by_id(self, transaction_id):
        found = self.store.transactions.get(transaction_id)
        return copy.deepcopy(found) if found else None

    async def get_by_external_id(self, external_id):
        for tx in self.store.transactions.values():
            if tx.external_id == external_id:
                return copy.deepcopy(tx)
        return None

    async def list_by_payment_link_id(self, payment_link_id):
        rows = [tx for tx in self.store.transactions.values() if tx.payment_link_id == payment_link_id]
        rows.sort(key=lambda t: (t.created_at, t.id))
        return [copy.deepcopy(tx) for tx in rows]

    async def list_by_purchase(self, purchase_id):
        rows = [tx for tx in self.store.transactions.values() if tx.purchase_id == purchase_id]
        return [copy.deepcopy(tx) for tx in sorted(rows, key=lambda t: t.id)]

    async def list_by_status_before(self, status, created_before, limit=100):
        rows = [
            tx for tx in self.store.transactions.values()
            if tx.status == status and tx.created_at < created_before
        ]
        rows.sort(key=lambda t: (t.created_at, t.id))
        return [copy.deepcopy(tx) for tx in rows[:limit]]

    async def update(self, transaction):
        self._check_unique(transaction)
        self.store.transactions[transaction.id] = copy.deepcopy(transaction)
        return copy.deepcopy(transaction)


class FakeWebhookEventRepository(WebhookEventRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def create(self, event):
        event = copy.deepcopy(event)
        event.id = self.store.next_id()
        event.received_at = event.received_at or _now()
        self.store.webhooks[event.id] = event
        return copy.deepcopy(event)

    async def get_by_id(self, webhook_id):
        found = self.store.webhooks.get(webhook_id)
        return copy.deepcopy(found) if found else None

    async def list_orphans_by_external_id(self, external_id):
        rows = [
            e for e in self.store.webhooks.values()
            if e.transaction_id is None and e.external_transaction_id == external_id
        ]
        rows.sort(key=lambda e: (e.received_at, e.id))
        return [copy.deepcopy(e) for e in rows]

    async def list_orphans_by_payment_link_id(self, payment_link_id):
        rows = [
            e for e in self.store.webhooks.values()
            if e.transaction_id is None and e.payment_link_id == payment_link_id
        ]
        rows.sort(key=lambda e: (e.received_at, e.id))
        return [copy.deepcopy(e) for e in rows]

    async def list_events(self, status=None, orphaned=None, skip=0, limit=100):
        rows = list(self.store.webhooks.values())
        if status is not None:
            rows = [e for e in rows if e.status == WebhookStatus(status)]
        if orphaned is not None:
            rows = [e for e in rows if (e.transaction_id is None) == orphaned]
        rows.sort(key=lambda e: e.id, reverse=True)
        return [copy.deepcopy(e) for e in rows[skip:skip + limit]]

    async def update(self, event):
        self.store.webhooks[event.id] = copy.deepcopy(event)
        return copy.deepcopy(event)

    async def delete_orphans_before(self, cutoff):
        doomed = [
            e.id for e in self.store.webhooks.values()
            if e.transaction_id is None and e.received_at < cutoff
        ]
        for webhook_id in doomed:
            del self.store.webhooks[webhook_id]
        return len(doomed)


class FakeEntitlementRepository(EntitlementRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def exists_for_purchase(self, purchase_id):
        return any(e.purchase_id == purchase_id for e in self.store.entitlements.values())

    async def list_by_purchase(self, purchase_id):
        rows = [e for e in self.store.entitlements.values() if e.purchase_id == purchase_id]
        return [copy.deepcopy(e) for e in sorted(rows, key=lambda e: e.id)]

    async def create_many(self, entitlements):
        taken = {(e.purchase_id, e.service_id) for e in self.store.entitlements.values()}
        if any((e.purchase_id, e.service_id) in taken for e in entitlements):
            raise EntitlementConflict("entitlement already granted")
        created = []
        for ent in entitlements:
            ent = copy.deepcopy(ent)
            ent.id = self.store.next_id()
            self.store.entitlements[ent.id] = ent
            created.append(copy.deepcopy(ent))
        return created


class FakeCatalogRepository(CatalogRepository):
    def __init__(self, store: InMemoryStore):
        self.store = store

    async def get_package(self, package_id):
        return self.store.packages.get(package_id)

    async def get_service(self, service_id):
        return self.store.services.get(service_id)


class FakeUnitOfWork(AbstractUnitOfWork):
    def __init__(self, store: InMemoryStore, *, readonly: bool = False):
        super().__init__(readonly=readonly)
        self.store = store
        self._snapshot = None
        self.purchase_repository = FakePurchaseRepository(store)
        self.transaction_repository = FakeTransactionRepository(store)
        self.webhook_repository = FakeWebhookEventRepository(store)
        self.entitlement_repository = FakeEntitlementRepository(store)
        self.catalog_repository = FakeCatalogRepository(store)

    async def __aenter__(self):
        self._snapshot = self.store.snapshot()
        return self

    async def commit(self):
        self._committed = True
        self.store.commits += 1

    async def rollback(self):
        if self._snapshot is not None:
            self.store.restore(self._snapshot)
        self._committed = False


class StubGateway:
    """Scriptable gateway: queued results (or exceptions) are consumed in order."""

    provider = "wompi"

    def __init__(self):
        self.create_results = []
        self.link_results = []
        self.status = "APPROVED"
        self.transaction_requests = []
        self.link_requests = []
        self.calls = []
        self.closed = False
        self._seq = itertools.count(1)

    def _next(self, queue, default):
        if not queue:
            return default
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def create_transaction(self, req):
        self.transaction_requests.append(req)
        default = GatewayTransaction(
            id=f"12345-{next(self._seq)}",
            status="PENDING",
            amount_in_cents=req.amount_in_cents,
            currency=req.currency,
            reference=req.reference,
            raw={"reference": req.reference, "status": "PENDING"},
        )
        return self._next(self.create_results, default)

    async def create_payment_link(self, req):
        self.link_requests.append(req)
        link_id = f"LINK-{next(self._seq)}"
        default = GatewayLink(
            id=link_id,
            permalink=f"https://checkout.wompi.co/l/{link_id}",
            amount_in_cents=req.amount_in_cents,
            currency=req.currency,
            raw={"id": link_id, "sku": req.reference},
        )
        return self._next(self.link_results, default)

    async def confirm_transaction(self, transaction_id, proof):
        self.calls.append(("confirm", transaction_id, dict(proof)))
        return GatewayTransaction(id=transaction_id, status=self.status, raw={"id": transaction_id, "status": self.status})

    async def get_transaction(self, transaction_id):
        self.calls.append(("get", transaction_id))
        return GatewayTransaction(id=transaction_id, status=self.status, raw={"id": transaction_id, "status": self.status})

    async def void_transaction(self, transaction_id, amount_in_cents=None, reason=None):
        self.calls.append(("void", transaction_id, amount_in_cents, reason))
        return GatewayVoid(transaction_id=transaction_id, status="VOIDED", raw={"id": transaction_id, "status": "VOIDED"})

    async def get_acceptance_tokens(self):
        return AcceptanceTokens(acceptance_token="eyJ-acceptance", permalink="https://wompi.co/terms.pdf")

    def public_config(self):
        return GatewayPublicConfig(
            provider=self.provider,
            public_key="pub_test_clinic",
            environment="sandbox",
            currencies=["COP"],
            payment_methods=["CARD"],
            min_amounts={"COP": 100},
            max_amounts={"COP": 200_000_000},
        )

    async def aclose(self):
        self.closed = True


def webhook_body(
    transaction_id,
    status,
    *,
    event="transaction.updated",
    amount_in_cents=5_000_000,
    payment_link_id=None,
    timestamp=1_700_000_000,
    secret=EVENTS_SECRET,
):
    """Build a signed Wompi event; returns (headers, raw body)."""
    transaction = {
        "id": transaction_id,
        "status": status,
        "amount_in_cents": amount_in_cents,
        "reference": f"TXN-{transaction_id}",
        "currency": "COP",
    }
    if payment_link_id:
        transaction["payment_link_id"] = payment_link_id
    payload = {
        "event": event,
        "data": {"transaction": transaction},
        "environment": "test",
        "signature": {
            "properties": ["transaction.id", "transaction.status", "transaction.amount_in_cents"],
        },
        "timestamp": timestamp,
        "sent_at": "2026-10-19T09:00:00.000Z",
    }
    checksum = compute_event_checksum(payload, secret)
    payload["signature"]["checksum"] = checksum
    return {"X-Event-Checksum": checksum, "Content-Type": "application/json"}, json.dumps(payload).encode()


@pytest.fixture
def store():
    s = InMemoryStore()
    s.services[1] = Service(id=1, name="Physiotherapy", base_price=Decimal("80000"))
    s.services[2] = Service(id=2, name="Massage", base_price=Decimal("60000"))
    s.services[3] = Service(id=3, name="Retired", base_price=Decimal("10000"), is_active=False)
    s.packages[1] = Package(
        id=1,
        name="Rehab 10",
        price=Decimal("500000"),
        total_sessions=10,
        validity_days=90,
        services=[
            PackageServiceLine(service_id=1, sessions_included=6),
            PackageServiceLine(service_id=2, sessions_included=4),
        ],
    )
    return s


@pytest.fixture
def uow_factory(store):
    def _factory(readonly: bool = False):
        return FakeUnitOfWork(store, readonly=readonly)

    return _factory


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def signed_webhook():
    return webhook_body
