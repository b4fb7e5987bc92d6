from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from domain.common.exceptions import CatalogItemNotFoundException, DomainValidationException
from domain.payment.entity import Purchase, PurchaseStatus
from domain.payment.events import EntitlementsGranted
from domain.payment.repository import EntitlementConflict
from domain.payment.service import EntitlementGranter


def _purchase(store, *, package_id=None, service_id=None, status=PurchaseStatus.COMPLETED):
    purchase = Purchase(
        id=store.next_id(),
        user_id=7,
        amount=Decimal("50000"),
        currency="COP",
        status=status,
        package_id=package_id,
        service_id=service_id,
        expires_at=datetime.now(timezone.utc) + timedelta(days=90),
        payment_details={"provider": "wompi"},
    )
    store.purchases[purchase.id] = purchase
    return purchase


@pytest.mark.asyncio
async def test_package_purchase_grants_one_entitlement_per_line(store, uow_factory):
    purchase = _purchase(store, package_id=1)
    async with uow_factory() as uow:
        granter = EntitlementGranter(uow.entitlement_repository, uow.catalog_repository)
        created = await granter.grant(purchase)

    assert sorted((e.service_id, e.sessions_purchased) for e in created) == [(1, 6), (2, 4)]
    assert all(e.sessions_remaining == e.sessions_purchased for e in created)
    assert all(e.expires_at == purchase.expires_at for e in created)
    events = granter.clear_events()
    assert len(events) == 1 and isinstance(events[0], EntitlementsGranted)
    assert events[0].count == 2
    assert granter.events == []


@pytest.mark.asyncio
async def test_service_purchase_grants_single_session(store, uow_factory):
    purchase = _purchase(store, service_id=2)
    async with uow_factory() as uow:
        created = await EntitlementGranter(uow.entitlement_repository, uow.catalog_repository).grant(purchase)
    assert [(e.service_id, e.sessions_purchased) for e in created] == [(2, 1)]


@pytest.mark.asyncio
async def test_second_grant_is_a_no_op(store, uow_factory):
    purchase = _purchase(store, package_id=1)
    async with uow_factory() as uow:
        granter = EntitlementGranter(uow.entitlement_repository, uow.catalog_repository)
        await granter.grant(purchase)
        again = await granter.grant(purchase)
    assert again == []
    assert len(store.entitlements) == 2


@pytest.mark.asyncio
async def test_concurrent_conflict_counts_as_already_granted(store, uow_factory, monkeypatch):
    purchase = _purchase(store, service_id=1)
    async with uow_factory() as uow:
        async def _conflict(entitlements):
            raise EntitlementConflict("duplicate")

        monkeypatch.setattr(uow.entitlement_repository, "create_many", _conflict)
        granter = EntitlementGranter(uow.entitlement_repository, uow.catalog_repository)
        assert await granter.grant(purchase) == []
    assert granter.events == []


@pytest.mark.asyncio
async def test_pending_purchase_is_refused(store, uow_factory):
    purchase = _purchase(store, service_id=1, status=PurchaseStatus.PENDING)
    async with uow_factory() as uow:
        with pytest.raises(DomainValidationException):
            await EntitlementGranter(uow.entitlement_repository, uow.catalog_repository).grant(purchase)


@pytest.mark.asyncio
async def test_missing_catalog_item_is_reported(store, uow_factory):
    purchase = _purchase(store, package_id=99)
    async with uow_factory() as uow:
        with pytest.raises(CatalogItemNotFoundException):
            await EntitlementGranter(uow.entitlement_repository, uow.catalog_repository).grant(purchase)
