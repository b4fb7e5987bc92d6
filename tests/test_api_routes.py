import pytest
from fastapi.testclient import TestClient

from core.settings import PaymentSettings, WompiSettings
from infrastructure.container import build_payment_services
from infrastructure.external.payments.webhook_verifier import WompiWebhookVerifier
from main import app
from shared.codes import BusinessCode
from shared.codes.payment_codes import PaymentCode


API = "/api/v1/payments"


@pytest.fixture
def client(uow_factory, gateway):
    settings = PaymentSettings(wompi=WompiSettings(public_key="pub_test_clinic", events_secret="test_events_secret"))
    app.state.payment_services = build_payment_services(
        settings,
        uow_factory=uow_factory,
        gateway=gateway,
        verifier=WompiWebhookVerifier(settings),
    )
    with TestClient(app) as test_client:
        yield test_client
    app.state.payment_services = None


def _transaction_body(**overrides):
    body = {
        "user_id": 7,
        "service_id": 1,
        "amount_in_cents": 5_000_000,
        "currency": "COP",
        "customer_email": "patient@example.com",
        "payment_method_type": "CARD",
        "payment_method": {"token": "tok_test_1", "installments": 1},
        "acceptance_token": "eyJ-acceptance",
    }
    body.update(overrides)
    return body


def test_routes_registered():
    paths = set(app.openapi()["paths"])
    assert f"{API}/webhooks/wompi" in paths
    assert f"{API}/transactions" in paths
    assert f"{API}/transactions/{{external_id}}" in paths
    assert f"{API}/webhooks/events/{{webhook_id}}/replay" in paths
    assert "/health" in paths


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "healthy"}
    assert resp.headers.get("X-Request-ID")


def test_orphan_webhook_is_acknowledged(client, signed_webhook, store):
    headers, body = signed_webhook("E2", "APPROVED")
    resp = client.post(f"{API}/webhooks/wompi", content=body, headers=headers)

    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["orphaned"] is True
    assert data["status"] == "received"
    assert len(store.webhooks) == 1


def test_forged_webhook_is_rejected(client, signed_webhook, store):
    headers, body = signed_webhook("E2", "APPROVED", secret="forged")
    resp = client.post(f"{API}/webhooks/wompi", content=body, headers=headers)

    assert resp.status_code == 401
    assert resp.json()["code"] == PaymentCode.SIGNATURE_ERROR
    assert store.webhooks == {}


def test_malformed_webhook_is_bad_request(client):
    resp = client.post(f"{API}/webhooks/wompi", content=b"not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["code"] == PaymentCode.WEBHOOK_INVALID


def test_create_then_read_transaction(client, gateway):
    gateway.status = "APPROVED"
    created = client.post(f"{API}/transactions", json=_transaction_body())
    assert created.status_code == 200
    result = created.json()["data"]
    assert result["status"] == "pending"

    view = client.get(f"{API}/transactions/{result['external_id']}")
    assert view.status_code == 200
    assert view.json()["data"]["purchase_status"] == "pending"

    refreshed = client.get(f"{API}/transactions/{result['external_id']}", params={"refresh": "true"})
    assert refreshed.json()["data"]["status"] == "completed"
    assert refreshed.json()["data"]["purchase_status"] == "completed"


def test_amount_out_of_range_is_rejected(client, gateway):
    resp = client.post(f"{API}/transactions", json=_transaction_body(amount_in_cents=50))
    assert resp.status_code == 422
    assert resp.json()["code"] == PaymentCode.AMOUNT_REJECTED
    assert gateway.transaction_requests == []


def test_invalid_body_is_validation_error(client):
    resp = client.post(f"{API}/transactions", json=_transaction_body(customer_email="not-an-email"))
    assert resp.status_code == 422


def test_unknown_transaction_is_not_found(client):
    resp = client.get(f"{API}/transactions/missing")
    assert resp.status_code == 404
    assert resp.json()["code"] == BusinessCode.NOT_FOUND


def test_replay_and_list_events(client, signed_webhook):
    headers, body = signed_webhook("E3", "APPROVED")
    receipt = client.post(f"{API}/webhooks/wompi", content=body, headers=headers).json()["data"]

    listed = client.get(f"{API}/webhooks/events", params={"orphaned": "true"})
    assert [e["id"] for e in listed.json()["data"]] == [receipt["webhook_id"]]

    replayed = client.post(f"{API}/webhooks/events/{receipt['webhook_id']}/replay")
    assert replayed.status_code == 200
    assert replayed.json()["data"]["orphaned"] is True

    missing = client.post(f"{API}/webhooks/events/9999/replay")
    assert missing.status_code == 404


def test_public_config_and_acceptance_tokens(client):
    config = client.get(f"{API}/config").json()["data"]
    assert config["provider"] == "wompi"
    assert config["min_amounts"]["COP"] == 100

    tokens = client.get(f"{API}/acceptance-tokens").json()["data"]
    assert tokens["acceptance_token"] == "eyJ-acceptance"


def test_payment_link_route(client):
    resp = client.post(
        f"{API}/payment-links",
        json={"user_id": 7, "package_id": 1, "amount_in_cents": 50_000_000, "name": "Rehab 10"},
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["permalink"].startswith("https://checkout.wompi.co/l/")
    assert data["external_id"] is None
