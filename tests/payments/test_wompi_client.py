import hashlib
import json

import httpx
import pytest

from application.dtos.payments import GatewayPaymentLinkRequest, GatewayTransactionRequest
from application.ports.payment_gateway import (
    GatewayTerminalError,
    GatewayTransientError,
    GatewayValidationError,
)
from core.settings import PaymentRetry, PaymentSettings, WompiSettings
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payments.wompi_client import WompiClient


def _settings(**wompi_overrides):
    wompi = dict(public_key="pub_test_clinic", private_key="prv_test_clinic")
    wompi.update(wompi_overrides)
    return PaymentSettings(wompi=WompiSettings(**wompi), retry=PaymentRetry(max=2, base_backoff=0.0))


def _client(handler, **wompi_overrides):
    return WompiClient(_settings(**wompi_overrides), transport=httpx.MockTransport(handler))


def _request(**overrides):
    data = dict(
        reference="TXN-1-7-abcd1234",
        amount_in_cents=5_000_000,
        currency="COP",
        customer_email="patient@example.com",
        payment_method_type="CARD",
        payment_method={"token": "tok_test_1", "installments": 1},
        acceptance_token="eyJ-acceptance",
    )
    data.update(overrides)
    return GatewayTransactionRequest(**data)


def _tx_body(tx_id="12345-1", status="PENDING"):
    return {"data": {"id": tx_id, "status": status, "amount_in_cents": 5_000_000, "currency": "COP"}}


@pytest.mark.asyncio
async def test_create_transaction_sends_private_key_and_integrity_signature():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json=_tx_body())

    client = _client(handler, integrity_secret="test_integrity")
    result = await client.create_transaction(_request())
    await client.aclose()

    assert result.id == "12345-1" and result.status == "PENDING"
    assert seen["auth"] == "Bearer prv_test_clinic"
    assert seen["path"] == "/v1/transactions"
    body = seen["body"]
    assert body["payment_method"] == {"type": "CARD", "token": "tok_test_1", "installments": 1}
    expected = hashlib.sha256(b"TXN-1-7-abcd12345000000COPtest_integrity").hexdigest()
    assert body["signature"] == expected


@pytest.mark.asyncio
async def test_signature_omitted_without_integrity_secret():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json=_tx_body())

    client = _client(handler)
    await client.create_transaction(_request())
    assert "signature" not in seen["body"]


@pytest.mark.asyncio
async def test_input_validation_error_carries_field_messages():
    def handler(request):
        return httpx.Response(
            422,
            json={
                "error": {
                    "type": "INPUT_VALIDATION_ERROR",
                    "messages": {"reference": ["La referencia ya ha sido usada"]},
                }
            },
        )

    client = _client(handler)
    with pytest.raises(GatewayValidationError) as exc_info:
        await client.create_transaction(_request())
    assert exc_info.value.status_code == 422
    assert exc_info.value.validation_messages == {"reference": ["La referencia ya ha sido usada"]}
    assert "INPUT_VALIDATION_ERROR" in exc_info.value.message


@pytest.mark.asyncio
async def test_create_is_not_retried_on_server_error():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, json={"error": {"type": "SERVICE_UNAVAILABLE"}})

    client = _client(handler)
    with pytest.raises(GatewayTransientError):
        await client.create_transaction(_request())
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_timeout_is_transient():
    def handler(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    client = _client(handler)
    with pytest.raises(GatewayTransientError):
        await client.create_transaction(_request())


@pytest.mark.asyncio
async def test_unauthorized_is_terminal():
    def handler(request):
        return httpx.Response(401, json={"error": {"type": "INVALID_ACCESS_TOKEN", "reason": "Bad key"}})

    client = _client(handler)
    with pytest.raises(GatewayTerminalError) as exc_info:
        await client.create_transaction(_request())
    assert exc_info.value.status_code == 401


@pytest.mark.asyncio
async def test_get_transaction_retries_transient_failures():
    responses = [httpx.Response(503), httpx.Response(429), httpx.Response(200, json=_tx_body(status="APPROVED"))]

    def handler(request):
        return responses.pop(0)

    client = _client(handler)
    result = await client.get_transaction("12345-1")
    assert result.status == "APPROVED"
    assert responses == []


@pytest.mark.asyncio
async def test_get_transaction_gives_up_after_retry_budget():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(502)

    client = _client(handler)
    with pytest.raises(GatewayTransientError):
        await client.get_transaction("12345-1")
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_payment_link_falls_back_to_checkout_permalink():
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"data": {"id": "LINK-42", "active": True, "single_use": True}})

    client = _client(handler)
    link = await client.create_payment_link(
        GatewayPaymentLinkRequest(
            reference="TXN-1-7-abcd1234",
            name="Rehab 10",
            description="Rehab 10 package",
            amount_in_cents=50_000_000,
            currency="COP",
        )
    )
    assert link.permalink == "https://checkout.wompi.co/l/LINK-42"
    assert seen["body"]["sku"] == "TXN-1-7-abcd1234"
    assert seen["body"]["single_use"] is True


@pytest.mark.asyncio
async def test_acceptance_tokens_use_public_key():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["path"] = request.url.path
        return httpx.Response(
            200,
            json={
                "data": {
                    "presigned_acceptance": {"acceptance_token": "eyJ-acc", "permalink": "https://wompi.co/terms.pdf"},
                    "presigned_personal_data_auth": {"acceptance_token": "eyJ-personal"},
                }
            },
        )

    client = _client(handler)
    tokens = await client.get_acceptance_tokens()
    assert seen["auth"] == "Bearer pub_test_clinic"
    assert seen["path"] == "/v1/merchants/pub_test_clinic"
    assert tokens.acceptance_token == "eyJ-acc"
    assert tokens.personal_auth_token == "eyJ-personal"


@pytest.mark.asyncio
async def test_void_reads_nested_transaction():
    seen = {}

    def handler(request):
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"data": {"transaction": {"id": "12345-1", "status": "VOIDED"}}})

    client = _client(handler)
    result = await client.void_transaction("12345-1", reason="patient cancelled")
    assert result.status == "VOIDED"
    assert seen["path"] == "/v1/transactions/12345-1/void"
    assert seen["body"] == {"reason": "patient cancelled"}


@pytest.mark.asyncio
async def test_unexpected_response_shape_is_terminal():
    def handler(request):
        return httpx.Response(200, json={"id": "12345-1"})

    client = _client(handler)
    with pytest.raises(GatewayTerminalError):
        await client.create_transaction(_request())


def test_missing_keys_fail_fast():
    with pytest.raises(RuntimeError):
        WompiClient(PaymentSettings(wompi=WompiSettings()))


def test_public_config_exposes_bounds():
    config = WompiClient(_settings()).public_config()
    assert config.public_key == "pub_test_clinic"
    assert config.min_amounts["COP"] == 100
    assert config.max_amounts["USD"] == 15_000


def test_factory_builds_wompi_client():
    assert isinstance(get_payment_gateway("wompi", _settings()), WompiClient)
    with pytest.raises(ValueError):
        get_payment_gateway("paypal", _settings())
