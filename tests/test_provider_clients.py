import json

import httpx
import pytest

from application.dtos.payments import Customer, InitiatePayment, PayerDetails
from application.ports.payment_provider import (
    InvalidPayerHandle,
    InvalidSignature,
    PaymentProvider,
    ProviderOutcomeUnknown,
    ProviderRejected,
    ProviderUnavailable,
)
from core.settings import HostedProviderSettings, PushProviderSettings
from domain.payment.entity import PaymentPurpose
from fakes import WEBHOOK_SECRET
from infrastructure.external.payments import create_payment_provider
from infrastructure.external.payments.base import sign_payload
from infrastructure.external.payments.hosted_client import HostedCheckoutClient
from infrastructure.external.payments.push_client import PushPaymentClient, normalize_phone


FAST_RETRY = {"max": 1, "base": 0.01}


class Recorder:
    """MockTransport handler answering by path suffix with (status, json) or a callable."""

    def __init__(self, routes: dict):
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for suffix, answer in self.routes.items():
            if request.url.path.endswith(suffix):
                if callable(answer):
                    return answer(request)
                status_code, payload = answer
                return httpx.Response(status_code, json=payload)
        return httpx.Response(404, json={"message": "no route"})

    def calls(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]


def _push(routes: dict, clock=None, **settings) -> tuple[PushPaymentClient, Recorder]:
    recorder = Recorder({"/generate-token": (200, {"success": True, "token": "Bearer tok"}), **routes})
    cfg = PushProviderSettings(client_id="cid", api_key="key", webhook_secret=WEBHOOK_SECRET, **settings)
    kwargs = {"clock": clock} if clock else {}
    client = PushPaymentClient(cfg, retry=FAST_RETRY, transport=httpx.MockTransport(recorder), **kwargs)
    return client, recorder


def _collection(**overrides) -> InitiatePayment:
    data = dict(
        amount=25000,
        currency="TZS",
        idempotency_reference="ORD-o1-1700000000000",
        purpose=PaymentPurpose.ORDER_PAYMENT,
        description="Order o1",
        payer=PayerDetails(phone="0712345678", network="mpesa"),
    )
    data.update(overrides)
    return InitiatePayment(**data)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("0712345678", "255712345678"),
        ("+255 712 345 678", "255712345678"),
        ("712345678", "255712345678"),
        ("255712345678", "255712345678"),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "12345", "0712-34", "254712345678"])
def test_normalize_phone_rejects_bad_numbers(raw):
    with pytest.raises(InvalidPayerHandle):
        normalize_phone(raw)


def test_factory_builds_protocol_conforming_clients():
    assert isinstance(create_payment_provider("push"), PaymentProvider)
    assert isinstance(create_payment_provider("hosted"), PaymentProvider)
    with pytest.raises(ValueError):
        create_payment_provider("carrier-pigeon")


@pytest.mark.asyncio
async def test_push_collection_previews_then_pushes_with_cached_token():
    client, recorder = _push({
        "/ussd-push/preview": (200, {"activeMethods": []}),
        "/ussd-push": (200, {"transaction_id": "CP-123", "status": "PROCESSING"}),
    })

    ref = await client.initiate(_collection())
    await client.initiate(_collection(idempotency_reference="ORD-o2-1700000000001"))

    assert ref.provider_reference == "CP-123"
    assert len(recorder.calls("/generate-token")) == 1
    token_call = recorder.calls("/generate-token")[0]
    assert token_call.headers["client-id"] == "cid"
    assert token_call.headers["api-key"] == "key"

    push_call = recorder.calls("/ussd-push")[0]
    assert push_call.headers["Authorization"] == "Bearer tok"
    body = json.loads(push_call.content)
    assert body["phone_number"] == "255712345678"
    assert body["network"] == "MPESA"
    assert body["amount"] == 25000
    assert body["reference"] == "ORD-o1-1700000000000"
    assert len(recorder.calls("/preview")) == 2
    await client.aclose()


@pytest.mark.asyncio
async def test_push_token_refreshed_before_expiry():
    now = [1000.0]
    client, recorder = _push(
        {"/transactions/CP-1": (200, {"data": [{"status": "SUCCESS", "amount": 500}]})},
        clock=lambda: now[0],
        token_ttl_seconds=3600,
        token_refresh_margin_seconds=300,
    )

    await client.check_status("CP-1")
    now[0] += 3000
    await client.check_status("CP-1")
    assert len(recorder.calls("/generate-token")) == 1

    now[0] += 400
    status = await client.check_status("CP-1")
    assert len(recorder.calls("/generate-token")) == 2
    assert status.status == "successful"
    assert status.amount == 500
    await client.aclose()


@pytest.mark.asyncio
async def test_push_payout_uses_disbursement_endpoint():
    client, recorder = _push({
        "/v1/disbursements": (200, {"reference": "DSB-1", "status": "PROCESSING"}),
    })

    ref = await client.initiate(_collection(purpose=PaymentPurpose.WITHDRAWAL, idempotency_reference="WDR-w1-1"))

    assert ref.provider_reference == "DSB-1"
    (call,) = recorder.calls("/v1/disbursements")
    assert str(call.url) == "https://api.clickpesa.com/v1/disbursements"
    assert json.loads(call.content)["recipient"] == {"phoneNumber": "255712345678", "network": "MPESA"}
    assert recorder.calls("/ussd-push") == []
    await client.aclose()


@pytest.mark.asyncio
async def test_server_errors_retry_then_raise_unavailable():
    client, recorder = _push({
        "/ussd-push/preview": (503, {"message": "maintenance"}),
    })

    with pytest.raises(ProviderUnavailable):
        await client.initiate(_collection())
    assert len(recorder.calls("/ussd-push/preview")) == FAST_RETRY["max"] + 1
    await client.aclose()


@pytest.mark.asyncio
async def test_transport_errors_raise_unavailable():
    def boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, _ = _push({"/ussd-push/preview": boom})
    with pytest.raises(ProviderUnavailable):
        await client.initiate(_collection())
    await client.aclose()


@pytest.mark.asyncio
async def test_client_errors_raise_rejected_without_retry():
    client, recorder = _push({
        "/ussd-push/preview": (400, {"message": "Amount exceeds limit"}),
    })

    with pytest.raises(ProviderRejected) as exc_info:
        await client.initiate(_collection())
    assert exc_info.value.message == "Amount exceeds limit"
    assert len(recorder.calls("/ussd-push/preview")) == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_missing_credentials_is_unavailable():
    client = PushPaymentClient(PushProviderSettings(), transport=httpx.MockTransport(Recorder({})))
    with pytest.raises(ProviderUnavailable):
        await client.initiate(_collection())
    await client.aclose()


def test_push_webhook_parsing_and_signature():
    client, _ = _push({})
    body = json.dumps({
        "event_type": "PAYMENT RECEIVED",
        "status": "SUCCESS",
        "transaction_id": "CP-1",
        "reference": "ORD-o1-1",
        "amount": "25000",
        "currency": "TZS",
        "timestamp": "2026-01-15T12:00:00Z",
    }).encode()

    with pytest.raises(InvalidSignature):
        client.parse_webhook({}, body)
    with pytest.raises(InvalidSignature):
        client.parse_webhook({"X-ClickPesa-Signature": "00" * 32}, body)

    note = client.parse_webhook({"x-clickpesa-signature": sign_payload(WEBHOOK_SECRET, body)}, body)
    assert note.status == "successful"
    assert note.raw_status == "PAYMENT RECEIVED"
    assert note.provider_reference == "CP-1"
    assert note.idempotency_reference == "ORD-o1-1"
    assert note.amount == 25000
    assert note.occurred_at is not None


def test_push_status_mapping_defaults_to_pending():
    client, _ = _push({})
    assert client._map_status("completed") == "successful"
    assert client._map_status("REVERSED") == "failed"
    assert client._map_status("SOMETHING_NEW") == "pending"


# --- hosted checkout -------------------------------------------------------


def _hosted(routes: dict, **settings) -> tuple[HostedCheckoutClient, Recorder]:
    recorder = Recorder(routes)
    cfg = HostedProviderSettings(secret_key="FLWSECK_TEST", webhook_secret=WEBHOOK_SECRET, **settings)
    return HostedCheckoutClient(cfg, retry=FAST_RETRY, transport=httpx.MockTransport(recorder)), recorder


def _hosted_payment(**overrides) -> InitiatePayment:
    data = dict(
        amount=1050,
        currency="USD",
        idempotency_reference="SUB-s1-1700000000000",
        purpose=PaymentPurpose.SUBSCRIPTION_UPGRADE,
        description="Plan change",
        payer=PayerDetails(customer=Customer(email="seller@example.com", name="Seller")),
        return_url="https://shop.test/payments/callback?reference=SUB-s1-1700000000000",
    )
    data.update(overrides)
    return InitiatePayment(**data)


def test_hosted_requires_customer_email():
    client, _ = _hosted({})
    with pytest.raises(InvalidPayerHandle):
        client.validate_payer(PayerDetails(phone="0712345678"))
    with pytest.raises(InvalidPayerHandle):
        client.validate_payer(PayerDetails(customer=Customer(email="not-an-email")))


@pytest.mark.asyncio
async def test_hosted_initiate_returns_checkout_link():
    client, recorder = _hosted({
        "/payments": (200, {"status": "success", "data": {"link": "https://checkout.test/abc"}}),
    })

    ref = await client.initiate(_hosted_payment())

    assert ref.provider_reference == "SUB-s1-1700000000000"
    assert ref.checkout_url == "https://checkout.test/abc"
    (call,) = recorder.calls("/payments")
    assert call.headers["Authorization"] == "Bearer FLWSECK_TEST"
    body = json.loads(call.content)
    assert body["tx_ref"] == "SUB-s1-1700000000000"
    assert body["amount"] == 10.5
    assert body["redirect_url"].startswith("https://shop.test/")
    assert body["customer"]["email"] == "seller@example.com"
    await client.aclose()


@pytest.mark.asyncio
async def test_hosted_rejects_payouts_and_missing_link():
    client, _ = _hosted({"/payments": (200, {"status": "error", "message": "Invalid currency"})})
    with pytest.raises(ProviderRejected):
        await client.initiate(_hosted_payment(purpose=PaymentPurpose.WITHDRAWAL))
    with pytest.raises(ProviderRejected):
        await client.initiate(_hosted_payment())
    await client.aclose()


@pytest.mark.asyncio
async def test_hosted_verify_by_reference():
    client, recorder = _hosted({
        "/transactions/verify_by_reference": (
            200,
            {"status": "success", "data": {"status": "failed", "amount": 10.5, "currency": "USD", "processor_response": "Declined"}},
        ),
    })
    status = await client.check_status("SUB-s1-1")
    assert status.status == "failed"
    assert status.amount == 1050
    assert status.reason == "Declined"
    assert recorder.requests[0].url.params["tx_ref"] == "SUB-s1-1"
    await client.aclose()


def test_hosted_webhook_parsing():
    client, _ = _hosted({})
    body = json.dumps({
        "event": "charge.completed",
        "data": {"tx_ref": "SUB-s1-1", "status": "successful", "amount": 10.5, "currency": "USD"},
    }).encode()

    note = client.parse_webhook({"verif-hash": sign_payload(WEBHOOK_SECRET, body)}, body)
    assert note.status == "successful"
    assert note.provider_reference == "SUB-s1-1"
    assert note.amount == 1050

    with pytest.raises(InvalidSignature):
        client.parse_webhook({"verif-hash": "wrong"}, body)


@pytest.mark.asyncio
async def test_disbursement_read_timeout_is_sent_once_and_outcome_unknown():
    def slow(request):
        raise httpx.ReadTimeout("no response", request=request)

    client, recorder = _push({"/v1/disbursements": slow})

    with pytest.raises(ProviderOutcomeUnknown):
        await client.initiate(_collection(purpose=PaymentPurpose.WITHDRAWAL, idempotency_reference="WDR-w1-1"))
    assert len(recorder.calls("/v1/disbursements")) == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_push_server_error_after_send_is_not_retried():
    client, recorder = _push({
        "/ussd-push/preview": (200, {"activeMethods": []}),
        "/ussd-push": (502, {"message": "bad gateway"}),
    })

    with pytest.raises(ProviderOutcomeUnknown) as exc_info:
        await client.initiate(_collection())
    assert exc_info.value.details["provider_code"] == "502"
    assert len(recorder.calls("/ussd-push")) == 1
    await client.aclose()


@pytest.mark.asyncio
async def test_push_connect_error_is_retried_and_unavailable():
    def refused(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, recorder = _push({
        "/ussd-push/preview": (200, {"activeMethods": []}),
        "/ussd-push": refused,
    })

    with pytest.raises(ProviderUnavailable):
        await client.initiate(_collection())
    assert len(recorder.calls("/ussd-push")) == FAST_RETRY["max"] + 1
    await client.aclose()


@pytest.mark.asyncio
async def test_hosted_checkout_read_error_is_outcome_unknown():
    def dropped(request):
        raise httpx.ReadError("connection reset", request=request)

    client, recorder = _hosted({"/payments": dropped})

    with pytest.raises(ProviderOutcomeUnknown):
        await client.initiate(_hosted_payment())
    assert len(recorder.calls("/payments")) == 1
    await client.aclose()
