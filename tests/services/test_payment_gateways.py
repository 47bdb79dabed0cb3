import base64
import json
from decimal import Decimal

import httpx
import pytest

from ticketing.core.config import EngineConfig
from ticketing.domain.ports import PaymentIntentRequest, PaymentLineItem
from ticketing.services.errors import ErrorKind
from ticketing.services.payment_gateway import build_payment_gateway
from ticketing.services.payment_gateway_mock import MockPaymentGateway
from ticketing.services.payment_gateway_xendit import XenditPaymentGateway

CFG = EngineConfig(
    payment_mode="xendit",
    xendit_secret_key="xnd_development_secret",
    xendit_webhook_token="cb-token",
    xendit_api_base="https://api.xendit.test",
    admin_fee=Decimal("5000"),
    invoice_duration_seconds=3600,
)


def _request(**kw) -> PaymentIntentRequest:
    base = dict(
        reference_id="PAY-20260101-ABCDEFGHIJ",
        order_no="ORD-20260101-XYZ123",
        amount=Decimal("300000"),
        description="Ticket payment for Jakarta Jazz Night",
        payer_email="buyer@example.com",
        payment_method=None,
        items=[PaymentLineItem(name="Jakarta Jazz Night", quantity=2, price=Decimal("150000"), category="Music")],
    )
    base.update(kw)
    return PaymentIntentRequest(**base)


def _gateway(handler) -> XenditPaymentGateway:
    return XenditPaymentGateway(CFG, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_create_intent_posts_invoice_with_admin_fee():
    """
    场景：建发票
    期望：
      - POST /v2/invoices，Basic auth（secret key + 空密码）
      - amount = 订单总额 + 手续费，fees 单列
      - metadata 带 invoice id / 手续费 / 含费总额
    """
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "id": "inv_001",
                "invoice_url": "https://checkout.xendit.test/inv_001",
                "status": "PENDING",
                "expiry_date": "2026-01-01T01:00:00.000Z",
            },
        )

    res = await _gateway(handler).create_intent(_request())

    assert res.ok, res.error
    assert seen["method"] == "POST"
    assert seen["path"] == "/v2/invoices"
    assert seen["auth"] == "Basic " + base64.b64encode(b"xnd_development_secret:").decode()
    body = seen["body"]
    assert body["external_id"] == "PAY-20260101-ABCDEFGHIJ"
    assert body["amount"] == 305000
    assert body["fees"] == [{"type": "Admin Fee", "value": 5000}]
    assert body["invoice_duration"] == 3600
    assert body["currency"] == "IDR"
    assert body["items"][0] == {"name": "Jakarta Jazz Night", "quantity": 2, "price": 150000, "category": "Music"}

    intent = res.value
    assert intent.provider == "xendit"
    assert intent.redirect_url == "https://checkout.xendit.test/inv_001"
    assert intent.metadata["xenditInvoiceId"] == "inv_001"
    assert intent.metadata["adminFee"] == "5000"
    assert intent.metadata["totalWithFee"] == "305000"


@pytest.mark.asyncio
async def test_create_intent_without_email_omits_payer_email():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "inv_002", "invoice_url": "https://x.test/inv_002"})

    res = await _gateway(handler).create_intent(_request(payer_email=None))

    assert res.ok
    assert "payer_email" not in seen["body"]


@pytest.mark.asyncio
async def test_create_intent_http_error_maps_to_upstream():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error_code": "API_VALIDATION_ERROR"})

    res = await _gateway(handler).create_intent(_request())

    assert not res.ok
    assert res.error.kind is ErrorKind.UPSTREAM
    assert res.error.code == "payment_provider_error"


@pytest.mark.asyncio
async def test_create_intent_transport_error_maps_to_unreachable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    res = await _gateway(handler).create_intent(_request())

    assert res.error.kind is ErrorKind.UPSTREAM
    assert res.error.code == "payment_provider_unreachable"


@pytest.mark.asyncio
async def test_create_intent_incomplete_response_is_upstream_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "PENDING"})

    res = await _gateway(handler).create_intent(_request())

    assert res.error.code == "payment_provider_error"


@pytest.mark.asyncio
async def test_check_status_and_expire_use_invoice_id():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append((request.method, request.url.path))
        if request.method == "GET":
            return httpx.Response(
                200,
                json={
                    "id": "inv_9",
                    "status": "PAID",
                    "paid_at": "2026-01-01T00:30:00.000Z",
                    "payment_method": "BANK_TRANSFER",
                    "payment_channel": "BCA",
                },
            )
        return httpx.Response(200, json={"id": "inv_9", "status": "EXPIRED"})

    gw = _gateway(handler)
    meta = {"xenditInvoiceId": "inv_9"}

    snap = await gw.check_status("PAY-1", meta)
    gone = await gw.expire("PAY-1", meta)

    assert calls == [("GET", "/v2/invoices/inv_9"), ("POST", "/invoices/inv_9/expire!")]
    assert snap.value.provider_status == "PAID"
    assert snap.value.paid_at is not None and snap.value.paid_at.tzinfo is not None
    assert snap.value.payment_channel == "BCA"
    assert gone.value.provider_status == "EXPIRED"


@pytest.mark.asyncio
async def test_check_status_without_invoice_id():
    gw = _gateway(lambda request: httpx.Response(500))
    res = await gw.check_status("PAY-1", {})
    assert res.error.code == "invoice_id_missing"


def test_verify_callback_token():
    gw = XenditPaymentGateway(CFG)
    assert gw.verify_callback_token("cb-token") is True
    assert gw.verify_callback_token("cb-token-x") is False
    assert gw.verify_callback_token(None) is False
    assert gw.verify_callback_token("") is False


def test_verify_callback_token_without_configured_token_rejects():
    gw = XenditPaymentGateway(EngineConfig(payment_mode="xendit", xendit_secret_key="sk"))
    assert gw.verify_callback_token("anything") is False


def test_build_payment_gateway_by_mode():
    assert isinstance(build_payment_gateway(EngineConfig(payment_mode="mock")), MockPaymentGateway)
    assert isinstance(build_payment_gateway(CFG), XenditPaymentGateway)


@pytest.mark.asyncio
async def test_mock_gateway_simulate_shapes_payload():
    gw = MockPaymentGateway("http://testserver/")
    intent = (await gw.create_intent(_request(payment_method="QRIS"))).value
    assert intent.redirect_url == "http://testserver/mock-payment/PAY-20260101-ABCDEFGHIJ?method=QRIS"

    payload = gw.simulate(intent.reference_id, "paid")
    assert payload["external_id"] == intent.reference_id
    assert payload["status"] == "PAID"
    assert "paid_at" in payload
    assert (await gw.check_status(intent.reference_id)).value.provider_status == "PAID"

    with pytest.raises(ValueError):
        gw.simulate(intent.reference_id, "REFUNDED")
