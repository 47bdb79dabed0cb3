import pytest

pytestmark = pytest.mark.asyncio

BUYER = {"X-User-Id": "buyer-1"}


async def _order(client, event_id: str, quantity: int = 2):
    r = await client.post("/orders", json={"event_id": event_id, "quantity": quantity}, headers=BUYER)
    assert r.status_code == 201, r.text
    return r.json()


async def test_webhook_always_acknowledges_with_200(client):
    """
    场景：未知 external_id / 畸形 payload
    期望：HTTP 200，success 表示是否处理成功，data.status 给出原因
    """
    r = await client.post("/payments/webhook", json={"external_id": "PAY-NOPE", "status": "PAID"})
    assert r.status_code == 200
    assert r.json()["success"] is True
    assert r.json()["data"]["status"] == "ignored"

    r = await client.post("/payments/webhook", json={"foo": "bar"})
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "ignored"


async def test_webhook_paid_flow_and_tickets(client, make_event):
    """
    场景：下单 → 渠道 PAID 回调 → 查票 → 检票
    期望：订单 paid，2 张票，检票后状态 used
    """
    ev = await make_event(quota=10)
    created = await _order(client, ev.id)
    ref = created["payment"]["reference_id"]
    order_id = created["order"]["id"]

    r = await client.post(
        "/payments/webhook",
        json={"external_id": ref, "status": "PAID", "payment_channel": "QRIS"},
        headers={"x-callback-token": "ignored-in-mock"},
    )
    assert r.status_code == 200
    ack = r.json()
    assert ack["success"] is True
    assert ack["data"]["status"] == "applied"
    assert ack["data"]["order_status"] == "paid"

    again = await client.post("/payments/webhook", json={"external_id": ref, "status": "PAID"})
    assert again.json()["data"]["status"] == "duplicate"

    payment = (await client.get(f"/payments/reference/{ref}", headers=BUYER)).json()
    assert payment["status"] == "paid"
    assert payment["channel"] == "qris"

    tickets = await client.get(f"/orders/{order_id}/tickets", headers=BUYER)
    assert tickets.status_code == 200
    items = tickets.json()
    assert len(items) == 2
    assert {t["status"] for t in items} == {"active"}

    tid = items[0]["id"]
    valid = (await client.get(f"/tickets/{tid}/validate")).json()
    assert valid["valid"] is True

    checked = await client.post(f"/tickets/{tid}/check-in", headers={"X-User-Id": "gate-1"})
    assert checked.status_code == 200
    assert checked.json()["status"] == "used"

    twice = await client.post(f"/tickets/{tid}/check-in", headers={"X-User-Id": "gate-1"})
    assert twice.status_code == 422
    assert twice.json()["error_code"] == "ticket_not_active"


async def test_simulate_failed_expires_order(client, make_event):
    ev = await make_event(quota=10)
    created = await _order(client, ev.id, quantity=3)
    ref = created["payment"]["reference_id"]

    r = await client.post(f"/payments/simulate/{ref}", json={"status": "FAILED"}, headers=BUYER)

    assert r.status_code == 200
    assert r.json()["data"]["order_status"] == "expired"
    order = (await client.get(f"/orders/{created['order']['id']}", headers=BUYER)).json()
    assert order["status"] == "expired"


async def test_simulate_unknown_reference_is_404(client):
    r = await client.post("/payments/simulate/PAY-NOPE", json={"status": "PAID"}, headers=BUYER)
    assert r.status_code == 404
    assert r.json()["error_code"] == "payment_not_found"


async def test_payment_endpoints_check_ownership(client, make_event):
    ev = await make_event()
    ref = (await _order(client, ev.id))["payment"]["reference_id"]
    other = {"X-User-Id": "someone-else"}

    assert (await client.get(f"/payments/reference/{ref}", headers=other)).status_code == 403
    assert (await client.get(f"/payments/{ref}/check", headers=other)).status_code == 403
    assert (await client.post(f"/payments/{ref}/expire", headers=other)).status_code == 403
    assert (
        await client.post(f"/payments/simulate/{ref}", json={"status": "PAID"}, headers=other)
    ).status_code == 403
    # 未带用户头
    assert (await client.post(f"/payments/simulate/{ref}", json={"status": "PAID"})).status_code == 401


async def test_check_and_expire_invoice(client, make_event):
    ev = await make_event(quota=10)
    created = await _order(client, ev.id, quantity=4)
    ref = created["payment"]["reference_id"]

    snap = await client.get(f"/payments/{ref}/check", headers=BUYER)
    assert snap.status_code == 200
    assert snap.json()["provider_status"] == "PENDING"

    gone = await client.post(f"/payments/{ref}/expire", headers=BUYER)
    assert gone.status_code == 200
    assert gone.json()["data"]["payment_status"] == "expired"
    assert gone.json()["data"]["order_status"] == "expired"
