import httpx
import pytest
from sqlalchemy.exc import OperationalError

from services.order_service.repository import OrderRepository
from services.payment_service.gateway import PushResult
from services.payment_service.schemas import PushRequest
from services.payment_service.service import PaymentService, round_amount

pytestmark = pytest.mark.integration


async def get_order(client, order_id):
    resp = await client.get(f"/orders/{order_id}")
    return resp.json()["order"]


async def order_notifications(client, order_id):
    resp = await client.get("/notifications", params={"orderId": order_id})
    return resp.json()["notifications"]


@pytest.mark.unit
@pytest.mark.parametrize("amount,expected", [(1500, 1500), (10.4, 10), (10.5, 11), (0.5, 1), (0.4, 0)])
def test_round_amount(amount, expected):
    assert round_amount(amount) == expected


async def test_push_moves_order_to_payment_pending(client, create_order, push_payment, daraja):
    order = await create_order()

    resp = await push_payment(order["id"], phone="+254 712 345 678")

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["orderId"] == order["id"]
    assert body["message"] == "Payment request sent. Check your phone to complete payment."
    assert body["data"]["CheckoutRequestID"] == "ws_CO_0001"

    assert daraja.push_requests[0]["json"]["PhoneNumber"] == "254712345678"
    assert daraja.push_requests[0]["json"]["Amount"] == 1500

    stored = await get_order(client, order["id"])
    assert stored["status"] == "payment_pending"
    assert stored["paymentReference"] == "ws_CO_0001"
    assert stored["merchantRequestId"] == "29115-1"


async def test_legacy_pending_payment_orders_can_be_pushed(client, create_order, push_payment, db_session):
    order = await create_order()
    await OrderRepository.update_status(db_session, order["id"], "pending_payment")

    resp = await push_payment(order["id"])

    assert resp.status_code == 200
    assert (await get_order(client, order["id"]))["status"] == "payment_pending"


async def test_unknown_order_is_rejected_before_the_gateway(client, push_payment, daraja):
    resp = await push_payment("ORD-0-missing")

    assert resp.status_code == 404
    assert resp.json()["message"] == "Order not found"
    assert daraja.token_calls == 0
    assert daraja.push_requests == []


async def test_invalid_phone_is_rejected_before_the_gateway(client, create_order, push_payment, daraja):
    order = await create_order()

    resp = await push_payment(order["id"], phone="12345")

    assert resp.status_code == 400
    assert resp.json()["field"] == "phoneNumber"
    assert "got 8" in resp.json()["message"]
    assert daraja.push_requests == []
    assert (await get_order(client, order["id"]))["status"] == "pending"


async def test_missing_phone_number(client, create_order, daraja):
    order = await create_order()

    resp = await client.post("/payments/push", json={"amount": 1500, "orderId": order["id"]})

    assert resp.status_code == 400
    assert resp.json()["field"] == "phoneNumber"
    assert daraja.push_requests == []


@pytest.mark.parametrize("amount", [0, -1])
async def test_non_positive_amount_is_rejected(client, create_order, push_payment, daraja, amount):
    order = await create_order()

    resp = await push_payment(order["id"], amount=amount)

    assert resp.status_code == 400
    assert resp.json()["field"] == "amount"
    assert daraja.push_requests == []


@pytest.mark.parametrize("literal", ["Infinity", "NaN"])
async def test_non_finite_amount_is_rejected(client, create_order, daraja, literal):
    order = await create_order()
    body = '{"phoneNumber": "0712345678", "amount": %s, "orderId": "%s"}' % (literal, order["id"])

    resp = await client.post("/payments/push", content=body, headers={"content-type": "application/json"})

    assert resp.status_code == 400
    assert resp.json()["field"] == "amount"
    assert daraja.push_requests == []
    assert (await get_order(client, order["id"]))["status"] == "pending"


async def test_no_transaction_is_held_across_the_gateway_call(create_order, db_session, settings):
    order = await create_order()
    seen = []

    class RecordingGateway:
        async def initiate_push(self, **kwargs):
            seen.append(db_session.in_transaction())
            return PushResult(
                checkout_request_id="ws_CO_0099",
                merchant_request_id="29115-99",
                response_description="Success. Request accepted for processing",
                raw={"ResponseCode": "0", "CheckoutRequestID": "ws_CO_0099"},
            )

    service = PaymentService(db_session, RecordingGateway(), settings, effects=None)
    resp = await service.initiate_push(PushRequest(phone_number="0712345678", amount=1500, order_id=order["id"]))

    assert seen == [False]
    assert resp.order_id == order["id"]
    stored = await OrderRepository.get_order(db_session, order["id"])
    assert stored.status == "payment_pending"
    assert stored.payment_reference == "ws_CO_0099"


async def test_amount_that_rounds_to_zero_is_rejected(client, create_order, push_payment, daraja):
    order = await create_order(total=0.4, items=[{"name": "Sticker", "price": 0.4, "quantity": 1}])

    resp = await push_payment(order["id"], amount=0.4)

    assert resp.status_code == 400
    assert resp.json()["message"] == "Valid amount is required (minimum 1 KSh)"
    assert daraja.push_requests == []


async def test_amount_must_match_order_total(client, create_order, push_payment, daraja):
    order = await create_order()

    resp = await push_payment(order["id"], amount=1)

    assert resp.status_code == 400
    assert resp.json()["field"] == "amount"
    assert "does not match order total" in resp.json()["message"]
    assert daraja.push_requests == []


async def test_gateway_rejection_is_surfaced(client, create_order, push_payment, daraja):
    order = await create_order()
    daraja.push_status = 400
    daraja.push_body = {"errorCode": "400.002.02", "errorMessage": "Bad Request - Invalid Amount"}

    resp = await push_payment(order["id"])

    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["message"] == "Bad Request - Invalid Amount"
    assert body["environment"] == "sandbox"
    assert "tip" in body

    assert (await get_order(client, order["id"]))["status"] == "pending"
    severities = [n["severity"] for n in await order_notifications(client, order["id"])]
    assert "error" in severities


async def test_gateway_timeout(client, create_order, push_payment, daraja):
    order = await create_order()
    daraja.push_error = httpx.ReadTimeout("timed out")

    resp = await push_payment(order["id"])

    assert resp.status_code == 500
    assert resp.json()["message"] == "No response from M-Pesa API. Please try again."
    assert (await get_order(client, order["id"]))["status"] == "pending"


async def test_auth_failure_stops_before_push(client, create_order, push_payment, daraja):
    order = await create_order()
    daraja.token_status = 400
    daraja.token_body = {"errorMessage": "Invalid Authentication passed"}

    resp = await push_payment(order["id"])

    assert resp.status_code == 500
    assert resp.json()["message"].startswith("M-Pesa auth failed")
    assert daraja.push_requests == []


async def test_reference_write_failure_is_distinct_from_gateway_errors(client, create_order, push_payment, monkeypatch):
    order = await create_order()

    async def broken_update(*args, **kwargs):
        raise OperationalError("UPDATE orders", {}, Exception("database is locked"))

    monkeypatch.setattr(OrderRepository, "update_status", staticmethod(broken_update))

    resp = await push_payment(order["id"])

    assert resp.status_code == 500
    body = resp.json()
    assert body["message"] == "Payment request was sent but the order could not be updated"
    assert body["checkout_request_id"] == "ws_CO_0001"


async def test_paid_order_cannot_be_pushed_again(client, pending_order, push_payment, success_callback, daraja):
    order = await pending_order()
    await client.post("/payments/callback", json=success_callback("ws_CO_0001"))

    resp = await push_payment(order["id"])

    assert resp.status_code == 400
    assert resp.json()["field"] == "orderId"
    assert len(daraja.push_requests) == 1


async def test_reinitiation_replaces_the_payment_reference(client, pending_order, push_payment, success_callback):
    order = await pending_order()

    resp = await push_payment(order["id"])
    assert resp.status_code == 200
    stored = await get_order(client, order["id"])
    assert stored["status"] == "payment_pending"
    assert stored["paymentReference"] == "ws_CO_0002"

    # The superseded attempt no longer matches anything
    stale = await client.post("/payments/callback", json=success_callback("ws_CO_0001"))
    assert stale.json()["resultCode"] == 0
    assert (await get_order(client, order["id"]))["status"] == "payment_pending"

    await client.post("/payments/callback", json=success_callback("ws_CO_0002"))
    assert (await get_order(client, order["id"]))["status"] == "paid"


async def test_callback_info(client):
    resp = await client.get("/payments/callback")

    assert resp.status_code == 200
    body = resp.json()
    assert body["url"] == "http://test/payments/callback"
    assert body["configuredCallbackUrl"] == "https://orders.example.com/payments/callback"
    assert body["requiredResponse"] == {"resultCode": 0, "resultDesc": "Accepted"}
