"""
Pytest configuration and fixtures.

Settings are read from the environment once per process, so the test
environment is pinned here before any application module is imported.
"""
import json
import os
import tempfile
import uuid
from typing import Any, AsyncGenerator

_DB_PATH = os.path.join(tempfile.gettempdir(), f"orders-test-{uuid.uuid4().hex}.db")

os.environ.update({
    "DATABASE_URL": f"sqlite+aiosqlite:///{_DB_PATH}",
    "DATABASE_NULL_POOL": "true",
    "MPESA_CONSUMER_KEY": "test-consumer-key",
    "MPESA_CONSUMER_SECRET": "test-consumer-secret",
    "MPESA_SHORT_CODE": "174379",
    "MPESA_PASS_KEY": "test-pass-key",
    "MPESA_CALLBACK_URL": "https://orders.example.com/payments/callback",
    "CALLBACK_LOOKUP_ATTEMPTS": "2",
    "CALLBACK_LOOKUP_BACKOFF_SECONDS": "0",
    "RATE_LIMIT_ENABLED": "false",
    "ADMIN_EMAIL": "ops@example.com",
    "LOG_LEVEL": "WARNING",
})

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from main import app  # noqa: E402
from shared.config.database import AsyncSessionLocal, Base, engine  # noqa: E402
from shared.config.settings import get_settings  # noqa: E402
from services.notification_service.dependencies import get_email_sink  # noqa: E402
from services.payment_service.dependencies import get_gateway  # noqa: E402
from services.payment_service.gateway import MpesaGateway  # noqa: E402


class FakeDaraja:
    """Scripted Daraja endpoints served through httpx.MockTransport."""

    def __init__(self):
        self.token_calls = 0
        self.token_requests = []
        self.token_status = 200
        self.token_body: Any = {"access_token": "test-token", "expires_in": "3599"}
        self.token_error = None
        self.push_requests = []
        self.push_status = 200
        self.push_body: Any = None
        self.push_error = None
        self._accepted = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/v1/generate":
            self.token_calls += 1
            self.token_requests.append(request)
            if self.token_error is not None:
                raise self.token_error
            return httpx.Response(self.token_status, json=self.token_body)

        if request.url.path == "/mpesa/stkpush/v1/processrequest":
            self.push_requests.append({
                "headers": dict(request.headers),
                "json": json.loads(request.content),
            })
            if self.push_error is not None:
                raise self.push_error
            if self.push_body is not None:
                return httpx.Response(self.push_status, json=self.push_body)
            self._accepted += 1
            return httpx.Response(200, json={
                "MerchantRequestID": f"29115-{self._accepted}",
                "CheckoutRequestID": f"ws_CO_{self._accepted:04d}",
                "ResponseCode": "0",
                "ResponseDescription": "Success. Request accepted for processing",
                "CustomerMessage": "Success. Request accepted for processing",
            })

        return httpx.Response(404, json={"errorMessage": "not found"})


class RecordingEmailSink:
    def __init__(self):
        self.confirmations = []
        self.admin_alerts = []
        self.fail = False

    async def send_confirmation(self, order) -> bool:
        if self.fail:
            raise RuntimeError("email provider down")
        self.confirmations.append(order.id)
        return True

    async def send_admin_alert(self, order) -> bool:
        if self.fail:
            raise RuntimeError("email provider down")
        self.admin_alerts.append(order.id)
        return True

    async def aclose(self) -> None:
        pass


@pytest.fixture
def settings():
    return get_settings()


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, Any]:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session(database):
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def daraja() -> FakeDaraja:
    return FakeDaraja()


@pytest_asyncio.fixture
async def gateway(daraja, settings) -> AsyncGenerator[MpesaGateway, Any]:
    http = httpx.AsyncClient(transport=httpx.MockTransport(daraja.handler))
    yield MpesaGateway(settings, client=http)
    await http.aclose()


@pytest.fixture
def email_sink() -> RecordingEmailSink:
    return RecordingEmailSink()


@pytest_asyncio.fixture
async def client(database, gateway, email_sink) -> AsyncGenerator[httpx.AsyncClient, Any]:
    """HTTP client against the app with the gateway and email provider faked."""
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_email_sink] = lambda: email_sink
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def order_payload():
    return {
        "items": [{"name": "Wireless Earbuds", "price": 1500, "quantity": 1, "brand": "Crestrock"}],
        "total": 1500,
        "customerInfo": {
            "name": "Jane Wanjiku",
            "phone": "0712345678",
            "address": "Kimathi Street, Nairobi",
            "email": "jane@example.com",
        },
        "paymentMethod": "mpesa",
    }


@pytest.fixture
def create_order(client, order_payload):
    async def _create(**overrides) -> dict:
        payload = {**order_payload, **overrides}
        resp = await client.post("/orders", json=payload)
        assert resp.status_code == 201, resp.text
        return resp.json()["order"]
    return _create


@pytest.fixture
def push_payment(client):
    async def _push(order_id: str, phone: str = "0712345678", amount: float = 1500) -> httpx.Response:
        return await client.post(
            "/payments/push",
            json={"phoneNumber": phone, "amount": amount, "orderId": order_id},
        )
    return _push


@pytest.fixture
def pending_order(create_order, push_payment):
    """An order that has an accepted push request and awaits its callback."""
    async def _pending() -> dict:
        order = await create_order()
        resp = await push_payment(order["id"])
        assert resp.status_code == 200, resp.text
        return order
    return _pending


def build_callback(reference: str, result_code: int = 0, result_desc: str = "The service request is processed successfully.", items=None) -> dict:
    callback = {
        "MerchantRequestID": "29115-1",
        "CheckoutRequestID": reference,
        "ResultCode": result_code,
        "ResultDesc": result_desc,
    }
    if items is not None:
        callback["CallbackMetadata"] = {"Item": items}
    return {"Body": {"stkCallback": callback}}


@pytest.fixture
def success_callback():
    def _build(reference: str, receipt: str = "ABC123", amount: float = 1500, phone: int = 254712345678) -> dict:
        return build_callback(reference, 0, items=[
            {"Name": "MpesaReceiptNumber", "Value": receipt},
            {"Name": "Amount", "Value": amount},
            {"Name": "TransactionDate", "Value": 20240101120000},
            {"Name": "PhoneNumber", "Value": phone},
        ])
    return _build


@pytest.fixture
def failure_callback():
    def _build(reference: str, code: int = 1, desc: str = "Request cancelled by user") -> dict:
        return build_callback(reference, code, desc)
    return _build
