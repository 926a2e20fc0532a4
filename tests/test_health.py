import pytest

pytestmark = pytest.mark.integration


async def test_health_reports_database_and_gateway(client, daraja):
    resp = await client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "OK"
    assert body["database"]["status"] == "pass"
    assert body["mpesa"]["environment"] == "sandbox"
    assert body["mpesa"]["connectivity"] == "connected"
    assert body["mpesa"]["tokenValid"] is True
    assert body["mpesa"]["callbackEndpoint"] == "/payments/callback"
    assert body["environment"]["callbackUrl"] == "SET"
    assert daraja.token_calls == 1


async def test_health_without_probe_skips_the_gateway(client, daraja):
    resp = await client.get("/health", params={"probe": False})

    assert resp.json()["mpesa"]["connectivity"] == "skipped"
    assert daraja.token_calls == 0


async def test_gateway_auth_failure_degrades_health(client, daraja):
    daraja.token_status = 400
    daraja.token_body = {"errorMessage": "Invalid Authentication passed"}

    resp = await client.get("/health")

    body = resp.json()
    assert body["status"] == "DEGRADED"
    assert body["mpesa"]["connectivity"] == "error"
    assert body["mpesa"]["error"].startswith("M-Pesa auth failed")


async def test_metrics_are_exposed(client, create_order):
    await create_order()

    resp = await client.get("/metrics")

    assert resp.status_code == 200
    assert "orders_created_total" in resp.text
