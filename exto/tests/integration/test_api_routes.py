from __future__ import annotations

import base64
import json

import pytest
from httpx import ASGITransport, AsyncClient

from exto.apps.api.main import create_app
from exto.providers.llm.fake import FakeChatProvider
from exto.providers.payments.fake import FakePaymentGateway
from exto.services.container import build_services
from exto.tests.utils.factories import add_format, create_category, key_values_reply, png_bytes, unique_email


def _client(llm: FakeChatProvider | None = None):
    services = build_services(llm=llm or FakeChatProvider(), gateway=FakePaymentGateway())
    app = create_app(services=services)
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test"), services


async def _signed_up(client: AsyncClient) -> dict[str, str]:
    headers = {"X-User-Email": unique_email("api")}
    response = await client.post("/v1/auth/sign-up", json={"first_name": "Api", "last_name": "User"}, headers=headers)
    assert response.status_code == 201
    return headers


@pytest.mark.asyncio
async def test_health_is_enveloped() -> None:
    client, _ = _client()
    async with client:
        response = await client.get("/v1/health", headers={"X-Request-Id": "req-123"})

    assert response.status_code == 200
    body = response.json()
    assert body["data"] == {"status": "ok"}
    assert body["meta"] == {"request_id": "req-123", "api_version": "v1"}
    assert response.headers["X-Request-Id"] == "req-123"


@pytest.mark.asyncio
async def test_sign_up_login_and_me() -> None:
    client, _ = _client()
    async with client:
        headers = await _signed_up(client)
        me = await client.get("/v1/me", headers=headers)
        login = await client.post("/v1/auth/login", headers=headers)
        users = await client.get("/v1/users", headers=headers)
        duplicate = await client.post("/v1/auth/sign-up", json={"first_name": "Again"}, headers=headers)

    assert me.status_code == 200
    assert me.json()["data"]["user"]["email"] == headers["X-User-Email"]
    assert login.json()["data"]["role"] == "organization_admin"
    assert users.json()["data"]["total_count"] == 1
    assert duplicate.status_code == 409
    assert duplicate.json()["error"]["code"] == "CONFLICT"


@pytest.mark.asyncio
async def test_unknown_caller_is_unauthorized() -> None:
    client, _ = _client()
    async with client:
        response = await client.get("/v1/me", headers={"X-User-Email": unique_email("nobody")})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_UNAUTHORIZED"
    assert response.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_missing_auth_provider_is_rejected() -> None:
    client, _ = _client()
    async with client:
        response = await client.get("/v1/me", headers={"Authorization": "Bearer token"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "AUTH_PROVIDER_REQUIRED"


@pytest.mark.asyncio
async def test_invalid_and_unknown_ids() -> None:
    client, _ = _client()
    async with client:
        headers = await _signed_up(client)
        invalid = await client.get("/v1/categories/not-an-id", headers=headers)
        missing = await client.get(f"/v1/categories/{'0' * 32}", headers=headers)
        batch = await client.patch(f"/v1/batch/{'1' * 32}", headers=headers)

    assert invalid.status_code == 400
    assert invalid.json()["error"]["message"] == "Invalid category ID format"
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "NOT_FOUND"
    assert batch.status_code == 404


@pytest.mark.asyncio
async def test_validation_errors_use_error_envelope() -> None:
    client, _ = _client()
    async with client:
        headers = await _signed_up(client)
        response = await client.post("/v1/extract", json={"category_id": "x"}, headers=headers)

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "REQUEST_VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_scan_history_and_export_flow() -> None:
    llm = FakeChatProvider(
        key_values_reply(
            {
                "invoice_no": "API-1",
                "total": 12,
                "line_items": [{"description": "Pen", "qty": 3, "price": 4}],
            }
        )
    )
    client, services = _client(llm)
    category = await create_category(services, primary_field="invoice_no")
    await add_format(services, category.id, ["invoice_no", "total", "line_items"])
    async with client:
        headers = await _signed_up(client)
        batch = (await client.post("/v1/batch", headers=headers)).json()["data"]

        scan = await client.post(
            "/v1/scan/document",
            headers=headers,
            data={"category_id": category.id, "batch_id": batch["id"]},
            files={"file": ("Invoice.png", png_bytes(), "image/png")},
        )
        assert scan.status_code == 200
        result = scan.json()["data"]
        assert result["scan_code"] == "API-1"

        history = await client.get("/v1/scan-history", headers=headers)
        data = await client.get(f"/v1/scan-history/data/{result['scan_history_id']}", headers=headers)
        document = await client.get(f"/v1/scan-history/document/{result['scan_history_id']}", headers=headers)
        export = await client.get(f"/v1/export/{result['scan_history_id']}", headers=headers)
        records = await client.get(f"/v1/categories/{category.id}/data", headers=headers)
        closed = await client.patch(f"/v1/batch/{batch['id']}", headers=headers)
    await services.metering.drain()

    assert history.json()["data"]["total_count"] == 1
    assert data.json()["data"]["metadata"]["invoice_no"] == "API-1"
    assert document.status_code == 200
    assert document.content == png_bytes()
    assert export.status_code == 200
    assert export.headers["content-type"].startswith(
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    )
    assert export.content[:2] == b"PK"
    assert records.json()["data"]["items"][0]["id"] == result["category_data_id"]
    assert closed.json()["data"]["status"] == "Closed"


@pytest.mark.asyncio
async def test_extract_does_not_store_anything() -> None:
    llm = FakeChatProvider(key_values_reply({"invoice_no": "EXT-1"}, confidence=64))
    client, services = _client(llm)
    category = await create_category(services)
    await add_format(services, category.id, ["invoice_no"])
    async with client:
        headers = await _signed_up(client)
        response = await client.post(
            "/v1/extract",
            headers=headers,
            json={"category_id": category.id, "base64_image": base64.b64encode(png_bytes()).decode()},
        )
        history = await client.get("/v1/scan-history", headers=headers)

    assert response.status_code == 200
    body = response.json()["data"]
    assert body["extracted_data"] == {"invoice_no": "EXT-1"}
    assert body["confidence_scores"] == {"invoice_no": 64.0}
    assert body["average_confidence"] == 64.0
    assert history.json()["data"]["total_count"] == 0


@pytest.mark.asyncio
async def test_manual_record_routes() -> None:
    client, services = _client()
    category = await create_category(services)
    async with client:
        headers = await _signed_up(client)
        created = await client.post(
            f"/v1/categories/{category.id}/data",
            headers=headers,
            data={"data": json.dumps({"invoice_no": "M-1"})},
            files={"file": ("manual.png", png_bytes(), "image/png")},
        )
        record_id = created.json()["data"]["id"]
        updated = await client.patch(
            f"/v1/categories/{category.id}/data/{record_id}",
            headers=headers,
            json={"invoice_no": "M-2", "total": 1},
        )
        bad_json = await client.post(
            f"/v1/categories/{category.id}/data",
            headers=headers,
            data={"data": "{not json"},
            files={"file": ("manual.png", png_bytes(), "image/png")},
        )

    assert created.status_code == 201
    assert updated.json()["data"]["metadata"] == {"invoice_no": "M-2", "total": 1}
    assert bad_json.status_code == 400


@pytest.mark.asyncio
async def test_billing_routes() -> None:
    client, _ = _client()
    async with client:
        headers = await _signed_up(client)
        no_subscription = await client.get("/v1/subscription", headers=headers)
        setup = await client.post(
            "/v1/payment/setup", headers=headers, json={"full_name": "Api User", "country": "US"}
        )
        subscribe = await client.post("/v1/payment/subscribe", headers=headers)
        trial = await client.get("/v1/payment/free-trial", headers=headers)
        cancel = await client.post("/v1/payment/cancel", headers=headers)

    assert no_subscription.status_code == 404
    assert setup.json()["data"]["customer_id"].startswith("cus_")
    assert subscribe.status_code == 201
    assert subscribe.json()["data"]["status"] == "trialing"
    assert trial.json()["data"]["remaining_scans"] == 250
    assert cancel.json()["data"]["status"] == "canceled"


@pytest.mark.asyncio
async def test_delete_me_route() -> None:
    client, _ = _client()
    async with client:
        headers = await _signed_up(client)
        deleted = await client.delete("/v1/me", headers=headers)
        after = await client.get("/v1/me", headers=headers)

    assert len(deleted.json()["data"]["deleted_organization_ids"]) == 1
    assert after.status_code == 401


@pytest.mark.asyncio
async def test_ops_metrics_for_admins() -> None:
    client, _ = _client()
    async with client:
        headers = await _signed_up(client)
        await client.get("/v1/health")
        response = await client.get("/v1/ops/metrics", headers=headers)

    assert response.status_code == 200
    body = response.json()["data"]
    assert body["window_s"] == 300
    assert body["p95_latency_ms"]["all"] is not None
    assert isinstance(body["counters"], dict)
