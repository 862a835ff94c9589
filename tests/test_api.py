"""HTTP surface tests against the ASGI app."""

from __future__ import annotations

import json
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio

from billing_engine.config import EngineSettings
from billing_engine.services.engine import BillingEngine
from billing_engine.services.webhooks import compute_signature
from billing_engine.web.app import create_app

from factories import NOW, make_subscription, make_user

SECRET = "whsec_test"
ADMIN_TOKEN = "admin-secret"


@pytest_asyncio.fixture
async def client(database):
    settings = EngineSettings(webhook={"secret": SECRET}, admin_token=ADMIN_TOKEN)
    engine = BillingEngine(database=database, settings=settings)
    app = create_app(engine=engine, settings=settings)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://billing.test") as http:
        yield http


def _signed(payload: dict, secret: str = SECRET) -> tuple[bytes, dict]:
    body = json.dumps(payload).encode("utf-8")
    return body, {
        "X-Webhook-Signature": compute_signature(secret, body),
        "Content-Type": "application/json",
    }


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(client):
    body, headers = _signed({"event_id": "evt_1"}, secret="wrong")

    response = await client.post("/webhooks/billing", content=body, headers=headers)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "invalid_signature"


@pytest.mark.asyncio
async def test_webhook_rejects_malformed_envelope(client):
    body, headers = _signed({"event_type": "payment.succeeded"})

    response = await client.post("/webhooks/billing", content=body, headers=headers)

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_webhook_acknowledges_and_deduplicates(client, session):
    user = await make_user(session)
    await make_subscription(session, user)
    body, headers = _signed(
        {
            "event_id": "evt_cancel",
            "event_type": "subscription.cancelled",
            "payload_timestamp": NOW.isoformat(),
            "payload": {"user_id": user.id},
        }
    )

    first = await client.post("/webhooks/billing", content=body, headers=headers)
    second = await client.post("/webhooks/billing", content=body, headers=headers)

    assert first.status_code == 200
    assert first.json() == {"received": True, "event_id": "evt_cancel", "outcome": "applied"}
    assert second.json()["outcome"] == "duplicate"


@pytest.mark.asyncio
async def test_webhook_acknowledges_failed_reconciliation(client):
    body, headers = _signed(
        {
            "event_id": "evt_orphan",
            "event_type": "payment.succeeded",
            "payload_timestamp": NOW.isoformat(),
            "payload": {"user_id": 999},
        }
    )

    response = await client.post("/webhooks/billing", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["outcome"] == "failed"


@pytest.mark.asyncio
async def test_quota_endpoint_returns_decisions(client, session):
    user = await make_user(session)

    first = await client.post(f"/users/{user.id}/usage/validations")
    second = await client.post(f"/users/{user.id}/usage/validations")

    assert first.json() == {"allowed": True, "remaining": 0, "reason": None}
    assert second.status_code == 200
    assert second.json() == {"allowed": False, "remaining": 0, "reason": "limit_reached"}


@pytest.mark.asyncio
async def test_quota_endpoint_unknown_user_and_resource(client):
    missing = await client.post("/users/77/usage/ideas")
    bad_kind = await client.post("/users/77/usage/podcasts")

    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "user_not_found"
    assert bad_kind.status_code == 422


@pytest.mark.asyncio
async def test_usage_summary_endpoint(client, session):
    user = await make_user(session, plan_id="pro_monthly")
    await client.post(f"/users/{user.id}/usage/ideas")

    response = await client.get(f"/users/{user.id}/usage")

    assert response.status_code == 200
    ideas = response.json()["resources"]["ideas"]
    assert ideas == {"used": 1, "limit": -1, "remaining": None}


@pytest.mark.asyncio
async def test_trial_endpoint(client, session):
    user = await make_user(session, trial_ends_at=NOW + timedelta(days=30))

    found = await client.get(f"/users/{user.id}/trial")
    missing = await client.get("/users/4040/trial")

    assert found.status_code == 200
    assert found.json()["plan_type"] == "free"
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_billing_history_endpoint_validates_page(client, session):
    user = await make_user(session)

    ok = await client.get(f"/users/{user.id}/billing-history")
    bad = await client.get(f"/users/{user.id}/billing-history", params={"page": 0})

    assert ok.status_code == 200
    assert ok.json() == []
    assert bad.status_code == 422


@pytest.mark.asyncio
async def test_admin_routes_require_token(client):
    missing = await client.post("/admin/webhooks/replay")
    wrong = await client.post("/admin/webhooks/replay", headers={"X-Admin-Token": "nope"})
    ok = await client.post("/admin/webhooks/replay", headers={"X-Admin-Token": ADMIN_TOKEN})

    assert missing.status_code == 403
    assert wrong.status_code == 403
    assert ok.status_code == 200
    assert ok.json() == {"results": []}


@pytest.mark.asyncio
async def test_admin_expire_sweep(client, session):
    user = await make_user(session)
    await make_subscription(
        session,
        user,
        current_period_end=NOW - timedelta(days=400),
        cancel_at_period_end=True,
    )

    response = await client.post(
        "/admin/subscriptions/expire", headers={"X-Admin-Token": ADMIN_TOKEN}
    )

    assert response.json() == {"expired": 1}
