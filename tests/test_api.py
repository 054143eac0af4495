import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest

from payments.dependencies import get_stripe_service
from payments.exceptions import ProviderNotConfigured
from payments.security import create_access_token
from tests.conftest import checkout_event, make_settings, subscription_event


def _as(user_id):
    return {"X-User-ID": user_id}


async def _post_event(client, event, **kwargs):
    return await client.post("/webhook", content=json.dumps(event), **kwargs)


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["db"] == "ok"


@pytest.mark.asyncio
async def test_webhook_end_to_end(client):
    response = await client.get("/subscription/u1", headers=_as("u1"))
    assert response.json()["source"] == "default"

    response = await _post_event(client, checkout_event("u1", "cus_1", plan="pro"))
    assert response.status_code == 200
    assert response.json()["received"] is True

    body = (await client.get("/subscription/u1", headers=_as("u1"))).json()
    assert (body["plan"], body["source"]) == ("pro", "direct")

    await _post_event(client, subscription_event("customer.subscription.deleted", "cus_1"))
    body = (await client.get("/subscription/u1", headers=_as("u1"))).json()
    assert (body["plan"], body["source"]) == ("free", "default")


@pytest.mark.asyncio
async def test_webhook_malformed_payload_is_400(client):
    response = await client.post("/webhook", content=b"{not json")
    assert response.status_code == 400
    assert response.json()["error"] == "validation_error"


@pytest.mark.asyncio
async def test_webhook_unknown_type_is_acknowledged(client):
    response = await _post_event(client, {"type": "payout.paid", "data": {"object": {"id": "po_1"}}})
    assert response.status_code == 200
    assert response.json()["action"] == "ignored"


@pytest.mark.asyncio
async def test_subscription_requires_matching_identity(client):
    assert (await client.get("/subscription/u1")).status_code == 401
    assert (await client.get("/subscription/u1", headers=_as("u2"))).status_code == 401


@pytest.mark.asyncio
async def test_bearer_token_identity(app, client):
    app.state.settings = make_settings(JWT_SECRET="test-secret")
    token = create_access_token("u1", "test-secret")

    ok = await client.get("/subscription/u1", headers={"Authorization": f"Bearer {token}"})
    assert ok.status_code == 200

    bad = await client.get("/subscription/u1", headers={"Authorization": "Bearer garbage"})
    assert bad.status_code == 401


@pytest.mark.asyncio
async def test_family_flow(client):
    assert (await client.post("/family", headers=_as("parent"))).status_code == 403

    await _post_event(client, checkout_event("parent", "cus_parent", plan="enterprise"))

    created = await client.post("/family", headers=_as("parent"))
    assert created.status_code == 200
    assert created.json()["created"] is True

    added = await client.post("/family/members", json={"memberUserId": "kid"}, headers=_as("parent"))
    assert added.status_code == 200
    member_id = added.json()["id"]

    body = (await client.get("/subscription/kid", headers=_as("kid"))).json()
    assert (body["plan"], body["source"]) == ("enterprise", "family")

    family = (await client.get("/family", headers=_as("parent"))).json()
    assert family["max_members"] == 10
    assert [m["member_user_id"] for m in family["members"]] == ["kid"]

    assert (await client.delete(f"/family/members/{member_id}", headers=_as("intruder"))).status_code == 404
    assert (await client.delete(f"/family/members/{member_id}", headers=_as("parent"))).status_code == 200

    body = (await client.get("/subscription/kid", headers=_as("kid"))).json()
    assert body["source"] == "default"


@pytest.mark.asyncio
async def test_family_member_conflict_is_409(client):
    await _post_event(client, checkout_event("parentA", "cus_a", plan="pro"))
    await _post_event(client, checkout_event("parentB", "cus_b", plan="pro"))
    await client.post("/family", headers=_as("parentA"))
    await client.post("/family", headers=_as("parentB"))

    await client.post("/family/members", json={"memberUserId": "kid"}, headers=_as("parentA"))
    response = await client.post("/family/members", json={"memberUserId": "kid"}, headers=_as("parentB"))

    assert response.status_code == 409
    assert response.json()["error"] == "conflict"


@pytest.mark.asyncio
async def test_add_member_missing_body_is_400(client):
    response = await client.post("/family/members", json={}, headers=_as("parent"))
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_checkout_without_stripe_is_501(client):
    response = await client.post("/checkout", json={"userId": "u1", "plan": "pro"}, headers=_as("u1"))
    assert response.status_code == 501


@pytest.mark.asyncio
async def test_checkout_rejects_invalid_plan(client):
    response = await client.post("/checkout", json={"userId": "u1", "plan": "free"}, headers=_as("u1"))
    assert response.status_code == 400


class _FakeStripe:
    verifies_webhooks = False

    def __init__(self):
        self.calls = []

    async def create_checkout_session(self, user_id, plan, success_url=None, cancel_url=None):
        self.calls.append(("checkout", user_id, plan.value))
        return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.com/c/cs_test_1")

    def get_stripe_client(self):
        return object()

    async def cancel_at_period_end(self, stripe_subscription_id):
        self.calls.append(("cancel", stripe_subscription_id))


@pytest.mark.asyncio
async def test_checkout_and_cancel_with_stripe(app, client):
    fake = _FakeStripe()
    app.dependency_overrides[get_stripe_service] = lambda: fake

    response = await client.post("/checkout", json={"userId": "u1", "plan": "pro"}, headers=_as("u1"))
    assert response.status_code == 200
    assert response.json()["session_id"] == "cs_test_1"

    assert (await client.post("/subscription/u1/cancel", headers=_as("u1"))).status_code == 404

    await _post_event(client, checkout_event("u1", "cus_1", subscription_id="sub_live"))
    response = await client.post("/subscription/u1/cancel", headers=_as("u1"))
    assert response.status_code == 200
    assert ("cancel", "sub_live") in fake.calls


def _sign(payload: bytes, secret: str) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.mark.asyncio
async def test_webhook_signature_verified_when_secret_configured(app, client):
    app.state.settings = make_settings(STRIPE_WEBHOOK_SECRET="whsec_test")
    payload = json.dumps(checkout_event("u1", "cus_1", event_id="evt_1")).encode()

    assert (await client.post("/webhook", content=payload)).status_code == 400
    forged = await client.post("/webhook", content=payload, headers={"stripe-signature": _sign(payload, "wrong")})
    assert forged.status_code == 400

    signed = await client.post("/webhook", content=payload, headers={"stripe-signature": _sign(payload, "whsec_test")})
    assert signed.status_code == 200


def test_provider_not_configured_maps_to_501():
    assert ProviderNotConfigured().status_code == 501


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        '{"type": "customer.subscription.updated", "data": {"object": '
        '{"customer": "cus_1", "status": "active", "items": {"data": {"x": 1}}}}}',
        '{"type": "customer.subscription.updated", "data": {"object": '
        '{"customer": "cus_1", "status": "active", "current_period_end": 1e999}}}',
        '{"type": "customer.subscription.updated", "data": {"object": '
        '{"customer": "cus_1", "status": "active", "current_period_end": 1000000000000000000000000000000}}}',
    ],
)
async def test_webhook_odd_period_fields_are_acknowledged(client, body):
    await _post_event(client, checkout_event("u1", "cus_1"))

    response = await client.post("/webhook", content=body)

    assert response.status_code == 200
    assert response.json()["rows_affected"] == 1
