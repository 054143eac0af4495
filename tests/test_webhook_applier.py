import json

import pytest

from payments.exceptions import StorageError, ValidationError
from payments.models import Plan, SubscriptionStatus
from payments.services.webhook_applier import WebhookEventApplier, parse_envelope
from tests.conftest import checkout_event, invoice_event, subscription_event


def test_parse_envelope_accepts_bytes():
    raw = json.dumps(checkout_event("u1", "cus_1")).encode()
    envelope = parse_envelope(raw)
    assert envelope.type == "checkout.session.completed"
    assert envelope.payload["customer"] == "cus_1"


@pytest.mark.parametrize(
    "raw",
    [
        b"not json",
        b"[]",
        json.dumps({"data": {"object": {}}}),
        json.dumps({"type": "invoice.paid"}),
        json.dumps({"type": "invoice.paid", "data": {"object": "nope"}}),
        json.dumps({"type": "", "data": {"object": {}}}),
    ],
)
def test_parse_envelope_rejects_malformed(raw):
    with pytest.raises(ValidationError):
        parse_envelope(raw)


@pytest.mark.asyncio
async def test_checkout_completion_twice_yields_one_subscription(applier, subscription_store):
    event = checkout_event("u1", "cus_1", plan="pro")

    await applier.apply(event)
    result = await applier.apply(event)

    assert result.action == "upserted"
    record = await subscription_store.current_for("u1")
    assert record.plan is Plan.pro
    assert record.status is SubscriptionStatus.active


@pytest.mark.asyncio
async def test_checkout_uses_metadata_user_id_and_default_plan(applier, subscription_store):
    event = checkout_event("u2", "cus_2", plan=None)
    del event["data"]["object"]["client_reference_id"]

    await applier.apply(event)

    record = await subscription_store.current_for("u2")
    assert record.plan is Plan.pro


@pytest.mark.asyncio
async def test_checkout_missing_customer_is_acknowledged_without_mutation(applier, subscription_store):
    event = checkout_event("u1", "cus_1")
    event["data"]["object"]["customer"] = None

    result = await applier.apply(event)

    assert result.action == "missing_identity"
    assert (await subscription_store.current_for("u1")).is_placeholder


@pytest.mark.asyncio
async def test_checkout_with_unknown_plan_is_ignored(applier, subscription_store):
    result = await applier.apply(checkout_event("u1", "cus_1", plan="platinum"))

    assert result.action == "unknown_plan"
    assert (await subscription_store.current_for("u1")).is_placeholder


@pytest.mark.asyncio
async def test_status_change_before_checkout_does_not_error(applier, subscription_store):
    early = await applier.apply(subscription_event("customer.subscription.updated", "cus_1", status="past_due"))
    assert early.rows_affected == 0

    await applier.apply(checkout_event("u1", "cus_1"))

    # the create applied last wins; the earlier past_due is not replayed
    record = await subscription_store.current_for("u1")
    assert record.status is SubscriptionStatus.active


@pytest.mark.asyncio
async def test_subscription_updated_sets_status_and_period(applier, subscription_store):
    await applier.apply(checkout_event("u1", "cus_1"))

    result = await applier.apply(
        subscription_event("customer.subscription.updated", "cus_1", status="trialing", period_end=1_900_000_000)
    )

    assert result.rows_affected == 1
    record = await subscription_store.current_for("u1")
    assert record.status is SubscriptionStatus.trialing
    assert record.current_period_end == 1_900_000_000


@pytest.mark.asyncio
async def test_period_end_read_from_subscription_items(applier, subscription_store):
    await applier.apply(checkout_event("u1", "cus_1"))
    event = subscription_event("customer.subscription.created", "cus_1", status="active")
    event["data"]["object"]["items"] = {"data": [{"current_period_end": 1_800_000_000}]}

    await applier.apply(event)

    assert (await subscription_store.current_for("u1")).current_period_end == 1_800_000_000


@pytest.mark.asyncio
async def test_untracked_status_is_ignored(applier, subscription_store):
    await applier.apply(checkout_event("u1", "cus_1"))

    result = await applier.apply(subscription_event("customer.subscription.updated", "cus_1", status="unpaid"))

    assert result.action == "untracked_status"
    assert (await subscription_store.current_for("u1")).status is SubscriptionStatus.active


@pytest.mark.asyncio
async def test_subscription_deleted_marks_canceled(applier, subscription_store):
    await applier.apply(checkout_event("u1", "cus_1"))

    result = await applier.apply(subscription_event("customer.subscription.deleted", "cus_1", status="canceled"))

    assert result.action == "canceled"
    assert (await subscription_store.current_for("u1")).status is SubscriptionStatus.canceled


@pytest.mark.asyncio
async def test_expanded_customer_object_is_accepted(applier, subscription_store):
    await applier.apply(checkout_event("u1", "cus_1"))
    event = subscription_event("customer.subscription.deleted", "cus_1")
    event["data"]["object"]["customer"] = {"id": "cus_1", "object": "customer"}

    await applier.apply(event)

    assert (await subscription_store.current_for("u1")).status is SubscriptionStatus.canceled


@pytest.mark.asyncio
async def test_invoice_events(applier, subscription_store):
    await applier.apply(checkout_event("u1", "cus_1"))

    succeeded = await applier.apply(invoice_event("invoice.payment_succeeded", "cus_1"))
    assert succeeded.action == "noted"
    assert (await subscription_store.current_for("u1")).status is SubscriptionStatus.active

    failed = await applier.apply(invoice_event("invoice.payment_failed", "cus_1"))
    assert failed.action == "past_due"
    assert (await subscription_store.current_for("u1")).status is SubscriptionStatus.past_due


@pytest.mark.asyncio
async def test_unknown_event_type_is_accepted(applier):
    result = await applier.apply({"type": "radar.early_fraud_warning.created", "data": {"object": {}}})
    assert result.action == "ignored"
    assert result.to_dict()["received"] is True


@pytest.mark.asyncio
async def test_redelivered_event_id_is_deduplicated(applier, subscription_store):
    event = checkout_event("u1", "cus_1", event_id="evt_1")
    await applier.apply(event)
    await applier.apply(subscription_event("customer.subscription.deleted", "cus_1"))

    replay = await applier.apply(event)

    assert replay.duplicate
    assert (await subscription_store.current_for("u1")).status is SubscriptionStatus.canceled


class _FailingStore:
    async def upsert_from_checkout(self, *args, **kwargs):
        raise StorageError("subscription store upsert_from_checkout failed")


@pytest.mark.asyncio
async def test_storage_error_propagates_for_redelivery():
    applier = WebhookEventApplier(_FailingStore())
    with pytest.raises(StorageError):
        await applier.apply(checkout_event("u1", "cus_1"))


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "fields",
    [
        {"items": {"data": {"current_period_end": 1_800_000_000}}},
        {"items": {"data": []}},
        {"current_period_end": float("inf")},
        {"current_period_end": 10**30},
        {"current_period_end": -5},
        {"current_period_end": "soon"},
        {"current_period_end": True},
    ],
)
async def test_unusable_period_end_keeps_stored_period(applier, subscription_store, fields):
    created = await subscription_store.upsert_from_checkout("u1", "cus_1", "sub_1", Plan.pro)
    event = subscription_event("customer.subscription.updated", "cus_1", status="past_due")
    event["data"]["object"].update(fields)

    result = await applier.apply(event)

    assert result.rows_affected == 1
    record = await subscription_store.current_for("u1")
    assert record.status is SubscriptionStatus.past_due
    assert record.current_period_end == created.current_period_end
