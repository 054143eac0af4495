"""Apply Stripe billing events to subscription state.

Delivery is at-least-once and unordered across event kinds, so every
transition here is an idempotent upsert or a conditional update that
tolerates matching zero rows. Unknown event types are acknowledged.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payments.exceptions import StorageError, ValidationError
from payments.models import Plan, SubscriptionStatus, WebhookEvent, epoch_now
from payments.services.plans import parse_plan
from payments.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

DEFAULT_CHECKOUT_PLAN = Plan.pro

MAX_EPOCH_SECONDS = 2**63 - 1


# =========================
# Envelope
# =========================

class EventData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: Dict[str, Any]


class EventEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    type: str = Field(min_length=1)
    data: EventData

    @property
    def payload(self) -> Dict[str, Any]:
        return self.data.object


def parse_envelope(raw: Union[bytes, str, Mapping[str, Any]]) -> EventEnvelope:
    """Parse an untrusted webhook body into an event envelope.

    Raises ValidationError for anything that is not ``{type, data: {object}}``.
    """
    if isinstance(raw, (bytes, bytearray, str)):
        try:
            raw = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValidationError(f"webhook body is not valid JSON: {exc}") from exc

    if not isinstance(raw, Mapping):
        raise ValidationError("webhook body must be a JSON object")

    try:
        return EventEnvelope.model_validate(dict(raw))
    except PydanticValidationError as exc:
        raise ValidationError(f"malformed event envelope: {exc.errors()[0]['msg']}") from exc


# =========================
# Helpers
# =========================

def _safe_get_meta(obj: Mapping[str, Any]) -> Dict[str, str]:
    meta = obj.get("metadata") or {}
    if not isinstance(meta, Mapping):
        return {}
    out: Dict[str, str] = {}
    for k, v in meta.items():
        if v is None:
            continue
        out[str(k)] = str(v)
    return out


def _pick_first(*candidates: Any) -> Optional[str]:
    for c in candidates:
        if c is not None and str(c).strip():
            return str(c).strip()
    return None


def _customer_id(obj: Mapping[str, Any]) -> Optional[str]:
    # "customer" is an id unless the event was sent with it expanded
    customer = obj.get("customer")
    if isinstance(customer, Mapping):
        customer = customer.get("id")
    return _pick_first(customer)


def _expanded_id(value: Any) -> Optional[str]:
    if isinstance(value, Mapping):
        value = value.get("id")
    return _pick_first(value)


def _period_end(obj: Mapping[str, Any]) -> Optional[int]:
    """Epoch seconds from the payload, or None when absent or unusable."""
    period_end = obj.get("current_period_end")
    if period_end is None:
        # newer API versions carry the period on subscription items
        items = obj.get("items")
        data = items.get("data") if isinstance(items, Mapping) else None
        if isinstance(data, list) and data and isinstance(data[0], Mapping):
            period_end = data[0].get("current_period_end")
    if period_end is None or isinstance(period_end, bool):
        return None
    try:
        value = int(period_end)
    except (TypeError, ValueError, OverflowError):
        return None
    # must fit the BIGINT column
    if not 0 <= value <= MAX_EPOCH_SECONDS:
        return None
    return value


# =========================
# Processed-event ledger
# =========================

class ProcessedEventLedger:
    """Event ids already applied, so a redelivered event is acknowledged without re-running."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def seen(self, event_id: str) -> bool:
        try:
            res = await self.db.execute(select(WebhookEvent.id).where(WebhookEvent.id == event_id))
        except SQLAlchemyError as exc:
            logger.exception("event ledger lookup failed for %s", event_id)
            raise StorageError("event ledger lookup failed") from exc
        return res.scalar_one_or_none() is not None

    async def record(self, event_id: str, event_type: str) -> None:
        try:
            await self.db.execute(
                text(
                    "INSERT INTO webhook_events (id, type, processed_at) VALUES (:id, :type, :now) "
                    "ON CONFLICT (id) DO NOTHING"
                ),
                {"id": event_id, "type": event_type, "now": epoch_now()},
            )
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("event ledger insert failed for %s", event_id)
            raise StorageError("event ledger insert failed") from exc


# =========================
# Applier
# =========================

@dataclass(frozen=True)
class ApplyResult:
    event_type: str
    action: str
    rows_affected: int = 0
    duplicate: bool = False
    event_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"received": True, "type": self.event_type, "action": self.action}
        if self.duplicate:
            out["duplicate"] = True
        else:
            out["rows_affected"] = self.rows_affected
        return out


Handler = Callable[[EventEnvelope], Awaitable[ApplyResult]]


class WebhookEventApplier:
    def __init__(self, subscriptions: SubscriptionStore, ledger: Optional[ProcessedEventLedger] = None):
        self.subscriptions = subscriptions
        self.ledger = ledger
        self._handlers: Dict[str, Handler] = {
            CHECKOUT_COMPLETED: self._on_checkout_completed,
            SUBSCRIPTION_CREATED: self._on_subscription_changed,
            SUBSCRIPTION_UPDATED: self._on_subscription_changed,
            SUBSCRIPTION_DELETED: self._on_subscription_deleted,
            INVOICE_PAYMENT_SUCCEEDED: self._on_payment_succeeded,
            INVOICE_PAYMENT_FAILED: self._on_payment_failed,
        }

    async def apply(self, envelope: Union[EventEnvelope, bytes, str, Mapping[str, Any]]) -> ApplyResult:
        if not isinstance(envelope, EventEnvelope):
            envelope = parse_envelope(envelope)

        logger.info("processing webhook event type=%s id=%s", envelope.type, envelope.id)

        if envelope.id and self.ledger is not None and await self.ledger.seen(envelope.id):
            logger.info("webhook event %s already applied", envelope.id)
            return ApplyResult(envelope.type, "deduplicated", duplicate=True, event_id=envelope.id)

        handler = self._handlers.get(envelope.type, self._on_unhandled)
        result = await handler(envelope)

        if envelope.id and self.ledger is not None:
            await self.ledger.record(envelope.id, envelope.type)
        return result

    # -------------------------
    # Handlers
    # -------------------------

    async def _on_checkout_completed(self, event: EventEnvelope) -> ApplyResult:
        session = event.payload
        meta = _safe_get_meta(session)

        user_id = _pick_first(session.get("client_reference_id"), meta.get("user_id"))
        customer_id = _customer_id(session)
        subscription_id = _expanded_id(session.get("subscription"))

        if not user_id or not customer_id:
            logger.warning("checkout completion %s missing user id or customer id", event.id)
            return self._ignored(event, "missing_identity")

        plan = parse_plan(meta.get("plan")) if meta.get("plan") else DEFAULT_CHECKOUT_PLAN
        if plan is None:
            logger.warning("checkout completion %s has unknown plan %r", event.id, meta.get("plan"))
            return self._ignored(event, "unknown_plan")

        await self.subscriptions.upsert_from_checkout(user_id, customer_id, subscription_id, plan)
        logger.info("subscription upserted for user=%s plan=%s", user_id, plan.value)
        return ApplyResult(event.type, "upserted", rows_affected=1, event_id=event.id)

    async def _on_subscription_changed(self, event: EventEnvelope) -> ApplyResult:
        sub = event.payload
        customer_id = _customer_id(sub)
        if not customer_id:
            logger.warning("%s %s missing customer id", event.type, event.id)
            return self._ignored(event, "missing_customer")

        try:
            status = SubscriptionStatus(sub.get("status"))
        except ValueError:
            # unpaid, incomplete and friends have no counterpart here
            logger.info("%s for customer=%s has untracked status %r", event.type, customer_id, sub.get("status"))
            return self._ignored(event, "untracked_status")

        rows = await self.subscriptions.apply_status_change(customer_id, status, _period_end(sub))
        self._log_rows(event, customer_id, rows)
        return ApplyResult(event.type, "status_changed", rows_affected=rows, event_id=event.id)

    async def _on_subscription_deleted(self, event: EventEnvelope) -> ApplyResult:
        customer_id = _customer_id(event.payload)
        if not customer_id:
            logger.warning("%s %s missing customer id", event.type, event.id)
            return self._ignored(event, "missing_customer")

        rows = await self.subscriptions.mark_canceled(customer_id)
        self._log_rows(event, customer_id, rows)
        return ApplyResult(event.type, "canceled", rows_affected=rows, event_id=event.id)

    async def _on_payment_succeeded(self, event: EventEnvelope) -> ApplyResult:
        logger.info("payment succeeded invoice=%s", event.payload.get("id"))
        return ApplyResult(event.type, "noted", event_id=event.id)

    async def _on_payment_failed(self, event: EventEnvelope) -> ApplyResult:
        customer_id = _customer_id(event.payload)
        if not customer_id:
            logger.warning("%s %s missing customer id", event.type, event.id)
            return self._ignored(event, "missing_customer")

        rows = await self.subscriptions.mark_past_due(customer_id)
        self._log_rows(event, customer_id, rows)
        return ApplyResult(event.type, "past_due", rows_affected=rows, event_id=event.id)

    async def _on_unhandled(self, event: EventEnvelope) -> ApplyResult:
        logger.info("unhandled webhook event type %s", event.type)
        return self._ignored(event, "ignored")

    @staticmethod
    def _ignored(event: EventEnvelope, action: str) -> ApplyResult:
        return ApplyResult(event.type, action, event_id=event.id)

    @staticmethod
    def _log_rows(event: EventEnvelope, customer_id: str, rows: int) -> None:
        if rows == 0:
            # checkout for this customer has not been applied yet
            logger.info("%s matched no subscription for customer=%s", event.type, customer_id)
        else:
            logger.info("%s applied to %d row(s) for customer=%s", event.type, rows, customer_id)
