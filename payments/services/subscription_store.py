from __future__ import annotations

import logging
import uuid
from typing import Optional

from sqlalchemy import select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from payments.exceptions import StorageError
from payments.models import Plan, Subscription, SubscriptionStatus, epoch_now
from payments.services.records import SubscriptionRecord

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 24 * 60 * 60

# created_at and current_period_end survive re-subscription unless they were never set
_UPSERT_FROM_CHECKOUT = text(
    """
    INSERT INTO subscriptions (id, user_id, stripe_customer_id, stripe_subscription_id, plan, status,
                               current_period_end, created_at, updated_at)
    VALUES (:id, :user_id, :cust_id, :sub_id, :plan, :status, :cpe, :now, :now)
    ON CONFLICT (user_id) DO UPDATE SET
      stripe_customer_id     = excluded.stripe_customer_id,
      stripe_subscription_id = excluded.stripe_subscription_id,
      plan                   = excluded.plan,
      status                 = excluded.status,
      current_period_end     = COALESCE(subscriptions.current_period_end, excluded.current_period_end),
      created_at             = COALESCE(subscriptions.created_at, excluded.created_at),
      updated_at             = excluded.updated_at
    """
)


class SubscriptionStore:
    """Subscription rows, one lifecycle per user. Rows are never deleted."""

    def __init__(self, db: AsyncSession, period_days: int = 30):
        self.db = db
        self.period_days = period_days

    async def upsert_from_checkout(
        self,
        user_id: str,
        stripe_customer_id: str,
        stripe_subscription_id: Optional[str],
        plan: Plan,
    ) -> SubscriptionRecord:
        now = epoch_now()
        params = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "cust_id": stripe_customer_id,
            "sub_id": stripe_subscription_id,
            "plan": Plan(plan).value,
            "status": SubscriptionStatus.active.value,
            "cpe": now + self.period_days * SECONDS_PER_DAY,
            "now": now,
        }
        await self._execute_and_commit(_UPSERT_FROM_CHECKOUT, params, op="upsert_from_checkout")

        record = await self.latest_for(user_id)
        if record is None:
            raise StorageError(f"subscription for user {user_id} missing after upsert")
        return record

    async def apply_status_change(
        self,
        stripe_customer_id: str,
        status: SubscriptionStatus,
        current_period_end: Optional[int] = None,
    ) -> int:
        """Set status (and period end when given) on every row of the customer.

        Returns the number of rows touched; zero is not an error since the
        checkout event for this customer may not have arrived yet.
        """
        values: dict[str, object] = {
            "status": SubscriptionStatus(status).value,
            "updated_at": epoch_now(),
        }
        if current_period_end is not None:
            values["current_period_end"] = int(current_period_end)

        stmt = (
            update(Subscription)
            .where(Subscription.stripe_customer_id == stripe_customer_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return await self._execute_and_commit(stmt, op="apply_status_change")

    async def mark_canceled(self, stripe_customer_id: str) -> int:
        return await self.apply_status_change(stripe_customer_id, SubscriptionStatus.canceled)

    async def mark_past_due(self, stripe_customer_id: str) -> int:
        return await self.apply_status_change(stripe_customer_id, SubscriptionStatus.past_due)

    async def latest_for(self, user_id: str) -> Optional[SubscriptionRecord]:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
            .limit(1)
        )
        row = await self._scalar(stmt, op="latest_for")
        return SubscriptionRecord.from_row(row) if row is not None else None

    async def current_for(self, user_id: str) -> SubscriptionRecord:
        record = await self.latest_for(user_id)
        return record if record is not None else SubscriptionRecord.placeholder(user_id)

    async def get(self, subscription_id: str) -> Optional[SubscriptionRecord]:
        row = await self._scalar(select(Subscription).where(Subscription.id == subscription_id), op="get")
        return SubscriptionRecord.from_row(row) if row is not None else None

    async def _scalar(self, stmt, *, op: str):
        # rows may have been changed by bulk statements since they were loaded
        stmt = stmt.execution_options(populate_existing=True)
        try:
            result = await self.db.execute(stmt)
            return result.scalars().first()
        except SQLAlchemyError as exc:
            logger.exception("subscription store %s failed", op)
            raise StorageError(f"subscription store {op} failed") from exc

    async def _execute_and_commit(self, stmt, params: Optional[dict] = None, *, op: str) -> int:
        try:
            result = await self.db.execute(stmt, params or {})
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.exception("subscription store %s failed", op)
            raise StorageError(f"subscription store {op} failed") from exc
        return result.rowcount or 0
