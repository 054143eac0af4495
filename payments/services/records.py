"""Typed records returned across the store boundary."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from payments.exceptions import StorageError
from payments.models import FamilyMember, FamilyPlan, Plan, Subscription, SubscriptionStatus, epoch_now


@dataclass(frozen=True)
class SubscriptionRecord:
    id: Optional[str]
    user_id: str
    plan: Plan
    status: SubscriptionStatus
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    current_period_end: Optional[int] = None
    created_at: Optional[int] = None
    updated_at: Optional[int] = None

    @property
    def is_placeholder(self) -> bool:
        return self.id is None

    @property
    def is_active(self) -> bool:
        return self.status is SubscriptionStatus.active

    @property
    def is_paid_active(self) -> bool:
        return self.is_active and self.plan is not Plan.free

    @classmethod
    def placeholder(cls, user_id: str) -> "SubscriptionRecord":
        """Free tier for a user with no subscription row."""
        return cls(id=None, user_id=user_id, plan=Plan.free, status=SubscriptionStatus.active)

    @classmethod
    def from_row(cls, row: Subscription) -> "SubscriptionRecord":
        if not row.id or not row.user_id:
            raise StorageError(f"subscription row missing identity: id={row.id!r}")
        try:
            plan = Plan(row.plan)
            status = SubscriptionStatus(row.status)
        except ValueError as exc:
            raise StorageError(f"subscription {row.id} has invalid plan/status: {exc}") from exc
        return cls(
            id=row.id,
            user_id=row.user_id,
            plan=plan,
            status=status,
            stripe_customer_id=row.stripe_customer_id,
            stripe_subscription_id=row.stripe_subscription_id,
            current_period_end=row.current_period_end,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


@dataclass(frozen=True)
class FamilyPlanRecord:
    id: str
    subscription_id: str
    parent_user_id: str
    max_members: int
    created_at: int

    @classmethod
    def from_row(cls, row: FamilyPlan) -> "FamilyPlanRecord":
        if not row.id or not row.subscription_id or not row.parent_user_id:
            raise StorageError(f"family plan row missing identity: id={row.id!r}")
        if row.max_members is None or row.max_members < 0:
            raise StorageError(f"family plan {row.id} has invalid capacity {row.max_members!r}")
        return cls(
            id=row.id,
            subscription_id=row.subscription_id,
            parent_user_id=row.parent_user_id,
            max_members=row.max_members,
            created_at=row.created_at if row.created_at is not None else epoch_now(),
        )


@dataclass(frozen=True)
class FamilyMemberRecord:
    id: str
    subscription_id: str
    parent_user_id: str
    member_user_id: str
    member_type: str
    added_at: int
    removed_at: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self.removed_at is None

    @classmethod
    def from_row(cls, row: FamilyMember) -> "FamilyMemberRecord":
        if not row.id or not row.parent_user_id or not row.member_user_id:
            raise StorageError(f"family member row missing identity: id={row.id!r}")
        return cls(
            id=row.id,
            subscription_id=row.subscription_id,
            parent_user_id=row.parent_user_id,
            member_user_id=row.member_user_id,
            member_type=row.member_type or "child",
            added_at=row.added_at,
            removed_at=row.removed_at,
        )
