from __future__ import annotations

import logging
from dataclasses import dataclass

from payments.exceptions import (
    CapacityError,
    ConflictError,
    NotFoundError,
    PlanEligibilityError,
    ValidationError,
)
from payments.services.family_store import FamilyStore
from payments.services.plans import family_capacity_for
from payments.services.records import FamilyMemberRecord, FamilyPlanRecord
from payments.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

DEFAULT_MEMBER_TYPE = "child"


@dataclass(frozen=True)
class FamilyOverview:
    plan: FamilyPlanRecord
    members: list[FamilyMemberRecord]

    @property
    def seats_left(self) -> int:
        return max(self.plan.max_members - len(self.members), 0)


class FamilyPlanManager:
    """Family plan lifecycle on behalf of an already-authenticated parent.

    Every check runs before the single write of an operation, so a failed
    call leaves nothing behind.
    """

    def __init__(self, subscriptions: SubscriptionStore, families: FamilyStore):
        self.subscriptions = subscriptions
        self.families = families

    async def create_family_plan(self, parent_user_id: str) -> tuple[str, bool]:
        """Return ``(family_plan_id, created)``; an existing plan is returned as-is."""
        subscription = await self.subscriptions.latest_for(parent_user_id)
        if subscription is None or not subscription.is_paid_active:
            raise PlanEligibilityError("An active paid subscription is required to create a family plan")

        existing = await self.families.plan_for_parent(parent_user_id)
        if existing is not None:
            return existing.id, False

        capacity = family_capacity_for(subscription.plan)
        if capacity is None:
            raise PlanEligibilityError(f"Plan {subscription.plan.value} does not include family sharing")

        plan, created = await self.families.create_plan(parent_user_id, subscription.id, capacity)
        if created:
            logger.info("family plan %s created for parent=%s capacity=%d", plan.id, parent_user_id, capacity)
        return plan.id, created

    async def add_member(
        self,
        parent_user_id: str,
        member_user_id: str,
        member_type: str = DEFAULT_MEMBER_TYPE,
    ) -> str:
        member_user_id = (member_user_id or "").strip()
        if not member_user_id:
            raise ValidationError("memberUserId is required")
        if member_user_id == parent_user_id:
            raise ValidationError("A parent cannot add themselves as a family member")

        plan = await self.families.plan_for_parent(parent_user_id)
        if plan is None:
            raise NotFoundError("No family plan found")

        active = await self.families.count_active_members(parent_user_id)
        if active >= plan.max_members:
            raise CapacityError(f"Family plan is full ({plan.max_members} members)")

        if await self.families.active_membership_for(member_user_id) is not None:
            raise ConflictError("User is already a member of a family plan")

        member = await self.families.add_member(plan, member_user_id, member_type or DEFAULT_MEMBER_TYPE)
        logger.info("family member %s added to parent=%s", member.id, parent_user_id)
        return member.id

    async def remove_member(self, parent_user_id: str, member_id: str) -> None:
        # scoped to the parent: someone else's member id is simply not found
        removed = await self.families.mark_removed(parent_user_id, member_id)
        if not removed:
            raise NotFoundError("Family member not found")
        logger.info("family member %s removed by parent=%s", member_id, parent_user_id)

    async def get_family(self, parent_user_id: str) -> FamilyOverview:
        plan = await self.families.plan_for_parent(parent_user_id)
        if plan is None:
            raise NotFoundError("No family plan found")
        members = await self.families.active_members(parent_user_id)
        return FamilyOverview(plan=plan, members=members)
