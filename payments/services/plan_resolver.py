from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from payments.models import Plan, SubscriptionStatus
from payments.services.family_store import FamilyStore
from payments.services.plans import features_for
from payments.services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)


class PlanSource(str, Enum):
    direct = "direct"
    family = "family"
    default = "default"


@dataclass(frozen=True)
class EffectivePlan:
    user_id: str
    plan: Plan
    status: SubscriptionStatus
    source: PlanSource
    features: List[str] = field(default_factory=list)
    current_period_end: Optional[int] = None
    family_parent_user_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        out["plan"] = self.plan.value
        out["status"] = self.status.value
        out["source"] = self.source.value
        return out


class EffectivePlanResolver:
    """Which plan governs a user: own paid subscription, then family, then free."""

    def __init__(self, subscriptions: SubscriptionStore, families: FamilyStore):
        self.subscriptions = subscriptions
        self.families = families

    async def resolve(self, user_id: str) -> EffectivePlan:
        direct = await self.subscriptions.latest_for(user_id)
        if direct is not None and direct.is_paid_active:
            return EffectivePlan(
                user_id=user_id,
                plan=direct.plan,
                status=direct.status,
                source=PlanSource.direct,
                features=features_for(direct.plan),
                current_period_end=direct.current_period_end,
            )

        membership = await self.families.active_membership_for(user_id)
        if membership is not None:
            owner = await self.subscriptions.get(membership.subscription_id)
            if owner is not None and owner.is_active:
                return EffectivePlan(
                    user_id=user_id,
                    plan=owner.plan,
                    status=owner.status,
                    source=PlanSource.family,
                    features=features_for(owner.plan),
                    current_period_end=owner.current_period_end,
                    family_parent_user_id=membership.parent_user_id,
                )
            logger.debug("family link %s for user=%s has inactive owner subscription", membership.id, user_id)

        return EffectivePlan(
            user_id=user_id,
            plan=Plan.free,
            status=SubscriptionStatus.active,
            source=PlanSource.default,
            features=features_for(Plan.free),
        )
