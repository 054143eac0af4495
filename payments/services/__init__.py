from payments.services.subscription_store import SubscriptionStore
from payments.services.family_store import FamilyStore
from payments.services.webhook_applier import WebhookEventApplier
from payments.services.plan_resolver import EffectivePlanResolver
from payments.services.family_manager import FamilyPlanManager
from payments.services.stripe_service import StripeService

__all__ = [
    "SubscriptionStore",
    "FamilyStore",
    "WebhookEventApplier",
    "EffectivePlanResolver",
    "FamilyPlanManager",
    "StripeService",
]
