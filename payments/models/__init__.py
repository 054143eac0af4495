from payments.models.subscription import Plan, Subscription, SubscriptionStatus, epoch_now
from payments.models.family import FamilyMember, FamilyPlan
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "Plan",
    "Subscription",
    "SubscriptionStatus",
    "FamilyPlan",
    "FamilyMember",
    "WebhookEvent",
    "epoch_now",
]
