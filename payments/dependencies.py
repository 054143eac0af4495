"""Per-request construction of stores and services."""
from __future__ import annotations

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from payments.config import Settings
from payments.database import get_db
from payments.services.family_manager import FamilyPlanManager
from payments.services.family_store import FamilyStore
from payments.services.plan_resolver import EffectivePlanResolver
from payments.services.stripe_service import StripeService
from payments.services.subscription_store import SubscriptionStore
from payments.services.webhook_applier import ProcessedEventLedger, WebhookEventApplier


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_subscription_store(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
) -> SubscriptionStore:
    return SubscriptionStore(db, period_days=settings.checkout_period_days)


def get_family_store(db: AsyncSession = Depends(get_db)) -> FamilyStore:
    return FamilyStore(db)


def get_webhook_applier(
    db: AsyncSession = Depends(get_db),
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
) -> WebhookEventApplier:
    return WebhookEventApplier(subscriptions, ProcessedEventLedger(db))


def get_plan_resolver(
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
    families: FamilyStore = Depends(get_family_store),
) -> EffectivePlanResolver:
    return EffectivePlanResolver(subscriptions, families)


def get_family_manager(
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
    families: FamilyStore = Depends(get_family_store),
) -> FamilyPlanManager:
    return FamilyPlanManager(subscriptions, families)


def get_stripe_service(settings: Settings = Depends(get_app_settings)) -> StripeService:
    return StripeService(settings)
