from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from payments.dependencies import get_plan_resolver, get_stripe_service, get_subscription_store
from payments.exceptions import NotFoundError, ValidationError
from payments.models import Plan
from payments.security import get_caller_id, require_owner
from payments.services.plan_resolver import EffectivePlanResolver
from payments.services.plans import parse_plan
from payments.services.stripe_service import StripeService
from payments.services.subscription_store import SubscriptionStore

router = APIRouter(tags=["subscriptions"])


class EffectivePlanResponse(BaseModel):
    user_id: str
    plan: str
    status: str
    source: str
    features: List[str]
    current_period_end: Optional[int] = None
    family_parent_user_id: Optional[str] = None


class CheckoutRequest(BaseModel):
    userId: str = Field(min_length=1)
    plan: str = Field(min_length=1)
    successUrl: Optional[str] = None
    cancelUrl: Optional[str] = None


class CheckoutResponse(BaseModel):
    session_id: str
    url: Optional[str] = None


class CancelResponse(BaseModel):
    success: bool
    message: str


@router.get("/subscription/{user_id}", response_model=EffectivePlanResponse)
async def get_subscription(
    user_id: str,
    caller_id: str = Depends(get_caller_id),
    resolver: EffectivePlanResolver = Depends(get_plan_resolver),
):
    require_owner(caller_id, user_id)
    effective = await resolver.resolve(user_id)
    return EffectivePlanResponse(**effective.to_dict())


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    caller_id: str = Depends(get_caller_id),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    require_owner(caller_id, body.userId)

    plan = parse_plan(body.plan)
    if plan is None or plan is Plan.free:
        raise ValidationError("Invalid plan")

    session = await stripe_service.create_checkout_session(
        body.userId,
        plan,
        success_url=body.successUrl,
        cancel_url=body.cancelUrl,
    )
    return CheckoutResponse(session_id=session.id, url=session.url)


@router.post("/subscription/{user_id}/cancel", response_model=CancelResponse)
async def cancel_subscription(
    user_id: str,
    caller_id: str = Depends(get_caller_id),
    subscriptions: SubscriptionStore = Depends(get_subscription_store),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    require_owner(caller_id, user_id)

    # checked first so an unconfigured provider reports 501 regardless of state
    stripe_service.get_stripe_client()

    current = await subscriptions.latest_for(user_id)
    if current is None or not current.is_active or not current.stripe_subscription_id:
        raise NotFoundError("No active subscription")

    await stripe_service.cancel_at_period_end(current.stripe_subscription_id)
    # status flips when Stripe sends customer.subscription.deleted at period end
    return CancelResponse(success=True, message="Subscription will cancel at period end")
