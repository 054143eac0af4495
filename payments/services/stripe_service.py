from __future__ import annotations

import logging
from typing import Any, Optional

import stripe

from payments.config import Settings
from payments.exceptions import ProviderError, ProviderNotConfigured, ValidationError
from payments.models import Plan
from payments.services.plans import price_id_for

logger = logging.getLogger(__name__)


class StripeService:
    """Thin wrapper over the Stripe SDK, built per request from settings."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._stripe_client: Optional[stripe.StripeClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.stripe_secret_key)

    def get_stripe_client(self) -> stripe.StripeClient:
        if not self.is_configured:
            raise ProviderNotConfigured("Stripe not configured")
        if self._stripe_client is None:
            self._stripe_client = stripe.StripeClient(
                self.settings.stripe_secret_key,
                http_client=stripe.HTTPXClient(),
            )
        return self._stripe_client

    async def create_checkout_session(
        self,
        user_id: str,
        plan: Plan,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> Any:
        price_id = price_id_for(plan, self.settings)
        if not price_id:
            raise ValidationError(f"Plan {plan.value} cannot be purchased")

        client = self.get_stripe_client()
        try:
            return await client.checkout.sessions.create_async(
                params={
                    "mode": "subscription",
                    "line_items": [{"price": price_id, "quantity": 1}],
                    "success_url": success_url or self.settings.checkout_success_url,
                    "cancel_url": cancel_url or self.settings.checkout_cancel_url,
                    "client_reference_id": user_id,
                    "metadata": {"user_id": user_id, "plan": plan.value},
                }
            )
        except stripe.StripeError as exc:
            logger.error("checkout session creation failed for user=%s: %s", user_id, exc)
            raise ProviderError("Failed to create checkout session") from exc

    async def cancel_at_period_end(self, stripe_subscription_id: str) -> Any:
        client = self.get_stripe_client()
        try:
            return await client.subscriptions.update_async(
                stripe_subscription_id,
                params={"cancel_at_period_end": True},
            )
        except stripe.StripeError as exc:
            logger.error("cancel failed for subscription=%s: %s", stripe_subscription_id, exc)
            raise ProviderError("Failed to cancel subscription") from exc

    @property
    def verifies_webhooks(self) -> bool:
        return bool(self.settings.stripe_webhook_secret)

    def verify_webhook_signature(self, payload: bytes, sig_header: Optional[str]) -> None:
        """Check the stripe-signature header against STRIPE_WEBHOOK_SECRET."""
        if not sig_header:
            raise ValidationError("Missing stripe-signature header")
        try:
            stripe.Webhook.construct_event(payload, sig_header, self.settings.stripe_webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            raise ValidationError(f"Webhook signature error: {exc}") from exc
