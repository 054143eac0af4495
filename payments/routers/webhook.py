from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from payments.dependencies import get_stripe_service, get_webhook_applier
from payments.services.stripe_service import StripeService
from payments.services.webhook_applier import WebhookEventApplier, parse_envelope

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    applier: WebhookEventApplier = Depends(get_webhook_applier),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    payload = await request.body()

    if stripe_service.verifies_webhooks:
        stripe_service.verify_webhook_signature(payload, request.headers.get("stripe-signature"))
    else:
        logger.warning("STRIPE_WEBHOOK_SECRET not set; accepting unsigned webhook")

    # malformed bodies are rejected here, before any dispatch
    envelope = parse_envelope(payload)
    result = await applier.apply(envelope)
    return result.to_dict()
