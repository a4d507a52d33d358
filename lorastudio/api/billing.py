"""Billing routes: checkout sessions and payment processor webhooks."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from lorastudio.api.dependencies import get_billing_service
from lorastudio.auth.security import require_user
from lorastudio.db.models import User
from lorastudio.db.session import get_db
from lorastudio.schemas.schemas import CheckoutRequest, CheckoutResponse, WebhookResponse
from lorastudio.services.billing_service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Billing"])


@router.post(
    "/v1/billing/checkout",
    response_model=CheckoutResponse,
    summary="Start a subscription checkout",
)
async def create_checkout(
    body: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    service: BillingService = Depends(get_billing_service),
):
    url = await service.create_checkout_session(db, user, body.plan)
    return CheckoutResponse(url=url)


@router.post(
    "/v1/webhooks/stripe",
    response_model=WebhookResponse,
    summary="Payment processor events",
    description="Signed Stripe events. Authenticated by signature, not by user identity.",
)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    service: BillingService = Depends(get_billing_service),
):
    body = await request.body()
    signature = request.headers.get("stripe-signature", "")

    result = await service.ingest(db, body, signature)
    logger.info(f"Payment event {result.event_type}: {result.status}")
    return WebhookResponse(status=result.status)
