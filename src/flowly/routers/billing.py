from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from ..auth import get_current_profile
from ..billing import BillingConfig, BillingError, BillingService, WebhookVerificationError
from ..models import ProfileEntity
from ..repositories import Repository, get_repository
from ..schemas import CheckoutRequest, SessionUrl
from ..settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/billing",
    tags=["billing"],
)

# Stripe calls the webhook directly, so it is mounted without the basic-auth guard.
webhook_router = APIRouter(
    prefix="/api/v1/billing",
    tags=["billing"],
)


# PUBLIC_INTERFACE
def get_billing_service() -> BillingService:
    """
    Dependency returning the Stripe billing service.

    Raises:
        HTTPException(503) when no Stripe secret key is configured.
    """
    config = BillingConfig.from_settings(get_settings())
    if config is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Billing is not configured")
    return BillingService(config)


# PUBLIC_INTERFACE
@router.post(
    "/checkout",
    response_model=SessionUrl,
    summary="Start Checkout",
    description="Create a subscription checkout session and return the URL to redirect the user to.",
)
def checkout(
    payload: CheckoutRequest,
    profile: ProfileEntity = Depends(get_current_profile),
    billing: BillingService = Depends(get_billing_service),
) -> SessionUrl:
    try:
        billing.resolve_price(payload.plan)
    except BillingError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    try:
        url = billing.create_checkout_session(profile["id"], payload.plan)
    except BillingError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e
    return SessionUrl(url=url)


# PUBLIC_INTERFACE
@router.post(
    "/portal",
    response_model=SessionUrl,
    summary="Open Billing Portal",
    description="Create a customer-portal session for the caller's existing subscription.",
)
def portal(
    profile: ProfileEntity = Depends(get_current_profile),
    repo: Repository = Depends(get_repository),
    billing: BillingService = Depends(get_billing_service),
) -> SessionUrl:
    subscription = repo.get_subscription(profile["id"])
    if not subscription or not subscription["stripe_customer_id"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No subscription found")
    try:
        url = billing.create_portal_session(subscription["stripe_customer_id"])
    except BillingError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e
    return SessionUrl(url=url)


# PUBLIC_INTERFACE
@webhook_router.post(
    "/webhook",
    summary="Stripe Webhook",
    description="Receive a signed Stripe event and synchronise subscription state and plan roles.",
    responses={400: {"description": "Signature verification failed"}},
)
async def webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None),
    repo: Repository = Depends(get_repository),
    billing: BillingService = Depends(get_billing_service),
) -> Dict[str, bool]:
    payload = await request.body()
    try:
        event = await run_in_threadpool(billing.construct_event, payload, stripe_signature)
    except WebhookVerificationError as e:
        logger.warning("Webhook signature verification failed: %s", e)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook signature verification failed",
        ) from e
    try:
        await run_in_threadpool(billing.apply_event, event, repo)
    except BillingError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e)) from e
    return {"received": True}
