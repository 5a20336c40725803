"""
Payment Routes - Stripe Integration
Promo validation, subscription checkout sessions and webhook events
"""
from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field

from backend.core.errors import NotFound
from backend.db.mongo import get_db
from backend.middleware.auth import get_current_user
from backend.services.billing_service import BillingService

router = APIRouter(prefix="/api/stripe", tags=["Payment"])


class ValidatePromoRequest(BaseModel):
    code: str = Field(..., min_length=3, max_length=50)


class CreateCheckoutRequest(BaseModel):
    """Request to create Stripe checkout session"""
    tier: Literal["starter", "pro", "elite"]
    promo_code: Optional[str] = None


def get_billing_service(db=Depends(get_db)) -> BillingService:
    return BillingService(db)


@router.post("/validate-promo")
def validate_promo(body: ValidatePromoRequest, billing: BillingService = Depends(get_billing_service)):
    return billing.validate_promo_code(body.code)


@router.post("/create-checkout")
def create_checkout(
    body: CreateCheckoutRequest,
    user: Dict[str, Any] = Depends(get_current_user),
    billing: BillingService = Depends(get_billing_service),
):
    """
    Create Stripe checkout session for a subscription with a 3-day trial

    Returns:
        url: Redirect user to this URL to complete payment
        session_id: Stripe session ID for tracking
    """
    return billing.create_checkout_session(
        user_id=user["user_id"],
        email=user["email"],
        tier=body.tier,
        promo_code=body.promo_code,
    )


@router.post("/create-portal")
def create_portal(
    user: Dict[str, Any] = Depends(get_current_user),
    billing: BillingService = Depends(get_billing_service),
):
    """Stripe customer portal for managing payment methods and invoices"""
    customer_id = user.get("stripe_customer_id")
    if not customer_id:
        customer = billing.get_customer_by_email(user["email"])
        customer_id = customer["id"] if customer else None
    if not customer_id:
        raise NotFound(f"No Stripe customer for user {user['user_id']}")
    return billing.create_portal_session(customer_id)


@router.post("/cancel-subscription")
def cancel_subscription(
    user: Dict[str, Any] = Depends(get_current_user),
    billing: BillingService = Depends(get_billing_service),
):
    """Cancel at period end; the subscription.updated webhook records the change"""
    subscription_id = user.get("stripe_subscription_id")
    if not subscription_id:
        raise NotFound(f"No active subscription for user {user['user_id']}")
    subscription = billing.cancel_subscription(subscription_id)
    return {
        "success": True,
        "cancel_at_period_end": subscription.get("cancel_at_period_end"),
        "current_period_end": subscription.get("current_period_end"),
    }


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    billing: BillingService = Depends(get_billing_service),
):
    """
    Stripe webhook handler

    Handles events:
    - checkout.session.completed: trial starts
    - customer.subscription.updated: status and tier sync
    - customer.subscription.deleted: back to starter, canceled
    - invoice.payment_succeeded / invoice.payment_failed: active / past_due
    """
    payload = await request.body()
    event = billing.construct_webhook_event(payload, stripe_signature)
    return billing.handle_webhook_event(event)
