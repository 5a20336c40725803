"""
Billing Service - Stripe Integration
Checkout sessions with a free trial, promo codes, customer portal, and the
webhook handlers that keep profile subscription state in sync with Stripe.
"""
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import stripe

from backend.config import CHECKOUT_TIERS, DEFAULT_TIER, PRICE_IDS, TRIAL_CONFIG, get_daily_limit
from backend.core.errors import UpstreamFailure, ValidationError
from backend.utils.timezone import now_utc

logger = logging.getLogger(__name__)

stripe.api_key = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
APP_URL = os.getenv("APP_URL", "http://localhost:3000")


def _coupon_of(promotion_code) -> Optional[Dict[str, Any]]:
    # Newer API versions nest the coupon under "promotion" and may return only its id
    coupon = promotion_code.get("coupon") or (promotion_code.get("promotion") or {}).get("coupon")
    if isinstance(coupon, str):
        coupon = stripe.Coupon.retrieve(coupon)
    return coupon


def describe_discount(coupon: Dict[str, Any]) -> str:
    if coupon.get("percent_off"):
        return f"{coupon['percent_off']:g}% off"
    return f"${(coupon.get('amount_off') or 0) / 100:.2f} off"


def profile_tier(checkout_tier: Optional[str]) -> str:
    """Checkout tier id (starter/pro/elite) → profile tier; profile tiers pass through."""
    if checkout_tier in CHECKOUT_TIERS:
        return CHECKOUT_TIERS[checkout_tier]
    if checkout_tier in CHECKOUT_TIERS.values():
        return checkout_tier
    return DEFAULT_TIER


class BillingService:
    def __init__(self, db):
        self.db = db
        self.profiles = db["profiles"]

    # ------------------------------------------------------------------
    # Checkout & promo codes
    # ------------------------------------------------------------------

    def find_promotion_code(self, code: str):
        promotion_codes = stripe.PromotionCode.list(code=code, active=True, limit=1)
        return promotion_codes.data[0] if promotion_codes.data else None

    def validate_promo_code(self, code: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Check a promo code is active, unexpired and not exhausted.

        Stripe failures are reported as an invalid code, never raised.
        """
        now = now or now_utc()
        try:
            promo = self.find_promotion_code(code)
            if not promo:
                return {"valid": False, "message": "Invalid promo code"}

            coupon = _coupon_of(promo) or {}

            redeem_by = coupon.get("redeem_by")
            if redeem_by and datetime.fromtimestamp(redeem_by, tz=timezone.utc) < now:
                return {"valid": False, "message": "Promo code expired"}

            max_redemptions = coupon.get("max_redemptions")
            if max_redemptions and (promo.get("times_redeemed") or 0) >= max_redemptions:
                return {"valid": False, "message": "Promo code limit reached"}

            return {"valid": True, "discount": describe_discount(coupon)}
        except stripe.StripeError as e:
            logger.error("[Stripe] Error validating promo code: %s", e)
            return {"valid": False, "message": "Error validating code"}

    def create_checkout_session(
        self,
        user_id: str,
        email: str,
        tier: str,
        promo_code: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Subscription checkout with a free trial.

        Returns:
            checkout url and Stripe session id
        """
        if tier not in CHECKOUT_TIERS:
            raise ValidationError(f"Invalid tier: {tier}")
        price_id = PRICE_IDS.get(tier)
        if not price_id:
            raise ValidationError(f"No Stripe price configured for tier: {tier}")

        metadata = {"user_id": user_id, "tier": tier}
        params: Dict[str, Any] = {
            "customer_email": email,
            "client_reference_id": user_id,
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": f"{APP_URL}/dashboard?success=true",
            "cancel_url": f"{APP_URL}/pricing?canceled=true",
            "subscription_data": {
                "trial_period_days": TRIAL_CONFIG["duration_days"],
                "metadata": metadata,
            },
            "metadata": metadata,
        }

        try:
            if promo_code:
                promo = self.find_promotion_code(promo_code)
                if promo:
                    params["discounts"] = [{"promotion_code": promo["id"]}]
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            raise UpstreamFailure("stripe", f"Failed to create checkout: {e}") from e

        logger.info("[Stripe] Checkout session %s created for user %s (%s)", session.id, user_id, tier)
        return {"url": session.url, "session_id": session.id}

    def create_portal_session(self, customer_id: str) -> Dict[str, str]:
        try:
            session = stripe.billing_portal.Session.create(
                customer=customer_id,
                return_url=f"{APP_URL}/dashboard",
            )
        except stripe.StripeError as e:
            raise UpstreamFailure("stripe", f"Failed to create portal: {e}") from e
        return {"url": session.url}

    def cancel_subscription(self, subscription_id: str):
        """Cancel at period end; access continues until then."""
        try:
            return stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
        except stripe.StripeError as e:
            raise UpstreamFailure("stripe", f"Failed to cancel subscription: {e}") from e

    def create_promo_code(
        self,
        code: str,
        percent_off: Optional[float] = None,
        amount_off: Optional[float] = None,
        max_redemptions: Optional[int] = None,
        expires_at: Optional[datetime] = None,
    ):
        """Create a one-time coupon and a promotion code for it (amount_off in dollars)."""
        if not percent_off and not amount_off:
            raise ValidationError("Either percent_off or amount_off is required")

        coupon_params: Dict[str, Any] = {"duration": "once"}
        if percent_off:
            coupon_params["percent_off"] = percent_off
        else:
            coupon_params["amount_off"] = int(round(amount_off * 100))
            coupon_params["currency"] = "usd"
        if max_redemptions:
            coupon_params["max_redemptions"] = max_redemptions
        if expires_at:
            coupon_params["redeem_by"] = int(expires_at.timestamp())

        try:
            coupon = stripe.Coupon.create(**coupon_params)
            return stripe.PromotionCode.create(coupon=coupon.id, code=code.upper())
        except stripe.StripeError as e:
            raise UpstreamFailure("stripe", f"Failed to create promo code: {e}") from e

    def get_customer_by_email(self, email: str):
        try:
            customers = stripe.Customer.list(email=email, limit=1)
        except stripe.StripeError as e:
            logger.error("[Stripe] Error fetching customer: %s", e)
            return None
        return customers.data[0] if customers.data else None

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def construct_webhook_event(self, payload: bytes, signature: Optional[str]):
        if not signature:
            raise ValidationError("No signature")
        try:
            return stripe.Webhook.construct_event(payload, signature, STRIPE_WEBHOOK_SECRET)
        except ValueError as e:
            raise ValidationError("Invalid payload") from e
        except stripe.SignatureVerificationError as e:
            logger.error("[Webhook] Signature verification failed: %s", e)
            raise ValidationError("Webhook signature verification failed") from e

    def handle_webhook_event(self, event) -> Dict[str, Any]:
        handlers = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.updated": self._subscription_updated,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.payment_succeeded": self._payment_succeeded,
            "invoice.payment_failed": self._payment_failed,
        }
        event_type = event["type"]
        handler = handlers.get(event_type)
        if handler:
            handler(event["data"]["object"])
        return {"received": True, "event_type": event_type, "handled": handler is not None}

    def _checkout_completed(self, session):
        user_id = session.get("client_reference_id")
        if not user_id:
            logger.error("[Webhook] No user ID in session")
            return

        tier = profile_tier((session.get("metadata") or {}).get("tier"))
        self.profiles.update_one(
            {"user_id": user_id},
            {"$set": {
                "stripe_customer_id": session.get("customer"),
                "stripe_subscription_id": session.get("subscription"),
                "subscription_status": "trialing",
                "subscription_tier": tier,
                "daily_simulation_limit": get_daily_limit(tier),
                "trial_ends_at": (now_utc() + timedelta(days=TRIAL_CONFIG["duration_days"])).isoformat(),
            }},
        )
        logger.info("[Webhook] Checkout completed for user %s", user_id)

    def _subscription_updated(self, subscription):
        metadata = subscription.get("metadata") or {}
        user_id = metadata.get("user_id")
        if not user_id:
            logger.error("[Webhook] No user ID in subscription metadata")
            return

        tier = profile_tier(metadata.get("tier"))
        self.profiles.update_one(
            {"user_id": user_id},
            {"$set": {
                "subscription_status": subscription.get("status"),
                "subscription_tier": tier,
                "daily_simulation_limit": get_daily_limit(tier),
                "stripe_subscription_id": subscription.get("id"),
            }},
        )
        logger.info("[Webhook] Subscription updated for user %s: %s", user_id, subscription.get("status"))

    def _subscription_deleted(self, subscription):
        customer_id = subscription.get("customer")
        self.profiles.update_one(
            {"stripe_customer_id": customer_id},
            {"$set": {
                "subscription_status": "canceled",
                "subscription_tier": DEFAULT_TIER,
                "daily_simulation_limit": get_daily_limit(DEFAULT_TIER),
            }},
        )
        logger.info("[Webhook] Subscription canceled: %s", customer_id)

    def _payment_succeeded(self, invoice):
        customer_id = invoice.get("customer")
        self.profiles.update_one({"stripe_customer_id": customer_id}, {"$set": {"subscription_status": "active"}})
        logger.info("[Webhook] Payment succeeded: %s", customer_id)

    def _payment_failed(self, invoice):
        customer_id = invoice.get("customer")
        self.profiles.update_one({"stripe_customer_id": customer_id}, {"$set": {"subscription_status": "past_due"}})
        logger.info("[Webhook] Payment failed: %s", customer_id)
