"""
Subscription billing through Stripe: checkout and customer-portal sessions,
and webhook-driven synchronisation of subscription state into the store.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import stripe

from .repositories import Repository
from .settings import Settings

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = {"active", "trialing"}


class BillingError(Exception):
    """A billing request could not be fulfilled."""


class WebhookVerificationError(BillingError):
    """The webhook payload or its signature is invalid."""


@dataclass(frozen=True)
class BillingConfig:
    secret_key: str
    webhook_secret: Optional[str]
    pro_price_id: Optional[str]
    basic_price_id: Optional[str]
    site_url: str

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["BillingConfig"]:
        """Build a config from settings, or None when Stripe is not configured."""
        if not settings.stripe_secret_key:
            return None
        return cls(
            secret_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            pro_price_id=settings.stripe_pro_price_id,
            basic_price_id=settings.stripe_basic_price_id,
            site_url=settings.site_url,
        )


def _as_dict(obj: Any) -> Dict[str, Any]:
    if isinstance(obj, Mapping):
        return {k: _plain(v) for k, v in obj.items()}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    raise BillingError(f"Unexpected Stripe payload type: {type(obj).__name__}")


def _plain(value: Any) -> Any:
    if isinstance(value, Mapping):
        return _as_dict(value)
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def _period_end(subscription: Mapping[str, Any]) -> Optional[datetime]:
    # Newer API versions report the period on the subscription items.
    ts = subscription.get("current_period_end")
    if ts is None:
        items = (subscription.get("items") or {}).get("data") or []
        ts = items[0].get("current_period_end") if items else None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None) if ts else None


def _plan_interval(subscription: Mapping[str, Any]) -> Optional[str]:
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        return None
    recurring = (items[0].get("price") or {}).get("recurring") or {}
    return recurring.get("interval")


class BillingService:
    """
    Thin wrapper over the Stripe SDK. ``gateway`` is the ``stripe`` module by
    default; every call passes the configured key explicitly.
    """

    def __init__(self, config: BillingConfig, gateway: Any = stripe) -> None:
        self._config = config
        self._gateway = gateway

    def resolve_price(self, plan: str) -> str:
        """Map a plan alias to its configured price id; other values are used as raw price ids."""
        if plan == "price_pro_monthly":
            price = self._config.pro_price_id
        elif plan == "price_basic_monthly":
            price = self._config.basic_price_id
        else:
            price = plan
        if not price:
            raise BillingError("Invalid price ID or Stripe price not configured")
        return price

    def create_checkout_session(self, user_id: str, plan: str) -> str:
        """Start a subscription checkout for ``user_id`` and return its URL."""
        price = self.resolve_price(plan)
        try:
            session = self._gateway.checkout.Session.create(
                api_key=self._config.secret_key,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[{"price": price, "quantity": 1}],
                success_url=f"{self._config.site_url}/dashboard?success=true",
                cancel_url=f"{self._config.site_url}/pricing",
                metadata={"userId": user_id},
                client_reference_id=user_id,
            )
        except stripe.StripeError as e:
            logger.exception("Stripe checkout error for user %s", user_id)
            raise BillingError("Failed to create checkout session") from e
        return session["url"]

    def create_portal_session(self, customer_id: str) -> str:
        """Return a customer-portal URL for managing an existing subscription."""
        try:
            session = self._gateway.billing_portal.Session.create(
                api_key=self._config.secret_key,
                customer=customer_id,
                return_url=f"{self._config.site_url}/dashboard",
            )
        except stripe.StripeError as e:
            logger.exception("Stripe portal error for customer %s", customer_id)
            raise BillingError("Failed to create portal session") from e
        return session["url"]

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify a webhook payload against its signature header.

        Raises:
            WebhookVerificationError: on a missing secret or signature, or a bad payload.
        """
        if not self._config.webhook_secret or not signature:
            raise WebhookVerificationError("Missing webhook signature or secret")
        try:
            event = self._gateway.Webhook.construct_event(payload, signature, self._config.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise WebhookVerificationError(str(e)) from e
        return _as_dict(event)

    def _retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        try:
            subscription = self._gateway.Subscription.retrieve(subscription_id, api_key=self._config.secret_key)
        except stripe.StripeError as e:
            logger.exception("Failed to retrieve subscription %s", subscription_id)
            raise BillingError("Failed to retrieve subscription") from e
        return _as_dict(subscription)

    def apply_event(self, event: Mapping[str, Any], repo: Repository) -> None:
        """Synchronise subscription state and plan roles from a verified event."""
        event_type = event.get("type")
        obj = (event.get("data") or {}).get("object") or {}

        if event_type == "checkout.session.completed":
            self._on_checkout_completed(obj, repo)
        elif event_type in ("customer.subscription.updated", "customer.subscription.deleted"):
            self._on_subscription_changed(obj, repo, deleted=event_type == "customer.subscription.deleted")
        else:
            logger.debug("Ignoring Stripe event %s", event_type)

    def _on_checkout_completed(self, session: Mapping[str, Any], repo: Repository) -> None:
        user_id = (session.get("metadata") or {}).get("userId")
        customer_id = session.get("customer")
        subscription_id = session.get("subscription")
        if not (user_id and customer_id and subscription_id):
            logger.warning("Checkout session %s lacks user, customer or subscription", session.get("id"))
            return

        subscription = self._retrieve_subscription(subscription_id)
        repo.ensure_profile(user_id)
        repo.upsert_subscription({
            "user_id": user_id,
            "stripe_customer_id": customer_id,
            "stripe_subscription_id": subscription_id,
            "status": subscription.get("status") or "active",
            "plan_type": _plan_interval(subscription),
            "current_period_end": _period_end(subscription),
        })
        repo.set_role(user_id, "pro_user")
        logger.info("User %s upgraded to pro via subscription %s", user_id, subscription_id)

    def _on_subscription_changed(self, subscription: Mapping[str, Any], repo: Repository, deleted: bool) -> None:
        existing = repo.find_subscription(subscription.get("id") or "")
        if existing is None:
            logger.warning("Received update for unknown subscription %s", subscription.get("id"))
            return

        status = "canceled" if deleted else (subscription.get("status") or existing["status"])
        existing["status"] = status
        existing["current_period_end"] = _period_end(subscription) or existing["current_period_end"]
        existing["plan_type"] = _plan_interval(subscription) or existing["plan_type"]
        repo.upsert_subscription(existing)

        role = "pro_user" if status in ACTIVE_STATUSES else "free_user"
        repo.set_role(existing["user_id"], role)
        logger.info(
            "Subscription %s is now %s; user %s set to %s",
            existing["stripe_subscription_id"], status, existing["user_id"], role,
        )
