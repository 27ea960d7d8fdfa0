from functools import wraps
from typing import Dict, Any, List
from urllib.parse import urljoin
import hashlib, json

import stripe
from flask import current_app
from flask_login import current_user
from sqlalchemy.exc import SQLAlchemyError

from billing_bridge.billing.entitlements import is_subscription_active
from billing_bridge.billing.errors import (
    AlreadyOnPlan,
    BillingError,
    DatastoreError,
    InactiveSubscription,
    InvalidPlanSelection,
    NoCustomer,
    NoSubscription,
    NotAuthenticated,
    PriceConfigurationError,
    ProviderError,
    SubscriptionAlreadyActive,
)
from billing_bridge.billing.plans import BillingPlan, get_billing_plans, get_plan_by_price_id, with_amount
from billing_bridge.extensions import db
from billing_bridge.services import profiles, stripe_client


def billing_action(fn):
    """
    Action boundary: every outcome is a result dict, never an exception.
    Success keys come from the action; failures are {"error", "code"}.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except BillingError as e:
            return e.to_result()
        except stripe.StripeError as e:
            current_app.logger.exception(
                "billing.%s.provider_failed", fn.__name__,
                extra={"user_id": getattr(current_user, "id", None)},
            )
            user_msg = getattr(e, "user_message", None) or str(e)
            return ProviderError(user_msg).to_result()
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception(
                "billing.%s.datastore_failed", fn.__name__,
                extra={"user_id": getattr(current_user, "id", None)},
            )
            return DatastoreError().to_result()
    return wrapper


def _require_user():
    if not getattr(current_user, "is_authenticated", False):
        raise NotAuthenticated()
    return current_user


def _absolute_url(path: str) -> str:
    base = (current_app.config.get("APP_BASE_URL") or "").rstrip("/") + "/"
    return urljoin(base, path.lstrip("/"))


def make_idempotency_key(*parts: Any) -> str:
    raw = "|".join(str(p) for p in parts)
    return "checkout:" + hashlib.sha256(raw.encode("utf-8")).hexdigest()[:32]


def _params_hash(d: Dict[str, Any]) -> str:
    # Stable across runs if params identical; changes when you change fields
    return hashlib.sha256(json.dumps(d, sort_keys=True, separators=(",", ":")).encode("utf-8")).hexdigest()[:16]


def _metadata(price_id: str, user_id) -> Dict[str, str]:
    return {"price_id": price_id, "user_id": str(user_id)}


def ensure_stripe_customer(user) -> str:
    """Return the user's Stripe customer id, creating and persisting one on first purchase."""
    profile = profiles.get_or_create_profile(user.id)
    if profile.stripe_customer_id:
        return profile.stripe_customer_id

    client = stripe_client.get_client()
    params: Dict[str, Any] = {"metadata": {"user_id": str(user.id)}}
    email = getattr(user, "email", None)
    if email:
        params["email"] = email
    customer = client.customers.create(params=params)

    profiles.set_customer_for_user(user.id, customer.id)
    current_app.logger.info(
        "billing.customer_created", extra={"user_id": user.id, "stripe_customer_id": customer.id}
    )
    return customer.id


def _require_plan(price_id: str, *, recurring: bool) -> BillingPlan:
    plan = get_plan_by_price_id(price_id)
    if not plan or plan.is_recurring != recurring:
        raise InvalidPlanSelection()
    return plan


@billing_action
def create_payment_intent(price_id: str) -> Dict[str, Any]:
    """One-time purchase via the embedded Payment Element. Returns {"client_secret"}."""
    user = _require_user()
    plan = _require_plan(price_id, recurring=False)
    customer_id = ensure_stripe_customer(user)

    client = stripe_client.get_client()
    price = stripe_client.as_dict(client.prices.retrieve(price_id))
    if (
        not price.get("unit_amount")
        or price.get("currency") != plan.currency
        or price.get("type") != "one_time"
    ):
        current_app.logger.error(
            "billing.price_mismatch",
            extra={"price_id": price_id, "currency": price.get("currency"), "type": price.get("type")},
        )
        raise PriceConfigurationError()

    intent = client.payment_intents.create(params={
        "amount": price["unit_amount"],
        "currency": price["currency"],
        "customer": customer_id,
        "automatic_payment_methods": {"enabled": True},
        "metadata": _metadata(price_id, user.id),
    })
    return {"client_secret": intent.client_secret}


@billing_action
def create_subscription(price_id: str) -> Dict[str, Any]:
    """
    Recurring purchase in "incomplete until paid" mode; the first invoice's
    payment intent is confirmed client-side with the returned secret.
    """
    user = _require_user()
    _require_plan(price_id, recurring=True)

    profile = profiles.get_profile_for_user(user.id)
    if profile and profile.stripe_subscription_id and is_subscription_active(profile.stripe_subscription_status):
        raise SubscriptionAlreadyActive()

    customer_id = ensure_stripe_customer(user)
    client = stripe_client.get_client()
    subscription = stripe_client.as_dict(client.subscriptions.create(params={
        "customer": customer_id,
        "items": [{"price": price_id}],
        "payment_behavior": "default_incomplete",
        "payment_settings": {"save_default_payment_method": "on_subscription"},
        "expand": ["latest_invoice.payment_intent"],
        "metadata": _metadata(price_id, user.id),
    }))

    invoice = subscription.get("latest_invoice")
    payment_intent = invoice.get("payment_intent") if isinstance(invoice, dict) else None
    if not isinstance(payment_intent, dict):
        raise ProviderError("Subscription payment could not be initialized.")

    return {
        "client_secret": payment_intent.get("client_secret"),
        "subscription_id": subscription.get("id"),
    }


@billing_action
def create_checkout_session(price_id: str) -> Dict[str, Any]:
    """Hosted Checkout variant. Returns {"url": <redirect_url>}."""
    user = _require_user()
    plan = get_plan_by_price_id(price_id)
    if not plan:
        raise InvalidPlanSelection()

    customer_id = ensure_stripe_customer(user)
    metadata = _metadata(price_id, user.id)
    params: Dict[str, Any] = {
        "mode": "payment" if plan.is_one_time else "subscription",
        "customer": customer_id,
        "line_items": [{"price": price_id, "quantity": 1}],
        "success_url": _absolute_url("billing?success=true"),
        "cancel_url": _absolute_url("billing?canceled=true"),
        "metadata": metadata,
    }
    # Webhooks read price_id off the intent/subscription, not the session
    if plan.is_one_time:
        params["payment_intent_data"] = {"metadata": metadata}
    else:
        params["subscription_data"] = {"metadata": metadata}

    idem = make_idempotency_key("checkout", "v1", user.id, price_id, _params_hash(params))
    session = stripe_client.get_client().checkout.sessions.create(
        params=params, options={"idempotency_key": idem}
    )
    url = getattr(session, "url", None)
    if not url:
        raise ProviderError("Could not create checkout session.")
    current_app.logger.info(
        "billing.checkout_session_created",
        extra={"user_id": user.id, "price_id": price_id, "session_id": getattr(session, "id", None)},
    )
    return {"url": url}


@billing_action
def get_billing_profile() -> Dict[str, Any]:
    user = _require_user()
    profile = profiles.get_profile_for_user(user.id)
    return {"profile": profile.to_dict() if profile else None}


@billing_action
def cancel_subscription() -> Dict[str, Any]:
    """Cancel at period end (never immediately). Returns the effective date."""
    user = _require_user()
    profile = profiles.get_profile_for_user(user.id)
    if not profile or not profile.stripe_subscription_id:
        raise NoSubscription()

    subscription = stripe_client.get_client().subscriptions.update(
        profile.stripe_subscription_id, params={"cancel_at_period_end": True}
    )
    return {
        "success": True,
        "cancel_at": stripe_client.to_iso(getattr(subscription, "cancel_at", None)),
    }


@billing_action
def update_subscription(new_price_id: str) -> Dict[str, Any]:
    """Swap the subscription's line item to another recurring price, prorated."""
    user = _require_user()
    target = get_plan_by_price_id(new_price_id)
    if not target or not target.is_recurring:
        raise InvalidPlanSelection("Invalid plan selection. Only subscription plans are supported.")

    profile = profiles.get_profile_for_user(user.id)
    if not profile or not profile.stripe_subscription_id:
        raise NoSubscription()
    if not is_subscription_active(profile.stripe_subscription_status):
        raise InactiveSubscription()
    if profile.stripe_price_id == new_price_id:
        raise AlreadyOnPlan()

    client = stripe_client.get_client()
    subscription = stripe_client.as_dict(client.subscriptions.retrieve(profile.stripe_subscription_id))
    items = (subscription.get("items") or {}).get("data") or []
    if not items:
        raise ProviderError("Subscription configuration error.")

    updated = client.subscriptions.update(profile.stripe_subscription_id, params={
        "items": [{"id": items[0]["id"], "price": new_price_id}],
        "proration_behavior": "create_prorations",
        "metadata": _metadata(new_price_id, user.id),
    })
    return {
        "success": True,
        "new_period_end": stripe_client.to_iso(getattr(updated, "current_period_end", None)),
    }


@billing_action
def create_portal_session(return_url: str) -> Dict[str, Any]:
    """Stripe Customer Portal session for an existing Customer."""
    user = _require_user()
    profile = profiles.get_profile_for_user(user.id)
    if not profile or not profile.stripe_customer_id:
        raise NoCustomer()

    session = stripe_client.get_client().billing_portal.sessions.create(params={
        "customer": profile.stripe_customer_id,
        "return_url": return_url,
    })
    return {"url": session.url}


def get_billing_plans_with_stripe_pricing() -> List[BillingPlan]:
    """Catalog with live Stripe amounts; any plan Stripe can't price keeps its catalog amount."""
    plans = get_billing_plans()
    try:
        client = stripe_client.get_client()
    except ProviderError:
        return plans

    priced = []
    for plan in plans:
        if not plan.price_id:
            priced.append(plan)
            continue
        try:
            price = stripe_client.as_dict(client.prices.retrieve(plan.price_id))
        except stripe.StripeError as e:
            current_app.logger.warning("billing.price_lookup_failed %s: %s", plan.price_id, e)
            priced.append(plan)
            continue
        amount = price.get("unit_amount")
        priced.append(with_amount(plan, amount) if isinstance(amount, int) else plan)
    return priced
