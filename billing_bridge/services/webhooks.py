"""
Stripe event reconciliation.

Each handler takes the event's ``data.object`` as a plain dict and rewrites
the matching profile row (keyed by Stripe customer id). Handlers recompute
state from the event instead of applying deltas, so re-delivering an event
leaves the row unchanged.
"""
from typing import Any, Callable, Dict
from flask import current_app
from billing_bridge.billing.entitlements import grant_flags, is_subscription_active, reconcile_flags
from billing_bridge.services import profiles, stripe_client


def handle_payment_intent_succeeded(payment_intent: Dict[str, Any]) -> None:
    price_id = (payment_intent.get("metadata") or {}).get("price_id")
    customer_id = stripe_client.object_id(payment_intent.get("customer"))
    if not price_id or not customer_id:
        return

    current = profiles.get_flags_for_customer(customer_id)
    profiles.update_profile_for_customer(customer_id, feature_flags=grant_flags(current, [price_id]))
    current_app.logger.info(
        "stripe_webhook.one_time_granted", extra={"stripe_customer_id": customer_id, "price_id": price_id}
    )


def _price_ids(subscription: Dict[str, Any]):
    items = (subscription.get("items") or {}).get("data") or []
    ids = [stripe_client.object_id(item.get("price")) for item in items]
    return [p for p in ids if p]


def _is_stale(customer_id: str, subscription: Dict[str, Any]) -> bool:
    """
    An event for some other, non-active subscription while the stored one is
    active (e.g. an abandoned incomplete subscription expiring) must not
    overwrite the profile.
    """
    stored_id, stored_status = profiles.get_subscription_for_customer(customer_id)
    event_id = subscription.get("id")
    if not stored_id or not event_id or stored_id == event_id:
        return False
    if not is_subscription_active(stored_status) or is_subscription_active(subscription.get("status")):
        return False
    current_app.logger.warning(
        "stripe_webhook.stale_subscription_event",
        extra={
            "stripe_customer_id": customer_id,
            "subscription_id": event_id,
            "current_subscription_id": stored_id,
            "status": subscription.get("status"),
        },
    )
    return True


def handle_subscription_update(subscription: Dict[str, Any]) -> None:
    customer_id = stripe_client.object_id(subscription.get("customer"))
    if not customer_id:
        return

    if _is_stale(customer_id, subscription):
        return

    price_ids = _price_ids(subscription)
    current = profiles.get_flags_for_customer(customer_id)
    profiles.update_profile_for_customer(
        customer_id,
        stripe_subscription_id=subscription.get("id"),
        stripe_subscription_status=subscription.get("status"),
        stripe_price_id=price_ids[0] if price_ids else None,
        stripe_current_period_end=stripe_client.to_datetime(subscription.get("current_period_end")),
        stripe_trial_end=stripe_client.to_datetime(subscription.get("trial_end")),
        feature_flags=reconcile_flags(current, price_ids),
    )
    current_app.logger.info(
        "stripe_webhook.subscription_reconciled",
        extra={"stripe_customer_id": customer_id, "status": subscription.get("status"), "price_ids": price_ids},
    )


def handle_subscription_deleted(subscription: Dict[str, Any]) -> None:
    customer_id = stripe_client.object_id(subscription.get("customer"))
    if not customer_id:
        return

    if _is_stale(customer_id, subscription):
        return

    current = profiles.get_flags_for_customer(customer_id)
    profiles.update_profile_for_customer(
        customer_id,
        stripe_subscription_id=subscription.get("id"),
        stripe_subscription_status=subscription.get("status"),
        stripe_current_period_end=stripe_client.to_datetime(subscription.get("current_period_end")),
        feature_flags=reconcile_flags(current, []),
    )
    current_app.logger.info(
        "stripe_webhook.subscription_ended", extra={"stripe_customer_id": customer_id}
    )


def handle_invoice_paid(invoice: Dict[str, Any]) -> None:
    sub_id = stripe_client.object_id(invoice.get("subscription"))
    if not sub_id:
        return
    subscription = stripe_client.as_dict(stripe_client.get_client().subscriptions.retrieve(sub_id))
    handle_subscription_update(subscription)


def handle_checkout_completed(session: Dict[str, Any]) -> None:
    """Hosted Checkout finished: resolve what it created and reuse the handlers above."""
    client = stripe_client.get_client()

    sub_id = stripe_client.object_id(session.get("subscription"))
    if sub_id:
        handle_subscription_update(stripe_client.as_dict(client.subscriptions.retrieve(sub_id)))
        return

    pi_id = stripe_client.object_id(session.get("payment_intent"))
    if not pi_id or session.get("payment_status") != "paid":
        # Delayed payment methods finish later via payment_intent.succeeded
        return

    payment_intent = stripe_client.as_dict(client.payment_intents.retrieve(pi_id))
    metadata = dict(session.get("metadata") or {})
    metadata.update(payment_intent.get("metadata") or {})
    payment_intent = {
        **payment_intent,
        "metadata": metadata,
        "customer": payment_intent.get("customer") or session.get("customer"),
    }
    handle_payment_intent_succeeded(payment_intent)


EVENT_HANDLERS: Dict[str, Callable[[Dict[str, Any]], None]] = {
    "payment_intent.succeeded": handle_payment_intent_succeeded,
    "invoice.paid": handle_invoice_paid,
    "customer.subscription.created": handle_subscription_update,
    "customer.subscription.updated": handle_subscription_update,
    "customer.subscription.deleted": handle_subscription_deleted,
    "checkout.session.completed": handle_checkout_completed,
}


def dispatch_event(event: Dict[str, Any]) -> bool:
    """Run the handler for ``event``. Returns False for ignored event types."""
    handler = EVENT_HANDLERS.get(event.get("type"))
    if handler is None:
        return False
    obj = (event.get("data") or {}).get("object") or {}
    handler(stripe_client.as_dict(obj))
    return True
