import hashlib
import json
from datetime import datetime, timezone

import stripe
from flask import request, current_app
from . import bp
from billing_bridge.extensions import db, csrf
from billing_bridge.models import BillingEventLog
from billing_bridge.services import webhooks
from billing_bridge.services.stripe_client import as_dict


@csrf.exempt
@bp.post("/stripe")
def stripe_webhook():
    """
    Stripe → /webhooks/stripe
    Verifies signature, audits the event, reconciles the customer's profile.
    400 = rejected (nothing written), 500 = handler failed (Stripe retries), 200 = ok.
    """
    # 1) Verify signature before trusting any of the body
    sig_header = request.headers.get("Stripe-Signature")
    if not sig_header:
        return "Missing stripe signature", 400

    secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not secret:
        current_app.logger.error("stripe_webhook.secret_missing")
        return "Stripe webhook secret not configured", 500

    raw_bytes = request.get_data(cache=False, as_text=False)
    try:
        payload = raw_bytes.decode("utf-8")
        event = stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=secret,
        )
    except (UnicodeDecodeError, ValueError, stripe.SignatureVerificationError) as e:
        digest = hashlib.sha256(raw_bytes).hexdigest()[:32]
        current_app.logger.warning(
            "stripe_webhook.signature_invalid", extra={"digest": digest, "reason": type(e).__name__}
        )
        return "Webhook signature verification failed", 400

    event = as_dict(event)
    ev_id = event.get("id")
    ev_type = event.get("type")
    if not ev_id or not ev_type:
        return "Malformed event", 400

    # 2) Audit + redelivery guard (only successfully processed events short-circuit)
    log = BillingEventLog.query.filter_by(stripe_event_id=ev_id).first()
    if log is not None and log.processed_at is not None:
        return "ok", 200
    if log is None:
        log = BillingEventLog(stripe_event_id=ev_id, type=ev_type, payload=json.loads(payload))
        db.session.add(log)
    else:
        log.retries = (log.retries or 0) + 1
    db.session.commit()

    # 3) Reconcile
    try:
        handled = webhooks.dispatch_event(event)
    except Exception as e:
        db.session.rollback()
        log.notes = f"handler_error:{type(e).__name__}"
        db.session.commit()
        current_app.logger.exception(
            "stripe_webhook.handler_error", extra={"event_id": ev_id, "event_type": ev_type}
        )
        return "Webhook handler failed", 500

    log.processed_at = datetime.now(timezone.utc)
    log.notes = None if handled else "ignored"
    db.session.commit()
    return "ok", 200
