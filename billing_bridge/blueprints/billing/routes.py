from urllib.parse import urljoin
from flask import Blueprint, render_template, request, redirect, current_app, abort, jsonify, url_for
from flask_login import login_required
from billing_bridge.extensions import limiter
from billing_bridge.billing.errors import InvalidPlanSelection, status_for
from billing_bridge.billing.presenters import access_summary, plan_card
from billing_bridge.services import billing as billing_service

billing_bp = Blueprint("billing", __name__)


def _json_result(result: dict):
    return jsonify(result), status_for(result)


def _price_id_from_request() -> str:
    data = request.get_json(silent=True) or {}
    return (data.get("price_id") or request.form.get("price_id") or "").strip()


def _missing_price_id():
    return _json_result(InvalidPlanSelection("price_id is required").to_result())


def _safe_return_url(raw: str | None) -> str:
    # Only internal paths like "/account" (no external URLs or "//" protocol-relative).
    raw = (raw or "").strip()
    if raw.startswith("/") and not raw.startswith("//"):
        return urljoin(request.host_url, raw.lstrip("/"))
    return url_for("billing.index", _external=True)


@billing_bp.get("")
@billing_bp.get("/")
@login_required
def index():
    cfg = current_app.config
    result = billing_service.get_billing_profile()
    profile = result.get("profile")
    plans = billing_service.get_billing_plans_with_stripe_pricing()

    notice = None
    if request.args.get("success"):
        notice = "Payment received. Updates may take a moment to appear."
    elif request.args.get("canceled"):
        notice = "Checkout canceled. You have not been charged."

    access = access_summary(profile)
    ctx = {
        "plans": [plan_card(p, access) for p in plans],
        "access": access,
        "profile_error": result.get("error"),
        "notice": notice,
        "use_checkout": bool(cfg.get("STRIPE_USE_CHECKOUT", True)),
        "publishable_key": cfg.get("STRIPE_PUBLISHABLE_KEY") or "",
    }
    return render_template("billing/index.html", **ctx)


@billing_bp.post("/payment-intent.json")
@limiter.limit("10/minute")
def payment_intent_json():
    price_id = _price_id_from_request()
    if not price_id:
        return _missing_price_id()
    return _json_result(billing_service.create_payment_intent(price_id))


@billing_bp.post("/subscription.json")
@limiter.limit("10/minute")
def subscription_json():
    price_id = _price_id_from_request()
    if not price_id:
        return _missing_price_id()
    return _json_result(billing_service.create_subscription(price_id))


@billing_bp.post("/checkout.json")
@limiter.limit("10/minute")
def checkout_json():
    """Hosted Checkout for Stripe.js redirect: JSON {"url"} instead of a 303."""
    price_id = _price_id_from_request()
    if not price_id:
        return _missing_price_id()
    return _json_result(billing_service.create_checkout_session(price_id))


@billing_bp.post("/checkout")
@limiter.limit("10/minute")
@login_required
def checkout():
    price_id = _price_id_from_request()
    if not price_id:
        abort(400, description="price_id is required")

    result = billing_service.create_checkout_session(price_id)
    if result.get("error"):
        abort(status_for(result), description=result["error"])
    # 303 to allow re-POST safely and follow to Stripe-hosted page
    return redirect(result["url"], code=303)


@billing_bp.post("/cancel.json")
@limiter.limit("10/minute")
def cancel_json():
    return _json_result(billing_service.cancel_subscription())


@billing_bp.post("/change-plan.json")
@limiter.limit("10/minute")
def change_plan_json():
    price_id = _price_id_from_request()
    if not price_id:
        return _missing_price_id()
    return _json_result(billing_service.update_subscription(price_id))


@billing_bp.post("/portal.json")
@limiter.limit("10/minute")
def portal_json():
    data = request.get_json(silent=True) or {}
    return_url = _safe_return_url(data.get("return_url"))
    return _json_result(billing_service.create_portal_session(return_url))


@billing_bp.get("/portal")
@billing_bp.post("/portal")
@limiter.limit("10/minute")
@login_required
def portal():
    result = billing_service.create_portal_session(url_for("billing.index", _external=True))
    if result.get("error"):
        abort(status_for(result), description=result["error"])
    return redirect(result["url"], code=303)


@billing_bp.get("/profile.json")
def profile_json():
    return _json_result(billing_service.get_billing_profile())


@billing_bp.get("/plans.json")
def plans_json():
    plans = billing_service.get_billing_plans_with_stripe_pricing()
    return jsonify({"plans": [p.to_dict() for p in plans]})


@billing_bp.get("/stripe-pk")
def stripe_publishable_key():
    """Publishable key for Stripe.js initialization (safe to expose)."""
    return jsonify({"publishable_key": current_app.config.get("STRIPE_PUBLISHABLE_KEY")})
