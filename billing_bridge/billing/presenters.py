from datetime import datetime
from typing import Any, Dict, Optional
from billing_bridge.billing.entitlements import is_subscription_active
from billing_bridge.billing.plans import BillingPlan, MONTH, YEAR

_CURRENCY_SYMBOLS = {"gbp": "£", "usd": "$", "eur": "€"}

_BADGE_BY_STATUS = {
    "active": "success",
    "trialing": "success",
    "past_due": "warning",
    "incomplete": "warning",
    "paused": "warning",
    "unpaid": "error",
    "canceled": "error",
    "incomplete_expired": "error",
}


def format_amount(amount: int, currency: str = "gbp") -> str:
    """Minor units to display money, e.g. 1500 -> '£15.00'."""
    symbol = _CURRENCY_SYMBOLS.get((currency or "").lower())
    value = f"{(amount or 0) / 100:,.2f}"
    if symbol:
        return f"{symbol}{value}"
    return f"{value} {(currency or '').upper()}".strip()


def interval_suffix(interval: str) -> str:
    if interval == MONTH:
        return "/mo"
    if interval == YEAR:
        return "/yr"
    return ""


def status_badge_variant(status: Optional[str]) -> str:
    return _BADGE_BY_STATUS.get(status or "", "default")


def _plan_action(plan: BillingPlan, access: Optional[Dict[str, Any]]):
    """(action, button label) for a card given the viewer's access summary."""
    if plan.is_one_time:
        return "payment", "Buy now"
    if not access or not access.get("is_active"):
        return "subscription", "Subscribe"
    # Subscribed already: recurring cards switch plans instead of buying a second one
    if access.get("price_id") == plan.price_id:
        return "current", "Current plan"
    return "change", "Switch to this plan"


def plan_card(plan: BillingPlan, access: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    action, button_label = _plan_action(plan, access)
    return {
        "id": plan.id,
        "name": plan.name,
        "description": plan.description,
        "price_id": plan.price_id,
        "interval": plan.interval,
        "price_label": format_amount(plan.amount, plan.currency) + interval_suffix(plan.interval),
        "flags_label": ", ".join(plan.flags),
        "button_label": button_label,
        "action": action,
    }


def _parse_iso(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def access_summary(profile: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Everything the 'Your access' card shows, from a profile snapshot (or None)."""
    profile = profile or {}
    status = profile.get("stripe_subscription_status")
    flags = profile.get("feature_flags")
    flags = list(flags) if isinstance(flags, (list, tuple)) else []
    period_end = _parse_iso(profile.get("stripe_current_period_end"))
    return {
        "status": status or "none",
        "badge": status_badge_variant(status),
        "is_active": is_subscription_active(status),
        "flags_label": ", ".join(flags) if flags else "none",
        "access_ends": period_end.strftime("%d %B %Y") if period_end else None,
        "price_id": profile.get("stripe_price_id"),
    }
