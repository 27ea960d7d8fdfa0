from typing import Iterable, List, Optional, Set
from billing_bridge.billing.plans import get_billing_plans

ACTIVE_STATUSES = frozenset({"active", "trialing"})


def flags_for_prices(price_ids: Iterable[Optional[str]]) -> Set[str]:
    """Union of flags of every catalog plan whose price is in ``price_ids``."""
    wanted = {p for p in price_ids if p}
    flags: Set[str] = set()
    for plan in get_billing_plans():
        if plan.price_id and plan.price_id in wanted:
            flags.update(plan.flags)
    return flags


def subscription_flags() -> Set[str]:
    """Flags any recurring plan can grant; these are owned by the subscription."""
    flags: Set[str] = set()
    for plan in get_billing_plans():
        if plan.is_recurring:
            flags.update(plan.flags)
    return flags


def reconcile_flags(stored: Optional[Iterable[str]], subscription_price_ids: Iterable[Optional[str]]) -> List[str]:
    """
    Recompute the stored flag list after a subscription change.

    Subscription-derived flags are dropped and re-derived from the
    subscription's current prices; everything else (one-time purchases) is
    kept. Pass no prices for a deleted subscription.
    """
    retained = set(stored or []) - subscription_flags()
    return sorted(retained | flags_for_prices(subscription_price_ids))


def grant_flags(stored: Optional[Iterable[str]], price_ids: Iterable[Optional[str]]) -> List[str]:
    """Additive grant for one-time purchases."""
    return sorted(set(stored or []) | flags_for_prices(price_ids))


def is_subscription_active(status: Optional[str]) -> bool:
    return status in ACTIVE_STATUSES


def has_feature(profile, flag: str) -> bool:
    if profile is None:
        return False
    return flag in (profile.feature_flags or [])
