from dataclasses import dataclass, replace
from typing import List, Optional, Tuple
from flask import current_app

ONE_TIME = "one_time"
MONTH = "month"
YEAR = "year"


@dataclass(frozen=True)
class BillingPlan:
    id: str
    name: str
    description: str
    price_id: Optional[str]
    amount: int  # minor units (pence)
    currency: str
    interval: str
    flags: Tuple[str, ...]

    @property
    def is_one_time(self) -> bool:
        return self.interval == ONE_TIME

    @property
    def is_recurring(self) -> bool:
        return self.interval != ONE_TIME

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "price_id": self.price_id,
            "amount": self.amount,
            "currency": self.currency,
            "interval": self.interval,
            "flags": list(self.flags),
        }


def get_billing_plans() -> List[BillingPlan]:
    """
    The purchasable catalog. Price IDs differ per Stripe account/mode, so they
    come from config; everything else is fixed here.
    """
    cfg = current_app.config
    return [
        BillingPlan(
            id="content_pack",
            name="Content Pack",
            description="One-time access to premium content.",
            price_id=cfg.get("STRIPE_PRICE_CONTENT_PACK"),
            amount=1500,
            currency="gbp",
            interval=ONE_TIME,
            flags=("content_pack",),
        ),
        BillingPlan(
            id="pro_monthly",
            name="Pro Monthly",
            description="Monthly subscription with downloads.",
            price_id=cfg.get("STRIPE_PRICE_PRO_MONTHLY"),
            amount=1200,
            currency="gbp",
            interval=MONTH,
            flags=("pro_content", "download_access"),
        ),
        BillingPlan(
            id="pro_annual",
            name="Pro Annual",
            description="Annual subscription with support.",
            price_id=cfg.get("STRIPE_PRICE_PRO_ANNUAL"),
            amount=12000,
            currency="gbp",
            interval=YEAR,
            flags=("pro_content", "download_access", "priority_support"),
        ),
    ]


def get_plan_by_price_id(price_id: Optional[str]) -> Optional[BillingPlan]:
    if not price_id:
        return None
    for plan in get_billing_plans():
        if plan.price_id == price_id:
            return plan
    return None


def with_amount(plan: BillingPlan, amount: int) -> BillingPlan:
    return replace(plan, amount=amount)
