from datetime import datetime, timezone
from typing import Any, Optional
from flask import current_app
from stripe import StripeClient
from billing_bridge.billing.errors import ProviderError


def get_client() -> StripeClient:
    key = current_app.config.get("STRIPE_SECRET_KEY")
    if not key:
        current_app.logger.error("STRIPE_SECRET_KEY is not configured")
        raise ProviderError("Payments are not configured.")
    return StripeClient(key, stripe_version=current_app.config.get("STRIPE_API_VERSION"))


def as_dict(obj: Any) -> Any:
    """Stripe objects may need converting to plain dicts before nested lookups."""
    if obj is None or isinstance(obj, dict):
        return obj
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if hasattr(obj, "to_dict_recursive"):
        return obj.to_dict_recursive()
    return obj


def object_id(value: Any) -> Optional[str]:
    """Expandable fields arrive either as an id string or as the expanded object."""
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


def to_datetime(ts: Optional[int]) -> Optional[datetime]:
    return datetime.fromtimestamp(ts, tz=timezone.utc) if ts else None


def to_iso(ts: Optional[int]) -> Optional[str]:
    dt = to_datetime(ts)
    return dt.isoformat() if dt else None
