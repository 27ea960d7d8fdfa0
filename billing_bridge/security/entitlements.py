from functools import wraps
from typing import Callable
from flask import abort, request
from flask_login import current_user
from billing_bridge.billing.entitlements import has_feature
from billing_bridge.services.profiles import get_profile_for_user


def _wants_json() -> bool:
    return (
        "application/json" in (request.headers.get("Accept") or "").lower()
        or request.is_json
        or request.path.endswith(".json")
    )


def require_feature(flag: str) -> Callable:
    """
    Server-side guard for paid features.
    - Requires a signed-in user
    - Requires ``flag`` in the user's stored feature_flags snapshot
    The snapshot already reflects subscription status (webhooks strip
    subscription flags when it lapses), so status is not re-checked here.
    """
    def decorator(fn: Callable) -> Callable:
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not getattr(current_user, "is_authenticated", False):
                if _wants_json():
                    return {"error": "unauthorized", "code": 401}, 401
                abort(401)
            profile = get_profile_for_user(current_user.id)
            if not has_feature(profile, flag):
                if _wants_json():
                    return {"error": "entitlement_required", "missing": flag}, 403
                abort(403, description="Feature not included in current plan")
            return fn(*args, **kwargs)
        return wrapper
    return decorator
