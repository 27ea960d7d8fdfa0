"""
Profile row access.

Two paths, mirroring the datastore's access model:

- user-scoped helpers take the signed-in user's id and only ever touch that
  row (billing actions);
- customer-keyed helpers look rows up by Stripe customer id through the
  service-role bind, since webhook requests carry no user session.

Customer-keyed updates are plain last-writer-wins row UPDATEs.
"""
from typing import List, Optional, Tuple
from sqlalchemy import select, update
from billing_bridge.billing.errors import ProfileNotFound
from billing_bridge.extensions import db
from billing_bridge.models import Profile, check_subscription_status

SERVICE_ROLE_BIND = "service_role"


def get_profile_for_user(user_id: int) -> Optional[Profile]:
    return db.session.get(Profile, user_id)


def get_or_create_profile(user_id: int) -> Profile:
    profile = db.session.get(Profile, user_id)
    if profile is None:
        profile = Profile(id=user_id, feature_flags=[])
        db.session.add(profile)
        db.session.flush()
    return profile


def set_customer_for_user(user_id: int, stripe_customer_id: str) -> None:
    profile = get_or_create_profile(user_id)
    profile.stripe_customer_id = stripe_customer_id
    db.session.commit()


def _service_role_engine():
    return db.engines.get(SERVICE_ROLE_BIND) or db.engine


def _service_execute(stmt):
    return db.session.execute(stmt, bind_arguments={"bind": _service_role_engine()})


def get_flags_for_customer(stripe_customer_id: str) -> List[str]:
    row = _service_execute(
        select(Profile.feature_flags).where(Profile.stripe_customer_id == stripe_customer_id)
    ).first()
    if row is None:
        raise ProfileNotFound(stripe_customer_id)
    flags = row[0]
    return list(flags) if isinstance(flags, list) else []


def get_subscription_for_customer(stripe_customer_id: str) -> Tuple[Optional[str], Optional[str]]:
    """Stored (subscription id, status) for a customer."""
    row = _service_execute(
        select(Profile.stripe_subscription_id, Profile.stripe_subscription_status)
        .where(Profile.stripe_customer_id == stripe_customer_id)
    ).first()
    if row is None:
        raise ProfileNotFound(stripe_customer_id)
    return row[0], row[1]


def update_profile_for_customer(stripe_customer_id: str, **values) -> None:
    if "stripe_subscription_status" in values:
        check_subscription_status(values["stripe_subscription_status"])
    result = _service_execute(
        update(Profile)
        .where(Profile.stripe_customer_id == stripe_customer_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise ProfileNotFound(stripe_customer_id)
    db.session.commit()


def find_customer_ids() -> List[str]:
    """Every profile that has a Stripe customer (used by the resync CLI)."""
    rows = _service_execute(
        select(Profile.stripe_customer_id).where(Profile.stripe_customer_id.isnot(None))
    ).all()
    return [r[0] for r in rows]
