from sqlalchemy import func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import validates
from billing_bridge.extensions import db

SUBSCRIPTION_STATUSES = frozenset({
    "incomplete",
    "incomplete_expired",
    "trialing",
    "active",
    "past_due",
    "canceled",
    "unpaid",
    "paused",
})

def check_subscription_status(value):
    """Shared by the ORM validator and the bulk UPDATE path, which skips validators."""
    if value is not None and value not in SUBSCRIPTION_STATUSES:
        raise ValueError(f"Unknown subscription status: {value!r}")
    return value


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
FlagList = db.JSON().with_variant(JSONB(), "postgresql")


class Profile(db.Model):
    __tablename__ = "profiles"

    id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)

    stripe_customer_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    stripe_subscription_id = db.Column(db.String(64), nullable=True, unique=True, index=True)
    stripe_subscription_status = db.Column(db.String(32), nullable=True, index=True)
    stripe_price_id = db.Column(db.String(64), nullable=True)
    stripe_current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    stripe_trial_end = db.Column(db.DateTime(timezone=True), nullable=True)

    feature_flags = db.Column(FlagList, nullable=False, default=list)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    user = db.relationship("User", back_populates="profile")

    @validates("stripe_subscription_status")
    def _validate_status(self, key, value):
        return check_subscription_status(value)

    def to_dict(self) -> dict:
        """Snapshot handed to the billing page and /billing/profile.json."""
        def _iso(dt):
            return dt.isoformat() if dt else None

        return {
            "stripe_subscription_id": self.stripe_subscription_id,
            "stripe_subscription_status": self.stripe_subscription_status,
            "stripe_price_id": self.stripe_price_id,
            "stripe_current_period_end": _iso(self.stripe_current_period_end),
            "stripe_trial_end": _iso(self.stripe_trial_end),
            "feature_flags": list(self.feature_flags or []),
        }

    def __repr__(self) -> str:
        return (
            f"<Profile id={self.id} customer={self.stripe_customer_id!r} "
            f"status={self.stripe_subscription_status!r} flags={self.feature_flags!r}>"
        )
