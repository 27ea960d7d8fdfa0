from sqlalchemy import func
from sqlalchemy.dialects.postgresql import JSONB
from billing_bridge.extensions import db


class BillingEventLog(db.Model):
    __tablename__ = "billing_event_logs"

    id = db.Column(db.Integer, primary_key=True)
    stripe_event_id = db.Column(db.String(255), nullable=False, unique=True, index=True)
    type = db.Column(db.String(80), nullable=False, index=True)
    payload = db.Column(db.JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    retries = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.String(255), nullable=True)

    # Set only once the handler finished; unprocessed rows are re-handled on redelivery
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    def __repr__(self) -> str:
        return f"<BillingEventLog {self.stripe_event_id} type={self.type!r} processed={self.processed_at is not None}>"
