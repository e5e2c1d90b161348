"""User account settings model.

Denormalized per-user projection of the user's subscription, read by the
rest of the application for feature gating. Subscription is the source of
truth; this row is rewritten after every transition.
"""

import uuid

from bizbilling.extensions import db


class UserAccountSettings(db.Model):
    __tablename__ = "user_settings"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(255), unique=True, nullable=False)
    plan = db.Column(db.String(50), nullable=False, default="free")  # free | starter | pro
    subscription_status = db.Column(
        db.String(50), nullable=True
    )  # active | suspended | cancelled | expired
    payment_status = db.Column(
        db.String(50), nullable=True
    )  # active | failed | refunded
    auto_renew = db.Column(db.Boolean, nullable=False, default=False)
    is_in_trial = db.Column(db.Boolean, nullable=False, default=True)
    subscription_expiry = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)
    last_payment_date = db.Column(db.DateTime(timezone=True), nullable=True)
    synced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<UserAccountSettings {self.user_id} {self.plan} ({self.subscription_status})>"
