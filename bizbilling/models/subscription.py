"""Subscription models.

- Subscription: one row per PayPal subscription, synced from webhooks.
  This is the authoritative record of a subscription's lifecycle.
- BillingPlan: maps PayPal billing plan IDs to our product identifiers, so
  the plan tier is never taken from what the client sent.
"""

import uuid

from bizbilling.extensions import db


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    # -- Valid statuses (mirrors PayPal's lifecycle) --
    STATUSES = [
        "APPROVAL_PENDING",
        "APPROVED",
        "CREATED",
        "ACTIVE",
        "SUSPENDED",
        "CANCELLED",
        "EXPIRED",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(255), nullable=False, index=True)
    provider_subscription_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "I-BW452GLLEP1G"
    provider_plan_id = db.Column(db.String(255), nullable=True)
    payer_id = db.Column(db.String(255), nullable=True, index=True)
    status = db.Column(db.String(50), nullable=False, default="CREATED")
    plan_type = db.Column(db.String(50), nullable=False, default="starter")  # starter | pro

    start_time = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=True)
    next_billing_time = db.Column(db.DateTime(timezone=True), nullable=True)

    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancellation_reason = db.Column(db.Text, nullable=True)

    failed_payment_count = db.Column(db.Integer, nullable=False, default=0)
    last_payment_amount = db.Column(db.Numeric(12, 2), nullable=True)
    last_payment_date = db.Column(db.DateTime(timezone=True), nullable=True)

    # Audit only, as reported by PayPal
    cycle_count = db.Column(db.Integer, nullable=False, default=0)
    billing_cycles = db.Column(db.JSON, nullable=True)

    retry_attempted_at = db.Column(db.DateTime(timezone=True), nullable=True)
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
        return f"<Subscription {self.provider_subscription_id} {self.plan_type} ({self.status})>"


class BillingPlan(db.Model):
    __tablename__ = "billing_plans"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    provider_plan_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "P-5ML4271244454362WXNWU5NQ"
    product_id = db.Column(
        db.String(255), nullable=False
    )  # e.g. "BIZMANAGER_PRO"
    name = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(50), nullable=False, default="ACTIVE")
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<BillingPlan {self.provider_plan_id} -> {self.product_id}>"
