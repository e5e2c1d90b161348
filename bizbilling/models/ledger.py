"""Ledger and outbox models.

- PaymentTransaction: append-only record of money movement. Rows are never
  updated after insert; corrections are new rows (refunds are negative).
- NotificationQueueItem: pending user notifications. Written by the
  subscription handlers in the same transaction as the state change,
  consumed by a separate delivery worker that flips `sent`.
- SyncOperation: audit trail of operator actions against PayPal
  (cancel, reactivate, retry, sync).
"""

import uuid

from bizbilling.extensions import db


class PaymentTransaction(db.Model):
    __tablename__ = "payment_transactions"

    TYPES = ["activation", "renewal", "payment", "refund", "dispute"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(255), nullable=True, index=True
    )  # NULL = payment we could not attribute to a user
    provider_transaction_id = db.Column(db.String(255), nullable=True, index=True)
    provider_subscription_id = db.Column(db.String(255), nullable=True, index=True)
    payer_id = db.Column(db.String(255), nullable=True)
    transaction_type = db.Column(db.String(50), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=True)
    status = db.Column(db.String(50), nullable=False)  # completed | failed | OPEN | RESOLVED ...
    plan_id = db.Column(db.String(50), nullable=True)
    payment_method = db.Column(db.String(50), nullable=False, default="paypal")
    failure_reason = db.Column(db.Text, nullable=True)
    dispute_reason = db.Column(db.Text, nullable=True)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # raw PayPal resource, named metadata_ to avoid SQLAlchemy clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<PaymentTransaction {self.transaction_type} {self.amount} {self.currency}>"


class NotificationQueueItem(db.Model):
    __tablename__ = "notification_queue"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(255), nullable=False, index=True)
    notification_type = db.Column(
        db.String(100), nullable=False
    )  # e.g. "subscription_activated"
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    metadata_ = db.Column("metadata", db.JSON, default=dict)
    sent = db.Column(db.Boolean, nullable=False, default=False, index=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<NotificationQueueItem {self.notification_type} -> {self.user_id}>"


class SyncOperation(db.Model):
    __tablename__ = "subscription_sync_log"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(255), nullable=True)
    provider_subscription_id = db.Column(db.String(255), nullable=False, index=True)
    operation_type = db.Column(
        db.String(50), nullable=False
    )  # sync | cancel | reactivate | retry_payment
    result = db.Column(db.String(50), nullable=False)  # success | failed
    provider_data = db.Column(db.JSON, nullable=True)
    local_updates = db.Column(db.JSON, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<SyncOperation {self.operation_type} {self.provider_subscription_id} ({self.result})>"
