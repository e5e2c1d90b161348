"""Webhook event model (idempotency + audit table).

Every PayPal webhook is recorded by its PayPal event ID before anything else
happens. The unique constraint on event_id is what serializes concurrent
deliveries of the same event: only one INSERT can win.

processed / processing_error describe the latest attempt:
    processed=False                  -> claimed, attempt in flight
    processed=True, error is None    -> applied successfully (terminal)
    processed=True, error is set     -> attempt failed, redelivery may retry
"""

import uuid

from bizbilling.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "WH-2WR32451HC0233532-67976317FL4543714"
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "BILLING.SUBSCRIPTION.ACTIVATED"
    resource_type = db.Column(db.String(100), nullable=True)
    resource_id = db.Column(db.String(255), nullable=True, index=True)
    payload = db.Column(db.JSON, nullable=False)  # verbatim, for audit/replay

    processed = db.Column(db.Boolean, nullable=False, default=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processing_error = db.Column(db.Text, nullable=True)

    signature_verified = db.Column(db.Boolean, nullable=True)  # None = not checked yet
    audit_note = db.Column(db.Text, nullable=True)  # e.g. signature policy override
    attempts = db.Column(db.Integer, nullable=False, default=1)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    @property
    def succeeded(self):
        return bool(self.processed) and self.processing_error is None

    def __repr__(self):
        return f"<WebhookEvent {self.event_id} ({self.event_type})>"
