"""Event store — idempotent record of every inbound PayPal webhook.

The webhook_events table doubles as the idempotency guard and the audit
trail. Concurrency rules:

- The first delivery of an event_id wins the INSERT (unique constraint) and
  owns the processing attempt.
- A later delivery of an event whose last attempt failed re-claims it with a
  compare-and-set UPDATE; only one concurrent re-claim can match.
- A delivery that finds an attempt still in flight backs off (in_progress),
  unless that claim is older than WEBHOOK_CLAIM_TIMEOUT, which means the
  owner died mid-request.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from bizbilling.extensions import db
from bizbilling.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)


class RecordResult(NamedTuple):
    already_exists: bool
    already_processed: bool
    in_progress: bool = False

    @property
    def should_process(self):
        return not self.already_processed and not self.in_progress


def get_event(event_id):
    return WebhookEvent.query.filter_by(event_id=event_id).first()


def record_if_new(event_id, event_type, resource_type, resource_id, payload,
                  claim_timeout=300):
    """Record a webhook delivery and claim it for processing if allowed.

    Returns a RecordResult. Only a result with should_process=True may run
    handlers for this event.
    """
    now = datetime.now(timezone.utc)

    event = WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        resource_type=resource_type,
        resource_id=resource_id,
        payload=payload,
        processed=False,
        attempts=1,
        claimed_at=now,
    )
    db.session.add(event)
    try:
        db.session.commit()
        logger.info(f"Recorded new webhook event {event_id} ({event_type})")
        return RecordResult(already_exists=False, already_processed=False)
    except IntegrityError:
        # Another delivery got there first (or this is a redelivery)
        db.session.rollback()

    existing = get_event(event_id)
    if existing is None:
        # Row vanished between the failed insert and the read; let the
        # provider redeliver rather than guess.
        logger.warning(f"Webhook event {event_id} conflicted but could not be re-read")
        return RecordResult(already_exists=True, already_processed=False, in_progress=True)

    if existing.succeeded:
        logger.info(f"Duplicate webhook event {event_id}, already processed")
        return RecordResult(already_exists=True, already_processed=True)

    if existing.processed:
        # Last attempt failed: redelivery is allowed to retry
        claimed = _claim(
            event_id,
            now,
            WebhookEvent.processed.is_(True),
            WebhookEvent.processing_error.isnot(None),
        )
    else:
        cutoff = now - timedelta(seconds=claim_timeout)
        claimed = _claim(
            event_id,
            now,
            WebhookEvent.processed.is_(False),
            or_(WebhookEvent.claimed_at.is_(None), WebhookEvent.claimed_at < cutoff),
        )

    if claimed:
        logger.info(f"Re-claimed webhook event {event_id} for another attempt")
        return RecordResult(already_exists=True, already_processed=False)

    # Lost the compare-and-set: see where the winner got to
    db.session.expire_all()
    current = get_event(event_id)
    if current is not None and current.succeeded:
        return RecordResult(already_exists=True, already_processed=True)
    logger.info(f"Webhook event {event_id} is being processed by another request")
    return RecordResult(already_exists=True, already_processed=False, in_progress=True)


def _claim(event_id, now, *conditions):
    """Compare-and-set: reset the event to in-flight if `conditions` still hold."""
    rows = (
        WebhookEvent.query
        .filter(WebhookEvent.event_id == event_id, *conditions)
        .update(
            {
                WebhookEvent.processed: False,
                WebhookEvent.processed_at: None,
                WebhookEvent.processing_error: None,
                WebhookEvent.claimed_at: now,
                WebhookEvent.attempts: WebhookEvent.attempts + 1,
            },
            synchronize_session=False,
        )
    )
    db.session.commit()
    return rows == 1


def mark_processed(event_id, error=None):
    """Close the current attempt and commit.

    On success this commits the handler's pending changes in the same
    transaction as the processed flag. On failure the caller must roll back
    the handler's changes first.
    """
    (
        WebhookEvent.query
        .filter_by(event_id=event_id)
        .update(
            {
                WebhookEvent.processed: True,
                WebhookEvent.processed_at: datetime.now(timezone.utc),
                WebhookEvent.processing_error: error,
            },
            synchronize_session=False,
        )
    )
    db.session.commit()
    if error:
        logger.warning(f"Webhook event {event_id} failed: {error}")
    else:
        logger.info(f"Webhook event {event_id} processed")


def set_signature_result(event_id, verified):
    (
        WebhookEvent.query
        .filter_by(event_id=event_id)
        .update({WebhookEvent.signature_verified: verified}, synchronize_session=False)
    )
    db.session.commit()


def list_recent(limit=20, failed_only=False):
    query = WebhookEvent.query
    if failed_only:
        query = query.filter(WebhookEvent.processing_error.isnot(None))
    return query.order_by(WebhookEvent.received_at.desc()).limit(limit).all()


def add_audit_note(event_id, note):
    """Record why an event was processed despite a failed check."""
    (
        WebhookEvent.query
        .filter_by(event_id=event_id)
        .update({WebhookEvent.audit_note: note}, synchronize_session=False)
    )
    db.session.commit()
