"""Notification queue — append-only outbox of user notifications.

Handlers enqueue inside the same transaction as the state change they
announce, so a notification exists if and only if the transition was
committed. Delivery (email/SMS) is a separate worker that reads unsent rows
and flips `sent`; nothing here talks to a mail server.
"""

import logging

from bizbilling.extensions import db
from bizbilling.models.ledger import NotificationQueueItem

logger = logging.getLogger(__name__)


def enqueue(user_id, notification_type, title, message, metadata=None):
    """Append a pending notification. Flushes, never commits."""
    item = NotificationQueueItem(
        user_id=user_id,
        notification_type=notification_type,
        title=title,
        message=message,
        metadata_=metadata or {},
        sent=False,
    )
    db.session.add(item)
    db.session.flush()
    logger.info(f"Queued {notification_type} notification for user {user_id}")
    return item


def pending(limit=50):
    """Oldest unsent notifications first, for the delivery worker."""
    return (
        NotificationQueueItem.query
        .filter_by(sent=False)
        .order_by(NotificationQueueItem.created_at.asc())
        .limit(limit)
        .all()
    )
