"""Webhook orchestration — everything between the raw request and the reply.

    parse -> record_if_new -> verify signature -> dispatch -> mark_processed

This is the only place handler errors are caught. Each attempt is one
transaction: handlers flush, mark_processed() commits their changes together
with the processed flag, and any failure rolls the handler's changes back
before the error is recorded on the event.

Returns (http_status, json_body) so the blueprint stays a thin adapter.
"""

import json
import logging

from flask import current_app
from pydantic import ValidationError

from bizbilling.errors import (
    BillingError,
    ConfigurationError,
    MalformedPayload,
    ResourceNotFound,
    SignatureInvalid,
    UnparsableBody,
)
from bizbilling.extensions import db
from bizbilling.schemas.events import WebhookEnvelope
from bizbilling.services import event_store
from bizbilling.services.dispatcher import dispatch
from bizbilling.services.paypal_service import get_paypal_client

logger = logging.getLogger(__name__)


def _error(status, message):
    return status, {"success": False, "error": message}


def parse_envelope(raw_body):
    """Decode the request body into a WebhookEnvelope.

    Raises MalformedPayload. The decoded dict (or None) is attached to the
    exception as `.data` so a recoverable event id can still be recorded.
    """
    try:
        data = json.loads(raw_body)
    except (TypeError, ValueError) as e:
        raise UnparsableBody("Request body is not valid JSON") from e

    if not isinstance(data, dict):
        raise UnparsableBody("Webhook body must be a JSON object")

    try:
        return WebhookEnvelope.model_validate(data), data
    except ValidationError as e:
        err = MalformedPayload("Webhook body is missing id or event_type")
        err.data = data
        raise err from e


def _record_malformed(data, message):
    """Keep an audit row for a malformed event whose id we can still read."""
    event_id = data.get("id") if isinstance(data, dict) else None
    if not event_id or not isinstance(event_id, str):
        return
    result = event_store.record_if_new(
        event_id,
        str(data.get("event_type") or "UNKNOWN"),
        data.get("resource_type"),
        None,
        data,
        claim_timeout=current_app.config["WEBHOOK_CLAIM_TIMEOUT"],
    )
    if result.should_process:
        event_store.mark_processed(event_id, error=message)


def _check_signature(envelope, raw_body, headers):
    """Apply the signature policy.

    Returns when processing may go ahead. Raises ConfigurationError when
    verification cannot run under `enforce`, SignatureInvalid when it fails.
    """
    policy = current_app.config["PAYPAL_WEBHOOK_SIGNATURE_POLICY"]
    client = get_paypal_client()

    if client.can_verify_webhooks:
        verified = client.verify_webhook_signature(raw_body, headers)
        reason = "signature did not verify"
    else:
        verified = False
        reason = "PayPal credentials or webhook ID not configured"

    event_store.set_signature_result(envelope.id, verified)
    if verified:
        return

    if policy == "bypass":
        note = f"Signature check bypassed by policy: {reason}"
        logger.warning(f"Webhook {envelope.id}: {note}")
        event_store.add_audit_note(envelope.id, note)
        return

    if not client.can_verify_webhooks:
        raise ConfigurationError(reason)
    raise SignatureInvalid("Invalid webhook signature")


def process_webhook(raw_body, headers):
    """Process one PayPal webhook delivery. Returns (status, body)."""
    # --- Parse ---
    try:
        envelope, data = parse_envelope(raw_body)
    except MalformedPayload as e:
        logger.warning(f"Malformed webhook: {e}")
        _record_malformed(getattr(e, "data", None), str(e))
        return _error(e.http_status, str(e))

    # --- Idempotency ---
    result = event_store.record_if_new(
        envelope.id,
        envelope.event_type,
        envelope.resource_type,
        envelope.resource_id,
        data,
        claim_timeout=current_app.config["WEBHOOK_CLAIM_TIMEOUT"],
    )
    if result.already_processed:
        return 200, {"success": True, "status": "already_processed"}
    if result.in_progress:
        return _error(409, "Event is already being processed")

    # --- Signature ---
    try:
        _check_signature(envelope, raw_body, headers)
    except ConfigurationError as e:
        # Our misconfiguration, not the sender's: leave the event retryable
        logger.error(f"Webhook {envelope.id} rejected: {e}")
        event_store.mark_processed(envelope.id, error=f"Configuration error: {e}")
        return _error(e.http_status, "Webhook verification is not configured")
    except SignatureInvalid as e:
        logger.warning(f"Webhook {envelope.id} rejected: {e}")
        event_store.mark_processed(envelope.id, error=str(e))
        return _error(e.http_status, "Invalid signature")

    # --- Dispatch ---
    try:
        handled = dispatch(envelope)
    except ResourceNotFound as e:
        db.session.rollback()
        event_store.mark_processed(envelope.id, error=str(e))
        if not e.retryable:
            logger.warning(f"Webhook {envelope.id} unresolvable: {e}")
            return 200, {"success": True, "status": "unresolvable"}
        logger.warning(f"Webhook {envelope.id} deferred: {e}")
        return _error(e.http_status, str(e))
    except BillingError as e:
        db.session.rollback()
        logger.error(f"Error handling {envelope.event_type} ({envelope.id}): {e}")
        event_store.mark_processed(envelope.id, error=str(e))
        return _error(e.http_status, str(e))
    except Exception as e:
        logger.error(f"Error handling {envelope.event_type} ({envelope.id}): {e}", exc_info=True)
        db.session.rollback()
        event_store.mark_processed(envelope.id, error=str(e) or e.__class__.__name__)
        return _error(500, "Internal error while processing event")

    event_store.mark_processed(envelope.id)
    return 200, {"success": True, "status": "processed" if handled else "ignored"}
