"""Event dispatcher — routes a webhook envelope to its handler.

The resource is validated against the handler's schema here, once, so a
payload missing a required field fails as MalformedPayload before any state
is touched. Unknown event types are acknowledged and ignored.
"""

import logging

from pydantic import ValidationError

from bizbilling.errors import MalformedPayload
from bizbilling.schemas.events import (
    CaptureResource,
    DisputeResource,
    RefundResource,
    SubscriptionActivated,
    SubscriptionCancelled,
    SubscriptionCreated,
    SubscriptionCycleCompleted,
    SubscriptionExpired,
    SubscriptionPaymentCompleted,
    SubscriptionPaymentFailed,
    SubscriptionReactivated,
    SubscriptionUpdated,
)
from bizbilling.services import subscription_handlers as h

logger = logging.getLogger(__name__)

# event_type -> (handler, resource schema)
EVENT_HANDLERS = {
    "BILLING.SUBSCRIPTION.CREATED": (h.handle_subscription_created, SubscriptionCreated),
    "BILLING.SUBSCRIPTION.ACTIVATED": (h.handle_subscription_activated, SubscriptionActivated),
    "BILLING.SUBSCRIPTION.CANCELLED": (h.handle_subscription_cancelled, SubscriptionCancelled),
    "BILLING.SUBSCRIPTION.SUSPENDED": (h.handle_subscription_cancelled, SubscriptionCancelled),
    "BILLING.SUBSCRIPTION.EXPIRED": (h.handle_subscription_expired, SubscriptionExpired),
    "BILLING.SUBSCRIPTION.PAYMENT.COMPLETED": (
        h.handle_subscription_payment_completed, SubscriptionPaymentCompleted,
    ),
    "BILLING.SUBSCRIPTION.PAYMENT.FAILED": (
        h.handle_subscription_payment_failed, SubscriptionPaymentFailed,
    ),
    "BILLING.SUBSCRIPTION.RE-ACTIVATED": (
        h.handle_subscription_reactivated, SubscriptionReactivated,
    ),
    "BILLING.SUBSCRIPTION.UPDATED": (h.handle_subscription_updated, SubscriptionUpdated),
    "BILLING.SUBSCRIPTION.CYCLE.COMPLETED": (
        h.handle_subscription_cycle_completed, SubscriptionCycleCompleted,
    ),
    "PAYMENT.CAPTURE.COMPLETED": (h.handle_payment_captured, CaptureResource),
    "CHECKOUT.ORDER.APPROVED": (h.handle_payment_captured, CaptureResource),
    "PAYMENT.CAPTURE.DECLINED": (h.handle_payment_declined, CaptureResource),
    "PAYMENT.CAPTURE.PENDING": (h.handle_payment_declined, CaptureResource),
    "CHECKOUT.ORDER.VOIDED": (h.handle_payment_declined, CaptureResource),
    "PAYMENT.CAPTURE.REFUNDED": (h.handle_refund, RefundResource),
    "CUSTOMER.DISPUTE.CREATED": (h.handle_dispute, DisputeResource),
    "CUSTOMER.DISPUTE.UPDATED": (h.handle_dispute, DisputeResource),
    "CUSTOMER.DISPUTE.RESOLVED": (h.handle_dispute, DisputeResource),
}


def dispatch(envelope):
    """Run the handler registered for envelope.event_type.

    Returns True if a handler ran, False for an unhandled event type.
    Handler exceptions propagate to the caller.
    """
    entry = EVENT_HANDLERS.get(envelope.event_type)
    if entry is None:
        logger.info(f"Unhandled webhook event type: {envelope.event_type}")
        return False

    handler, schema = entry
    try:
        resource = schema.model_validate(envelope.resource)
    except ValidationError as e:
        raise MalformedPayload(
            f"Invalid {envelope.event_type} resource: {e.error_count()} validation error(s)"
        ) from e

    handler(resource, envelope)
    return True
