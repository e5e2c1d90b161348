"""Operator-initiated subscription actions against PayPal.

Each action calls PayPal first and only touches local state once PayPal has
accepted the request, then applies the same transition a webhook would and
writes a SyncOperation audit row. Every action commits its own transaction;
the matching webhook that PayPal sends afterwards converges on the same state.

Failures from PayPal surface as DownstreamUnavailable and are logged to the
sync log before being re-raised.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from bizbilling.errors import BillingError, ResourceNotFound
from bizbilling.extensions import db
from bizbilling.models.ledger import SyncOperation
from bizbilling.schemas.events import SubscriptionCreated
from bizbilling.services import subscription_repository as repo
from bizbilling.services.paypal_service import get_paypal_client
from bizbilling.services.subscription_handlers import (
    add_months,
    apply_cancellation,
    apply_reactivation,
    as_utc,
)
from bizbilling.services.subscription_repository import SettingsEffect

logger = logging.getLogger(__name__)

RETRY_REASON = "User requested payment retry after updating payment method"


class SubscriptionActionRefused(BillingError):
    """The subscription is in a state that does not allow the action."""

    http_status = 409


def _load(provider_subscription_id):
    sub = repo.get_by_provider_subscription_id(provider_subscription_id)
    if sub is None:
        raise ResourceNotFound(
            f"No local subscription {provider_subscription_id}", retryable=False
        )
    return sub


def _jsonable(value):
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def _log_operation(sub, operation_type, result, provider_data=None, local_updates=None):
    entry = SyncOperation(
        user_id=sub.user_id,
        provider_subscription_id=sub.provider_subscription_id,
        operation_type=operation_type,
        result=result,
        provider_data=provider_data,
        local_updates=local_updates,
    )
    db.session.add(entry)
    return entry


def _record_failure(sub, operation_type, error):
    db.session.rollback()
    _log_operation(sub, operation_type, "failed", local_updates={"error": str(error)})
    db.session.commit()
    logger.error(f"{operation_type} failed for {sub.provider_subscription_id}: {error}")


def cancel_subscription(provider_subscription_id, reason="Cancelled by user"):
    """Cancel at PayPal, then mark the subscription cancelled locally.

    Access continues until the current period end.
    """
    sub = _load(provider_subscription_id)
    client = get_paypal_client()

    try:
        client.cancel_subscription(provider_subscription_id, reason)
    except BillingError as e:
        _record_failure(sub, "cancel", e)
        raise

    apply_cancellation(sub, "CANCELLED", reason, datetime.now(timezone.utc))
    _log_operation(sub, "cancel", "success", local_updates={"reason": reason})
    db.session.commit()
    return sub


def reactivate_subscription(provider_subscription_id, reason="Reactivated by user"):
    """Activate at PayPal, then clear the local cancellation."""
    sub = _load(provider_subscription_id)
    if sub.status == "EXPIRED":
        raise SubscriptionActionRefused(
            f"Subscription {provider_subscription_id} has expired and cannot be reactivated"
        )

    client = get_paypal_client()
    try:
        client.activate_subscription(provider_subscription_id, reason)
    except BillingError as e:
        _record_failure(sub, "reactivate", e)
        raise

    apply_reactivation(sub)
    _log_operation(sub, "reactivate", "success", local_updates={"reason": reason})
    db.session.commit()
    return sub


def retry_payment(provider_subscription_id):
    """Ask PayPal to resume billing for a suspended subscription.

    Cancelled or expired subscriptions are refused. Returns the PayPal
    status seen before the retry.
    """
    sub = _load(provider_subscription_id)
    client = get_paypal_client()

    try:
        document = client.get_subscription(provider_subscription_id)
    except BillingError as e:
        _record_failure(sub, "retry_payment", e)
        raise

    provider_status = document.get("status")
    if provider_status in ("CANCELLED", "EXPIRED"):
        raise SubscriptionActionRefused(
            "Cannot retry payments for cancelled or expired subscriptions"
        )

    if provider_status == "SUSPENDED":
        try:
            client.activate_subscription(provider_subscription_id, RETRY_REASON)
        except BillingError as e:
            _record_failure(sub, "retry_payment", e)
            raise

    updates = {
        "retry_attempted_at": datetime.now(timezone.utc),
        "status": "ACTIVE" if provider_status == "SUSPENDED" else provider_status or sub.status,
    }
    repo.upsert_subscription(provider_subscription_id, **updates)
    _log_operation(
        sub,
        "retry_payment",
        "success",
        provider_data=document,
        local_updates={"status": updates["status"], "reactivation_requested":
                       provider_status == "SUSPENDED"},
    )
    db.session.commit()
    logger.info(f"Payment retry requested for {provider_subscription_id} ({provider_status})")
    return provider_status


def _settings_for_status(status):
    if status == "ACTIVE":
        payment_status = "active"
    elif status == "SUSPENDED":
        payment_status = "failed"
    else:
        payment_status = "cancelled"
    return {
        "subscription_status": status.lower(),
        "payment_status": payment_status,
        "auto_renew": status == "ACTIVE",
    }


def sync_subscription(provider_subscription_id):
    """Overwrite the local subscription and user settings from PayPal.

    Used to repair drift after missed webhooks. The period end still only
    moves forward. Returns the dict of subscription fields written.
    """
    sub = _load(provider_subscription_id)
    client = get_paypal_client()

    try:
        document = client.get_subscription(provider_subscription_id)
    except BillingError as e:
        _record_failure(sub, "sync", e)
        raise

    remote = SubscriptionCreated.model_validate(document)
    billing = remote.billing_info
    now = datetime.now(timezone.utc)
    status = remote.status or sub.status

    updates = {
        "status": status,
        "plan_type": repo.resolve_plan_type(remote.plan_id or sub.provider_plan_id),
        "failed_payment_count": (billing.failed_payments_count if billing else None) or 0,
        "cancel_at_period_end": status == "CANCELLED",
        "synced_at": now,
    }
    if remote.plan_id:
        updates["provider_plan_id"] = remote.plan_id

    next_billing = as_utc(remote.next_billing_time)
    if next_billing:
        updates["next_billing_time"] = next_billing
        stored_end = as_utc(sub.current_period_end)
        if stored_end is None or next_billing > stored_end:
            updates["current_period_start"] = add_months(next_billing, -1)
            updates["current_period_end"] = next_billing

    if billing and billing.last_payment and billing.last_payment.amount:
        updates["last_payment_amount"] = billing.last_payment.amount.value
        updates["last_payment_date"] = as_utc(billing.last_payment.time)
    if billing and billing.cycle_executions is not None:
        updates["billing_cycles"] = billing.cycle_executions
        updates["cycle_count"] = len(billing.cycle_executions)
    if status == "CANCELLED" and sub.cancelled_at is None:
        updates["cancelled_at"] = now

    repo.upsert_subscription(provider_subscription_id, **updates)

    settings = _settings_for_status(status)
    settings["plan"] = "free" if status == "EXPIRED" else updates["plan_type"]
    settings["subscription_expiry"] = sub.current_period_end
    settings["synced_at"] = now
    if updates.get("last_payment_date"):
        settings["last_payment_date"] = updates["last_payment_date"]
    repo.update_user_settings(sub.user_id, SettingsEffect.SYNCED, **settings)

    _log_operation(
        sub,
        "sync",
        "success",
        provider_data=document,
        local_updates={k: _jsonable(v) for k, v in updates.items()},
    )
    db.session.commit()
    logger.info(f"Subscription {provider_subscription_id} synced from PayPal ({status})")
    return updates
