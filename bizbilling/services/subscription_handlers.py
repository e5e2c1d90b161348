"""Subscription state machine — one handler per PayPal event family.

    CREATED -> ACTIVE <-> SUSPENDED -> CANCELLED | EXPIRED
    (RE-ACTIVATED moves CANCELLED/SUSPENDED back to ACTIVE)

Every handler receives the typed resource (validated by the dispatcher) and
the event envelope, and only stages changes: subscription merges, user
settings projections, ledger rows and queued notifications are flushed into
the session and committed by the orchestrator together with the event's
processed flag.

Handlers must be safe to re-apply. Period ends only move forward, failure
counters reset on any successful payment, and "first seen" timestamps
(cancelled_at) are kept on replays.
"""

import calendar
import logging
from datetime import datetime, timezone
from decimal import Decimal

from flask import current_app

from bizbilling.errors import MalformedPayload, ResourceNotFound
from bizbilling.services import notification_queue
from bizbilling.services import subscription_repository as repo
from bizbilling.services.subscription_repository import SettingsEffect

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("CANCELLED", "EXPIRED")
PRE_ACTIVE_STATUSES = ("APPROVAL_PENDING", "APPROVED", "CREATED")


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────

def as_utc(dt):
    """Normalize a datetime to aware UTC (SQLite hands back naive values)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def add_months(dt, months=1):
    """Same day-of-month `months` later, clamped to the month's last day."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def later_of(current, candidate):
    """Monotonic guard for period ends: never move a stored end backwards."""
    if current is None:
        return as_utc(candidate)
    if candidate is None:
        return as_utc(current)
    return max(as_utc(current), as_utc(candidate))


def event_time(event, fallback=None):
    """The event's own timestamp, so replays compute the same periods."""
    if event.create_time:
        return as_utc(event.create_time)
    if fallback is not None:
        return as_utc(fallback)
    return datetime.now(timezone.utc)


def _fmt_date(dt):
    return as_utc(dt).strftime("%B %d, %Y") if dt else "the end of your current period"


def _require_subscription(provider_subscription_id, event):
    sub = repo.get_by_provider_subscription_id(provider_subscription_id)
    if sub is None:
        # The subscription may simply not have been activated locally yet;
        # a provider redelivery can succeed later.
        raise ResourceNotFound(
            f"{event.event_type}: no local subscription {provider_subscription_id}",
            retryable=True,
        )
    return sub


def _plan_price(plan_type):
    return Decimal(current_app.config["PLAN_PRICES"][plan_type])


def plan_for_amount(amount, currency):
    """Infer the plan tier from a one-off payment using fixed PHP price bands."""
    local_currency = current_app.config["ACTIVATION_CURRENCY"]
    amount = Decimal(amount)
    if (currency or "").upper() != local_currency:
        amount = amount * Decimal(str(current_app.config["USD_TO_PHP_RATE"]))

    if amount >= _plan_price("pro"):
        return "pro"
    if amount >= _plan_price("starter"):
        return "starter"
    return "free"


# ──────────────────────────────────────────────
# BILLING.SUBSCRIPTION.*
# ──────────────────────────────────────────────

def handle_subscription_created(resource, event):
    """BILLING.SUBSCRIPTION.CREATED: Record the subscription, no side effects."""
    existing = repo.get_by_provider_subscription_id(resource.id)
    user_id = resource.custom_id or (existing.user_id if existing else None)
    if not user_id:
        raise ResourceNotFound(
            f"Subscription {resource.id} has no custom_id; cannot attribute it to a user",
            retryable=False,
        )

    fields = {"plan_type": repo.resolve_plan_type(resource.plan_id)}
    if resource.start_time:
        fields["start_time"] = resource.start_time
    if resource.plan_id:
        fields["provider_plan_id"] = resource.plan_id
    if resource.payer_id:
        fields["payer_id"] = resource.payer_id
    if resource.next_billing_time:
        fields["next_billing_time"] = resource.next_billing_time

    # A late CREATED must not drag an already-activated row back
    if existing is None or existing.status in PRE_ACTIVE_STATUSES:
        fields["status"] = resource.status or "CREATED"

    repo.upsert_subscription(resource.id, user_id=user_id, **fields)
    logger.info(f"Subscription {resource.id} created for user {user_id}")


def handle_subscription_activated(resource, event):
    """BILLING.SUBSCRIPTION.ACTIVATED: Start the first paid period."""
    existing = repo.get_by_provider_subscription_id(resource.id)
    user_id = resource.custom_id or (existing.user_id if existing else None)
    if not user_id:
        raise ResourceNotFound(
            f"Activated subscription {resource.id} has no custom_id and no local row",
            retryable=True,
        )

    # Only RE-ACTIVATED leaves a terminal state
    if existing is not None and existing.status in TERMINAL_STATUSES:
        logger.info(
            f"Ignoring late activation of {resource.id}: subscription is {existing.status}"
        )
        return

    plan_id = resource.plan_id or (existing.provider_plan_id if existing else None)
    plan_type = repo.resolve_plan_type(plan_id)

    start = as_utc(resource.start_time) or event_time(event)
    period_end = as_utc(resource.next_billing_time) or add_months(start, 1)

    fields = {
        "status": "ACTIVE",
        "plan_type": plan_type,
        "provider_plan_id": plan_id,
        "start_time": start,
        "cancel_at_period_end": False,
        "cancelled_at": None,
        "cancellation_reason": None,
        "failed_payment_count": 0,
    }
    if resource.payer_id:
        fields["payer_id"] = resource.payer_id

    stored_end = as_utc(existing.current_period_end) if existing else None
    if stored_end is None or period_end > stored_end:
        fields["current_period_start"] = start
        fields["current_period_end"] = period_end
        fields["next_billing_time"] = as_utc(resource.next_billing_time) or period_end
    else:
        logger.info(
            f"Activation of {resource.id} keeps later period end {stored_end.isoformat()}"
        )
        period_end = stored_end

    sub = repo.upsert_subscription(resource.id, user_id=user_id, **fields)

    repo.update_user_settings(
        sub.user_id,
        SettingsEffect.ACTIVATED,
        plan=plan_type,
        subscription_expiry=period_end,
    )

    currency = current_app.config["ACTIVATION_CURRENCY"]
    amount = _plan_price(plan_type)
    repo.record_transaction(
        "activation",
        amount,
        "completed",
        user_id=sub.user_id,
        currency=currency,
        provider_subscription_id=resource.id,
        payer_id=sub.payer_id,
        plan_id=plan_type,
        metadata={"event_id": event.id, "provider_plan_id": plan_id},
    )

    notification_queue.enqueue(
        sub.user_id,
        "subscription_activated",
        "Subscription Activated",
        f"Your {plan_type.title()} subscription is now active. "
        f"Next billing date: {_fmt_date(period_end)}.",
        {"subscription_id": resource.id, "plan": plan_type, "amount": str(amount),
         "currency": currency},
    )
    logger.info(f"Subscription {resource.id} activated ({plan_type}) for user {sub.user_id}")


def handle_subscription_cancelled(resource, event):
    """BILLING.SUBSCRIPTION.CANCELLED and .SUSPENDED (provider-side cancel path)."""
    sub = _require_subscription(resource.id, event)

    if resource.status:
        status = resource.status
    elif event.event_type.endswith("SUSPENDED"):
        status = "SUSPENDED"
    else:
        status = "CANCELLED"

    apply_cancellation(sub, status, resource.cancellation_reason, event_time(event))


def apply_cancellation(sub, status, reason, when):
    """Cancellation transition, shared by the webhook and the operator cancel."""
    reason = reason or sub.cancellation_reason or "Cancelled via PayPal"

    repo.upsert_subscription(
        sub.provider_subscription_id,
        status=status,
        cancel_at_period_end=True,
        cancelled_at=sub.cancelled_at or when,
        cancellation_reason=reason,
    )

    repo.update_user_settings(
        sub.user_id,
        SettingsEffect.CANCELLED,
        cancellation_reason=reason,
    )

    notification_queue.enqueue(
        sub.user_id,
        "subscription_cancelled",
        "Subscription Cancelled",
        f"Your subscription has been cancelled. You can continue using your "
        f"{sub.plan_type} plan until {_fmt_date(sub.current_period_end)}.",
        {
            "subscription_id": sub.provider_subscription_id,
            "plan": sub.plan_type,
            "status": status,
            "expires_at": as_utc(sub.current_period_end).isoformat()
            if sub.current_period_end else None,
            "reason": reason,
        },
    )
    logger.info(f"Subscription {sub.provider_subscription_id} cancelled ({status})")


def handle_subscription_expired(resource, event):
    """BILLING.SUBSCRIPTION.EXPIRED: Drop the user to the free plan."""
    sub = _require_subscription(resource.id, event)

    repo.upsert_subscription(resource.id, status="EXPIRED", cancel_at_period_end=False)

    repo.update_user_settings(
        sub.user_id,
        SettingsEffect.EXPIRED,
        subscription_expiry=sub.current_period_end,
    )

    notification_queue.enqueue(
        sub.user_id,
        "subscription_expired",
        "Subscription Expired",
        f"Your {sub.plan_type} subscription has expired and your account is now "
        f"on the Free plan. Subscribe again any time to restore your features.",
        {"subscription_id": resource.id, "plan": sub.plan_type},
    )
    logger.info(f"Subscription {resource.id} expired")


def handle_subscription_payment_completed(resource, event):
    """BILLING.SUBSCRIPTION.PAYMENT.COMPLETED: Renew for one month."""
    sub = _require_subscription(resource.id, event)

    last_payment = resource.last_payment
    if last_payment is None or last_payment.amount is None:
        raise MalformedPayload(
            f"Payment completed for {resource.id} without a last_payment amount"
        )

    paid_at = event_time(event, fallback=last_payment.time)
    period_end = add_months(paid_at, 1)
    stored_end = as_utc(sub.current_period_end)

    fields = {
        "failed_payment_count": 0,
        "last_payment_amount": last_payment.amount.value,
        "last_payment_date": as_utc(last_payment.time) or paid_at,
    }
    if stored_end is None or period_end > stored_end:
        fields["current_period_start"] = paid_at
        fields["current_period_end"] = period_end
    else:
        logger.info(
            f"Payment for {resource.id} does not extend period end {stored_end.isoformat()}"
        )
        period_end = stored_end
    fields["next_billing_time"] = later_of(
        resource.billing_info.next_billing_time, period_end
    )

    terminal = sub.status in TERMINAL_STATUSES
    settings = {}
    if not terminal:
        fields["status"] = "ACTIVE"
        if sub.cancel_at_period_end:
            # Back from a provider-side suspension
            fields.update(cancel_at_period_end=False, cancelled_at=None,
                          cancellation_reason=None)
            settings.update(auto_renew=True, cancellation_reason=None)

    repo.upsert_subscription(resource.id, **fields)

    currency = last_payment.amount.currency_code or current_app.config["ACTIVATION_CURRENCY"]
    repo.record_transaction(
        "renewal",
        last_payment.amount.value,
        "completed",
        user_id=sub.user_id,
        currency=currency,
        provider_transaction_id=last_payment.transaction_id,
        provider_subscription_id=resource.id,
        payer_id=sub.payer_id,
        plan_id=sub.plan_type,
        metadata={"event_id": event.id},
    )

    repo.update_user_settings(
        sub.user_id,
        SettingsEffect.PAID if terminal else SettingsEffect.RENEWED,
        subscription_expiry=period_end,
        last_payment_date=fields["last_payment_date"],
        **settings,
    )

    notification_queue.enqueue(
        sub.user_id,
        "subscription_renewed",
        "Subscription Renewed",
        f"Your payment of {currency} {last_payment.amount.value} was received. "
        f"Your {sub.plan_type} plan is active until {_fmt_date(period_end)}.",
        {"subscription_id": resource.id, "amount": str(last_payment.amount.value),
         "currency": currency, "period_end": period_end.isoformat()},
    )
    logger.info(f"Subscription {resource.id} renewed until {period_end.isoformat()}")


def handle_subscription_payment_failed(resource, event):
    """BILLING.SUBSCRIPTION.PAYMENT.FAILED: Count failures, suspend at threshold."""
    sub = _require_subscription(resource.id, event)
    threshold = current_app.config["FAILED_PAYMENT_THRESHOLD"]

    count = (sub.failed_payment_count or 0) + 1
    suspend = count >= threshold and sub.status not in TERMINAL_STATUSES

    fields = {"failed_payment_count": count}
    if suspend:
        fields["status"] = "SUSPENDED"
    repo.upsert_subscription(resource.id, **fields)

    if suspend:
        repo.update_user_settings(sub.user_id, SettingsEffect.SUSPENDED)
        message = (
            f"We couldn't process your subscription payment after {count} attempts. "
            f"Your subscription has been suspended. Please update your payment "
            f"method to restore access."
        )
    else:
        message = (
            f"We couldn't process your subscription payment (attempt {count} of "
            f"{threshold}). Please update your payment method to avoid suspension."
        )

    notification_queue.enqueue(
        sub.user_id,
        "payment_failed",
        "Subscription Payment Failed",
        message,
        {"subscription_id": resource.id, "failed_payment_count": count,
         "suspended": suspend},
    )
    logger.info(
        f"Subscription {resource.id} payment failed ({count}/{threshold})"
        + (", suspended" if suspend else "")
    )


def handle_subscription_reactivated(resource, event):
    """BILLING.SUBSCRIPTION.RE-ACTIVATED: Back to ACTIVE, cancellation cleared."""
    apply_reactivation(_require_subscription(resource.id, event))


def apply_reactivation(sub):
    repo.upsert_subscription(
        sub.provider_subscription_id,
        status="ACTIVE",
        cancel_at_period_end=False,
        cancelled_at=None,
        cancellation_reason=None,
        failed_payment_count=0,
    )

    repo.update_user_settings(
        sub.user_id,
        SettingsEffect.REACTIVATED,
        plan=sub.plan_type,
        subscription_expiry=sub.current_period_end,
    )

    notification_queue.enqueue(
        sub.user_id,
        "subscription_reactivated",
        "Subscription Reactivated",
        f"Your {sub.plan_type} subscription has been reactivated successfully. "
        f"Your plan will continue to renew automatically.",
        {"subscription_id": sub.provider_subscription_id, "plan": sub.plan_type},
    )
    logger.info(f"Subscription {sub.provider_subscription_id} reactivated")


def handle_subscription_updated(resource, event):
    """BILLING.SUBSCRIPTION.UPDATED: Plan and status changes."""
    sub = _require_subscription(resource.id, event)
    old_plan = sub.plan_type

    fields = {}
    if resource.plan_id:
        fields["provider_plan_id"] = resource.plan_id
        fields["plan_type"] = repo.resolve_plan_type(resource.plan_id)
    if resource.status:
        fields["status"] = resource.status
    repo.upsert_subscription(resource.id, **fields)

    new_plan = fields.get("plan_type", old_plan)
    if new_plan != old_plan:
        repo.update_user_settings(sub.user_id, SettingsEffect.PLAN_CHANGED, plan=new_plan)
        notification_queue.enqueue(
            sub.user_id,
            "plan_changed",
            "Plan Changed",
            f"Your subscription has been changed from {old_plan.title()} to "
            f"{new_plan.title()}.",
            {"subscription_id": resource.id, "old_plan": old_plan, "new_plan": new_plan},
        )
        logger.info(f"Subscription {resource.id} plan changed {old_plan} -> {new_plan}")


def handle_subscription_cycle_completed(resource, event):
    """BILLING.SUBSCRIPTION.CYCLE.COMPLETED: Audit metadata only."""
    sub = _require_subscription(resource.id, event)
    repo.upsert_subscription(
        resource.id,
        billing_cycles=resource.cycle_executions,
        cycle_count=(sub.cycle_count or 0) + 1,
    )


# ──────────────────────────────────────────────
# One-off payments (PAYMENT.CAPTURE.*, CHECKOUT.ORDER.*)
# ──────────────────────────────────────────────

def _resolve_payer(resource):
    """User for a one-off payment: custom_id first, then a known payer ID."""
    return resource.custom_id or repo.find_user_id_by_payer(resource.payer_id)


def handle_payment_captured(resource, event):
    """PAYMENT.CAPTURE.COMPLETED / CHECKOUT.ORDER.APPROVED."""
    user_id = _resolve_payer(resource)
    amount, currency = resource.value, resource.currency
    raw = resource.model_dump(mode="json")

    if not user_id:
        logger.error(f"Cannot identify user for payment {resource.id}; recording unattributed")
        repo.record_transaction(
            "payment",
            amount,
            "completed",
            currency=currency,
            provider_transaction_id=resource.id,
            payer_id=resource.payer_id,
            metadata=raw,
        )
        return

    plan = plan_for_amount(amount, currency)
    paid_at = event_time(event)
    expiry = add_months(paid_at, 1)

    repo.record_transaction(
        "payment",
        amount,
        "completed",
        user_id=user_id,
        currency=currency,
        provider_transaction_id=resource.id,
        payer_id=resource.payer_id,
        plan_id=plan,
        metadata=raw,
    )

    settings = {"subscription_expiry": expiry, "last_payment_date": paid_at}
    if plan != "free":
        settings["plan"] = plan
    repo.update_user_settings(user_id, SettingsEffect.PAID, **settings)

    notification_queue.enqueue(
        user_id,
        "payment_success",
        "Payment Successful",
        f"Your payment of {currency} {amount} has been processed successfully. "
        f"Your {plan} plan is now active.",
        {"transaction_id": resource.id, "plan": plan},
    )
    logger.info(f"Payment {resource.id} completed for user {user_id} ({plan})")


def handle_payment_declined(resource, event):
    """PAYMENT.CAPTURE.DECLINED / .PENDING, CHECKOUT.ORDER.VOIDED."""
    user_id = _resolve_payer(resource)
    reason = (resource.status_details.reason if resource.status_details else None) or "Unknown"

    repo.record_transaction(
        "payment",
        resource.value,
        "failed",
        user_id=user_id,
        currency=resource.currency,
        provider_transaction_id=resource.id,
        payer_id=resource.payer_id,
        failure_reason=reason,
        metadata=resource.model_dump(mode="json"),
    )

    if not user_id:
        logger.error(f"Cannot identify user for failed payment {resource.id}")
        return

    notification_queue.enqueue(
        user_id,
        "payment_failed",
        "Payment Failed",
        f"Your payment of {resource.currency} {resource.value} could not be "
        f"processed. Reason: {reason}",
        {"transaction_id": resource.id, "reason": reason},
    )
    logger.info(f"Payment {resource.id} failed for user {user_id}: {reason}")


def handle_refund(resource, event):
    """PAYMENT.CAPTURE.REFUNDED: Negative ledger entry, downgrade to free."""
    original_id = resource.original_transaction_id
    original = repo.find_transaction(original_id)
    if original is None or not original.user_id:
        raise ResourceNotFound(
            f"Original transaction {original_id!r} not found for refund {resource.id}",
            retryable=False,
        )

    amount, currency = resource.value, resource.currency
    repo.record_transaction(
        "refund",
        -amount,
        "completed",
        user_id=original.user_id,
        currency=currency,
        provider_transaction_id=resource.id,
        provider_subscription_id=original.provider_subscription_id,
        metadata=resource.model_dump(mode="json"),
    )

    repo.update_user_settings(original.user_id, SettingsEffect.REFUNDED)

    notification_queue.enqueue(
        original.user_id,
        "refund",
        "Refund Processed",
        f"A refund of {currency} {amount} has been processed for your account.",
        {"refund_id": resource.id, "amount": str(amount),
         "original_transaction_id": original_id},
    )
    logger.info(f"Refund {resource.id} processed for user {original.user_id}")


def handle_dispute(resource, event):
    """CUSTOMER.DISPUTE.CREATED / .UPDATED / .RESOLVED."""
    original_id = resource.original_transaction_id
    original = repo.find_transaction(original_id)
    if original is None or not original.user_id:
        raise ResourceNotFound(
            f"Original transaction {original_id!r} not found for dispute {resource.dispute_id}",
            retryable=False,
        )

    amount = resource.dispute_amount.value if resource.dispute_amount else original.amount
    currency = (
        resource.dispute_amount.currency_code if resource.dispute_amount else None
    ) or original.currency
    status = resource.status or "OPEN"

    repo.record_transaction(
        "dispute",
        amount,
        status,
        user_id=original.user_id,
        currency=currency,
        provider_transaction_id=resource.dispute_id,
        provider_subscription_id=original.provider_subscription_id,
        dispute_reason=resource.reason,
        metadata=resource.model_dump(mode="json"),
    )

    notification_queue.enqueue(
        original.user_id,
        "dispute",
        "Payment Dispute",
        f"A dispute on your payment is now {status.lower()}. "
        f"Reason: {resource.reason or 'not given'}",
        {"dispute_id": resource.dispute_id, "reason": resource.reason, "status": status},
    )
    logger.info(f"Dispute {resource.dispute_id} ({status}) recorded for user {original.user_id}")
