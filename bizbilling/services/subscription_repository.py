"""Subscription repository — DB read/merge helpers for subscriptions,
user settings, billing plans and the payment ledger.

All writes are last-write-wins merges on the natural key
(provider_subscription_id, user_id) and only flush(); the webhook
orchestrator owns the commit boundary.

User settings are only ever written through update_user_settings(), which
applies one of the enumerated SettingsEffect projections. Handlers name the
effect; the field-level mapping lives here, in one place.
"""

import enum
import logging

from bizbilling.extensions import db
from bizbilling.models.ledger import PaymentTransaction
from bizbilling.models.subscription import BillingPlan, Subscription
from bizbilling.models.user_settings import UserAccountSettings

logger = logging.getLogger(__name__)

DEFAULT_PLAN_TYPE = "starter"


# ──────────────────────────────────────────────
# Plan resolution
# ──────────────────────────────────────────────

def plan_type_for_product(product_id):
    """Map our product identifier to a plan tier.

    Accepts both the short form ("PRO") and the catalog form
    ("BIZMANAGER_PRO"). Returns None if it is neither.
    """
    normalized = (product_id or "").strip().upper()
    for plan_type in ("pro", "starter"):
        suffix = plan_type.upper()
        if normalized == suffix or normalized.endswith(f"_{suffix}"):
            return plan_type
    return None


def resolve_plan_type(provider_plan_id):
    """Resolve a PayPal plan ID to "starter" or "pro" via billing_plans.

    Unknown plans fall back to "starter" and log a warning; the plan sent by
    the client is never trusted.
    """
    plan = None
    if provider_plan_id:
        plan = BillingPlan.query.filter_by(provider_plan_id=provider_plan_id).first()

    if plan is None:
        logger.warning(
            f"Unknown PayPal plan {provider_plan_id!r}, defaulting to {DEFAULT_PLAN_TYPE}"
        )
        return DEFAULT_PLAN_TYPE

    plan_type = plan_type_for_product(plan.product_id)
    if plan_type is None:
        logger.warning(
            f"PayPal plan {provider_plan_id} maps to unrecognised product "
            f"{plan.product_id!r}, defaulting to {DEFAULT_PLAN_TYPE}"
        )
        return DEFAULT_PLAN_TYPE
    return plan_type


def upsert_billing_plan(provider_plan_id, product_id, name=None, status="ACTIVE"):
    plan = BillingPlan.query.filter_by(provider_plan_id=provider_plan_id).first()
    if plan:
        plan.product_id = product_id
        if name:
            plan.name = name
        plan.status = status
    else:
        plan = BillingPlan(
            provider_plan_id=provider_plan_id,
            product_id=product_id,
            name=name,
            status=status,
        )
        db.session.add(plan)
    db.session.flush()
    return plan


# ──────────────────────────────────────────────
# Subscriptions
# ──────────────────────────────────────────────

def get_by_provider_subscription_id(provider_subscription_id):
    return Subscription.query.filter_by(
        provider_subscription_id=provider_subscription_id
    ).first()


def upsert_subscription(provider_subscription_id, user_id=None, **fields):
    """Create or merge a Subscription by provider_subscription_id.

    Only the given fields are written. user_id is set on insert and never
    changed afterwards; a conflicting user_id is logged and ignored.
    Returns the Subscription instance.
    """
    sub = get_by_provider_subscription_id(provider_subscription_id)

    if sub is None:
        if not user_id:
            raise ValueError(
                f"Cannot create subscription {provider_subscription_id} without a user_id"
            )
        sub = Subscription(
            provider_subscription_id=provider_subscription_id,
            user_id=user_id,
        )
        db.session.add(sub)
    elif user_id and sub.user_id != user_id:
        logger.warning(
            f"Ignoring user_id change on subscription {provider_subscription_id}: "
            f"{sub.user_id} -> {user_id}"
        )

    for name, value in fields.items():
        if not hasattr(Subscription, name):
            raise AttributeError(f"Subscription has no field {name!r}")
        setattr(sub, name, value)

    db.session.flush()
    return sub


def find_user_id_by_payer(payer_id):
    """Correlate a PayPal payer ID with one of our users via their subscription."""
    if not payer_id:
        return None
    sub = Subscription.query.filter_by(payer_id=payer_id).first()
    return sub.user_id if sub else None


# ──────────────────────────────────────────────
# User settings
# ──────────────────────────────────────────────

class SettingsEffect(enum.Enum):
    """Named user-settings projections, one per kind of transition."""

    ACTIVATED = "activated"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    RENEWED = "renewed"
    SUSPENDED = "suspended"
    REACTIVATED = "reactivated"
    PLAN_CHANGED = "plan_changed"
    PAID = "paid"
    REFUNDED = "refunded"
    SYNCED = "synced"


# Fixed field values per effect. Per-event values (plan, expiry, reason...)
# are passed to update_user_settings() and merged over these.
_EFFECT_FIELDS = {
    SettingsEffect.ACTIVATED: {
        "subscription_status": "active",
        "payment_status": "active",
        "auto_renew": True,
        "is_in_trial": False,
        "cancellation_reason": None,
    },
    SettingsEffect.CANCELLED: {
        "subscription_status": "cancelled",
        "auto_renew": False,
    },
    SettingsEffect.EXPIRED: {
        "plan": "free",
        "subscription_status": "expired",
        "auto_renew": False,
    },
    SettingsEffect.RENEWED: {
        "subscription_status": "active",
        "payment_status": "active",
        "is_in_trial": False,
    },
    SettingsEffect.SUSPENDED: {
        "subscription_status": "suspended",
        "payment_status": "failed",
    },
    SettingsEffect.REACTIVATED: {
        "subscription_status": "active",
        "payment_status": "active",
        "auto_renew": True,
        "cancellation_reason": None,
    },
    SettingsEffect.PLAN_CHANGED: {},
    SettingsEffect.PAID: {
        "payment_status": "active",
        "is_in_trial": False,
    },
    SettingsEffect.REFUNDED: {
        "plan": "free",
        "payment_status": "refunded",
    },
    SettingsEffect.SYNCED: {},
}

_SETTINGS_FIELDS = {
    "plan",
    "subscription_status",
    "payment_status",
    "auto_renew",
    "is_in_trial",
    "subscription_expiry",
    "cancellation_reason",
    "last_payment_date",
    "synced_at",
}


def get_user_settings(user_id):
    return UserAccountSettings.query.filter_by(user_id=user_id).first()


def update_user_settings(user_id, effect, **values):
    """Merge a settings projection into the user's row, creating it if needed.

    `effect` selects the fixed fields; `values` carries the event-specific
    ones (plan, subscription_expiry, cancellation_reason, ...).
    Returns the UserAccountSettings instance.
    """
    unknown = set(values) - _SETTINGS_FIELDS
    if unknown:
        raise ValueError(f"Unknown user settings fields: {', '.join(sorted(unknown))}")

    fields = {**_EFFECT_FIELDS[effect], **values}

    settings = get_user_settings(user_id)
    if settings is None:
        settings = UserAccountSettings(user_id=user_id)
        db.session.add(settings)

    for name, value in fields.items():
        setattr(settings, name, value)

    db.session.flush()
    logger.info(f"User settings for {user_id} updated ({effect.value})")
    return settings


# ──────────────────────────────────────────────
# Ledger
# ──────────────────────────────────────────────

def find_transaction(provider_transaction_id):
    """Return the original (non-refund, non-dispute) ledger entry for a PayPal
    transaction ID, or None."""
    if not provider_transaction_id:
        return None
    return (
        PaymentTransaction.query
        .filter_by(provider_transaction_id=provider_transaction_id)
        .filter(PaymentTransaction.transaction_type.in_(("activation", "renewal", "payment")))
        .order_by(PaymentTransaction.created_at.asc())
        .first()
    )


def record_transaction(transaction_type, amount, status, user_id=None,
                       currency=None, metadata=None, **fields):
    """Append a ledger entry. Ledger rows are never updated afterwards."""
    txn = PaymentTransaction(
        user_id=user_id,
        transaction_type=transaction_type,
        amount=amount,
        currency=currency,
        status=status,
        metadata_=metadata or {},
        **fields,
    )
    db.session.add(txn)
    db.session.flush()
    return txn
