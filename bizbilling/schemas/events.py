"""PayPal webhook schemas.

WebhookEnvelope is the outer event document. Each handler declares the
resource model it needs; the dispatcher validates the raw `resource` dict
against that model before the handler runs, so handlers only ever see typed
fields and never dig through optional nested dicts themselves.

Unknown keys are ignored: PayPal resources carry far more than we use.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class Money(BaseModel):
    """PayPal money object."""

    value: Decimal = Decimal("0")
    currency_code: str | None = None


class Payer(BaseModel):
    payer_id: str | None = None
    email_address: str | None = None


class LastPayment(BaseModel):
    amount: Money | None = None
    time: datetime | None = None
    transaction_id: str | None = None


class BillingInfo(BaseModel):
    next_billing_time: datetime | None = None
    last_payment: LastPayment | None = None
    failed_payments_count: int | None = None
    cycle_executions: list[dict] | None = None


class StatusChangeNote(BaseModel):
    reason: str | None = None


class WebhookEnvelope(BaseModel):
    """Outer PayPal webhook event."""

    id: str
    event_type: str
    resource_type: str | None = None
    resource: dict = {}
    summary: str | None = None
    create_time: datetime | None = None
    event_version: str | None = None

    @property
    def resource_id(self):
        return self.resource.get("id") or self.resource.get("dispute_id")


# ──────────────────────────────────────────────
# Subscription resources (BILLING.SUBSCRIPTION.*)
# ──────────────────────────────────────────────

class SubscriptionResource(BaseModel):
    """Fields shared by every BILLING.SUBSCRIPTION.* resource."""

    id: str
    status: str | None = None


class SubscriptionCreated(SubscriptionResource):
    custom_id: str | None = None  # our user ID, set at checkout
    plan_id: str | None = None
    start_time: datetime | None = None
    subscriber: Payer | None = None
    billing_info: BillingInfo | None = None

    @property
    def next_billing_time(self):
        return self.billing_info.next_billing_time if self.billing_info else None

    @property
    def payer_id(self):
        return self.subscriber.payer_id if self.subscriber else None


class SubscriptionActivated(SubscriptionCreated):
    pass


class SubscriptionCancelled(SubscriptionResource):
    status_change_note: str | None = None
    reason: str | None = None

    @property
    def cancellation_reason(self):
        return self.status_change_note or self.reason


class SubscriptionExpired(SubscriptionResource):
    pass


class SubscriptionPaymentCompleted(SubscriptionResource):
    billing_info: BillingInfo

    @property
    def last_payment(self):
        return self.billing_info.last_payment


class SubscriptionPaymentFailed(SubscriptionResource):
    billing_info: BillingInfo | None = None
    status_change_note: str | None = None


class SubscriptionReactivated(SubscriptionResource):
    status_change_note: str | None = None


class SubscriptionUpdated(SubscriptionResource):
    plan_id: str | None = None


class SubscriptionCycleCompleted(SubscriptionResource):
    billing_info: BillingInfo | None = None

    @property
    def cycle_executions(self):
        if self.billing_info and self.billing_info.cycle_executions is not None:
            return self.billing_info.cycle_executions
        return []


# ──────────────────────────────────────────────
# One-off payment resources (PAYMENT.CAPTURE.*, CHECKOUT.ORDER.*)
# ──────────────────────────────────────────────

class StatusDetails(BaseModel):
    reason: str | None = None


class Link(BaseModel):
    href: str
    rel: str | None = None


class CaptureResource(BaseModel):
    id: str
    status: str | None = None
    amount: Money | None = None
    custom_id: str | None = None
    invoice_id: str | None = None
    payer: Payer | None = None
    status_details: StatusDetails | None = None
    links: list[Link] = []

    @property
    def value(self):
        return self.amount.value if self.amount else Decimal("0")

    @property
    def currency(self):
        return (self.amount.currency_code if self.amount else None) or "USD"

    @property
    def payer_id(self):
        return self.payer.payer_id if self.payer else None


class RefundResource(CaptureResource):
    """PAYMENT.CAPTURE.REFUNDED. The refunded capture is found via invoice_id,
    or the `up` link pointing at the original capture."""

    @property
    def original_transaction_id(self):
        if self.invoice_id:
            return self.invoice_id
        for link in self.links:
            if link.rel == "up":
                return link.href.rstrip("/").rsplit("/", 1)[-1]
        return None


class DisputedTransaction(BaseModel):
    seller_transaction_id: str | None = None


class DisputeResource(BaseModel):
    dispute_id: str
    reason: str | None = None
    status: str | None = None
    dispute_amount: Money | None = None
    disputed_transactions: list[DisputedTransaction] = []

    @property
    def original_transaction_id(self):
        for txn in self.disputed_transactions:
            if txn.seller_transaction_id:
                return txn.seller_transaction_id
        return None
