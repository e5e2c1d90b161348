# Models package — import all models here so Alembic can discover them.

from bizbilling.models.webhook_event import WebhookEvent  # noqa: F401
from bizbilling.models.subscription import BillingPlan, Subscription  # noqa: F401
from bizbilling.models.user_settings import UserAccountSettings  # noqa: F401
from bizbilling.models.ledger import (  # noqa: F401
    NotificationQueueItem,
    PaymentTransaction,
    SyncOperation,
)
