"""Billing error taxonomy.

Raised by services and handlers, caught only at the webhook orchestration
boundary (services/webhook_service.py) and by the CLI commands, where they
are recorded and turned into an HTTP status or a console message.
"""


class BillingError(Exception):
    """Base class for every error this package raises on purpose."""

    http_status = 500


class ConfigurationError(BillingError):
    """Required credentials or settings are missing."""

    http_status = 500


class MalformedPayload(BillingError):
    """The webhook body is not a usable PayPal event."""

    http_status = 400


class UnparsableBody(MalformedPayload):
    """The body is not a JSON object at all. Answered with 500 so PayPal
    redelivers it."""

    http_status = 500


class SignatureInvalid(BillingError):
    """The event could not be proven to come from PayPal."""

    http_status = 401


class ResourceNotFound(BillingError):
    """A subscription or transaction referenced by an event is missing.

    retryable=True means the record may still show up (e.g. a payment event
    that overtook the activation event), so the provider should redeliver.
    retryable=False means the event can never be resolved and is
    acknowledged as-is.
    """

    def __init__(self, message, retryable=True):
        super().__init__(message)
        self.retryable = retryable

    @property
    def http_status(self):
        return 500 if self.retryable else 200


class DownstreamUnavailable(BillingError):
    """A PayPal API call failed (network error or non-2xx response)."""

    http_status = 500
