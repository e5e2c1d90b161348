"""PayPal service — all PayPal REST API calls.

Responsible for:
- OAuth client-credentials token exchange
- Webhook signature verification (fail closed, returns a bool)
- Subscription control calls: get, cancel, activate

PayPalClient is built once per process in create_app() and stored in
app.extensions["paypal"]. It holds configuration only; every call fetches
its own short-lived access token, so nothing mutable is shared between
requests. Calls are blocking and never retried here.
"""

import json
import logging

import requests
from flask import current_app

from bizbilling.errors import ConfigurationError, DownstreamUnavailable

logger = logging.getLogger(__name__)

# Inbound header -> field name expected by verify-webhook-signature
TRANSMISSION_HEADERS = {
    "x-paypal-auth-algo": "auth_algo",
    "x-paypal-cert-id": "cert_id",
    "x-paypal-transmission-id": "transmission_id",
    "x-paypal-transmission-sig": "transmission_sig",
    "x-paypal-transmission-time": "transmission_time",
}


def extract_transmission_headers(headers):
    """Pull the five PayPal transmission headers out of a request's headers.

    Accepts both the x-paypal-* names and the bare paypal-* names PayPal
    itself sends. Missing headers come back as empty strings.
    """
    return {
        field: headers.get(header) or headers.get(header[2:]) or ""
        for header, field in TRANSMISSION_HEADERS.items()
    }


def _error_detail(resp):
    """Best-effort human message from a PayPal error response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.text
    return body.get("message") or body.get("error_description") or resp.text


class PayPalClient:
    """Thin blocking client over the PayPal REST API."""

    def __init__(self, client_id, client_secret, base_url, webhook_id=None, timeout=15):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = (base_url or "").rstrip("/")
        self.webhook_id = webhook_id
        self.timeout = timeout

    @classmethod
    def from_config(cls, config):
        return cls(
            client_id=config.get("PAYPAL_CLIENT_ID"),
            client_secret=config.get("PAYPAL_CLIENT_SECRET"),
            base_url=config.get("PAYPAL_BASE_URL"),
            webhook_id=config.get("PAYPAL_WEBHOOK_ID"),
            timeout=config.get("PAYPAL_HTTP_TIMEOUT", 15),
        )

    @property
    def is_configured(self):
        return bool(self.client_id and self.client_secret)

    @property
    def can_verify_webhooks(self):
        return self.is_configured and bool(self.webhook_id)

    # ──────────────────────────────────────────────
    # Auth
    # ──────────────────────────────────────────────

    def get_access_token(self):
        """Exchange client credentials for an access token.

        Raises ConfigurationError if credentials are missing,
        DownstreamUnavailable if PayPal refuses or can't be reached.
        """
        if not self.is_configured:
            raise ConfigurationError("PayPal client credentials are not configured")

        try:
            resp = requests.post(
                f"{self.base_url}/v1/oauth2/token",
                auth=(self.client_id, self.client_secret),
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                data="grant_type=client_credentials",
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DownstreamUnavailable(f"PayPal token request failed: {e}") from e

        if not resp.ok:
            raise DownstreamUnavailable(
                f"PayPal authentication failed ({resp.status_code}): {_error_detail(resp)}"
            )

        token = resp.json().get("access_token")
        if not token:
            raise DownstreamUnavailable("PayPal token response had no access_token")
        return token

    def _post(self, path, token, payload):
        try:
            return requests.post(
                f"{self.base_url}{path}",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {token}",
                },
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DownstreamUnavailable(f"PayPal request to {path} failed: {e}") from e

    # ──────────────────────────────────────────────
    # Webhook signature verification
    # ──────────────────────────────────────────────

    def verify_webhook_signature(self, raw_body, headers, webhook_id=None):
        """Ask PayPal whether this webhook delivery is genuine.

        Returns True only on an explicit verification_status == "SUCCESS".
        Every other outcome (missing header, bad body, token failure, HTTP
        error, FAILURE status) returns False. The caller decides what to do
        with a False.
        """
        webhook_id = webhook_id or self.webhook_id
        transmission = extract_transmission_headers(headers)

        missing = [field for field, value in transmission.items() if not value]
        if missing:
            logger.warning(f"Webhook missing transmission headers: {', '.join(missing)}")
            return False

        if not webhook_id:
            logger.error("Cannot verify webhook: PAYPAL_WEBHOOK_ID is not set")
            return False

        try:
            webhook_event = json.loads(raw_body)
        except (TypeError, ValueError):
            logger.warning("Cannot verify webhook: body is not valid JSON")
            return False

        try:
            token = self.get_access_token()
            resp = self._post(
                "/v1/notifications/verify-webhook-signature",
                token,
                {**transmission, "webhook_id": webhook_id, "webhook_event": webhook_event},
            )
        except (ConfigurationError, DownstreamUnavailable) as e:
            logger.error(f"Webhook verification unavailable: {e}")
            return False

        if not resp.ok:
            logger.error(f"Webhook verification call failed: {resp.status_code}")
            return False

        try:
            status = resp.json().get("verification_status")
        except ValueError:
            logger.error("Webhook verification returned a non-JSON body")
            return False

        if status != "SUCCESS":
            logger.warning(
                f"Webhook signature rejected for transmission "
                f"{transmission['transmission_id']}: {status}"
            )
            return False
        return True

    # ──────────────────────────────────────────────
    # Subscription control
    # ──────────────────────────────────────────────

    def get_subscription(self, subscription_id):
        """GET /v1/billing/subscriptions/{id}. Returns the PayPal document."""
        token = self.get_access_token()
        try:
            resp = requests.get(
                f"{self.base_url}/v1/billing/subscriptions/{subscription_id}",
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"Bearer {token}",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise DownstreamUnavailable(f"PayPal subscription lookup failed: {e}") from e

        if not resp.ok:
            raise DownstreamUnavailable(
                f"Failed to get subscription details ({resp.status_code}): {_error_detail(resp)}"
            )
        return resp.json()

    def cancel_subscription(self, subscription_id, reason):
        """POST /v1/billing/subscriptions/{id}/cancel (204 on success)."""
        token = self.get_access_token()
        resp = self._post(
            f"/v1/billing/subscriptions/{subscription_id}/cancel",
            token,
            {"reason": reason},
        )
        if not resp.ok:
            raise DownstreamUnavailable(f"PayPal cancellation failed: {_error_detail(resp)}")
        logger.info(f"PayPal subscription {subscription_id} cancelled")

    def activate_subscription(self, subscription_id, reason):
        """POST /v1/billing/subscriptions/{id}/activate (204 on success)."""
        token = self.get_access_token()
        resp = self._post(
            f"/v1/billing/subscriptions/{subscription_id}/activate",
            token,
            {"reason": reason},
        )
        if not resp.ok:
            raise DownstreamUnavailable(f"PayPal reactivation failed: {_error_detail(resp)}")
        logger.info(f"PayPal subscription {subscription_id} activated")


def get_paypal_client():
    """Return the process-wide PayPalClient for the current app."""
    client = current_app.extensions.get("paypal")
    if client is None:
        raise ConfigurationError("PayPal client is not initialised on this app")
    return client
