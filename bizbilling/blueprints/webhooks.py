"""Webhooks blueprint — /webhook

Receives PayPal webhook events. The raw body is passed through untouched
because signature verification needs PayPal's original document.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from bizbilling.extensions import limiter
from bizbilling.services.webhook_service import process_webhook

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": (
        "authorization, content-type, x-paypal-transmission-id, x-paypal-cert-id, "
        "x-paypal-auth-algo, x-paypal-transmission-sig, x-paypal-transmission-time"
    ),
}


def _webhook_rate_limit():
    return current_app.config["WEBHOOK_RATE_LIMIT"]


@webhooks_bp.after_request
def add_cors_headers(response):
    response.headers.update(CORS_HEADERS)
    return response


@webhooks_bp.route("/webhook", methods=["POST", "OPTIONS"])
@limiter.limit(_webhook_rate_limit, methods=["POST"])
def paypal_webhook():
    """Receive and process a PayPal webhook event.

    1. OPTIONS -> CORS preflight, empty 200
    2. Everything else goes through process_webhook(), which records the
       event, verifies the signature, dispatches and commits
    3. 2xx tells PayPal to stop; 409/5xx make it redeliver
    """
    if request.method == "OPTIONS":
        return "", 200

    payload = request.get_data(as_text=True)
    status, body = process_webhook(payload, request.headers)

    if status >= 500:
        logger.error(f"Webhook processing failed ({status}): {body.get('error')}")
    return jsonify(body), status
