"""Shared test fixtures for the billing webhook test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, fake PayPal creds)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- signature_ok / signature_bad: patch PayPal's signature verification
- plans: billing_plans rows for the starter and pro PayPal plans
- make_event / post_event: build and deliver PayPal webhook envelopes
"""

import json
from unittest.mock import patch

import pytest

from bizbilling import create_app
from bizbilling.extensions import db as _db
from bizbilling.models.subscription import BillingPlan

PAYPAL_HEADERS = {
    "x-paypal-auth-algo": "SHA256withRSA",
    "x-paypal-cert-id": "CERT-360caa42",
    "x-paypal-transmission-id": "69cd13f0-d67a-11e5-baa3-778b53f4ae55",
    "x-paypal-transmission-sig": "lmI95Jx3Y9nhR5SJWlHVIWpg4AgFk7n9bCHSRxbrd8A9zrhdu2rMyFrmz+Zjh3s=",
    "x-paypal-transmission-time": "2024-01-01T00:00:05Z",
}


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def signature_ok():
    with patch(
        "bizbilling.services.paypal_service.PayPalClient.verify_webhook_signature",
        return_value=True,
    ) as mock_verify:
        yield mock_verify


@pytest.fixture
def signature_bad():
    with patch(
        "bizbilling.services.paypal_service.PayPalClient.verify_webhook_signature",
        return_value=False,
    ) as mock_verify:
        yield mock_verify


@pytest.fixture
def plans(db_session):
    """PayPal plan IDs mapped to our starter and pro products."""
    db_session.add(BillingPlan(provider_plan_id="plan-starter", product_id="BIZMANAGER_STARTER"))
    db_session.add(BillingPlan(provider_plan_id="plan-pro", product_id="PRO"))
    db_session.commit()


@pytest.fixture
def make_event():
    """Build a PayPal webhook envelope dict."""

    def _make(event_id, event_type, resource, create_time=None, resource_type=None):
        if resource_type is None:
            resource_type = "subscription" if event_type.startswith("BILLING.") else "capture"
        event = {
            "id": event_id,
            "event_type": event_type,
            "resource_type": resource_type,
            "resource": resource,
            "event_version": "1.0",
        }
        if create_time:
            event["create_time"] = create_time
        return event

    return _make


@pytest.fixture
def post_event(client):
    """POST a webhook envelope to /webhook with PayPal transmission headers."""

    def _post(event, headers=None):
        return client.post(
            "/webhook",
            data=json.dumps(event),
            content_type="application/json",
            headers=PAYPAL_HEADERS if headers is None else headers,
        )

    return _post


@pytest.fixture
def activated(plans, signature_ok, make_event, post_event):
    """An ACTIVE pro subscription sub-1 for user-1, period ending 2024-02-01."""
    event = make_event(
        "evt-1",
        "BILLING.SUBSCRIPTION.ACTIVATED",
        {
            "id": "sub-1",
            "status": "ACTIVE",
            "custom_id": "user-1",
            "plan_id": "plan-pro",
            "start_time": "2024-01-01T00:00:00Z",
            "subscriber": {"payer_id": "PAYER-1"},
            "billing_info": {"next_billing_time": "2024-02-01T00:00:00Z"},
        },
        create_time="2024-01-01T00:00:01Z",
    )
    resp = post_event(event)
    assert resp.status_code == 200
    return event


@pytest.fixture
def paypal_headers():
    return dict(PAYPAL_HEADERS)
