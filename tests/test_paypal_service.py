"""Tests for the PayPal REST client (requests is mocked throughout)."""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from bizbilling.errors import ConfigurationError, DownstreamUnavailable
from bizbilling.services.paypal_service import (
    PayPalClient,
    extract_transmission_headers,
    get_paypal_client,
)

BODY = json.dumps({"id": "WH-1", "event_type": "BILLING.SUBSCRIPTION.ACTIVATED"})


def _response(status=200, payload=None):
    resp = MagicMock()
    resp.status_code = status
    resp.ok = 200 <= status < 300
    resp.json.return_value = payload or {}
    resp.text = json.dumps(payload or {})
    return resp


@pytest.fixture
def paypal():
    return PayPalClient(
        client_id="client",
        client_secret="secret",
        base_url="https://api-m.sandbox.paypal.test/",
        webhook_id="WH-TEST-0001",
        timeout=5,
    )


class TestTransmissionHeaders:
    def test_extracts_x_prefixed_headers(self, paypal_headers):
        fields = extract_transmission_headers(paypal_headers)
        assert fields["auth_algo"] == "SHA256withRSA"
        assert fields["transmission_id"] == "69cd13f0-d67a-11e5-baa3-778b53f4ae55"

    def test_accepts_bare_paypal_headers(self):
        fields = extract_transmission_headers({"paypal-cert-id": "CERT-1"})
        assert fields["cert_id"] == "CERT-1"
        assert fields["transmission_sig"] == ""


class TestAccessToken:
    @patch("bizbilling.services.paypal_service.requests.post")
    def test_token_exchange(self, mock_post, paypal):
        mock_post.return_value = _response(200, {"access_token": "A21AA"})

        assert paypal.get_access_token() == "A21AA"
        args, kwargs = mock_post.call_args
        assert args[0] == "https://api-m.sandbox.paypal.test/v1/oauth2/token"
        assert kwargs["auth"] == ("client", "secret")
        assert kwargs["data"] == "grant_type=client_credentials"
        assert kwargs["timeout"] == 5

    def test_missing_credentials(self):
        client = PayPalClient(None, None, "https://api-m.sandbox.paypal.test")
        with pytest.raises(ConfigurationError):
            client.get_access_token()

    @patch("bizbilling.services.paypal_service.requests.post")
    def test_rejected_credentials(self, mock_post, paypal):
        mock_post.return_value = _response(401, {"error_description": "Client Authentication failed"})
        with pytest.raises(DownstreamUnavailable, match="Client Authentication failed"):
            paypal.get_access_token()

    @patch("bizbilling.services.paypal_service.requests.post")
    def test_network_error(self, mock_post, paypal):
        mock_post.side_effect = requests.ConnectionError("unreachable")
        with pytest.raises(DownstreamUnavailable):
            paypal.get_access_token()


class TestVerifyWebhookSignature:
    @patch("bizbilling.services.paypal_service.requests.post")
    def test_success(self, mock_post, paypal, paypal_headers):
        mock_post.side_effect = [
            _response(200, {"access_token": "A21AA"}),
            _response(200, {"verification_status": "SUCCESS"}),
        ]

        assert paypal.verify_webhook_signature(BODY, paypal_headers) is True

        args, kwargs = mock_post.call_args
        assert args[0].endswith("/v1/notifications/verify-webhook-signature")
        assert kwargs["headers"]["Authorization"] == "Bearer A21AA"
        payload = kwargs["json"]
        assert payload["webhook_id"] == "WH-TEST-0001"
        assert payload["cert_id"] == "CERT-360caa42"
        assert payload["webhook_event"]["id"] == "WH-1"

    @patch("bizbilling.services.paypal_service.requests.post")
    def test_failure_status(self, mock_post, paypal, paypal_headers):
        mock_post.side_effect = [
            _response(200, {"access_token": "A21AA"}),
            _response(200, {"verification_status": "FAILURE"}),
        ]
        assert paypal.verify_webhook_signature(BODY, paypal_headers) is False

    @patch("bizbilling.services.paypal_service.requests.post")
    def test_missing_header(self, mock_post, paypal, paypal_headers):
        headers = dict(paypal_headers)
        del headers["x-paypal-transmission-sig"]
        assert paypal.verify_webhook_signature(BODY, headers) is False
        mock_post.assert_not_called()

    @patch("bizbilling.services.paypal_service.requests.post")
    def test_token_failure_fails_closed(self, mock_post, paypal, paypal_headers):
        mock_post.return_value = _response(500)
        assert paypal.verify_webhook_signature(BODY, paypal_headers) is False

    @patch("bizbilling.services.paypal_service.requests.post")
    def test_http_error_fails_closed(self, mock_post, paypal, paypal_headers):
        mock_post.side_effect = [
            _response(200, {"access_token": "A21AA"}),
            _response(400, {"message": "INVALID_REQUEST"}),
        ]
        assert paypal.verify_webhook_signature(BODY, paypal_headers) is False

    @patch("bizbilling.services.paypal_service.requests.post")
    def test_non_json_body(self, mock_post, paypal, paypal_headers):
        assert paypal.verify_webhook_signature("not json", paypal_headers) is False
        mock_post.assert_not_called()

    def test_missing_webhook_id(self, paypal_headers):
        client = PayPalClient("client", "secret", "https://api-m.sandbox.paypal.test")
        assert client.can_verify_webhooks is False
        assert client.verify_webhook_signature(BODY, paypal_headers) is False


class TestSubscriptionCalls:
    @patch("bizbilling.services.paypal_service.requests.get")
    @patch("bizbilling.services.paypal_service.requests.post")
    def test_get_subscription(self, mock_post, mock_get, paypal):
        mock_post.return_value = _response(200, {"access_token": "A21AA"})
        mock_get.return_value = _response(200, {"id": "I-1", "status": "ACTIVE"})

        assert paypal.get_subscription("I-1")["status"] == "ACTIVE"
        assert mock_get.call_args[0][0].endswith("/v1/billing/subscriptions/I-1")

    @patch("bizbilling.services.paypal_service.requests.post")
    def test_cancel_sends_reason(self, mock_post, paypal):
        mock_post.side_effect = [_response(200, {"access_token": "A21AA"}), _response(204)]

        paypal.cancel_subscription("I-1", "Too expensive")

        args, kwargs = mock_post.call_args
        assert args[0].endswith("/v1/billing/subscriptions/I-1/cancel")
        assert kwargs["json"] == {"reason": "Too expensive"}

    @patch("bizbilling.services.paypal_service.requests.post")
    def test_activate_error_carries_paypal_message(self, mock_post, paypal):
        mock_post.side_effect = [
            _response(200, {"access_token": "A21AA"}),
            _response(422, {"message": "SUBSCRIPTION_STATUS_INVALID"}),
        ]
        with pytest.raises(DownstreamUnavailable, match="SUBSCRIPTION_STATUS_INVALID"):
            paypal.activate_subscription("I-1", "Reactivated by user")


class TestAppIntegration:
    def test_client_built_from_config(self, app):
        client = get_paypal_client()
        assert client is app.extensions["paypal"]
        assert client.client_id == "paypal-client-test"
        assert client.webhook_id == "WH-TEST-0001"
        assert client.can_verify_webhooks is True
