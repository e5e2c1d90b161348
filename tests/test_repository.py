"""Tests for the subscription repository and notification queue."""

import pytest

from bizbilling.services import notification_queue
from bizbilling.services import subscription_repository as repo
from bizbilling.services.subscription_repository import SettingsEffect


class TestPlanResolution:
    @pytest.mark.parametrize("product_id, expected", [
        ("PRO", "pro"),
        ("BIZMANAGER_PRO", "pro"),
        ("starter", "starter"),
        ("BIZMANAGER_STARTER", "starter"),
        ("ENTERPRISE", None),
        (None, None),
    ])
    def test_plan_type_for_product(self, product_id, expected):
        assert repo.plan_type_for_product(product_id) == expected

    def test_resolve_seeded_plan(self, plans):
        assert repo.resolve_plan_type("plan-pro") == "pro"
        assert repo.resolve_plan_type("plan-starter") == "starter"

    def test_unknown_plan_falls_back_to_starter(self, plans, caplog):
        assert repo.resolve_plan_type("P-UNKNOWN") == "starter"
        assert "Unknown PayPal plan" in caplog.text

    def test_upsert_billing_plan_updates_in_place(self, db_session):
        repo.upsert_billing_plan("P-1", "BIZMANAGER_STARTER")
        repo.upsert_billing_plan("P-1", "BIZMANAGER_PRO", name="Pro monthly")
        db_session.commit()
        assert repo.resolve_plan_type("P-1") == "pro"


class TestUpsertSubscription:
    def test_create_requires_user_id(self):
        with pytest.raises(ValueError):
            repo.upsert_subscription("I-1", status="ACTIVE")

    def test_merge_keeps_user_id(self, db_session):
        repo.upsert_subscription("I-1", user_id="user-1", status="ACTIVE")
        sub = repo.upsert_subscription("I-1", user_id="user-2", status="SUSPENDED")
        assert sub.user_id == "user-1"
        assert sub.status == "SUSPENDED"

    def test_unknown_field_rejected(self):
        repo.upsert_subscription("I-1", user_id="user-1")
        with pytest.raises(AttributeError):
            repo.upsert_subscription("I-1", colour="blue")

    def test_find_user_by_payer(self):
        repo.upsert_subscription("I-1", user_id="user-1", payer_id="PAYER-1")
        assert repo.find_user_id_by_payer("PAYER-1") == "user-1"
        assert repo.find_user_id_by_payer("PAYER-2") is None
        assert repo.find_user_id_by_payer(None) is None


class TestUserSettings:
    def test_effect_creates_row(self):
        settings = repo.update_user_settings("user-1", SettingsEffect.ACTIVATED, plan="pro")
        assert settings.plan == "pro"
        assert settings.subscription_status == "active"
        assert settings.is_in_trial is False

    def test_values_override_effect_defaults(self):
        repo.update_user_settings("user-1", SettingsEffect.ACTIVATED, plan="pro")
        settings = repo.update_user_settings("user-1", SettingsEffect.EXPIRED)
        assert settings.plan == "free"
        assert settings.subscription_status == "expired"
        assert settings.auto_renew is False

    def test_unknown_settings_field_rejected(self):
        with pytest.raises(ValueError, match="colour"):
            repo.update_user_settings("user-1", SettingsEffect.SYNCED, colour="blue")


class TestLedger:
    def test_find_transaction_ignores_refunds(self, db_session):
        repo.record_transaction("refund", -10, "completed", user_id="u",
                                provider_transaction_id="CAP-1")
        assert repo.find_transaction("CAP-1") is None

        repo.record_transaction("payment", 10, "completed", user_id="u",
                                currency="PHP", provider_transaction_id="CAP-1")
        txn = repo.find_transaction("CAP-1")
        assert txn.transaction_type == "payment"
        assert txn.payment_method == "paypal"

    def test_find_transaction_without_id(self):
        assert repo.find_transaction(None) is None


class TestNotificationQueue:
    def test_enqueue_and_pending(self, db_session):
        notification_queue.enqueue("user-1", "refund", "Refund Processed", "Done.",
                                   {"refund_id": "REF-1"})
        sent = notification_queue.enqueue("user-1", "dispute", "Payment Dispute", "Open.")
        sent.sent = True
        db_session.commit()

        pending = notification_queue.pending()
        assert [n.notification_type for n in pending] == ["refund"]
        assert pending[0].metadata_ == {"refund_id": "REF-1"}
