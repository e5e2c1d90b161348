"""Tests for the idempotent event store."""

from datetime import datetime, timedelta, timezone

from bizbilling.extensions import db
from bizbilling.models.webhook_event import WebhookEvent
from bizbilling.services import event_store


def _record(event_id="WH-1", **kwargs):
    return event_store.record_if_new(
        event_id,
        "BILLING.SUBSCRIPTION.ACTIVATED",
        "subscription",
        "I-BW452GLLEP1G",
        {"id": event_id},
        **kwargs,
    )


class TestRecordIfNew:
    def test_first_sighting_is_processable(self):
        result = _record()
        assert result.already_exists is False
        assert result.should_process is True

        event = event_store.get_event("WH-1")
        assert event.processed is False
        assert event.attempts == 1
        assert event.payload == {"id": "WH-1"}

    def test_after_success_is_already_processed(self):
        _record()
        event_store.mark_processed("WH-1")

        result = _record()
        assert result.already_exists is True
        assert result.already_processed is True
        assert result.should_process is False

    def test_after_failure_is_reclaimed(self):
        _record()
        event_store.mark_processed("WH-1", error="boom")

        result = _record()
        assert result.should_process is True

        db.session.expire_all()
        event = event_store.get_event("WH-1")
        assert event.processed is False
        assert event.processing_error is None
        assert event.attempts == 2

    def test_in_flight_claim_is_respected(self):
        _record()
        result = _record()
        assert result.in_progress is True
        assert result.should_process is False

    def test_stale_claim_is_reclaimed(self):
        db.session.add(WebhookEvent(
            event_id="WH-1",
            event_type="BILLING.SUBSCRIPTION.ACTIVATED",
            payload={},
            processed=False,
            claimed_at=datetime.now(timezone.utc) - timedelta(seconds=120),
        ))
        db.session.commit()

        assert _record(claim_timeout=300).in_progress is True
        assert _record(claim_timeout=60).should_process is True


class TestMarkProcessed:
    def test_success_clears_error(self):
        _record()
        event_store.mark_processed("WH-1")
        event = event_store.get_event("WH-1")
        assert event.succeeded
        assert event.processed_at is not None

    def test_failure_is_recorded(self):
        _record()
        event_store.mark_processed("WH-1", error="Subscription not found")
        event = event_store.get_event("WH-1")
        assert event.processed is True
        assert not event.succeeded
        assert event.processing_error == "Subscription not found"


class TestAuditFields:
    def test_signature_result(self):
        _record()
        event_store.set_signature_result("WH-1", False)
        event = event_store.get_event("WH-1")
        assert event.signature_verified is False
        assert event.audit_note is None

    def test_add_audit_note(self):
        _record()
        event_store.add_audit_note("WH-1", "replayed by operator")
        assert event_store.get_event("WH-1").audit_note == "replayed by operator"

    def test_list_recent_failed_only(self):
        _record("WH-1")
        _record("WH-2")
        event_store.mark_processed("WH-1")
        event_store.mark_processed("WH-2", error="boom")

        assert {e.event_id for e in event_store.list_recent()} == {"WH-1", "WH-2"}
        assert [e.event_id for e in event_store.list_recent(failed_only=True)] == ["WH-2"]
