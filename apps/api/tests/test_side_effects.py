"""Tests for critical and non-critical write wrappers."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from reconciler.core.errors import PersistenceError
from reconciler.core.side_effects import critical, non_critical
from reconciler.db.enums import WebhookProvider
from reconciler.db.models import Lead, WebhookEvent
from reconciler.services import event_log_service


def _integrity_error() -> IntegrityError:
    return IntegrityError("INSERT", {}, Exception("unique violation"))


def test_critical_wraps_database_errors(db):
    with pytest.raises(PersistenceError) as exc_info:
        with critical(db, "write lead"):
            raise _integrity_error()

    assert exc_info.value.message == "write lead failed"
    assert exc_info.value.status_code == 500
    assert isinstance(exc_info.value.__cause__, IntegrityError)


def test_critical_leaves_other_errors_alone(db):
    with pytest.raises(ValueError):
        with critical(db, "write lead"):
            raise ValueError("not a database problem")


def test_non_critical_logs_and_continues(db, caplog):
    with non_critical(db, "audit"):
        raise _integrity_error()

    assert "Non-critical step failed: audit" in caplog.text


def test_non_critical_rolls_back_pending_work(db):
    with non_critical(db, "stage lead"):
        db.add(Lead(first_name="Ghost", field_sources={}))
        db.flush()
        raise RuntimeError("boom")

    assert db.scalar(select(func.count()).select_from(Lead)) == 0


def test_record_event_and_list(db):
    event_log_service.record_event(db, WebhookProvider.CRM, "evt-1", {"a": 1}, event_type="X")
    event_log_service.record_event(db, WebhookProvider.CRM, "evt-1", {"a": 1}, event_type="X")
    event_log_service.record_event(db, WebhookProvider.VOICE, "call_ended:c1", {"b": 2})

    assert len(event_log_service.list_events(db)) == 3
    crm = event_log_service.list_events(db, WebhookProvider.CRM, "evt-1")
    assert len(crm) == 2
    assert crm[0].raw_payload == {"a": 1}


def test_record_event_failure_is_swallowed(db, monkeypatch):
    def broken_commit():
        raise _integrity_error()

    monkeypatch.setattr(db, "commit", broken_commit)

    assert event_log_service.record_event(db, WebhookProvider.CRM, "evt-1", {}) is None
    monkeypatch.undo()
    assert db.scalar(select(func.count()).select_from(WebhookEvent)) == 0


def test_fallback_event_id():
    assert event_log_service.fallback_event_id("NEW_LEAD_WEBHOOK").startswith("NEW_LEAD_WEBHOOK-")
    assert event_log_service.fallback_event_id(None).startswith("unknown-")
