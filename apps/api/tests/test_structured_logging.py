"""Tests for structured logging helpers."""

import uuid

from reconciler.core.structured_logging import build_log_context


def test_build_log_context_includes_only_provided_fields():
    lead_id = uuid.uuid4()
    context = build_log_context(
        provider="crm",
        event_id="evt-1",
        event_type="NEW_LEAD_WEBHOOK",
        lead_id=lead_id,
    )

    assert context == {
        "provider": "crm",
        "event_id": "evt-1",
        "event_type": "NEW_LEAD_WEBHOOK",
        "lead_id": str(lead_id),
    }


def test_build_log_context_ignores_empty_fields():
    context = build_log_context(
        provider="",
        event_id=None,
        execution_id="exec-9",
    )

    assert context == {"execution_id": "exec-9"}
