"""Tests for inbound payload models."""

import pytest
from pydantic import ValidationError

from reconciler.schemas.webhooks import (
    CallEndedEvent,
    CallStartedEvent,
    CrmWebhookPayload,
    WorkflowCallbackPayload,
    parse_voice_event,
    parse_workflow_callback,
)


def test_crm_lead_data_aliases_and_numeric_ids():
    payload = CrmWebhookPayload.model_validate(
        {
            "event_type": "NEW_LEAD_WEBHOOK",
            "event_id": 991,
            "data": {"buyer": {"id": 42, "mobile_phone": 5551234567, "remarks": "hi"}},
        }
    )

    lead = payload.lead_data()
    assert payload.event_id == "991"
    assert lead.lead_id == "42"
    assert lead.phone == "5551234567"
    assert lead.note == "hi"


def test_crm_nested_event_id_and_missing_data():
    payload = CrmWebhookPayload.model_validate({"event_type": "X", "data": {"event_id": 7}})
    assert payload.nested_event_id == "7"
    assert CrmWebhookPayload.model_validate({"event_type": "X"}).lead_data() is None


def test_parse_voice_event_variants():
    started = parse_voice_event({"event": "call_started", "call": {"call_id": 12}})
    ended = parse_voice_event({"event_type": "call_ended", "data": {"call_id": "c-1"}})

    assert isinstance(started, CallStartedEvent)
    assert started.call.call_id == "12"
    assert isinstance(ended, CallEndedEvent)


def test_parse_voice_event_rejects_unknown_event():
    with pytest.raises(ValidationError):
        parse_voice_event({"event": "call_parked", "call": {"call_id": "c-1"}})


def test_caller_phone_depends_on_direction():
    inbound = parse_voice_event(
        {"event": "call_ended", "call": {"call_id": "1", "from_number": "A", "to_number": "B"}}
    )
    outbound = parse_voice_event(
        {
            "event": "call_ended",
            "call": {"call_id": "1", "direction": "outbound", "from_number": "A", "to_number": "B"},
        }
    )

    assert inbound.call.caller_phone() == "A"
    assert outbound.call.caller_phone() == "B"


def test_call_duration_in_seconds():
    event = parse_voice_event({"event": "call_ended", "call": {"call_id": "1", "duration_ms": 1499}})
    assert event.call.duration_seconds == 1


@pytest.mark.parametrize(
    "raw, expected",
    [(None, "success"), ("Completed", "success"), ("ERROR", "failed"), ("running", "processing")],
)
def test_workflow_status_aliases(raw, expected):
    payload = WorkflowCallbackPayload.model_validate({"status": raw})
    assert payload.status == expected


def test_workflow_failed_status_gets_default_message():
    payload = WorkflowCallbackPayload.model_validate({"status": "failed"})
    assert payload.error_message == "Workflow reported failure"


def test_workflow_unknown_status_is_kept():
    payload = WorkflowCallbackPayload.model_validate({"status": " Cancelled "})
    assert payload.status == "cancelled"
    assert payload.status_is_known is False


def test_parse_workflow_callback_drops_invalid_fields():
    payload, errors = parse_workflow_callback(
        {
            "workflow_name": "qualify",
            "execution_time_ms": "slow",
            "lead_data": {"phone": "5552223333"},
            "ai_profile_data": {"lead_temperature": "lukewarm"},
        }
    )

    assert payload.workflow_name == "qualify"
    assert payload.lead_data.phone == "5552223333"
    assert payload.ai_profile_data is None
    assert payload.execution_time_ms is None
    assert errors == [
        "ai_profile_data ignored: failed validation",
        "execution_time_ms ignored: failed validation",
    ]


def test_parse_workflow_callback_valid_payload_has_no_errors():
    payload, errors = parse_workflow_callback({"status": "ok", "execution_id": 42})
    assert payload.status == "success"
    assert payload.execution_id == "42"
    assert errors == []
