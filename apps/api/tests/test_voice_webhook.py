"""Tests for the voice webhook: call lifecycle, extraction and reconciliation."""

import json

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from reconciler.core.config import settings
from reconciler.core.security import compute_hmac_signature
from reconciler.db.models import (
    AIProfile,
    Conversation,
    ConversationMessage,
    Extraction,
    Lead,
    WebhookEvent,
)

TRANSCRIPT = (
    "Agent: Thanks for calling Oak Realty, how can I help?\n"
    "Lead: I'm looking for a single family home, ideally within three months.\n"
    "\n"
    "Agent: Great, I can set up a showing."
)


def _call_event(event: str = "call_ended", **call) -> dict:
    data = {
        "call_id": "call-1",
        "agent_id": "agent-7",
        "direction": "inbound",
        "from_number": "+15551234567",
        "to_number": "+15550001111",
        "transcript": TRANSCRIPT,
        "duration_ms": 65_000,
    }
    data.update(call)
    return {"event": event, "call": data}


async def _post(client: AsyncClient, payload: dict | None, headers: dict | None = None):
    body = json.dumps(payload).encode() if payload is not None else b""
    return await client.post(
        "/webhooks/voice",
        content=body,
        headers={"Content-Type": "application/json", **(headers or {})},
    )


def _count(db, model) -> int:
    return db.scalar(select(func.count()).select_from(model))


# =============================================================================
# call_ended
# =============================================================================

@pytest.mark.asyncio
async def test_call_ended_reconciles_new_caller(client, db):
    response = await _post(client, _call_event())

    assert response.status_code == 200
    data = response.json()
    assert data["event"] == "call_ended"
    assert data["lead_created"] is True
    assert data["extraction_status"] == "done"
    assert data["extraction_upserted"] is True
    assert data["profile_upserted"] is True
    assert data["messages_upserted"] == 3
    assert data["errors"] == []

    db.expire_all()
    lead = db.scalar(select(Lead))
    assert str(lead.id) == data["lead_id"]
    assert lead.phone_e164 == "+15551234567"
    assert lead.source == "Voice Agent"
    # Empty fields are filled from confident extraction values
    assert lead.first_name == "Jane"
    assert lead.last_name == "Doe"
    assert lead.email == "jane.doe@example.com"
    assert lead.last_contacted_at is not None

    conversation = db.scalar(select(Conversation))
    assert str(conversation.id) == data["conversation_id"]
    assert conversation.lead_id == lead.id
    assert conversation.call_status == "completed"
    assert conversation.extraction_status == "done"
    assert conversation.duration == 65
    assert conversation.agent_id == "agent-7"
    assert conversation.sentiment_score == pytest.approx(0.4)

    messages = db.scalars(
        select(ConversationMessage).order_by(ConversationMessage.seq)
    ).all()
    assert [(m.seq, m.role) for m in messages] == [(0, "agent"), (1, "lead"), (2, "agent")]
    assert messages[1].content.startswith("I'm looking for")


@pytest.mark.asyncio
async def test_extraction_row_keeps_only_confident_fields(client, db):
    await _post(client, _call_event())

    extraction = db.scalar(select(Extraction))
    assert extraction.name == "Jane Doe"
    assert extraction.name_confidence == pytest.approx(0.92)
    assert extraction.property_type == "single family"
    # 0.4 is below the threshold
    assert extraction.loan_type is None
    assert extraction.loan_type_confidence is None
    assert extraction.lead_temperature == "warm"
    assert extraction.concerns == ["interest rates"]
    assert extraction.extraction_version == settings.EXTRACTION_VERSION
    assert extraction.raw_extraction_payload["model"] == "fake-model"

    profile = db.scalar(select(AIProfile))
    assert profile.conversation_id == extraction.conversation_id
    assert profile.lead_id == extraction.lead_id
    assert profile.property_type == "single family"
    assert profile.timeline == "3 months"
    assert profile.loan_type is None
    assert profile.qualification_score == 72
    # property_type, timeline and lead_temperature out of six attributes
    assert profile.completeness_score == pytest.approx(0.5)
    assert profile.confidence_score > 0


@pytest.mark.asyncio
async def test_second_call_reuses_crm_lead_and_keeps_name(client, db, crm_secret, sign):
    crm_payload = {
        "event_type": "NEW_LEAD_WEBHOOK",
        "event_id": "evt-1",
        "data": {"first_name": "John", "last_name": "Smith", "phone1": "(555) 123-4567"},
    }
    body, signature = sign(crm_payload)
    crm = await client.post(
        "/webhooks/crm",
        content=body,
        headers={"Content-Type": "application/json", "X-CRM-Signature": signature},
    )
    assert crm.status_code == 200
    lead_id = crm.json()["lead_id"]

    response = await _post(client, _call_event(from_number="+15551234567"))

    assert response.status_code == 200
    data = response.json()
    assert data["lead_id"] == lead_id
    assert data["lead_created"] is False

    db.expire_all()
    assert _count(db, Lead) == 1
    lead = db.scalar(select(Lead))
    # The call extracted "Jane Doe", but CRM-entered names outrank it
    assert lead.first_name == "John"
    assert lead.last_name == "Smith"
    assert lead.source == "CRM"
    assert lead.email == "jane.doe@example.com"


@pytest.mark.asyncio
async def test_redelivered_call_ended_is_idempotent(client, db):
    first = (await _post(client, _call_event())).json()
    second = (await _post(client, _call_event())).json()

    assert first["lead_id"] == second["lead_id"]
    assert first["conversation_id"] == second["conversation_id"]
    assert second["conversation_created"] is False
    assert _count(db, Lead) == 1
    assert _count(db, Conversation) == 1
    assert _count(db, ConversationMessage) == 3
    assert _count(db, Extraction) == 1
    assert _count(db, AIProfile) == 1
    assert _count(db, WebhookEvent) == 2


@pytest.mark.asyncio
async def test_redelivered_shorter_transcript_replaces_messages(client, db):
    await _post(client, _call_event())
    response = await _post(client, _call_event(transcript="Agent: Hello\nLead: Wrong number, sorry"))

    assert response.json()["messages_upserted"] == 2
    db.expire_all()
    messages = db.scalars(select(ConversationMessage).order_by(ConversationMessage.seq)).all()
    assert [m.content for m in messages] == ["Hello", "Wrong number, sorry"]


@pytest.mark.asyncio
async def test_extraction_failure_marks_conversation_failed(client, db, fake_provider, status_error):
    fake_provider.responses = [status_error(503)]

    response = await _post(client, _call_event())

    assert response.status_code == 200
    data = response.json()
    assert data["extraction_status"] == "failed"
    assert data["errors"]
    assert len(fake_provider.calls) == 4

    db.expire_all()
    conversation = db.scalar(select(Conversation))
    assert conversation.extraction_status == "failed"
    assert conversation.transcript == TRANSCRIPT
    assert _count(db, Extraction) == 0
    assert _count(db, AIProfile) == 0
    # Identity and messages are still stored
    assert _count(db, Lead) == 1
    assert _count(db, ConversationMessage) == 3


@pytest.mark.asyncio
async def test_schema_violation_marks_conversation_failed(client, db, fake_provider):
    fake_provider.responses = ["Sorry, I cannot do that."]

    response = await _post(client, _call_event())

    assert response.status_code == 200
    assert response.json()["extraction_status"] == "failed"
    db.expire_all()
    assert db.scalar(select(Conversation)).extraction_status == "failed"


@pytest.mark.asyncio
async def test_unreadable_provider_response_marks_conversation_failed(client, db, fake_provider):
    fake_provider.responses = [IndexError("list index out of range")]

    response = await _post(client, _call_event())

    assert response.status_code == 200
    assert response.json()["extraction_status"] == "failed"
    assert len(fake_provider.calls) == 1
    db.expire_all()
    assert db.scalar(select(Conversation)).extraction_status == "failed"


@pytest.mark.asyncio
async def test_transient_errors_then_success(client, db, fake_provider, status_error, extraction_payload):
    fake_provider.responses = [
        status_error(429),
        status_error(503),
        json.dumps(extraction_payload),
    ]

    response = await _post(client, _call_event())

    assert response.json()["extraction_status"] == "done"
    assert len(fake_provider.calls) == 3
    assert _count(db, Extraction) == 1


@pytest.mark.asyncio
async def test_blank_transcript_is_skipped(client, db, fake_provider):
    response = await _post(client, _call_event(transcript="  "))

    assert response.json()["extraction_status"] == "skipped"
    assert fake_provider.calls == []
    db.expire_all()
    assert db.scalar(select(Conversation)).extraction_status == "skipped"


@pytest.mark.asyncio
async def test_structured_utterances_are_preferred(client, db):
    event = _call_event(
        transcript_object=[
            {"role": "agent", "content": "Hello there"},
            {"role": "user", "content": "Hi, I want to buy"},
            {"role": "user", "content": "   "},
        ]
    )

    response = await _post(client, event)

    assert response.json()["messages_upserted"] == 2
    roles = db.scalars(select(ConversationMessage.role).order_by(ConversationMessage.seq)).all()
    assert roles == ["agent", "lead"]


@pytest.mark.asyncio
async def test_outbound_call_uses_dialed_number(client, db):
    event = _call_event(
        direction="outbound", from_number="+15550001111", to_number="(555) 987-6543"
    )

    await _post(client, event)

    lead = db.scalar(select(Lead))
    assert lead.phone_e164 == "+15559876543"


# =============================================================================
# call_started / call_analyzed
# =============================================================================

@pytest.mark.asyncio
async def test_call_started_then_ended_share_conversation(client, db):
    started = await _post(client, _call_event("call_started", transcript=None))

    assert started.status_code == 200
    started_data = started.json()
    assert started_data["conversation_created"] is True
    conversation = db.scalar(select(Conversation))
    assert conversation.call_status == "active"
    assert conversation.extraction_status == "pending"

    ended = (await _post(client, _call_event())).json()

    assert ended["conversation_id"] == started_data["conversation_id"]
    assert ended["conversation_created"] is False
    assert _count(db, Conversation) == 1


@pytest.mark.asyncio
async def test_call_analyzed_updates_sentiment(client, db):
    await _post(client, _call_event())

    response = await _post(client, _call_event("call_analyzed", sentiment_score=-0.25))

    assert response.status_code == 200
    db.expire_all()
    assert db.scalar(select(Conversation)).sentiment_score == pytest.approx(-0.25)


@pytest.mark.asyncio
async def test_call_analyzed_for_unknown_call(client, db):
    response = await _post(client, _call_event("call_analyzed", call_id="nope"))

    assert response.status_code == 200
    assert response.json()["message"] == "Conversation not found"


# =============================================================================
# Envelope & security
# =============================================================================

@pytest.mark.asyncio
async def test_empty_body_is_acknowledged_as_health_check(client, db):
    response = await _post(client, None)

    assert response.status_code == 200
    assert response.json()["message"] == "Voice webhook is reachable"
    assert _count(db, WebhookEvent) == 0


@pytest.mark.asyncio
async def test_event_type_data_envelope_is_accepted(client, db):
    payload = {"event_type": "call_ended", "data": _call_event()["call"]}

    response = await _post(client, payload)

    assert response.status_code == 200
    assert response.json()["extraction_status"] == "done"
    event = db.scalar(select(WebhookEvent))
    assert event.external_event_id == "call_ended:call-1"


@pytest.mark.asyncio
async def test_unknown_event_is_acknowledged(client, db):
    response = await _post(client, {"event": "call_transferred", "call": {"call_id": "x"}})

    assert response.status_code == 200
    assert response.json()["message"] == "Event type not handled"
    assert _count(db, Conversation) == 0


@pytest.mark.asyncio
async def test_missing_call_id_is_rejected(client, db):
    response = await _post(client, {"event": "call_ended", "call": {"transcript": "hi"}})

    assert response.status_code == 400
    assert _count(db, Conversation) == 0


@pytest.mark.asyncio
async def test_signature_enforced_when_secret_configured(client, db, monkeypatch):
    monkeypatch.setattr(settings, "VOICE_WEBHOOK_SECRET", "voice-secret")
    payload = _call_event()

    unsigned = await _post(client, payload)
    assert unsigned.status_code == 401
    assert _count(db, WebhookEvent) == 0

    body = json.dumps(payload).encode()
    signed = await _post(
        client,
        payload,
        headers={"X-Voice-Signature": compute_hmac_signature(body, "voice-secret")},
    )
    assert signed.status_code == 200


# =============================================================================
# Callers without a phone number
# =============================================================================

def _phoneless_event(event: str = "call_ended", **call) -> dict:
    return _call_event(event, from_number=None, to_number=None, **call)


@pytest.mark.asyncio
async def test_phoneless_call_ended_redelivery_keeps_one_lead(client, db):
    first = (await _post(client, _phoneless_event())).json()
    second = (await _post(client, _phoneless_event())).json()

    assert first["lead_created"] is True
    assert second["lead_created"] is False
    assert first["lead_id"] == second["lead_id"]
    assert _count(db, Lead) == 1
    db.expire_all()
    lead = db.scalar(select(Lead))
    assert lead.phone_e164 is None
    assert db.scalar(select(Conversation)).lead_id == lead.id


@pytest.mark.asyncio
async def test_phoneless_call_started_then_ended_keeps_one_lead(client, db):
    started = (await _post(client, _phoneless_event("call_started", transcript=None))).json()

    assert started["lead_id"] is None
    assert _count(db, Lead) == 0

    ended = (await _post(client, _phoneless_event())).json()

    assert ended["conversation_id"] == started["conversation_id"]
    assert ended["lead_created"] is True
    assert _count(db, Lead) == 1
    assert _count(db, Conversation) == 1


@pytest.mark.asyncio
async def test_phoneless_call_resolves_by_stated_phone(client, db, fake_provider, extraction_payload):
    existing = await _post(client, _call_event(call_id="call-0", from_number="+15559876543"))
    existing_lead_id = existing.json()["lead_id"]

    extraction_payload["phone"] = {"value": "(555) 987-6543", "confidence": 0.9}
    fake_provider.responses = [json.dumps(extraction_payload)]

    response = await _post(client, _phoneless_event(call_id="call-2"))

    data = response.json()
    assert data["lead_id"] == existing_lead_id
    assert data["lead_created"] is False
    assert _count(db, Lead) == 1
    db.expire_all()
    conversation = db.scalar(select(Conversation).where(Conversation.external_call_id == "call-2"))
    assert str(conversation.lead_id) == existing_lead_id
    extraction = db.scalar(select(Extraction).where(Extraction.conversation_id == conversation.id))
    assert str(extraction.lead_id) == existing_lead_id


@pytest.mark.asyncio
async def test_phoneless_call_with_failed_extraction_still_gets_a_lead(
    client, db, fake_provider, status_error
):
    fake_provider.responses = [status_error(400)]

    data = (await _post(client, _phoneless_event())).json()

    assert data["extraction_status"] == "failed"
    assert data["lead_id"] is not None
    db.expire_all()
    assert str(db.scalar(select(Conversation)).lead_id) == data["lead_id"]
