"""Voice webhook handler for call lifecycle events."""

from __future__ import annotations

import logging

from fastapi import Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from reconciler.core.config import settings
from reconciler.core.errors import AuthenticationError, PayloadValidationError
from reconciler.core.security import verify_hmac_signature
from reconciler.core.structured_logging import build_log_context
from reconciler.db.enums import LeadSource, WebhookProvider
from reconciler.schemas.webhooks import (
    VOICE_EVENT_TYPES,
    CallAnalyzedEvent,
    CallData,
    CallStartedEvent,
    parse_voice_event,
    voice_event_name,
)
from reconciler.services import event_log_service, reconciliation_service
from reconciler.services.extraction_service import ExtractionEngine
from reconciler.services.identity_service import LeadIdentity
from reconciler.services.reconciliation_service import CallDetails
from reconciler.services.webhooks.base import parse_json_body, read_body_safe
from reconciler.utils.normalization import normalize_phone

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Voice-Signature"


def _caller_identity(call: CallData) -> LeadIdentity:
    phone = call.caller_phone()
    return LeadIdentity(
        source=LeadSource.VOICE,
        phone=normalize_phone(phone, settings.DEFAULT_PHONE_REGION) if phone else None,
    )


def _call_details(call: CallData) -> CallDetails:
    utterances = None
    if call.transcript_object:
        utterances = [u.model_dump() for u in call.transcript_object]
    return CallDetails(
        external_call_id=call.call_id,
        transcript=call.transcript,
        utterances=utterances,
        duration=call.duration_seconds,
        direction=call.direction,
        agent_id=call.agent_id,
        recording_url=call.recording_url,
        sentiment_score=call.sentiment_score,
    )


class VoiceWebhookHandler:
    async def handle(
        self,
        request: Request,
        db: Session,
        extraction_engine: ExtractionEngine | None = None,
        **kwargs,
    ):
        """
        Receive voice-agent call events.

        Handles:
        - call_started: resolve the caller, open an active conversation
        - call_ended: store transcript and messages, run extraction, reconcile
        - call_analyzed: apply post-call sentiment

        An empty body is a reachability check and is acknowledged. The
        signature is only checked when VOICE_WEBHOOK_SECRET is set.
        Extraction failures mark the conversation failed; the webhook still
        returns 200 so the provider does not redeliver the call.
        """
        body = await read_body_safe(request)
        if not body.strip():
            return {"status": "ok", "message": "Voice webhook is reachable"}

        if settings.VOICE_WEBHOOK_SECRET and not verify_hmac_signature(
            body, request.headers.get(SIGNATURE_HEADER), settings.VOICE_WEBHOOK_SECRET
        ):
            logger.warning("Voice webhook invalid signature")
            raise AuthenticationError("Invalid signature")

        data = parse_json_body(body)
        event_type = voice_event_name(data)
        envelope = data.get("call") or data.get("data") or data
        call_id = envelope.get("call_id") if isinstance(envelope, dict) else None
        event_id = (
            f"{event_type}:{call_id}"
            if call_id
            else event_log_service.fallback_event_id(event_type)
        )
        context = build_log_context(
            provider=WebhookProvider.VOICE.value, event_id=event_id, event_type=event_type
        )
        event_log_service.record_event(
            db, WebhookProvider.VOICE, event_id, data, event_type=event_type
        )

        if event_type not in VOICE_EVENT_TYPES:
            logger.info("Voice webhook event type not handled", extra=context)
            return {"status": "ok", "message": "Event type not handled", "event_type": event_type}

        try:
            event = parse_voice_event(data)
        except ValidationError as exc:
            raise PayloadValidationError(
                "Invalid voice payload", details={"errors": exc.error_count()}
            )

        if isinstance(event, CallStartedEvent):
            summary = reconciliation_service.open_conversation(
                db, _caller_identity(event.call), _call_details(event.call)
            )
        elif isinstance(event, CallAnalyzedEvent):
            conversation = reconciliation_service.record_call_analysis(
                db, event.call.call_id, event.call.sentiment_score, event.call.transcript
            )
            if conversation is None:
                logger.info("Call analysis for unknown conversation", extra=context)
                return {"status": "ok", "message": "Conversation not found", "event": event.event}
            return {
                "status": "ok",
                "event": event.event,
                "conversation_id": str(conversation.id),
            }
        else:
            if extraction_engine is None:
                raise RuntimeError("call_ended requires an extraction engine")
            summary = await reconciliation_service.reconcile_conversation(
                db,
                extraction_engine,
                _caller_identity(event.call),
                _call_details(event.call),
            )

        return {"status": "ok", "event": event.event, **summary.as_dict()}
