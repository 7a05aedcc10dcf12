"""Reconciliation coordinator - merge identity, call and extraction results.

Write order for every path:

1. resolve the lead identity (critical)
2. link the conversation to the lead (critical)
3. upsert the extraction row by conversation_id
4. upsert the AI profile by (lead_id, conversation_id)
5. move the workflow execution to its terminal status (last, critical)

The workflow status is only written once everything it reports on has been
committed.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from reconciler.core.config import settings
from reconciler.core.errors import ExtractionFailure, PipelineError
from reconciler.core.side_effects import critical, non_critical
from reconciler.core.structured_logging import build_log_context
from reconciler.db.enums import (
    CallStatus,
    ExtractionStatus,
    LeadSource,
    WorkflowExecutionStatus,
)
from reconciler.db.models import AIProfile, Conversation, Extraction, Lead
from reconciler.db.upsert import insert_for
from reconciler.schemas.webhooks import (
    AIProfileData,
    WorkflowCallbackPayload,
    WorkflowConversationData,
    WorkflowLeadData,
)
from reconciler.services import conversation_service, workflow_status_service
from reconciler.services.ai_prompt_schemas import CONFIDENT_FIELDS, ExtractionResult
from reconciler.services.extraction_service import ExtractionEngine
from reconciler.services.identity_service import (
    IdentityResolution,
    LeadIdentity,
    UpsertOutcome,
    merge_lead_fields,
    resolve_lead,
)
from reconciler.services.workflow_status_service import TransitionResult
from reconciler.utils.normalization import normalize_email, normalize_phone, split_full_name

logger = logging.getLogger(__name__)

# Qualification attributes counted for profile completeness
PROFILE_FIELDS = (
    "property_type",
    "loan_type",
    "price_range",
    "timeline",
    "pre_approval_status",
    "lead_temperature",
)


@dataclass
class ReconciliationSummary:
    """What a reconciliation run did. Stored as the workflow output snapshot."""

    lead_id: uuid.UUID | None = None
    conversation_id: uuid.UUID | None = None
    lead_created: bool = False
    lead_updated: bool = False
    identity_outcome: UpsertOutcome | None = None
    conversation_created: bool = False
    messages_upserted: int = 0
    extraction_status: ExtractionStatus | None = None
    extraction_upserted: bool = False
    profile_upserted: bool = False
    workflow_status: str | None = None
    duplicate: bool = False
    errors: list[str] = field(default_factory=list)

    def apply_identity(self, resolution: IdentityResolution) -> None:
        self.lead_id = resolution.lead_id
        self.lead_created = resolution.created
        self.lead_updated = self.lead_updated or resolution.updated
        self.identity_outcome = resolution.outcome

    def as_dict(self) -> dict:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, uuid.UUID):
                data[key] = str(value)
            elif hasattr(value, "value"):
                data[key] = value.value
        return data


@dataclass
class CallDetails:
    """Provider-neutral call facts, built by the voice webhook handler."""

    external_call_id: str
    transcript: str | None = None
    utterances: list[dict] | None = None
    duration: int | None = None
    direction: str | None = None
    agent_id: str | None = None
    recording_url: str | None = None
    sentiment_score: float | None = None


# =============================================================================
# Extraction & profile upserts
# =============================================================================

def _completeness(values: dict) -> float:
    filled = sum(1 for name in PROFILE_FIELDS if values.get(name))
    return round(filled / len(PROFILE_FIELDS), 3)


def upsert_extraction(
    db: Session,
    conversation_id: uuid.UUID,
    lead_id: uuid.UUID | None,
    result: ExtractionResult,
    raw_payload: dict,
    min_confidence: float,
    extraction_version: str,
) -> None:
    """
    Replace the conversation's extraction row.

    Scalar fields at or below the confidence threshold are stored as null,
    so a re-extraction can also clear a previously confident value.
    """
    confident = result.confident_fields(min_confidence)
    values: dict = {
        "conversation_id": conversation_id,
        "lead_id": lead_id,
        "lead_temperature": result.lead_temperature,
        "concerns": result.concerns,
        "interested_properties": result.interested_properties,
        "requested_actions": result.requested_actions,
        "summary": result.summary,
        "sentiment_score": result.sentiment_score,
        "extraction_version": extraction_version,
        "raw_extraction_payload": raw_payload,
        "updated_at": datetime.now(timezone.utc),
    }
    for name in CONFIDENT_FIELDS:
        kept = confident.get(name)
        values[name] = kept.value.strip() if kept else None
        values[f"{name}_confidence"] = kept.confidence if kept else None

    stmt = insert_for(db, Extraction).values(id=uuid.uuid4(), **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Extraction.conversation_id],
        set_={k: stmt.excluded[k] for k in values if k != "conversation_id"},
    )
    db.execute(stmt)


def upsert_ai_profile(db: Session, lead_id: uuid.UUID, conversation_id: uuid.UUID, values: dict) -> None:
    """Insert or replace the profile for (lead_id, conversation_id)."""
    values = dict(values)
    values.setdefault("completeness_score", _completeness(values))
    values["updated_at"] = datetime.now(timezone.utc)

    stmt = insert_for(db, AIProfile).values(
        id=uuid.uuid4(), lead_id=lead_id, conversation_id=conversation_id, **values
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[AIProfile.lead_id, AIProfile.conversation_id],
        set_={k: stmt.excluded[k] for k in values},
    )
    db.execute(stmt)


def profile_values_from_extraction(
    result: ExtractionResult, min_confidence: float, extraction_version: str
) -> dict:
    confident = result.confident_fields(min_confidence)
    values = {
        name: (confident[name].value.strip() if name in confident else None)
        for name in ("property_type", "loan_type", "price_range", "timeline", "pre_approval_status")
    }
    values.update(
        lead_temperature=result.lead_temperature,
        qualification_score=result.qualification_score,
        concerns=result.concerns,
        interested_properties=result.interested_properties,
        requested_actions=result.requested_actions,
        summary=result.summary,
        profile_data=result.model_dump(mode="json", exclude_none=True),
        confidence_score=result.mean_confidence(),
        extraction_version=extraction_version,
    )
    return values


def profile_values_from_payload(data: AIProfileData) -> dict:
    values = data.model_dump(
        exclude={"lead_id", "conversation_id", "completeness_score", "confidence_score"}
    )
    if data.completeness_score is not None:
        values["completeness_score"] = data.completeness_score
    values["confidence_score"] = data.confidence_score or 0.0
    return values


def _identity_from_extraction(result: ExtractionResult, min_confidence: float) -> dict[str, str]:
    """Contact facts the caller stated clearly enough to offer to the lead record."""
    confident = result.confident_fields(min_confidence)
    facts: dict[str, str] = {}
    if "name" in confident:
        first, last = split_full_name(confident["name"].value)
        if first:
            facts["first_name"] = first
        if last:
            facts["last_name"] = last
    if "email" in confident:
        email = normalize_email(confident["email"].value)
        if email:
            facts["email"] = email
    return facts


def _with_extracted_phone(
    identity: LeadIdentity, result: ExtractionResult, min_confidence: float
) -> LeadIdentity:
    """The identity, given the phone number the caller stated when the webhook had none."""
    confident = result.confident_fields(min_confidence)
    if "phone" in confident:
        phone = normalize_phone(confident["phone"].value, settings.DEFAULT_PHONE_REGION)
        if phone.phone_e164:
            return replace(identity, phone=phone)
    return identity


# =============================================================================
# Voice path
# =============================================================================

def _resolve_call_lead(
    db: Session, identity: LeadIdentity, external_call_id: str, summary: ReconciliationSummary
) -> None:
    """
    Resolve the caller when the identity can be matched.

    Without a canonical phone or CRM id the lead already linked to this call
    is reused; a call that has none yet stays unlinked for now.
    """
    if identity.has_match_key:
        summary.apply_identity(resolve_lead(db, identity))
        return
    conversation = conversation_service.get_by_external_call_id(db, external_call_id)
    if conversation is not None and conversation.lead_id is not None:
        summary.lead_id = conversation.lead_id


def _link_late_caller(
    db: Session, identity: LeadIdentity, conversation_id: uuid.UUID, summary: ReconciliationSummary
) -> None:
    summary.apply_identity(resolve_lead(db, identity))
    context = build_log_context(lead_id=summary.lead_id, conversation_id=conversation_id)
    with critical(db, "link caller to conversation", **context):
        conversation = db.get(Conversation, conversation_id)
        conversation_service.link_to_lead(conversation, summary.lead_id)
        conversation_service.touch_last_contacted(db, summary.lead_id)
        db.commit()


def open_conversation(
    db: Session,
    identity: LeadIdentity,
    call: CallDetails,
) -> ReconciliationSummary:
    """
    Record a started call: resolve the caller and create an active conversation.

    A caller without a phone number is left unresolved until the call ends.
    """
    summary = ReconciliationSummary()
    _resolve_call_lead(db, identity, call.external_call_id, summary)

    context = build_log_context(lead_id=summary.lead_id)
    with critical(db, "open conversation", **context):
        conversation, created = conversation_service.get_or_create_conversation(
            db,
            call.external_call_id,
            lead_id=summary.lead_id,
            direction=call.direction or "inbound",
            agent_id=call.agent_id,
            call_status=CallStatus.ACTIVE.value,
            extraction_status=ExtractionStatus.PENDING.value,
            started_at=datetime.now(timezone.utc),
        )
        if summary.lead_id is not None:
            conversation_service.link_to_lead(conversation, summary.lead_id)
        db.commit()

    summary.conversation_id = conversation.id
    summary.conversation_created = created
    return summary


async def reconcile_conversation(
    db: Session,
    engine: ExtractionEngine,
    identity: LeadIdentity,
    call: CallDetails,
    *,
    extraction_version: str | None = None,
) -> ReconciliationSummary:
    """
    Reconcile a completed call.

    Resolves the caller, stores the call and its transcript messages, runs
    extraction and writes the extraction and profile rows. An extraction
    failure marks the conversation ``failed`` and is reported in the
    summary instead of raised; persistence failures raise PersistenceError.

    A caller without a phone number keeps the lead the call is already
    linked to. Otherwise the caller is resolved after extraction, by the
    phone number stated in the call when there is a confident one.
    """
    version = extraction_version or settings.EXTRACTION_VERSION
    summary = ReconciliationSummary()
    _resolve_call_lead(db, identity, call.external_call_id, summary)
    lead_id = summary.lead_id

    with critical(db, "store completed call", **build_log_context(lead_id=lead_id)):
        conversation, created = conversation_service.get_or_create_conversation(
            db,
            call.external_call_id,
            lead_id=lead_id,
            direction=call.direction or "inbound",
        )
        if lead_id is not None:
            conversation_service.link_to_lead(conversation, lead_id)
        conversation.call_status = CallStatus.COMPLETED.value
        conversation.ended_at = datetime.now(timezone.utc)
        if call.transcript is not None:
            conversation.transcript = call.transcript
        for name in ("duration", "agent_id", "recording_url", "sentiment_score"):
            value = getattr(call, name)
            if value is not None:
                setattr(conversation, name, value)
        conversation.extraction_status = ExtractionStatus.PROCESSING.value

        if call.utterances:
            messages = conversation_service.messages_from_utterances(call.utterances)
        else:
            messages = conversation_service.split_transcript(conversation.transcript)
        db.flush()
        summary.messages_upserted = conversation_service.upsert_messages(
            db, conversation.id, messages
        )
        if lead_id is not None:
            conversation_service.touch_last_contacted(db, lead_id)
        db.commit()

    conversation_id = conversation.id
    transcript = conversation.transcript
    summary.conversation_id = conversation_id
    summary.conversation_created = created
    min_confidence = engine.min_confidence

    outcome = None
    failure = None
    try:
        outcome = await engine.extract(transcript)
    except ExtractionFailure as exc:
        failure = exc

    if lead_id is None:
        late_identity = identity
        if outcome is not None and outcome.result is not None:
            late_identity = _with_extracted_phone(identity, outcome.result, min_confidence)
        _link_late_caller(db, late_identity, conversation_id, summary)
        lead_id = summary.lead_id
    context = build_log_context(lead_id=lead_id, conversation_id=conversation_id)

    if failure is not None:
        logger.warning("Extraction failed: %s", failure.message, extra=context)
        with critical(db, "mark extraction failed", **context):
            conversation_service.set_extraction_status(db, conversation_id, ExtractionStatus.FAILED)
            db.commit()
        summary.extraction_status = ExtractionStatus.FAILED
        summary.errors.append(failure.message)
        return summary

    if outcome.status is ExtractionStatus.SKIPPED:
        with critical(db, "mark extraction skipped", **context):
            conversation_service.set_extraction_status(db, conversation_id, ExtractionStatus.SKIPPED)
            db.commit()
        summary.extraction_status = ExtractionStatus.SKIPPED
        return summary

    result = outcome.result

    with non_critical(db, "upsert extraction", **context):
        upsert_extraction(
            db,
            conversation_id,
            lead_id,
            result,
            raw_payload={"model": outcome.model, "response": outcome.raw},
            min_confidence=min_confidence,
            extraction_version=version,
        )
        db.commit()
        summary.extraction_upserted = True

    with critical(db, "apply extraction", **context):
        upsert_ai_profile(
            db,
            lead_id,
            conversation_id,
            profile_values_from_extraction(result, min_confidence, version),
        )
        lead = db.get(Lead, lead_id)
        changed = merge_lead_fields(
            lead, _identity_from_extraction(result, min_confidence), LeadSource.VOICE
        )
        conversation = db.get(Conversation, conversation_id)
        if result.sentiment_score is not None and conversation.sentiment_score is None:
            conversation.sentiment_score = result.sentiment_score
        conversation.extraction_status = ExtractionStatus.DONE.value
        db.commit()

    summary.profile_upserted = True
    summary.lead_updated = summary.lead_updated or bool(changed)
    summary.extraction_status = ExtractionStatus.DONE
    logger.info("Conversation reconciled", extra=context)
    return summary


def record_call_analysis(
    db: Session, external_call_id: str, sentiment_score: float | None, transcript: str | None
) -> Conversation | None:
    """Apply a post-call analysis to an existing conversation. Blank values are ignored."""
    with critical(db, "record call analysis"):
        conversation = conversation_service.get_by_external_call_id(db, external_call_id)
        if conversation is None:
            return None
        if sentiment_score is not None:
            conversation.sentiment_score = sentiment_score
        if transcript and not conversation.transcript:
            conversation.transcript = transcript
        db.commit()
    return conversation


# =============================================================================
# Workflow callback path
# =============================================================================

def _workflow_identity(data: WorkflowLeadData) -> LeadIdentity:
    first, last = data.first_name, data.last_name
    if not (first or last) and data.full_name:
        first, last = split_full_name(data.full_name)
    return LeadIdentity(
        source=LeadSource.WORKFLOW,
        phone=normalize_phone(data.phone, settings.DEFAULT_PHONE_REGION) if data.phone else None,
        first_name=first,
        last_name=last,
        email=data.email,
        status=data.status,
    )


def _apply_lead_data(db: Session, data: WorkflowLeadData, summary: ReconciliationSummary) -> None:
    identity = _workflow_identity(data)
    if identity.phone is None and data.id is not None:
        # No phone: update the referenced lead in place
        with critical(db, "update workflow lead", **build_log_context(lead_id=data.id)):
            lead = db.get(Lead, data.id)
            if lead is None:
                summary.errors.append(f"lead {data.id} not found")
                return
            changed = merge_lead_fields(lead, identity.contact_fields(), identity.source)
            db.commit()
        summary.lead_id = lead.id
        summary.lead_updated = bool(changed)
        return
    summary.apply_identity(resolve_lead(db, identity))


def _apply_conversation_data(
    db: Session, data: WorkflowConversationData, summary: ReconciliationSummary
) -> None:
    with critical(db, "update workflow conversation"):
        conversation = None
        if data.id is not None:
            conversation = db.get(Conversation, data.id)
        elif data.external_call_id:
            conversation, summary.conversation_created = (
                conversation_service.get_or_create_conversation(db, data.external_call_id)
            )
        if conversation is None:
            summary.errors.append("conversation not found")
            return
        if summary.lead_id is not None:
            conversation_service.link_to_lead(conversation, summary.lead_id)
        if data.sentiment_score is not None:
            conversation.sentiment_score = data.sentiment_score
        db.commit()
    summary.conversation_id = conversation.id
    if summary.lead_id is None:
        summary.lead_id = conversation.lead_id


def _apply_profile_data(db: Session, data: AIProfileData, summary: ReconciliationSummary) -> None:
    lead_id = data.lead_id or summary.lead_id
    conversation_id = data.conversation_id or summary.conversation_id
    if lead_id is None or conversation_id is None:
        summary.errors.append("ai_profile_data requires lead_id and conversation_id")
        return
    with critical(db, "upsert workflow profile", **build_log_context(lead_id=lead_id)):
        upsert_ai_profile(db, lead_id, conversation_id, profile_values_from_payload(data))
        db.commit()
    summary.profile_upserted = True


def process_workflow_callback(
    db: Session,
    payload: WorkflowCallbackPayload,
    *,
    field_errors: list[str] | None = None,
) -> ReconciliationSummary:
    """
    Apply a workflow-automation callback.

    Callbacks for an execution that already reached a terminal status are
    acknowledged and ignored. An unrecognized status is reported in the
    summary and leaves the execution in processing. Any failure while
    applying the fragments marks the execution failed (best effort) and
    propagates.
    """
    summary = ReconciliationSummary(errors=list(field_errors or []))
    execution_id = payload.execution_id
    context = build_log_context(execution_id=execution_id)

    if execution_id:
        execution = workflow_status_service.ensure_execution(
            db, execution_id, payload.workflow_name
        )
        if WorkflowExecutionStatus(execution.status).is_terminal:
            logger.info("Duplicate callback for terminal execution ignored", extra=context)
            summary.duplicate = True
            summary.workflow_status = execution.status
            return summary
        workflow_status_service.mark_processing(db, execution_id)

    try:
        if payload.lead_data is not None:
            _apply_lead_data(db, payload.lead_data, summary)
        if payload.conversation_data is not None:
            _apply_conversation_data(db, payload.conversation_data, summary)
        if payload.ai_profile_data is not None:
            _apply_profile_data(db, payload.ai_profile_data, summary)
    except Exception as exc:
        if execution_id:
            reason = exc.message if isinstance(exc, PipelineError) else f"{type(exc).__name__}: {exc}"
            db.rollback()
            with non_critical(db, "record workflow failure", **context):
                workflow_status_service.mark_failed(
                    db,
                    execution_id,
                    reason,
                    execution_time_ms=payload.execution_time_ms,
                )
        raise

    if not execution_id:
        summary.workflow_status = payload.status
        return summary

    if payload.status == "success":
        result = workflow_status_service.mark_success(
            db, execution_id, summary.as_dict(), execution_time_ms=payload.execution_time_ms
        )
    elif payload.status == "failed":
        result = workflow_status_service.mark_failed(
            db,
            execution_id,
            payload.error_message,
            output_data=summary.as_dict(),
            execution_time_ms=payload.execution_time_ms,
        )
    else:
        if not payload.status_is_known:
            summary.errors.append(f"unrecognized workflow status '{payload.status}'")
        result = TransitionResult.APPLIED

    summary.workflow_status = payload.status
    if result is TransitionResult.REJECTED:
        # A concurrent callback finished the execution first
        summary.duplicate = True
        summary.workflow_status = workflow_status_service.get_execution(db, execution_id).status
    logger.info("Workflow callback processed", extra=context)
    return summary
