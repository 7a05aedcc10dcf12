"""SQLAlchemy ORM models for leads, conversations and inbound events."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from reconciler.db.base import Base, JSONType
from reconciler.db.enums import (
    DEFAULT_LEAD_STATUS,
    CallStatus,
    ExtractionStatus,
    WorkflowExecutionStatus,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Inbound Event Log
# =============================================================================

class WebhookEvent(Base):
    """
    Append-only record of every inbound provider event.

    Used for audit and replay diagnostics. (provider, external_event_id) is
    indexed but deliberately not unique: replay safety comes from the
    idempotent writes downstream, and a redelivered event is still logged.
    """
    __tablename__ = "webhook_events"
    __table_args__ = (
        Index("idx_webhook_events_provider_event", "provider", "external_event_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    external_event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    raw_payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


# =============================================================================
# Leads & Identity
# =============================================================================

class Lead(Base):
    """
    A prospective customer, deduplicated by canonical phone.

    phone_e164 is authoritative for deduplication once set. Leads created
    from an unparseable phone keep only phone_raw and cannot be matched by
    phone later.

    field_sources records which source last verified each contact field,
    e.g. {"first_name": "CRM"}. The identity resolver uses it to decide
    whether a new value may replace an existing one.
    """
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    phone_e164: Mapped[str | None] = mapped_column(String(20), unique=True, nullable=True)
    phone_raw: Mapped[str | None] = mapped_column(String(50), nullable=True)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(50), default=DEFAULT_LEAD_STATUS.value, nullable=False
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # CRM's own identifier, secondary dedup key for leads without a usable phone
    crm_lead_id: Mapped[str | None] = mapped_column(String(100), unique=True, nullable=True)

    field_sources: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    last_contacted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    conversations: Mapped[list["Conversation"]] = relationship(back_populates="lead")

    @property
    def display_name(self) -> str | None:
        parts = [p for p in (self.first_name, self.last_name) if p]
        return " ".join(parts) if parts else None


class PhoneMapping(Base):
    """
    Denormalized phone → lead index used by inbound-call routing.

    Written by the identity resolver in the same transaction as the lead, so
    it always agrees with Lead.phone_e164.
    """
    __tablename__ = "phone_lead_mappings"

    phone_e164: Mapped[str] = mapped_column(String(20), primary_key=True)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_updated: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    lead: Mapped["Lead"] = relationship()


# =============================================================================
# Conversations
# =============================================================================

class Conversation(Base):
    """One recorded call with a lead."""
    __tablename__ = "conversations"
    __table_args__ = (
        Index("idx_conversations_lead", "lead_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("leads.id", ondelete="SET NULL"), nullable=True
    )
    external_call_id: Mapped[str | None] = mapped_column(
        String(255), unique=True, nullable=True
    )
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)  # seconds
    sentiment_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    direction: Mapped[str | None] = mapped_column(String(20), nullable=True)
    call_status: Mapped[str] = mapped_column(
        String(20), default=CallStatus.ACTIVE.value, nullable=False
    )
    agent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recording_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    extraction_status: Mapped[str] = mapped_column(
        String(20), default=ExtractionStatus.PENDING.value, nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    lead: Mapped["Lead | None"] = relationship(back_populates="conversations")
    messages: Mapped[list["ConversationMessage"]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ConversationMessage.seq",
    )


class ConversationMessage(Base):
    """A single utterance of a transcript, upserted by (conversation_id, seq)."""
    __tablename__ = "conversation_messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "seq", name="uq_conversation_message_seq"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    role: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)

    conversation: Mapped["Conversation"] = relationship(back_populates="messages")


# =============================================================================
# Extraction & Profiles
# =============================================================================

class Extraction(Base):
    """
    Current structured extraction for a conversation.

    One row per conversation; re-extraction replaces it via upsert on
    conversation_id. Scalar fields are only populated when the model's
    confidence exceeded the configured threshold.
    """
    __tablename__ = "conversation_extractions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    lead_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("leads.id", ondelete="SET NULL"), nullable=True
    )

    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    name_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    phone_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    property_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    property_type_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    loan_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    loan_type_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    price_range: Mapped[str | None] = mapped_column(String(100), nullable=True)
    price_range_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    timeline: Mapped[str | None] = mapped_column(String(100), nullable=True)
    timeline_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    pre_approval_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    pre_approval_status_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)

    lead_temperature: Mapped[str | None] = mapped_column(String(10), nullable=True)
    concerns: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    interested_properties: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    requested_actions: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    sentiment_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    extraction_version: Mapped[str] = mapped_column(String(20), nullable=False)
    raw_extraction_payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


class AIProfile(Base):
    """Latest qualification view of a lead derived from one conversation."""
    __tablename__ = "ai_profiles"
    __table_args__ = (
        UniqueConstraint("lead_id", "conversation_id", name="uq_ai_profile_lead_conversation"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("leads.id", ondelete="CASCADE"), nullable=False
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False
    )

    property_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    loan_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    price_range: Mapped[str | None] = mapped_column(String(100), nullable=True)
    timeline: Mapped[str | None] = mapped_column(String(100), nullable=True)
    pre_approval_status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    lead_temperature: Mapped[str | None] = mapped_column(String(10), nullable=True)
    qualification_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    concerns: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    interested_properties: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    requested_actions: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    profile_data: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    completeness_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    extraction_version: Mapped[str | None] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


# =============================================================================
# Workflow Executions
# =============================================================================

class WorkflowExecution(Base):
    """
    One run of an external orchestration process.

    Status only moves forward: pending → processing → success | failed.
    Terminal rows are never rewritten.
    """
    __tablename__ = "workflow_executions"
    __table_args__ = (
        Index("idx_workflow_exec_status", "workflow_name", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    execution_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    workflow_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=WorkflowExecutionStatus.PENDING.value, nullable=False
    )
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_data: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    execution_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
