"""Pydantic schemas for inbound provider payloads.

Each provider's JSON is validated here and converted to internal types by
its webhook handler; raw dicts do not travel past the handler.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union
from uuid import UUID

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
    model_validator,
)


def _id_to_str(value: Any) -> Any:
    # Providers send numeric ids as JSON numbers
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value))
    return value


# =============================================================================
# CRM
# =============================================================================

CRM_NEW_LEAD = "NEW_LEAD_WEBHOOK"
CRM_LEAD_UPDATE = "LEAD_UPDATE_WEBHOOK"
CRM_NOTE_ADDED = "NOTE_ADDED_WEBHOOK"


class CrmLeadData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    lead_id: str | None = Field(default=None, validation_alias=AliasChoices("lead_id", "id"))
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = Field(
        default=None,
        validation_alias=AliasChoices("phone1", "phone", "mobile_phone", "phone_number"),
    )
    pipeline_status: str | None = None
    note: str | None = Field(
        default=None, validation_alias=AliasChoices("note", "remarks", "note_text")
    )

    coerce_ids = field_validator("lead_id", "phone", mode="before")(_id_to_str)


class CrmWebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_type: str | None = None
    event_id: str | None = None
    data: dict[str, Any] | None = None

    coerce_ids = field_validator("event_id", mode="before")(_id_to_str)

    @property
    def nested_event_id(self) -> str | None:
        if self.data and self.data.get("event_id") is not None:
            return str(self.data["event_id"])
        return None

    def lead_data(self) -> CrmLeadData | None:
        """Lead fields from ``data.buyer``, or ``data`` itself."""
        if not self.data:
            return None
        buyer = self.data.get("buyer")
        source = buyer if isinstance(buyer, dict) else self.data
        return CrmLeadData.model_validate(source)


# =============================================================================
# Voice
# =============================================================================

class Utterance(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str | None = None
    content: str | None = None


class CallData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    call_id: str
    agent_id: str | None = None
    direction: str | None = None
    from_number: str | None = None
    to_number: str | None = None
    caller_number: str | None = None
    phone_number: str | None = None
    transcript: str | None = None
    transcript_object: list[Utterance] | None = None
    duration_ms: int | None = None
    recording_url: str | None = None
    sentiment_score: float | None = None

    coerce_ids = field_validator("call_id", mode="before")(_id_to_str)

    def caller_phone(self) -> str | None:
        """
        The remote party's number.

        Inbound calls come from the lead; outbound calls go to them.
        """
        if (self.direction or "inbound").lower() == "outbound":
            ordered = (self.to_number, self.phone_number, self.caller_number, self.from_number)
        else:
            ordered = (self.from_number, self.caller_number, self.phone_number, self.to_number)
        return next((p for p in ordered if p and p.strip()), None)

    @property
    def duration_seconds(self) -> int | None:
        if self.duration_ms is None:
            return None
        return round(self.duration_ms / 1000)


class _VoiceEventBase(BaseModel):
    model_config = ConfigDict(extra="ignore")

    call: CallData


class CallStartedEvent(_VoiceEventBase):
    event: Literal["call_started"]


class CallEndedEvent(_VoiceEventBase):
    event: Literal["call_ended"]


class CallAnalyzedEvent(_VoiceEventBase):
    event: Literal["call_analyzed"]


VoiceEvent = Annotated[
    Union[CallStartedEvent, CallEndedEvent, CallAnalyzedEvent],
    Field(discriminator="event"),
]

VOICE_EVENT_TYPES = {"call_started", "call_ended", "call_analyzed"}

_voice_event_adapter = TypeAdapter(VoiceEvent)


def voice_event_name(data: dict) -> str | None:
    """Event name from either the {event, call} or the {event_type, data} envelope."""
    return data.get("event") or data.get("event_type") or data.get("type")


def parse_voice_event(data: dict) -> CallStartedEvent | CallEndedEvent | CallAnalyzedEvent:
    """
    Validate a voice payload into its event variant.

    Accepts {"event": ..., "call": {...}} and {"event_type": ..., "data": {...}}.
    Raises pydantic.ValidationError for unknown events or a malformed call.
    """
    event = voice_event_name(data)
    call = data.get("call")
    if call is None:
        call = data.get("data", data)
    return _voice_event_adapter.validate_python({"event": event, "call": call})


# =============================================================================
# Workflow callback
# =============================================================================

WORKFLOW_STATUS_ALIASES = {
    "completed": "success",
    "complete": "success",
    "succeeded": "success",
    "ok": "success",
    "error": "failed",
    "failure": "failed",
    "running": "processing",
}

KNOWN_WORKFLOW_STATUSES = {"pending", "processing", "success", "failed"}


class WorkflowLeadData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: UUID | None = None
    phone: str | None = Field(
        default=None, validation_alias=AliasChoices("phone", "phone_e164", "phone_number")
    )
    first_name: str | None = None
    last_name: str | None = None
    full_name: str | None = None
    email: str | None = None
    status: str | None = None

    coerce_ids = field_validator("phone", mode="before")(_id_to_str)


class WorkflowConversationData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: UUID | None = None
    external_call_id: str | None = Field(
        default=None, validation_alias=AliasChoices("external_call_id", "call_id")
    )
    summary: str | None = Field(default=None, validation_alias=AliasChoices("summary", "ai_summary"))
    sentiment_score: float | None = None

    coerce_ids = field_validator("external_call_id", mode="before")(_id_to_str)


class AIProfileData(BaseModel):
    model_config = ConfigDict(extra="ignore")

    lead_id: UUID | None = None
    conversation_id: UUID | None = None
    property_type: str | None = None
    loan_type: str | None = None
    price_range: str | None = None
    timeline: str | None = None
    pre_approval_status: str | None = None
    lead_temperature: Literal["hot", "warm", "cool", "cold"] | None = None
    qualification_score: int | None = Field(default=None, ge=0, le=100)
    concerns: list[str] = Field(default_factory=list)
    interested_properties: list[str] = Field(default_factory=list)
    requested_actions: list[str] = Field(default_factory=list)
    summary: str | None = None
    profile_data: dict[str, Any] = Field(default_factory=dict)
    completeness_score: float | None = Field(default=None, ge=0.0, le=1.0)
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)
    extraction_version: str | None = None

    @field_validator("lead_temperature", mode="before")
    @classmethod
    def _lower_temperature(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


class WorkflowCallbackPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    workflow_name: str = "unknown"
    execution_id: str | None = None
    status: str = "success"
    error_message: str | None = None
    execution_time_ms: int | None = None
    lead_data: WorkflowLeadData | None = None
    conversation_data: WorkflowConversationData | None = None
    ai_profile_data: AIProfileData | None = None

    coerce_ids = field_validator("execution_id", mode="before")(_id_to_str)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: Any) -> Any:
        if value is None:
            return "success"
        if isinstance(value, str):
            lowered = value.strip().lower()
            return WORKFLOW_STATUS_ALIASES.get(lowered, lowered) or "success"
        return str(value)

    @model_validator(mode="after")
    def _default_failure_message(self) -> "WorkflowCallbackPayload":
        if self.status == "failed" and not self.error_message:
            self.error_message = "Workflow reported failure"
        return self

    @property
    def status_is_known(self) -> bool:
        return self.status in KNOWN_WORKFLOW_STATUSES


def parse_workflow_callback(data: dict) -> tuple[WorkflowCallbackPayload, list[str]]:
    """
    Validate a callback, leaving out the top-level fields that do not validate.

    Returns the payload and one message per dropped field, so a bad profile
    fragment does not cost the lead and conversation updates that came with it.
    """
    try:
        return WorkflowCallbackPayload.model_validate(data), []
    except ValidationError as exc:
        invalid = sorted({str(err["loc"][0]) for err in exc.errors() if err["loc"]})
        if not invalid:
            raise

    usable = {key: value for key, value in data.items() if key not in invalid}
    return WorkflowCallbackPayload.model_validate(usable), [
        f"{key} ignored: failed validation" for key in invalid
    ]
