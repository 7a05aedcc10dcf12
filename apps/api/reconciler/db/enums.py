"""Enum definitions for pipeline constants."""

from enum import Enum


class WebhookProvider(str, Enum):
    """External systems that post events to this service."""

    CRM = "crm"
    VOICE = "voice"
    WORKFLOW = "workflow"


class LeadSource(str, Enum):
    """
    Origin of a lead fact, ranked by trust.

    - CRM: human-entered in the CRM (highest)
    - WORKFLOW: produced by an external automation run
    - VOICE: inferred from a phone call (lowest)
    """

    CRM = "CRM"
    WORKFLOW = "Workflow Automation"
    VOICE = "Voice Agent"

    @property
    def trust(self) -> int:
        return _SOURCE_TRUST[self]

    @classmethod
    def trust_of(cls, value: str | None) -> int:
        """Trust rank for a stored source value; unknown values rank lowest."""
        if value and value in cls._value2member_map_:
            return cls(value).trust
        return 0


_SOURCE_TRUST = {
    LeadSource.CRM: 3,
    LeadSource.WORKFLOW: 2,
    LeadSource.VOICE: 1,
}


class LeadStatus(str, Enum):
    NEW = "new"
    CONTACTED = "contacted"


class ExtractionStatus(str, Enum):
    """Lifecycle of transcript extraction for a conversation."""

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class CallStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class MessageRole(str, Enum):
    AGENT = "agent"
    LEAD = "lead"


class WorkflowExecutionStatus(str, Enum):
    """External orchestration run status. SUCCESS and FAILED are terminal."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowExecutionStatus.SUCCESS, WorkflowExecutionStatus.FAILED)


class LeadTemperature(str, Enum):
    HOT = "hot"
    WARM = "warm"
    COOL = "cool"
    COLD = "cold"


DEFAULT_LEAD_STATUS = LeadStatus.NEW
