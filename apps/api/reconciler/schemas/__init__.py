"""Pydantic schemas for API request/response models."""

from reconciler.schemas.leads import LeadContext, LeadLookupResponse
from reconciler.schemas.webhooks import (
    AIProfileData,
    CallData,
    CrmLeadData,
    CrmWebhookPayload,
    WorkflowCallbackPayload,
    parse_voice_event,
)

__all__ = [
    "LeadContext",
    "LeadLookupResponse",
    "AIProfileData",
    "CallData",
    "CrmLeadData",
    "CrmWebhookPayload",
    "WorkflowCallbackPayload",
    "parse_voice_event",
]
