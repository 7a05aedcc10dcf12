"""Structured logging helpers (PII-safe)."""

from typing import Any


def build_log_context(
    *,
    provider: str | None = None,
    event_id: str | None = None,
    event_type: str | None = None,
    execution_id: str | None = None,
    lead_id: Any = None,
    conversation_id: Any = None,
) -> dict[str, Any]:
    """
    Return a PII-safe log context dict.

    Only identifiers are included; phone numbers, names and transcripts
    never go into log context.
    """
    context: dict[str, Any] = {}
    if provider:
        context["provider"] = provider
    if event_id:
        context["event_id"] = event_id
    if event_type:
        context["event_type"] = event_type
    if execution_id:
        context["execution_id"] = execution_id
    if lead_id:
        context["lead_id"] = str(lead_id)
    if conversation_id:
        context["conversation_id"] = str(conversation_id)
    return context
