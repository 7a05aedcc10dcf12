"""Service layer modules."""

from reconciler.services.identity_service import (
    IdentityResolution,
    LeadIdentity,
    UpsertOutcome,
    resolve_lead,
)
from reconciler.services.workflow_status_service import (
    TransitionResult,
    ensure_execution,
    mark_failed,
    mark_processing,
    mark_success,
)

__all__ = [
    # Identity
    "IdentityResolution",
    "LeadIdentity",
    "UpsertOutcome",
    "resolve_lead",
    # Workflow status
    "TransitionResult",
    "ensure_execution",
    "mark_failed",
    "mark_processing",
    "mark_success",
]
