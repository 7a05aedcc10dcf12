"""Workflow-automation callback handler."""

from __future__ import annotations

import logging

from fastapi import Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from reconciler.core.errors import PayloadValidationError
from reconciler.core.structured_logging import build_log_context
from reconciler.db.enums import WebhookProvider
from reconciler.schemas.webhooks import parse_workflow_callback
from reconciler.services import event_log_service, reconciliation_service
from reconciler.services.webhooks.base import parse_json_body, read_body_safe

logger = logging.getLogger(__name__)


class WorkflowCallbackHandler:
    async def handle(self, request: Request, db: Session, **kwargs):
        """
        Receive the result of an external orchestration run.

        Applies lead, conversation and profile fragments, then moves the
        execution to the reported status. Fields that fail validation are
        skipped and listed in the summary errors. Always 200 with a summary,
        except for an unparseable body (400) or a persistence failure (500).
        """
        body = await read_body_safe(request)
        data = parse_json_body(body)

        try:
            payload, field_errors = parse_workflow_callback(data)
        except ValidationError as exc:
            raise PayloadValidationError(
                "Invalid workflow callback", details={"errors": exc.error_count()}
            ) from exc

        event_id = payload.execution_id or event_log_service.fallback_event_id(
            payload.workflow_name
        )
        event_log_service.record_event(
            db,
            WebhookProvider.WORKFLOW,
            f"{event_id}:{payload.status}",
            data,
            event_type=payload.workflow_name,
        )

        summary = reconciliation_service.process_workflow_callback(
            db, payload, field_errors=field_errors
        )
        logger.info(
            "Workflow callback handled (duplicate=%s)",
            summary.duplicate,
            extra=build_log_context(
                provider=WebhookProvider.WORKFLOW.value,
                execution_id=payload.execution_id,
                lead_id=summary.lead_id,
                conversation_id=summary.conversation_id,
            ),
        )
        return {
            "success": True,
            "processed_workflow": payload.workflow_name,
            **summary.as_dict(),
        }
