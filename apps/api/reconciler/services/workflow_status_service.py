"""Workflow status tracker - forward-only state machine for external runs."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from reconciler.core.side_effects import critical
from reconciler.core.structured_logging import build_log_context
from reconciler.db.enums import WorkflowExecutionStatus
from reconciler.db.models import WorkflowExecution
from reconciler.db.upsert import insert_for

logger = logging.getLogger(__name__)

Status = WorkflowExecutionStatus

# target status -> statuses it may be entered from
ALLOWED_SOURCES: dict[WorkflowExecutionStatus, tuple[WorkflowExecutionStatus, ...]] = {
    Status.PROCESSING: (Status.PENDING, Status.PROCESSING),
    Status.SUCCESS: (Status.PENDING, Status.PROCESSING),
    Status.FAILED: (Status.PENDING, Status.PROCESSING),
}


class TransitionResult(str, Enum):
    APPLIED = "applied"
    REJECTED = "rejected"  # row is in a status the transition may not leave
    NOT_FOUND = "not_found"


def get_execution(db: Session, execution_id: str) -> WorkflowExecution | None:
    return db.scalar(
        select(WorkflowExecution).where(WorkflowExecution.execution_id == execution_id)
    )


def ensure_execution(db: Session, execution_id: str, workflow_name: str) -> WorkflowExecution:
    """Create the execution row in PENDING unless it already exists."""
    with critical(db, "ensure workflow execution", execution_id=execution_id):
        stmt = (
            insert_for(db, WorkflowExecution)
            .values(
                execution_id=execution_id,
                workflow_name=workflow_name,
                status=Status.PENDING.value,
            )
            .on_conflict_do_nothing(index_elements=[WorkflowExecution.execution_id])
        )
        db.execute(stmt)
        db.commit()
        return get_execution(db, execution_id)


def _transition(
    db: Session,
    execution_id: str,
    target: WorkflowExecutionStatus,
    values: dict,
) -> TransitionResult:
    allowed = [s.value for s in ALLOWED_SOURCES[target]]
    context = build_log_context(execution_id=execution_id)

    with critical(db, f"mark workflow execution {target.value}", **context):
        result = db.execute(
            update(WorkflowExecution)
            .where(
                WorkflowExecution.execution_id == execution_id,
                WorkflowExecution.status.in_(allowed),
            )
            .values(status=target.value, **values)
            .execution_options(synchronize_session=False)
        )
        db.commit()

    if result.rowcount:
        logger.info("Workflow execution moved to %s", target.value, extra=context)
        return TransitionResult.APPLIED

    # Stale identity-map state must not hide the current status
    db.expire_all()
    execution = get_execution(db, execution_id)
    if execution is None:
        logger.warning("Workflow execution not found", extra=context)
        return TransitionResult.NOT_FOUND
    logger.info(
        "Workflow transition %s -> %s rejected",
        execution.status,
        target.value,
        extra=context,
    )
    return TransitionResult.REJECTED


def mark_processing(db: Session, execution_id: str) -> TransitionResult:
    return _transition(db, execution_id, Status.PROCESSING, {})


def mark_success(
    db: Session,
    execution_id: str,
    output_data: dict | None = None,
    execution_time_ms: int | None = None,
) -> TransitionResult:
    """Terminal success. Stores completed_at and a snapshot of the run output."""
    return _transition(
        db,
        execution_id,
        Status.SUCCESS,
        {
            "output_data": output_data,
            "execution_time_ms": execution_time_ms,
            "error_message": None,
            "completed_at": datetime.now(timezone.utc),
        },
    )


def mark_failed(
    db: Session,
    execution_id: str,
    error_message: str | None,
    output_data: dict | None = None,
    execution_time_ms: int | None = None,
) -> TransitionResult:
    """Terminal failure. Stores completed_at and the provider's error message."""
    return _transition(
        db,
        execution_id,
        Status.FAILED,
        {
            "output_data": output_data,
            "execution_time_ms": execution_time_ms,
            "error_message": error_message or "Workflow reported failure",
            "completed_at": datetime.now(timezone.utc),
        },
    )
