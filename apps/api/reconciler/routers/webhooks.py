"""Webhooks router - inbound provider events."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from reconciler.core.deps import get_db, get_extraction_engine
from reconciler.core.rate_limit import WEBHOOK_LIMIT, limiter
from reconciler.db.enums import WebhookProvider
from reconciler.services.extraction_service import ExtractionEngine
from reconciler.services.webhooks.registry import get_handler

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/crm")
@limiter.limit(WEBHOOK_LIMIT)
async def receive_crm_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Receive CRM lead events.

    Security:
    - Validates X-CRM-Signature HMAC over the raw body (401 on failure)
    - Validates payload size
    """
    handler = get_handler(WebhookProvider.CRM)
    return await handler.handle(request, db)


@router.post("/voice")
@limiter.limit(WEBHOOK_LIMIT)
async def receive_voice_webhook(
    request: Request,
    db: Session = Depends(get_db),
    extraction_engine: ExtractionEngine = Depends(get_extraction_engine),
):
    """
    Receive voice-agent call lifecycle events.

    call_ended runs transcript extraction inline; the call is bounded by the
    extraction retry policy.
    """
    handler = get_handler(WebhookProvider.VOICE)
    return await handler.handle(request, db, extraction_engine=extraction_engine)


@router.post("/workflow")
@limiter.limit(WEBHOOK_LIMIT)
async def receive_workflow_callback(
    request: Request,
    db: Session = Depends(get_db),
):
    """Receive workflow-automation execution results."""
    handler = get_handler(WebhookProvider.WORKFLOW)
    return await handler.handle(request, db)
