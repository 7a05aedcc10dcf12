"""Event log service - append-only audit of inbound provider events."""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from reconciler.core.side_effects import non_critical
from reconciler.core.structured_logging import build_log_context
from reconciler.db.enums import WebhookProvider
from reconciler.db.models import WebhookEvent

logger = logging.getLogger(__name__)


def fallback_event_id(event_type: str | None) -> str:
    """Synthesize an id for providers that omit one: '<event_type>-<epoch ms>'."""
    millis = int(datetime.now(timezone.utc).timestamp() * 1000)
    return f"{event_type or 'unknown'}-{millis}"


def record_event(
    db: Session,
    provider: WebhookProvider,
    external_event_id: str,
    payload: dict,
    event_type: str | None = None,
) -> WebhookEvent | None:
    """
    Append a webhook event to the log.

    Best effort: a failed write is logged and None is returned.
    Must be called before the handler's critical writes, since a failure
    rolls back the session.
    """
    context = build_log_context(
        provider=provider.value, event_id=external_event_id, event_type=event_type
    )
    with non_critical(db, "record webhook event", **context):
        event = WebhookEvent(
            provider=provider.value,
            external_event_id=external_event_id,
            event_type=event_type,
            raw_payload=payload,
        )
        db.add(event)
        db.commit()
        logger.info("Webhook event logged", extra=context)
        return event
    return None


def list_events(
    db: Session,
    provider: WebhookProvider | None = None,
    external_event_id: str | None = None,
) -> list[WebhookEvent]:
    """List logged events, newest first."""
    query = db.query(WebhookEvent)
    if provider:
        query = query.filter(WebhookEvent.provider == provider.value)
    if external_event_id:
        query = query.filter(WebhookEvent.external_event_id == external_event_id)
    return query.order_by(WebhookEvent.received_at.desc()).all()
