"""CRM webhook handler for lead create, update and note events."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from reconciler.core.config import settings
from reconciler.core.errors import AuthenticationError, PayloadValidationError
from reconciler.core.security import verify_hmac_signature
from reconciler.core.side_effects import critical
from reconciler.core.structured_logging import build_log_context
from reconciler.db.enums import LeadSource, WebhookProvider
from reconciler.schemas.webhooks import (
    CRM_LEAD_UPDATE,
    CRM_NEW_LEAD,
    CRM_NOTE_ADDED,
    CrmLeadData,
    CrmWebhookPayload,
)
from reconciler.services import event_log_service, identity_service
from reconciler.services.webhooks.base import parse_json_body, read_body_safe
from reconciler.utils.normalization import normalize_phone

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-CRM-Signature"


def _identity_from_lead(lead: CrmLeadData) -> identity_service.LeadIdentity:
    return identity_service.LeadIdentity(
        source=LeadSource.CRM,
        phone=normalize_phone(lead.phone, settings.DEFAULT_PHONE_REGION) if lead.phone else None,
        first_name=lead.first_name,
        last_name=lead.last_name,
        email=lead.email,
        status=lead.pipeline_status,
        notes=lead.note,
        crm_lead_id=lead.lead_id,
    )


class CrmWebhookHandler:
    async def handle(self, request: Request, db: Session, **kwargs):
        """
        Receive CRM lead events.

        Handles:
        - NEW_LEAD_WEBHOOK / LEAD_UPDATE_WEBHOOK: resolve and merge the lead
        - NOTE_ADDED_WEBHOOK: append a timestamped note to the lead

        Security:
        - Requires a hex HMAC-SHA256 of the raw body in X-CRM-Signature,
          keyed by CRM_WEBHOOK_SECRET. Nothing is written before it passes.
        """
        body = await read_body_safe(request)

        if not settings.CRM_WEBHOOK_SECRET:
            logger.error("CRM_WEBHOOK_SECRET not configured")
            raise HTTPException(500, "Webhook not configured")

        if not verify_hmac_signature(
            body, request.headers.get(SIGNATURE_HEADER), settings.CRM_WEBHOOK_SECRET
        ):
            logger.warning("CRM webhook invalid signature")
            raise AuthenticationError("Invalid signature")

        data = parse_json_body(body)
        try:
            payload = CrmWebhookPayload.model_validate(data)
        except ValidationError as exc:
            raise PayloadValidationError(
                "Invalid CRM payload", details={"errors": exc.error_count()}
            )

        event_type = payload.event_type
        event_id = (
            payload.event_id
            or payload.nested_event_id
            or event_log_service.fallback_event_id(event_type)
        )
        context = build_log_context(
            provider=WebhookProvider.CRM.value, event_id=event_id, event_type=event_type
        )
        event_log_service.record_event(
            db,
            WebhookProvider.CRM,
            event_id,
            data,
            event_type=event_type,
        )

        try:
            lead = payload.lead_data()
        except ValidationError as exc:
            raise PayloadValidationError(
                "Invalid lead data", details={"errors": exc.error_count()}
            )
        if lead is None:
            logger.warning("CRM webhook without lead data", extra=context)
            raise PayloadValidationError("No lead data in payload")

        if event_type in (CRM_NEW_LEAD, CRM_LEAD_UPDATE):
            return self._handle_lead(db, lead, context)
        if event_type == CRM_NOTE_ADDED:
            return self._handle_note(db, lead, context)

        logger.info("CRM webhook event type not handled", extra=context)
        return {"status": "ok", "message": "Event type not handled", "event_type": event_type}

    def _handle_lead(self, db: Session, lead: CrmLeadData, context: dict) -> dict:
        identity = _identity_from_lead(lead)
        has_phone = identity.phone is not None and identity.phone.phone_raw
        if not has_phone and not identity.crm_lead_id:
            raise PayloadValidationError("Lead has neither a phone number nor a CRM id")

        resolution = identity_service.resolve_lead(db, identity)
        logger.info(
            "CRM lead processed (%s)",
            "created" if resolution.created else "matched",
            extra={**context, "lead_id": str(resolution.lead_id)},
        )
        return {
            "status": "ok",
            "message": "Lead processed successfully",
            "lead_id": str(resolution.lead_id),
            "created": resolution.created,
            "updated_fields": resolution.updated_fields,
            "outcome": resolution.outcome.value,
        }

    def _handle_note(self, db: Session, lead: CrmLeadData, context: dict) -> dict:
        if not lead.note or not lead.note.strip():
            return {"status": "ok", "message": "Note event received"}

        with critical(db, "append CRM note", **context):
            record = None
            if lead.lead_id:
                record = identity_service.find_lead_by_crm_id(db, lead.lead_id)
            if record is None and lead.phone:
                phone = normalize_phone(lead.phone, settings.DEFAULT_PHONE_REGION)
                if phone.phone_e164:
                    record = identity_service.find_lead_by_phone(db, phone.phone_e164)
            if record is None:
                logger.warning("CRM note for unknown lead", extra=context)
                return {"status": "ok", "message": "Lead not found for note"}

            identity_service.append_note(record, lead.note, "CRM Note")
            record.last_contacted_at = datetime.now(timezone.utc)
            db.commit()

        return {"status": "ok", "message": "Note event received", "lead_id": str(record.id)}
