"""Pydantic schemas for lead lookup responses."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class LeadContext(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone_raw: str | None = None
    status: str
    source: str | None = None
    crm_lead_id: str | None = None
    notes: str | None = None
    last_contacted_at: datetime | None = None
    created_at: datetime


class LeadLookupResponse(BaseModel):
    phone_e164: str
    lead_name: str | None = None
    last_updated: datetime
    lead: LeadContext
