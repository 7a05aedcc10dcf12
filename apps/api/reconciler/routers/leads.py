"""Leads router - caller lookup for inbound-call routing."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from reconciler.core.config import settings
from reconciler.core.deps import get_db
from reconciler.db.models import PhoneMapping
from reconciler.schemas.leads import LeadContext, LeadLookupResponse
from reconciler.utils.normalization import normalize_phone

router = APIRouter()


@router.get("/lookup", response_model=LeadLookupResponse)
def lookup_lead_by_phone(
    phone: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    """
    Resolve a caller's phone number to lead context.

    Any phone formatting is accepted; lookup is by canonical E.164 form.
    404 when the number is not mapped to a lead.
    """
    normalized = normalize_phone(phone, settings.DEFAULT_PHONE_REGION)
    if not normalized.phone_e164:
        raise HTTPException(status_code=400, detail="Phone number could not be parsed")

    mapping = db.get(PhoneMapping, normalized.phone_e164)
    if mapping is None or mapping.lead is None:
        raise HTTPException(status_code=404, detail="No lead found for this phone number")

    lead = mapping.lead
    return LeadLookupResponse(
        phone_e164=mapping.phone_e164,
        lead_name=mapping.display_name,
        last_updated=mapping.last_updated,
        lead=LeadContext.model_validate(lead),
    )
