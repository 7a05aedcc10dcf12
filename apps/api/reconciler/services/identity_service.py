"""Identity resolver - find or create a lead from a phone number and contact facts.

Lookup-then-create is written as a conditional insert against the unique
constraints on leads (phone_e164, crm_lead_id). When a concurrent request
inserts the same caller first, the insert returns no row and the resolver
re-reads the winner instead of raising. That branch is reported as
UpsertOutcome.CONFLICT_RESOLVED.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import select
from sqlalchemy.orm import Session

from reconciler.core.side_effects import critical
from reconciler.core.structured_logging import build_log_context
from reconciler.db.enums import DEFAULT_LEAD_STATUS, LeadSource
from reconciler.db.models import Lead, PhoneMapping
from reconciler.db.upsert import insert_for
from reconciler.utils.normalization import (
    NormalizedPhone,
    normalize_email,
    normalize_name,
)

logger = logging.getLogger(__name__)


class UpsertOutcome(str, Enum):
    """How an identity write landed."""

    APPLIED = "applied"  # our lookup or insert decided the row
    CONFLICT_RESOLVED = "conflict_resolved"  # a concurrent insert won; we re-read it


@dataclass
class LeadIdentity:
    """Identity facts about a caller, already extracted from a provider payload."""

    source: LeadSource
    phone: NormalizedPhone | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    status: str | None = None
    notes: str | None = None
    crm_lead_id: str | None = None

    @property
    def has_match_key(self) -> bool:
        """A canonical phone or CRM id, the only facts an existing lead is found by."""
        return bool((self.phone and self.phone.phone_e164) or self.crm_lead_id)

    def contact_fields(self) -> dict[str, str]:
        """Non-blank mergeable values."""
        values = {
            "first_name": normalize_name(self.first_name),
            "last_name": normalize_name(self.last_name),
            "email": normalize_email(self.email),
            "status": (self.status or "").strip().lower() or None,
            "phone_raw": self.phone.phone_raw if self.phone else None,
        }
        return {k: v for k, v in values.items() if v}


@dataclass
class IdentityResolution:
    lead_id: uuid.UUID
    outcome: UpsertOutcome
    created: bool
    updated_fields: list[str] = field(default_factory=list)

    @property
    def updated(self) -> bool:
        return bool(self.updated_fields)


# =============================================================================
# Merge policy
# =============================================================================

def merge_lead_fields(lead: Lead, incoming: dict[str, str], source: LeadSource) -> list[str]:
    """
    Merge incoming values into a lead without erasing known facts.

    - Blank incoming values are never applied.
    - Empty fields are always filled.
    - A non-empty field is replaced only when the incoming source ranks at
      least as high as the source that last set it (equal rank: newest wins).
      A CRM edit therefore overrides a name guessed from a call, but not the
      other way round.

    Returns the names of fields that changed.
    """
    sources = dict(lead.field_sources or {})
    changed: list[str] = []

    for name, value in incoming.items():
        if not value:
            continue
        current = getattr(lead, name)
        if current == value:
            sources.setdefault(name, source.value)
            continue
        if current and source.trust < LeadSource.trust_of(sources.get(name)):
            continue
        setattr(lead, name, value)
        sources[name] = source.value
        changed.append(name)

    if sources != (lead.field_sources or {}):
        # Reassign so the JSON column is flagged dirty
        lead.field_sources = sources
    return changed


def append_note(lead: Lead, note: str, label: str) -> None:
    """Append a timestamped note block to the lead's notes."""
    stamp = datetime.now(timezone.utc).isoformat()
    block = f"[{label} - {stamp}]:\n{note.strip()}"
    lead.notes = f"{lead.notes}\n\n{block}" if lead.notes else block


# =============================================================================
# Lookups
# =============================================================================

def get_lead(db: Session, lead_id: uuid.UUID) -> Lead | None:
    return db.get(Lead, lead_id)


def find_lead_by_phone(db: Session, phone_e164: str) -> Lead | None:
    """Look up by the phone mapping, falling back to the lead's own column."""
    mapping = db.get(PhoneMapping, phone_e164)
    if mapping:
        return db.get(Lead, mapping.lead_id)
    return db.scalar(select(Lead).where(Lead.phone_e164 == phone_e164))


def find_lead_by_crm_id(db: Session, crm_lead_id: str) -> Lead | None:
    return db.scalar(select(Lead).where(Lead.crm_lead_id == crm_lead_id))


def _find_existing(db: Session, identity: LeadIdentity) -> Lead | None:
    if identity.phone and identity.phone.phone_e164:
        lead = find_lead_by_phone(db, identity.phone.phone_e164)
        if lead:
            return lead
    if identity.crm_lead_id:
        return find_lead_by_crm_id(db, identity.crm_lead_id)
    return None


# =============================================================================
# Writes
# =============================================================================

def _upsert_phone_mapping(db: Session, lead: Lead) -> None:
    """Point the lead's canonical phone at it, refreshing the display name."""
    if not lead.phone_e164:
        return
    now = datetime.now(timezone.utc)
    stmt = insert_for(db, PhoneMapping).values(
        phone_e164=lead.phone_e164,
        lead_id=lead.id,
        display_name=lead.display_name,
        last_updated=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[PhoneMapping.phone_e164],
        set_={
            "lead_id": stmt.excluded.lead_id,
            "display_name": stmt.excluded.display_name,
            "last_updated": stmt.excluded.last_updated,
        },
    )
    db.execute(stmt)


def _insert_lead(db: Session, identity: LeadIdentity) -> uuid.UUID | None:
    """
    Insert a new lead unless a unique key already exists.

    Returns the new id, or None when a row with the same phone_e164 or
    crm_lead_id was committed first.
    """
    fields = identity.contact_fields()
    values = {
        "id": uuid.uuid4(),
        "phone_e164": identity.phone.phone_e164 if identity.phone else None,
        "phone_raw": fields.get("phone_raw"),
        "first_name": fields.get("first_name"),
        "last_name": fields.get("last_name"),
        "email": fields.get("email"),
        "status": fields.get("status") or DEFAULT_LEAD_STATUS.value,
        "notes": identity.notes,
        "source": identity.source.value,
        "crm_lead_id": identity.crm_lead_id,
        "field_sources": {name: identity.source.value for name in fields},
    }
    stmt = insert_for(db, Lead).values(**values).on_conflict_do_nothing().returning(Lead.id)
    return db.execute(stmt).scalar_one_or_none()


def resolve_lead(db: Session, identity: LeadIdentity) -> IdentityResolution:
    """
    Find or create the lead for an identity and merge its facts.

    1. Canonical phone → phone mapping (then crm_lead_id when there is no phone match).
    2. Found: merge newly supplied fields under the precedence policy.
    3. Not found: conditional insert of lead + phone mapping. A lost race
       re-reads the existing lead and merges into it.
    4. No canonical phone and no CRM id: a lead with only phone_raw is created.

    Commits. Database failures raise PersistenceError.
    """
    phone_e164 = identity.phone.phone_e164 if identity.phone else None

    with critical(db, "resolve lead identity", provider=identity.source.value):
        existing = _find_existing(db, identity)
        if existing:
            changed = merge_lead_fields(existing, identity.contact_fields(), identity.source)
            if identity.crm_lead_id and not existing.crm_lead_id:
                existing.crm_lead_id = identity.crm_lead_id
                changed.append("crm_lead_id")
            if phone_e164 and not existing.phone_e164:
                existing.phone_e164 = phone_e164
                changed.append("phone_e164")
            db.flush()
            _upsert_phone_mapping(db, existing)
            db.commit()
            logger.info(
                "Lead matched (%s fields updated)",
                len(changed),
                extra=build_log_context(lead_id=existing.id),
            )
            return IdentityResolution(
                lead_id=existing.id,
                outcome=UpsertOutcome.APPLIED,
                created=False,
                updated_fields=changed,
            )

        new_id = _insert_lead(db, identity)
        if new_id is not None:
            lead = db.get(Lead, new_id)
            _upsert_phone_mapping(db, lead)
            db.commit()
            if not phone_e164:
                logger.info(
                    "Lead created without canonical phone; phone dedup unavailable",
                    extra=build_log_context(lead_id=new_id),
                )
            else:
                logger.info("Lead created", extra=build_log_context(lead_id=new_id))
            return IdentityResolution(
                lead_id=new_id, outcome=UpsertOutcome.APPLIED, created=True
            )

        # Conflict: a concurrent request created this caller between our
        # lookup and insert. Re-read and merge into the winner.
        winner = _find_existing(db, identity)
        if winner is None:
            raise LookupError("Lead insert conflicted but no existing lead was found")
        changed = merge_lead_fields(winner, identity.contact_fields(), identity.source)
        db.flush()
        _upsert_phone_mapping(db, winner)
        db.commit()
        logger.info(
            "Lead insert conflict resolved to existing lead",
            extra=build_log_context(lead_id=winner.id),
        )
        return IdentityResolution(
            lead_id=winner.id,
            outcome=UpsertOutcome.CONFLICT_RESOLVED,
            created=False,
            updated_fields=changed,
        )
