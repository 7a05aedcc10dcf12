"""Conversation service - call records, transcript messages and lead links.

Functions here stage writes on the session; the reconciliation coordinator
owns the commit.
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from reconciler.db.enums import ExtractionStatus, MessageRole
from reconciler.db.models import Conversation, ConversationMessage, Lead
from reconciler.db.upsert import insert_for

logger = logging.getLogger(__name__)

_AGENT_LINE = re.compile(r"^(?:Agent|AI Agent):\s?(.+)$")
_LEAD_LINE = re.compile(r"^(?:Lead|Customer|User):\s?(.+)$")


@dataclass(frozen=True)
class TranscriptMessage:
    seq: int
    role: MessageRole
    content: str


def split_transcript(raw: str | None) -> list[TranscriptMessage]:
    """
    Split a plain-text transcript into speaker messages.

    Lines prefixed "Agent:"/"AI Agent:" belong to the agent; "Lead:",
    "Customer:", "User:" and unprefixed lines belong to the lead.
    Blank lines are dropped; seq numbers are dense from 0.
    """
    if not raw:
        return []

    messages: list[TranscriptMessage] = []
    for line in raw.splitlines():
        text = line.strip()
        if not text:
            continue
        role = MessageRole.LEAD
        if match := _AGENT_LINE.match(text):
            role, text = MessageRole.AGENT, match.group(1).strip()
        elif match := _LEAD_LINE.match(text):
            text = match.group(1).strip()
        if text:
            messages.append(TranscriptMessage(seq=len(messages), role=role, content=text))
    return messages


def messages_from_utterances(utterances: list[dict]) -> list[TranscriptMessage]:
    """Convert a provider's structured utterance list ({role, content}) to messages."""
    messages: list[TranscriptMessage] = []
    for utterance in utterances:
        content = str(utterance.get("content") or "").strip()
        if not content:
            continue
        role = MessageRole.AGENT if utterance.get("role") == "agent" else MessageRole.LEAD
        messages.append(TranscriptMessage(seq=len(messages), role=role, content=content))
    return messages


def get_conversation(db: Session, conversation_id: uuid.UUID) -> Conversation | None:
    return db.get(Conversation, conversation_id)


def get_by_external_call_id(db: Session, external_call_id: str) -> Conversation | None:
    return db.scalar(
        select(Conversation).where(Conversation.external_call_id == external_call_id)
    )


def get_or_create_conversation(
    db: Session,
    external_call_id: str | None,
    **values,
) -> tuple[Conversation, bool]:
    """
    Return the conversation for a provider call id, creating it if needed.

    Creation is an INSERT ... ON CONFLICT DO NOTHING on external_call_id, so
    concurrent deliveries of the same call converge on one row. ``values``
    only apply to a newly created row.
    """
    if external_call_id is None:
        conversation = Conversation(**values)
        db.add(conversation)
        db.flush()
        return conversation, True

    stmt = (
        insert_for(db, Conversation)
        .values(id=uuid.uuid4(), external_call_id=external_call_id, **values)
        .on_conflict_do_nothing(index_elements=[Conversation.external_call_id])
        .returning(Conversation.id)
    )
    new_id = db.execute(stmt).scalar_one_or_none()
    if new_id is not None:
        return db.get(Conversation, new_id), True
    return get_by_external_call_id(db, external_call_id), False


def link_to_lead(conversation: Conversation, lead_id: uuid.UUID) -> bool:
    """Attach a conversation to its lead. Returns True when the link changed."""
    if conversation.lead_id == lead_id:
        return False
    if conversation.lead_id is not None:
        logger.warning(
            "Conversation %s relinked from lead %s to %s",
            conversation.id,
            conversation.lead_id,
            lead_id,
        )
    conversation.lead_id = lead_id
    return True


def upsert_messages(
    db: Session, conversation_id: uuid.UUID, messages: list[TranscriptMessage]
) -> int:
    """
    Replace the conversation's transcript messages.

    Rows are upserted by (conversation_id, seq); rows past the last incoming
    seq are deleted, so a shorter redelivered transcript leaves no tail.
    """
    last_seq = max((m.seq for m in messages), default=-1)
    db.execute(
        delete(ConversationMessage).where(
            ConversationMessage.conversation_id == conversation_id,
            ConversationMessage.seq > last_seq,
        )
    )
    if not messages:
        return 0
    stmt = insert_for(db, ConversationMessage).values(
        [
            {
                "id": uuid.uuid4(),
                "conversation_id": conversation_id,
                "seq": m.seq,
                "role": m.role.value,
                "content": m.content,
            }
            for m in messages
        ]
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[ConversationMessage.conversation_id, ConversationMessage.seq],
        set_={"role": stmt.excluded.role, "content": stmt.excluded.content},
    )
    db.execute(stmt)
    return len(messages)


def set_extraction_status(
    db: Session, conversation_id: uuid.UUID, status: ExtractionStatus
) -> None:
    db.execute(
        update(Conversation)
        .where(Conversation.id == conversation_id)
        .values(extraction_status=status.value)
        .execution_options(synchronize_session="fetch")
    )


def touch_last_contacted(db: Session, lead_id: uuid.UUID, when: datetime | None = None) -> None:
    lead = db.get(Lead, lead_id)
    if lead is not None:
        lead.last_contacted_at = when or datetime.now(timezone.utc)
