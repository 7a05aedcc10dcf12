"""Baseline migration - leads, conversations and inbound event tables

Revision ID: 0001_reconciliation_baseline
Revises:
Create Date: 2026-10-19

Creates the tables written by the inbound reconciliation pipeline.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_reconciliation_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(
        name, sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )


def upgrade() -> None:
    """Create reconciliation tables."""

    # ==========================================================================
    # Inbound event log
    # ==========================================================================
    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('external_event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=True),
        sa.Column('raw_payload', JSONType, nullable=False),
        _timestamp('received_at'),
    )
    # Not unique: redeliveries are logged, idempotency lives in the upserts
    op.create_index(
        'idx_webhook_events_provider_event',
        'webhook_events',
        ['provider', 'external_event_id'],
    )

    # ==========================================================================
    # Leads & phone mapping
    # ==========================================================================
    op.create_table(
        'leads',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('phone_e164', sa.String(20), nullable=True, unique=True),
        sa.Column('phone_raw', sa.String(50), nullable=True),
        sa.Column('first_name', sa.String(100), nullable=True),
        sa.Column('last_name', sa.String(100), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('source', sa.String(50), nullable=True),
        sa.Column('status', sa.String(50), nullable=False, server_default='new'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('crm_lead_id', sa.String(100), nullable=True, unique=True),
        sa.Column('field_sources', JSONType, nullable=False, server_default='{}'),
        _timestamp('last_contacted_at', nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
    )

    op.create_table(
        'phone_lead_mappings',
        sa.Column('phone_e164', sa.String(20), primary_key=True),
        sa.Column(
            'lead_id', sa.Uuid(), sa.ForeignKey('leads.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column('display_name', sa.String(255), nullable=True),
        _timestamp('last_updated'),
    )

    # ==========================================================================
    # Conversations
    # ==========================================================================
    op.create_table(
        'conversations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'lead_id', sa.Uuid(), sa.ForeignKey('leads.id', ondelete='SET NULL'), nullable=True
        ),
        sa.Column('external_call_id', sa.String(255), nullable=True, unique=True),
        sa.Column('transcript', sa.Text(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('sentiment_score', sa.Float(), nullable=True),
        sa.Column('direction', sa.String(20), nullable=True),
        sa.Column('call_status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('agent_id', sa.String(255), nullable=True),
        sa.Column('recording_url', sa.Text(), nullable=True),
        sa.Column('extraction_status', sa.String(20), nullable=False, server_default='pending'),
        _timestamp('started_at', nullable=True),
        _timestamp('ended_at', nullable=True),
        _timestamp('created_at'),
    )
    op.create_index('idx_conversations_lead', 'conversations', ['lead_id'])

    op.create_table(
        'conversation_messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'conversation_id',
            sa.Uuid(),
            sa.ForeignKey('conversations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('seq', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('content', sa.Text(), nullable=False),
        sa.UniqueConstraint('conversation_id', 'seq', name='uq_conversation_message_seq'),
    )

    # ==========================================================================
    # Extractions & AI profiles
    # ==========================================================================
    scalar_columns = []
    for name, length in (
        ('name', 255),
        ('phone', 50),
        ('email', 255),
        ('property_type', 100),
        ('loan_type', 100),
        ('price_range', 100),
        ('timeline', 100),
        ('pre_approval_status', 50),
    ):
        scalar_columns.append(sa.Column(name, sa.String(length), nullable=True))
        scalar_columns.append(sa.Column(f'{name}_confidence', sa.Float(), nullable=True))

    op.create_table(
        'conversation_extractions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'conversation_id',
            sa.Uuid(),
            sa.ForeignKey('conversations.id', ondelete='CASCADE'),
            nullable=False,
            unique=True,
        ),
        sa.Column(
            'lead_id', sa.Uuid(), sa.ForeignKey('leads.id', ondelete='SET NULL'), nullable=True
        ),
        *scalar_columns,
        sa.Column('lead_temperature', sa.String(10), nullable=True),
        sa.Column('concerns', JSONType, nullable=False, server_default='[]'),
        sa.Column('interested_properties', JSONType, nullable=False, server_default='[]'),
        sa.Column('requested_actions', JSONType, nullable=False, server_default='[]'),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('sentiment_score', sa.Float(), nullable=True),
        sa.Column('extraction_version', sa.String(20), nullable=False),
        sa.Column('raw_extraction_payload', JSONType, nullable=False),
        _timestamp('created_at'),
        _timestamp('updated_at'),
    )

    op.create_table(
        'ai_profiles',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column(
            'lead_id', sa.Uuid(), sa.ForeignKey('leads.id', ondelete='CASCADE'), nullable=False
        ),
        sa.Column(
            'conversation_id',
            sa.Uuid(),
            sa.ForeignKey('conversations.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('property_type', sa.String(100), nullable=True),
        sa.Column('loan_type', sa.String(100), nullable=True),
        sa.Column('price_range', sa.String(100), nullable=True),
        sa.Column('timeline', sa.String(100), nullable=True),
        sa.Column('pre_approval_status', sa.String(50), nullable=True),
        sa.Column('lead_temperature', sa.String(10), nullable=True),
        sa.Column('qualification_score', sa.Integer(), nullable=True),
        sa.Column('concerns', JSONType, nullable=False, server_default='[]'),
        sa.Column('interested_properties', JSONType, nullable=False, server_default='[]'),
        sa.Column('requested_actions', JSONType, nullable=False, server_default='[]'),
        sa.Column('summary', sa.Text(), nullable=True),
        sa.Column('profile_data', JSONType, nullable=False, server_default='{}'),
        sa.Column('completeness_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('confidence_score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('extraction_version', sa.String(20), nullable=True),
        _timestamp('created_at'),
        _timestamp('updated_at'),
        sa.UniqueConstraint(
            'lead_id', 'conversation_id', name='uq_ai_profile_lead_conversation'
        ),
    )

    # ==========================================================================
    # Workflow executions
    # ==========================================================================
    op.create_table(
        'workflow_executions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('execution_id', sa.String(255), nullable=False, unique=True),
        sa.Column('workflow_name', sa.String(100), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('output_data', JSONType, nullable=True),
        sa.Column('execution_time_ms', sa.Integer(), nullable=True),
        _timestamp('started_at'),
        _timestamp('completed_at', nullable=True),
    )
    op.create_index(
        'idx_workflow_exec_status', 'workflow_executions', ['workflow_name', 'status']
    )


def downgrade() -> None:
    """Drop reconciliation tables."""
    op.drop_index('idx_workflow_exec_status', table_name='workflow_executions')
    op.drop_table('workflow_executions')
    op.drop_table('ai_profiles')
    op.drop_table('conversation_extractions')
    op.drop_table('conversation_messages')
    op.drop_index('idx_conversations_lead', table_name='conversations')
    op.drop_table('conversations')
    op.drop_table('phone_lead_mappings')
    op.drop_table('leads')
    op.drop_index('idx_webhook_events_provider_event', table_name='webhook_events')
    op.drop_table('webhook_events')
