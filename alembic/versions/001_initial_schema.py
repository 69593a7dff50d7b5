"""Initial ConsentHub schema.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create users, consent, DSAR, notice, preference, webhook and audit tables."""
    user_role = postgresql.ENUM('admin', 'csr', 'customer', name='user_role')
    user_role.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(320), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(64), nullable=True),
        sa.Column('role', postgresql.ENUM(name='user_role', create_type=False), nullable=False),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column(
            'minor_dependents', postgresql.JSONB, nullable=False, server_default='[]',
            comment='Minors this user may act for as guardian',
        ),
        *_timestamps(),
    )
    op.create_index('ix_users_role', 'users', ['role'])

    op.create_table(
        'dsar_requests',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('request_id', sa.String(64), nullable=False, unique=True),
        sa.Column('requester_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('requester_name', sa.String(255), nullable=False),
        sa.Column('requester_email', sa.String(320), nullable=False),
        sa.Column('requester_phone', sa.String(64), nullable=True),
        sa.Column('request_type', sa.String(32), nullable=False),
        sa.Column('priority', sa.String(16), nullable=False, server_default='medium'),
        sa.Column('subject', sa.String(255), nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('source', sa.String(32), nullable=False, server_default='web_form'),
        sa.Column('status', sa.String(32), nullable=False, server_default='pending'),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processing_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('failed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processing_result', postgresql.JSONB, nullable=True),
        sa.Column('failure_reason', sa.Text, nullable=True),
        sa.Column('processing_notes', postgresql.JSONB, nullable=False, server_default='[]'),
        *_timestamps(),
        sa.Column('version', sa.Integer, nullable=False),

        sa.ForeignKeyConstraint(['requester_id'], ['users.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_dsar_requests_requester_id', 'dsar_requests', ['requester_id'])
    op.create_index('ix_dsar_requests_requester_email', 'dsar_requests', ['requester_email'])
    op.create_index('ix_dsar_status_submitted', 'dsar_requests', ['status', 'submitted_at'])
    op.create_index('ix_dsar_type', 'dsar_requests', ['request_type'])

    op.create_table(
        'consents',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('party_id', sa.String(128), nullable=False),
        sa.Column('purpose', sa.String(128), nullable=False),
        sa.Column('channel', sa.String(32), nullable=False, server_default='all'),
        sa.Column('consent_type', sa.String(32), nullable=False, server_default='marketing'),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('granted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('denied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=True),
        sa.Column('valid_to', sa.DateTime(timezone=True), nullable=True),
        sa.Column('record_source', sa.String(32), nullable=False, server_default='self_service'),
        sa.Column('privacy_notice_id', sa.String(64), nullable=True),
        sa.Column('version_accepted', sa.String(16), nullable=False, server_default='1.0'),
        sa.Column('guardian_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('metadata', postgresql.JSONB, nullable=False, server_default='{}'),
        *_timestamps(),
        sa.Column('insert_seq', sa.BigInteger, nullable=False),
        sa.Column('version', sa.Integer, nullable=False),
    )
    op.create_index('ix_consents_party_id', 'consents', ['party_id'])
    op.create_index('ix_consents_guardian_id', 'consents', ['guardian_id'])
    op.create_index('ix_consents_party_purpose', 'consents', ['party_id', 'purpose'])
    op.create_index('ix_consents_status', 'consents', ['status'])

    op.create_table(
        'privacy_notices',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('notice_id', sa.String(64), nullable=False, unique=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('content_type', sa.String(32), nullable=False, server_default='text/markdown'),
        sa.Column('version', sa.String(16), nullable=False, server_default='1.0'),
        sa.Column('category', sa.String(64), nullable=False, server_default='general'),
        sa.Column('purposes', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('legal_basis', sa.String(64), nullable=True),
        sa.Column('language', sa.String(8), nullable=False, server_default='en'),
        sa.Column('status', sa.String(16), nullable=False, server_default='draft'),
        sa.Column('effective_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('parent_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('family_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('created_by', postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),

        sa.ForeignKeyConstraint(['parent_id'], ['privacy_notices.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_privacy_notices_family_id', 'privacy_notices', ['family_id'])
    op.create_index('ix_notices_status_category', 'privacy_notices', ['status', 'category'])

    op.create_table(
        'privacy_notice_acknowledgments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('notice_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('acknowledged_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.ForeignKeyConstraint(['notice_id'], ['privacy_notices.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('notice_id', 'user_id', name='uq_notice_ack_user'),
    )
    op.create_index(
        'ix_privacy_notice_acknowledgments_notice_id',
        'privacy_notice_acknowledgments',
        ['notice_id'],
    )

    op.create_table(
        'preference_categories',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('name', sa.String(128), nullable=False, unique=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('priority', sa.Integer, nullable=False, server_default='0'),
        *_timestamps(),
    )

    op.create_table(
        'preference_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('category_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('key', sa.String(128), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('value_type', sa.String(16), nullable=False, server_default='boolean'),
        sa.Column('default_value', postgresql.JSONB, nullable=True),
        sa.Column('options', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('enabled', sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),

        sa.ForeignKeyConstraint(['category_id'], ['preference_categories.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('category_id', 'key', name='uq_pref_item_category_key'),
    )
    op.create_index('ix_preference_items_category_id', 'preference_items', ['category_id'])

    op.create_table(
        'user_preferences',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('item_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('value', postgresql.JSONB, nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['item_id'], ['preference_items.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('user_id', 'item_id', name='uq_user_pref_item'),
    )
    op.create_index('ix_user_preferences_user_id', 'user_preferences', ['user_id'])

    op.create_table(
        'webhooks',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('url', sa.Text, nullable=False),
        sa.Column('query', sa.Text, nullable=True),
        sa.Column('events', postgresql.JSONB, nullable=False, server_default='[]'),
        sa.Column('status', sa.String(16), nullable=False, server_default='active'),
        *_timestamps(),
    )
    op.create_index('ix_webhooks_status', 'webhooks', ['status'])

    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('actor_id', sa.String(128), nullable=True),
        sa.Column('action', sa.String(128), nullable=False),
        sa.Column('resource_type', sa.String(64), nullable=True),
        sa.Column('resource_id', sa.String(128), nullable=True),
        sa.Column('status', sa.String(32), nullable=False, server_default='success'),
        sa.Column('detail', sa.Text, nullable=True),
        sa.Column('extra', postgresql.JSONB, nullable=False, server_default='{}'),
    )
    op.create_index('ix_audit_logs_timestamp', 'audit_logs', ['timestamp'])
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_resource', 'audit_logs', ['resource_type', 'resource_id', 'timestamp'])


def downgrade() -> None:
    """Drop all ConsentHub tables."""
    op.drop_table('audit_logs')
    op.drop_table('webhooks')
    op.drop_table('user_preferences')
    op.drop_table('preference_items')
    op.drop_table('preference_categories')
    op.drop_table('privacy_notice_acknowledgments')
    op.drop_table('privacy_notices')
    op.drop_table('consents')
    op.drop_table('dsar_requests')
    op.drop_table('users')
    postgresql.ENUM(name='user_role').drop(op.get_bind(), checkfirst=True)
