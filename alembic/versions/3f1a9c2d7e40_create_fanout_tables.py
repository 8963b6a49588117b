"""create endpoints, webhook_logs and incoming_webhooks tables

Revision ID: 3f1a9c2d7e40
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


revision: str = '3f1a9c2d7e40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'endpoints',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('is_primary', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('headers', sa.Text(), nullable=True),
        sa.Column('tenant_id', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'webhook_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('webhook_id', sa.String(length=36), nullable=False),
        sa.Column('direction', sa.String(length=10), nullable=False),
        sa.Column('endpoint_url', sa.Text(), nullable=True),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('headers', sa.Text(), nullable=True),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('status_code', sa.Integer(), nullable=True),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('response_time', sa.Integer(), nullable=True),
        sa.Column('tenant_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_webhook_logs_webhook_id', 'webhook_logs', ['webhook_id'])
    op.create_index('idx_webhook_logs_created_at', 'webhook_logs', ['created_at'])

    op.create_table(
        'incoming_webhooks',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('headers', sa.Text(), nullable=True),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('tenant_id', sa.String(length=64), nullable=True),
        sa.Column('source_ip', sa.String(length=64), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('processing_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('response_status', sa.Integer(), nullable=True),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('replay_of', sa.String(length=36), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_incoming_webhooks_created_at', 'incoming_webhooks', ['created_at'])


def downgrade() -> None:
    op.drop_index('idx_incoming_webhooks_created_at', table_name='incoming_webhooks')
    op.drop_table('incoming_webhooks')
    op.drop_index('idx_webhook_logs_created_at', table_name='webhook_logs')
    op.drop_index('idx_webhook_logs_webhook_id', table_name='webhook_logs')
    op.drop_table('webhook_logs')
    op.drop_table('endpoints')
