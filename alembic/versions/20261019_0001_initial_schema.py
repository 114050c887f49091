"""Initial schema - directory tree and audit log

Revision ID: 0001
Revises: 
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Directory nodes (materialized-path tree)
    op.create_table(
        'directory_nodes',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(255), nullable=False, index=True),
        sa.Column('kind', sa.String(20), nullable=False, default='UNIT'),
        sa.Column('attributes', sa.JSON(), nullable=False),
        sa.Column('credential_secret', sa.String(255), nullable=True),
        sa.Column('roles', sa.JSON(), nullable=True),
        sa.Column('parent_id', sa.Integer(), sa.ForeignKey('directory_nodes.id'), nullable=True, index=True),
        sa.Column('path', sa.String(1024), nullable=False, default=''),
        sa.Column('administers_node_id', sa.Integer(), sa.ForeignKey('directory_nodes.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_directory_nodes_path', 'directory_nodes', ['path'])
    op.create_index('ix_directory_nodes_parent_name', 'directory_nodes', ['parent_id', 'name'])

    # Audit log (append-only)
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('actor_id', sa.Integer(), nullable=False, index=True),
        sa.Column('actor_name', sa.String(255), nullable=False),
        sa.Column('actor_role', sa.String(50), nullable=False),
        sa.Column('action', sa.String(50), nullable=False, index=True),
        sa.Column('target_id', sa.Integer(), nullable=True, index=True),
        sa.Column('target_name', sa.String(255), nullable=True),
        sa.Column('target_kind', sa.String(50), nullable=True),
        sa.Column('scope', sa.String(1024), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, default='SUCCESS'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
    )
    op.create_index('ix_audit_logs_actor_time', 'audit_logs', ['actor_id', 'created_at'])
    op.create_index('ix_audit_logs_target_time', 'audit_logs', ['target_id', 'created_at'])
    op.create_index('ix_audit_logs_action_time', 'audit_logs', ['action', 'created_at'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('directory_nodes')
