"""Initial migration: create sync tables

Revision ID: 3c1f7a9e2b4d
Revises: 
Create Date: 2026-10-19 10:12:04.118305

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1f7a9e2b4d'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    # Create remote_servers table
    op.create_table(
        'remote_servers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('host', sa.String(length=255), nullable=False),
        sa.Column('port', sa.Integer(), nullable=False, server_default='22'),
        sa.Column('username', sa.String(length=100), nullable=False),
        sa.Column('private_key', sa.Text(), nullable=True),
        sa.Column('password', sa.String(length=255), nullable=True),
        sa.Column('project_path', sa.String(length=1000), nullable=False),
        sa.Column('is_reachable', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_ping_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )

    # Create projects table
    op.create_table(
        'projects',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('tag', sa.String(length=100), nullable=False, server_default='master'),
        sa.Column('owner_id', sa.String(length=100), nullable=False),
        sa.Column('local_path', sa.String(length=1000), nullable=True),
        sa.Column('server_id', sa.Integer(), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['server_id'], ['remote_servers.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_projects_owner_id', 'projects', ['owner_id'])

    # Create tasks table (mirror of tasks.json entries)
    op.create_table(
        'tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('tag', sa.String(length=100), nullable=False),
        sa.Column('task_id', sa.String(length=100), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('status', sa.String(length=11), nullable=False, server_default='pending'),
        sa.Column('priority', sa.String(length=8), nullable=False, server_default='medium'),
        sa.Column('complexity', sa.Integer(), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('test_strategy', sa.Text(), nullable=True),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'tag', 'task_id', name='uq_task_mirror')
    )

    # Create sync_states table
    op.create_table(
        'sync_states',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=100), nullable=False),
        sa.Column('status', sa.String(length=9), nullable=False, server_default='IDLE'),
        sa.Column('source_kind', sa.String(length=20), nullable=True),
        sa.Column('last_sync_at', sa.DateTime(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('sync_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'user_id', name='uq_sync_state')
    )

    # Create sync_history table
    op.create_table(
        'sync_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.String(length=100), nullable=True),
        sa.Column('sync_type', sa.String(length=8), nullable=False),
        sa.Column('status', sa.String(length=9), nullable=False, server_default='PENDING'),
        sa.Column('tasks_added', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tasks_updated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('tasks_removed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('sync_data', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_history_project_id', 'sync_history', ['project_id'])

    # Create conflict_items table
    op.create_table(
        'conflict_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('project_id', sa.Integer(), nullable=True),
        sa.Column('entity_type', sa.String(length=50), nullable=False, server_default='task'),
        sa.Column('entity_id', sa.String(length=100), nullable=False),
        sa.Column('tag', sa.String(length=100), nullable=False, server_default='master'),
        sa.Column('local_data', sa.JSON(), nullable=False),
        sa.Column('remote_data', sa.JSON(), nullable=False),
        sa.Column('conflicted_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('resolution', sa.String(length=6), nullable=True),
        sa.Column('resolved_data', sa.JSON(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_conflict_items_entity_id', 'conflict_items', ['entity_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_conflict_items_entity_id', table_name='conflict_items')
    op.drop_table('conflict_items')
    op.drop_index('ix_sync_history_project_id', table_name='sync_history')
    op.drop_table('sync_history')
    op.drop_table('sync_states')
    op.drop_table('tasks')
    op.drop_index('ix_projects_owner_id', table_name='projects')
    op.drop_table('projects')
    op.drop_table('remote_servers')
