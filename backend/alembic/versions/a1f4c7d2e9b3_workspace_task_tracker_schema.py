"""Workspace task tracker schema (workspaces, members, services, tasks, history)

Revision ID: a1f4c7d2e9b3
Revises:
Create Date: 2026-10-18T09:12:44.118203
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1f4c7d2e9b3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TASK_STATUS = ('BACKLOG', 'TODO', 'IN_PROGRESS', 'IN_REVIEW', 'DONE', 'ARCHIVED')


def upgrade() -> None:
    # --- users ---
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=False, server_default=''),
        sa.Column('can_create_workspaces', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_active', sa.Boolean(), nullable=True, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_is_active', 'users', ['is_active'])

    # --- workspaces ---
    op.create_table(
        'workspaces',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('owner_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('invite_code', sa.String(), nullable=False),
        sa.Column('task_prefix', sa.String(), nullable=False, server_default='TASK'),
        sa.Column('task_counter', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_workspaces_name', 'workspaces', ['name'])
    op.create_index('ix_workspaces_invite_code', 'workspaces', ['invite_code'], unique=True)

    # --- members ---
    op.create_table(
        'members',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.Enum('ADMIN', 'MEMBER', 'VISITOR', name='memberrole'), nullable=False, server_default='MEMBER'),
        sa.Column('joined_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'workspace_id', name='uq_member_user_workspace'),
    )
    op.create_index('ix_members_user_id', 'members', ['user_id'])
    op.create_index('ix_members_workspace_id', 'members', ['workspace_id'])
    op.create_index('ix_members_role', 'members', ['role'])
    op.create_index('idx_member_ws_role', 'members', ['workspace_id', 'role'])

    # --- services ---
    op.create_table(
        'services',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_services_workspace_id', 'services', ['workspace_id'])

    # --- kanban_partitions ---
    op.create_table(
        'kanban_partitions',
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', sa.Enum(*TASK_STATUS, name='taskstatus'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('reindexed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('workspace_id', 'status', name='pk_kanban_partition'),
    )

    # --- tasks ---
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('service_id', sa.String(), sa.ForeignKey('services.id'), nullable=False),
        sa.Column('task_number', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum(*TASK_STATUS, name='taskstatus', create_type=False), nullable=False, server_default='TODO'),
        sa.Column('position', sa.Float(), nullable=False, server_default='0'),
        sa.Column('priority', sa.Enum('CRITICAL', 'HIGH', 'MEDIUM', 'LOW', name='taskpriority'), nullable=False, server_default='MEDIUM'),
        sa.Column('creator_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assignee_id', sa.String(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_confidential', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('history_seq', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_workspace_id', 'tasks', ['workspace_id'])
    op.create_index('ix_tasks_service_id', 'tasks', ['service_id'])
    op.create_index('ix_tasks_task_number', 'tasks', ['task_number'])
    op.create_index('ix_tasks_assignee_id', 'tasks', ['assignee_id'])
    op.create_index('idx_task_partition_pos', 'tasks', ['workspace_id', 'status', 'position'])
    op.create_index('idx_task_ws_assignee', 'tasks', ['workspace_id', 'assignee_id'])

    # --- task_followers ---
    op.create_table(
        'task_followers',
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('task_id', 'user_id', name='pk_task_follower'),
    )
    op.create_index('idx_follower_user', 'task_followers', ['user_id'])

    # --- task_history ---
    op.create_table(
        'task_history',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('actor_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('field_name', sa.String(), nullable=True),
        sa.Column('old_value', sa.Text(), nullable=True),
        sa.Column('new_value', sa.Text(), nullable=True),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('task_id', 'sequence', name='uq_history_task_seq'),
    )
    op.create_index('ix_task_history_task_id', 'task_history', ['task_id'])
    op.create_index('idx_history_task_time', 'task_history', ['task_id', 'created_at', 'sequence'])

    # --- task_messages ---
    op.create_table(
        'task_messages',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sender_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content', sa.Text(), nullable=False, server_default=''),
        sa.Column('attachment_id', sa.String(), nullable=True),
        sa.Column('attachment_name', sa.String(), nullable=True),
        sa.Column('attachment_size', sa.BigInteger(), nullable=True),
        sa.Column('attachment_type', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_messages_task_id', 'task_messages', ['task_id'])
    op.create_index('ix_task_messages_workspace_id', 'task_messages', ['workspace_id'])
    op.create_index('ix_task_messages_created_at', 'task_messages', ['created_at'])

    # --- task_attachments ---
    op.create_table(
        'task_attachments',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('workspace_id', sa.String(), sa.ForeignKey('workspaces.id', ondelete='CASCADE'), nullable=False),
        sa.Column('uploader_id', sa.String(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('filename', sa.String(), nullable=False),
        sa.Column('storage_key', sa.String(), nullable=False),
        sa.Column('file_size', sa.BigInteger(), nullable=True, server_default='0'),
        sa.Column('mime_type', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_attachments_task_id', 'task_attachments', ['task_id'])
    op.create_index('ix_task_attachments_workspace_id', 'task_attachments', ['workspace_id'])


def downgrade() -> None:
    op.drop_table('task_attachments')
    op.drop_table('task_messages')
    op.drop_table('task_history')
    op.drop_table('task_followers')
    op.drop_table('tasks')
    op.drop_table('kanban_partitions')
    op.drop_table('services')
    op.drop_table('members')
    op.drop_table('workspaces')
    op.drop_table('users')
    op.execute("DROP TYPE IF EXISTS taskpriority")
    op.execute("DROP TYPE IF EXISTS taskstatus")
    op.execute("DROP TYPE IF EXISTS memberrole")
