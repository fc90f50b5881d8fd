# models.py — Database models for the workspace task tracker
# - UUID string primary keys everywhere
# - 3-tier workspace roles (ADMIN, MEMBER, VISITOR)
# - Hard deletes with cascades (workspace → members/services/tasks → task children)
# - Kanban partitions carry a version counter for optimistic position writes

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, Boolean, BigInteger, Integer, Float,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint, PrimaryKeyConstraint,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class MemberRole(str, PyEnum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    VISITOR = "VISITOR"


class TaskStatus(str, PyEnum):
    BACKLOG = "BACKLOG"
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    DONE = "DONE"
    ARCHIVED = "ARCHIVED"


class TaskPriority(str, PyEnum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class HistoryAction(str, PyEnum):
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    FIELD_CHANGED = "field_changed"
    COMMENTED = "commented"
    ATTACHMENT_ADDED = "attachment_added"
    ATTACHMENT_REMOVED = "attachment_removed"
    FOLLOWER_ADDED = "follower_added"
    FOLLOWER_REMOVED = "follower_removed"


ACTIVE_STATUSES = (
    TaskStatus.BACKLOG, TaskStatus.TODO, TaskStatus.IN_PROGRESS,
    TaskStatus.IN_REVIEW, TaskStatus.DONE,
)


# ============================================================
# USERS
# ============================================================

class User(Base):
    """Authenticated identity. Credentials live with the external auth provider."""
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=new_uuid)
    email = Column(String, unique=True, nullable=False, index=True)
    display_name = Column(String, nullable=False, default="")
    can_create_workspaces = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


# ============================================================
# WORKSPACES
# ============================================================

class Workspace(Base):
    __tablename__ = "workspaces"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=False, index=True)
    description = Column(Text, nullable=True)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False)
    invite_code = Column(String, unique=True, nullable=False, index=True)
    task_prefix = Column(String, nullable=False, default="TASK")
    task_counter = Column(Integer, nullable=False, default=0)
    # Bumped by every role mutation; single-writer guard for the ADMIN invariant
    version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class Member(Base):
    __tablename__ = "members"

    id = Column(String, primary_key=True, default=new_uuid)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(SQLEnum(MemberRole), default=MemberRole.MEMBER, nullable=False, index=True)
    joined_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "workspace_id", name="uq_member_user_workspace"),
        Index("idx_member_ws_role", "workspace_id", "role"),
    )


class Service(Base):
    """Grouping label for tasks inside a workspace"""
    __tablename__ = "services"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


# ============================================================
# KANBAN
# ============================================================

class KanbanPartition(Base):
    """Version row for one (workspace, status) column"""
    __tablename__ = "kanban_partitions"

    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    status = Column(SQLEnum(TaskStatus), nullable=False)
    version = Column(Integer, nullable=False, default=0)
    reindexed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        PrimaryKeyConstraint("workspace_id", "status", name="pk_kanban_partition"),
    )


class Task(Base):
    """Kanban item"""
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, default=new_uuid)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    service_id = Column(String, ForeignKey("services.id"), nullable=False, index=True)
    task_number = Column(String, nullable=False, index=True)  # e.g. "OPS-42"
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(SQLEnum(TaskStatus), nullable=False, default=TaskStatus.TODO)
    position = Column(Float, nullable=False, default=0.0)  # Order key within (workspace, status)
    priority = Column(SQLEnum(TaskPriority), nullable=False, default=TaskPriority.MEDIUM)
    creator_id = Column(String, ForeignKey("users.id"), nullable=False)
    assignee_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    is_confidential = Column(Boolean, nullable=False, default=False)
    history_seq = Column(Integer, nullable=False, default=0)  # Last history sequence handed out
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("idx_task_partition_pos", "workspace_id", "status", "position"),
        Index("idx_task_ws_assignee", "workspace_id", "assignee_id"),
    )


class TaskFollower(Base):
    """Back-reference set of users interested in a task"""
    __tablename__ = "task_followers"

    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        PrimaryKeyConstraint("task_id", "user_id", name="pk_task_follower"),
        Index("idx_follower_user", "user_id"),
    )


class TaskHistory(Base):
    """Append-only audit trail for a task"""
    __tablename__ = "task_history"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False)
    actor_id = Column(String, ForeignKey("users.id"), nullable=False)
    action = Column(String, nullable=False)  # HistoryAction value
    field_name = Column(String, nullable=True)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    sequence = Column(Integer, nullable=False)  # Tie-break for equal timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("task_id", "sequence", name="uq_history_task_seq"),
        Index("idx_history_task_time", "task_id", "created_at", "sequence"),
    )


class TaskMessage(Base):
    """Chat message scoped to a task"""
    __tablename__ = "task_messages"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(String, ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False, default="")
    attachment_id = Column(String, nullable=True)
    attachment_name = Column(String, nullable=True)
    attachment_size = Column(BigInteger, nullable=True)
    attachment_type = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)


class TaskAttachment(Base):
    """File attachment metadata; the blob lives in external storage"""
    __tablename__ = "task_attachments"

    id = Column(String, primary_key=True, default=new_uuid)
    task_id = Column(String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    workspace_id = Column(String, ForeignKey("workspaces.id", ondelete="CASCADE"), nullable=False, index=True)
    uploader_id = Column(String, ForeignKey("users.id"), nullable=False)
    filename = Column(String, nullable=False)
    storage_key = Column(String, nullable=False)
    file_size = Column(BigInteger, default=0)
    mime_type = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
