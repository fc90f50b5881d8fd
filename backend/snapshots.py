# snapshots.py — Immutable task views handed to the evaluator and audit recorder
from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, Optional

from models import Task, TaskPriority, TaskStatus


@dataclass(frozen=True)
class TaskSnapshot:
    """Point-in-time copy of the task attributes that drive decisions and diffs."""
    id: str
    workspace_id: str
    service_id: str
    name: str
    status: TaskStatus
    creator_id: str
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    is_confidential: bool = False
    position: float = 0.0
    follower_ids: FrozenSet[str] = field(default_factory=frozenset)

    def involves(self, user_id: str) -> bool:
        return (
            user_id == self.creator_id
            or (self.assignee_id is not None and user_id == self.assignee_id)
            or user_id in self.follower_ids
        )

    def owned_by(self, user_id: str) -> bool:
        return user_id == self.creator_id or (
            self.assignee_id is not None and user_id == self.assignee_id
        )


def snapshot_of(task: Task, follower_ids=()) -> TaskSnapshot:
    return TaskSnapshot(
        id=task.id,
        workspace_id=task.workspace_id,
        service_id=task.service_id,
        name=task.name,
        description=task.description,
        status=TaskStatus(task.status),
        creator_id=task.creator_id,
        assignee_id=task.assignee_id,
        due_date=task.due_date,
        priority=TaskPriority(task.priority) if task.priority else TaskPriority.MEDIUM,
        is_confidential=bool(task.is_confidential),
        position=task.position or 0.0,
        follower_ids=frozenset(follower_ids),
    )
