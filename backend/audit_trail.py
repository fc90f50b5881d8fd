# audit_trail.py — Field-level diff and append-only task history
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models import HistoryAction, Task, TaskHistory, utcnow
from snapshots import TaskSnapshot

logger = logging.getLogger("tasktrack.audit")

# Order is the order entries are written for one mutation
TRACKED_FIELDS = (
    "status",
    "name",
    "description",
    "service_id",
    "assignee_id",
    "due_date",
    "priority",
    "is_confidential",
)


@dataclass(frozen=True)
class FieldChange:
    field: str
    old_value: Optional[str]
    new_value: Optional[str]

    @property
    def action(self) -> HistoryAction:
        if self.field == "status":
            return HistoryAction.STATUS_CHANGED
        return HistoryAction.FIELD_CHANGED


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive datetimes are read back from some drivers; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return as_utc(value).isoformat()
    return str(value)


def _normalise(field: str, value: Any) -> Optional[str]:
    # Empty text and missing text are the same value
    if field == "description" and value == "":
        return None
    return stringify(value)


def diff(before: TaskSnapshot, after: TaskSnapshot) -> List[FieldChange]:
    """Tracked fields whose value differs between the two snapshots."""
    changes = []
    for name in TRACKED_FIELDS:
        old = _normalise(name, getattr(before, name))
        new = _normalise(name, getattr(after, name))
        if old != new:
            changes.append(FieldChange(field=name, old_value=old, new_value=new))
    return changes


class AuditTrailRecorder:
    """Appends history rows inside the caller's transaction.

    Entries for one task are ordered by (created_at, sequence); the sequence
    comes from a counter on the task row, so the caller must hold that row.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    def _append(
        self,
        task: Task,
        actor_id: str,
        action: HistoryAction,
        at: datetime,
        field_name: Optional[str] = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> TaskHistory:
        task.history_seq = (task.history_seq or 0) + 1
        entry = TaskHistory(
            task_id=task.id,
            workspace_id=task.workspace_id,
            actor_id=actor_id,
            action=action.value,
            field_name=field_name,
            old_value=old_value,
            new_value=new_value,
            sequence=task.history_seq,
            created_at=at,
        )
        self.session.add(entry)
        return entry

    def record(
        self,
        actor_id: str,
        task: Task,
        before: Optional[TaskSnapshot],
        after: TaskSnapshot,
    ) -> List[TaskHistory]:
        """Write the entries describing ``before`` -> ``after``.

        ``before`` None means creation: exactly one ``created`` entry.
        Identical snapshots write nothing.
        """
        now = utcnow()
        if before is None:
            return [self._append(task, actor_id, HistoryAction.CREATED, now)]

        entries = [
            self._append(
                task, actor_id, change.action, now,
                field_name=change.field,
                old_value=change.old_value,
                new_value=change.new_value,
            )
            for change in diff(before, after)
        ]
        if entries:
            logger.debug(f"Recorded {len(entries)} change(s) on task {task.id}")
        return entries

    def record_event(
        self,
        actor_id: str,
        task: Task,
        action: HistoryAction,
        field_name: Optional[str] = None,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> TaskHistory:
        """Lifecycle events that are not field diffs (comments, attachments, followers)."""
        return self._append(
            task, actor_id, action, utcnow(),
            field_name=field_name, old_value=old_value, new_value=new_value,
        )

    async def entries(self, task_id: str) -> List[TaskHistory]:
        stmt = (
            select(TaskHistory)
            .where(TaskHistory.task_id == task_id)
            .order_by(TaskHistory.created_at.asc(), TaskHistory.sequence.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
