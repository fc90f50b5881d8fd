# lifecycle.py — Task lifecycle: creation, transitions, Kanban ordering, edits
"""
TaskLifecycleEngine applies every task mutation as one unit of work:

    resolve role -> authorize -> mutate -> diff -> append history -> commit

Position writes are optimistic. The destination column's partition row is
read, a key is computed from the neighbours, and the write only proceeds if a
compare-and-swap on the partition version succeeds. A lost swap is retried
with a fresh read; after the retries the partition row is locked and the
whole column is renumbered.
"""
import logging
from datetime import date, datetime, time, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from access_control import Action, Actor, authorize, can_view, raise_for, require
from audit_trail import AuditTrailRecorder, as_utc
from config import POSITION_MAX_RETRIES, POSITION_REINDEX_STEP
from database import unit_of_work
from errors import (
    ConflictError, InvalidTransitionError, NotFoundError, ValidationError,
)
from followers import FollowerSet
from membership import MembershipRegistry
from models import (
    ACTIVE_STATUSES, HistoryAction, MemberRole, Task, TaskHistory,
    TaskPriority, TaskStatus, new_uuid,
)
from positions import Placement, ordered, place, reindex, repair
from repository import Repository
from snapshots import TaskSnapshot, snapshot_of

logger = logging.getLogger("tasktrack.lifecycle")

NAME_MAX_LENGTH = 255

CREATE_FIELDS = frozenset({
    "name", "description", "assignee_id", "due_date", "priority", "is_confidential",
})
UPDATE_FIELDS = CREATE_FIELDS | {"service_id", "status"}


# ============================================================
# INPUT COERCION
# ============================================================

def parse_status(value: Any) -> TaskStatus:
    try:
        return TaskStatus(value)
    except ValueError:
        raise InvalidTransitionError(f"Unknown task status: {value!r}")


def parse_due_date(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            return as_utc(datetime.fromisoformat(value))
        except ValueError:
            pass
    raise ValidationError(f"Invalid due date: {value!r}")


def coerce_fields(fields: Dict[str, Any], allowed: frozenset) -> Dict[str, Any]:
    """Validate a partial field map. Unknown keys are rejected, not ignored."""
    unknown = set(fields) - allowed
    if unknown:
        raise ValidationError(f"Unknown task field(s): {', '.join(sorted(unknown))}")

    values: Dict[str, Any] = {}
    for key, value in fields.items():
        if key == "name":
            if not isinstance(value, str) or not value.strip():
                raise ValidationError("Task name is required")
            value = value.strip()
            if len(value) > NAME_MAX_LENGTH:
                raise ValidationError(f"Task name exceeds {NAME_MAX_LENGTH} characters")
        elif key == "description":
            if value is not None and not isinstance(value, str):
                raise ValidationError("Description must be text")
            value = value or None
        elif key == "due_date":
            value = parse_due_date(value)
        elif key == "priority":
            try:
                value = TaskPriority(value)
            except ValueError:
                raise ValidationError(f"Unknown priority: {value!r}")
        elif key == "is_confidential":
            if not isinstance(value, bool):
                raise ValidationError("is_confidential must be a boolean")
        elif key == "service_id":
            if not isinstance(value, str) or not value:
                raise ValidationError("A task must belong to a service")
        elif key == "assignee_id":
            if value is not None and not isinstance(value, str):
                raise ValidationError("assignee_id must be a user id")
            value = value or None
        elif key == "status":
            value = parse_status(value)
        values[key] = value
    return values


def require_assignee_if_confidential(is_confidential: bool, assignee_id: Optional[str]) -> None:
    if is_confidential and not assignee_id:
        raise ValidationError("At least one assignee is required for confidential tasks")


class TaskLifecycleEngine:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = Repository(session)
        self.members = MembershipRegistry(session, self.repo)
        self.followers = FollowerSet(session, self.repo)
        self.audit = AuditTrailRecorder(session)

    # --------------------------------------------------------
    # Shared task loading
    # --------------------------------------------------------

    async def authorize_task(
        self, actor_id: str, task_id: str, action: Action, lock: bool = False,
    ) -> Tuple[Task, Actor, TaskSnapshot]:
        """Load a task, resolve the actor's role and check ``action``.

        ``lock`` takes the task row for update and the member row for share,
        so the decision holds until the unit of work commits.
        """
        task = await self.repo.get_task(task_id, for_update=lock)
        if task is None:
            raise NotFoundError("Task not found")
        actor = await self.members.actor(actor_id, task.workspace_id, lock=lock)
        snapshot = snapshot_of(task, await self.repo.follower_ids(task.id))
        decision = authorize(actor, snapshot, action)
        if not decision.allowed:
            logger.info(f"Denied {action.value} on task {task_id} to {actor_id}: {decision.reason}")
        raise_for(decision)
        return task, actor, snapshot

    async def _current(self, task: Task) -> TaskSnapshot:
        return snapshot_of(task, await self.repo.follower_ids(task.id))

    # --------------------------------------------------------
    # Create
    # --------------------------------------------------------

    async def create_task(
        self,
        actor_id: str,
        workspace_id: str,
        service_id: str,
        fields: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Task:
        values = coerce_fields(fields, CREATE_FIELDS)
        if "name" not in values:
            raise ValidationError("Task name is required")
        require_assignee_if_confidential(
            values.get("is_confidential", False), values.get("assignee_id"),
        )

        async def work():
            actor = await self.members.actor(actor_id, workspace_id, lock=True)
            require(actor, None, Action.CREATE)

            service = await self.repo.get_service(service_id)
            if service is None or service.workspace_id != workspace_id:
                raise NotFoundError("Service not found")
            await self.members.ensure_assignable(workspace_id, values.get("assignee_id"))

            workspace = await self.repo.get_workspace(workspace_id, for_update=True)
            if workspace is None:
                raise NotFoundError("Workspace not found")

            task = Task(
                id=new_uuid(),
                workspace_id=workspace_id,
                service_id=service_id,
                task_number=await self.repo.next_task_number(workspace),
                name=values["name"],
                description=values.get("description"),
                status=TaskStatus.TODO,
                position=0.0,
                priority=values.get("priority", TaskPriority.MEDIUM),
                creator_id=actor_id,
                assignee_id=values.get("assignee_id"),
                due_date=values.get("due_date"),
                is_confidential=values.get("is_confidential", False),
                history_seq=0,
            )
            self.session.add(task)
            await self._move(task, TaskStatus.TODO, None)
            await self.followers.add(task, actor_id)

            self.audit.record(actor_id, task, None, await self._current(task))
            await self.session.flush()
            logger.info(f"Task {task.task_number} ({task.id}) created in workspace {workspace_id} by {actor_id}")
            return task

        return await unit_of_work(self.session, work, timeout)

    # --------------------------------------------------------
    # Transitions
    # --------------------------------------------------------

    async def change_status(
        self,
        actor_id: str,
        task_id: str,
        new_status: Any,
        destination_index: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Task:
        """Move a task to ``new_status``, optionally at ``destination_index``.

        The same status with an index reorders within the column; the same
        status without one is a no-op.
        """
        status = parse_status(new_status)
        if destination_index is not None and destination_index < 0:
            raise ValidationError("destination_index must be zero or greater")

        async def work():
            task, _, before = await self.authorize_task(actor_id, task_id, Action.CHANGE_STATUS, lock=True)
            if not await self._transition(task, before.status, status, destination_index):
                return task
            self.audit.record(actor_id, task, before, await self._current(task))
            await self.session.flush()
            logger.info(
                f"Task {task.id} moved {before.status.value} -> {status.value} "
                f"at {task.position} by {actor_id}"
            )
            return task

        return await unit_of_work(self.session, work, timeout)

    async def _transition(
        self, task: Task, current: TaskStatus, status: TaskStatus, index: Optional[int],
    ) -> bool:
        if current == TaskStatus.ARCHIVED and status != TaskStatus.ARCHIVED:
            raise InvalidTransitionError("Archived tasks cannot return to the board")
        if status == current and index is None:
            return False
        await self._move(task, status, index)
        return True

    async def _move(self, task: Task, status: TaskStatus, index: Optional[int]) -> None:
        placement = await self._place(task.workspace_id, status, task.id, index)
        task.status = status
        task.position = placement.key
        others = {tid: key for tid, key in placement.updates.items() if tid != task.id}
        if others:
            await self.repo.set_positions(others)
        await self._repair(task.workspace_id, status)

    async def _place(
        self, workspace_id: str, status: TaskStatus, task_id: str, index: Optional[int],
    ) -> Placement:
        for attempt in range(POSITION_MAX_RETRIES + 1):
            version = await self.repo.partition_version(workspace_id, status)
            column = await self.repo.column(workspace_id, status, exclude=task_id)
            placement = place(column, task_id, index, POSITION_REINDEX_STEP)
            if await self.repo.bump_partition(workspace_id, status, version):
                if placement.reindexed:
                    logger.warning(
                        f"Column {workspace_id}/{status.value} re-indexed ({len(placement.updates)} tasks)"
                    )
                return placement
            logger.warning(
                f"Position conflict on {workspace_id}/{status.value} "
                f"(version {version}, attempt {attempt + 1})"
            )

        # Optimistic writes kept losing: take the partition lock and renumber
        if await self.repo.lock_partition(workspace_id, status) is None:
            raise ConflictError()
        column = await self.repo.column(workspace_id, status, exclude=task_id)
        ids = [tid for tid, _ in ordered(column)]
        slot = len(ids) if index is None else min(index, len(ids))
        ids.insert(slot, task_id)
        updates = reindex(ids, POSITION_REINDEX_STEP)
        logger.warning(f"Column {workspace_id}/{status.value} re-indexed under lock after conflicts")
        return Placement(key=updates[task_id], updates=updates, reindexed=True)

    async def _repair(self, workspace_id: str, status: TaskStatus) -> None:
        fixes = repair(await self.repo.column(workspace_id, status), POSITION_REINDEX_STEP)
        if fixes:
            logger.warning(f"Duplicate positions in {workspace_id}/{status.value}, column renumbered")
            await self.repo.set_positions(fixes)

    # --------------------------------------------------------
    # Edits
    # --------------------------------------------------------

    async def update_task(
        self,
        actor_id: str,
        task_id: str,
        fields: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Task:
        values = coerce_fields(fields, UPDATE_FIELDS)

        async def work():
            task, actor, before = await self.authorize_task(actor_id, task_id, Action.EDIT, lock=True)

            if "service_id" in values and values["service_id"] != task.service_id:
                service = await self.repo.get_service(values["service_id"])
                if service is None or service.workspace_id != task.workspace_id:
                    raise NotFoundError("Service not found")
            if values.get("assignee_id") and values["assignee_id"] != task.assignee_id:
                await self.members.ensure_assignable(task.workspace_id, values["assignee_id"])
            require_assignee_if_confidential(
                values.get("is_confidential", before.is_confidential),
                values.get("assignee_id", before.assignee_id),
            )

            if "status" in values:
                require(actor, before, Action.CHANGE_STATUS)
                await self._transition(task, before.status, values["status"], None)

            for key, value in values.items():
                if key != "status":
                    setattr(task, key, value)

            entries = self.audit.record(actor_id, task, before, await self._current(task))
            if not entries:
                return task
            await self.session.flush()
            logger.info(f"Task {task.id} updated by {actor_id}: {', '.join(e.field_name for e in entries)}")
            return task

        return await unit_of_work(self.session, work, timeout)

    async def delete_task(self, actor_id: str, task_id: str, timeout: Optional[float] = None) -> None:
        async def work():
            task, _, _ = await self.authorize_task(actor_id, task_id, Action.DELETE, lock=True)
            await self.repo.delete_task_cascade(task.id)
            self.session.expunge(task)
            logger.info(f"Task {task_id} deleted by {actor_id}")

        await unit_of_work(self.session, work, timeout)

    # --------------------------------------------------------
    # Followers
    # --------------------------------------------------------

    async def follow(self, actor_id: str, task_id: str, timeout: Optional[float] = None) -> None:
        async def work():
            task, _, _ = await self.authorize_task(actor_id, task_id, Action.FOLLOW, lock=True)
            await self.members.ensure_assignable(task.workspace_id, actor_id)
            if await self.followers.add(task, actor_id):
                self.audit.record_event(
                    actor_id, task, HistoryAction.FOLLOWER_ADDED,
                    field_name="follower_ids", new_value=actor_id,
                )
                await self.session.flush()

        await unit_of_work(self.session, work, timeout)

    async def unfollow(self, actor_id: str, task_id: str, timeout: Optional[float] = None) -> None:
        async def work():
            task, _, _ = await self.authorize_task(actor_id, task_id, Action.FOLLOW, lock=True)
            if await self.followers.remove(task, actor_id):
                self.audit.record_event(
                    actor_id, task, HistoryAction.FOLLOWER_REMOVED,
                    field_name="follower_ids", old_value=actor_id,
                )
                await self.session.flush()

        await unit_of_work(self.session, work, timeout)

    async def list_followers(self, actor_id: str, task_id: str, timeout: Optional[float] = None) -> List[str]:
        async def work():
            task, _, _ = await self.authorize_task(actor_id, task_id, Action.VIEW)
            return await self.followers.list_followers(task.id)

        return await unit_of_work(self.session, work, timeout)

    # --------------------------------------------------------
    # Reads
    # --------------------------------------------------------

    async def get_task(self, actor_id: str, task_id: str, timeout: Optional[float] = None) -> Task:
        async def work():
            task, _, _ = await self.authorize_task(actor_id, task_id, Action.VIEW)
            return task

        return await unit_of_work(self.session, work, timeout)

    async def list_visible_tasks(
        self,
        actor_id: str,
        workspace_id: str,
        service_id: Optional[str] = None,
        assignee_id: Optional[str] = None,
        status: Optional[Any] = None,
        due_before: Optional[Any] = None,
        search: Optional[str] = None,
        include_archived: bool = False,
        timeout: Optional[float] = None,
    ) -> List[Task]:
        """Tasks of a workspace the actor may view, in board order.

        Archived tasks are left out unless ``include_archived`` is set or the
        ARCHIVED status is asked for explicitly; visitors never see them.
        """
        if status is not None:
            try:
                status = TaskStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown task status: {status!r}")
        if isinstance(due_before, date) and not isinstance(due_before, datetime):
            # A bare date includes the whole day
            due = datetime.combine(due_before, time.max, tzinfo=timezone.utc)
        else:
            due = parse_due_date(due_before)

        async def work():
            actor = await self.members.actor(actor_id, workspace_id)
            if status is not None:
                statuses = [status]
            elif include_archived and actor.role != MemberRole.VISITOR:
                statuses = list(TaskStatus)
            else:
                statuses = list(ACTIVE_STATUSES)

            tasks = await self.repo.list_tasks(
                workspace_id,
                service_id=service_id,
                assignee_id=assignee_id,
                statuses=statuses,
                due_before=due,
                search=search,
            )
            followers = await self.repo.followers_by_task([t.id for t in tasks])
            return [t for t in tasks if can_view(actor, snapshot_of(t, followers[t.id]))]

        return await unit_of_work(self.session, work, timeout)

    async def get_history(self, actor_id: str, task_id: str, timeout: Optional[float] = None) -> List[TaskHistory]:
        async def work():
            task, _, _ = await self.authorize_task(actor_id, task_id, Action.VIEW)
            return await self.audit.entries(task.id)

        return await unit_of_work(self.session, work, timeout)
