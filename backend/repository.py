# repository.py — Storage collaborator for the task engine
"""
Every query the engine issues goes through ``Repository``. Methods never
commit; the caller's unit of work owns the transaction. Row locks use
``SELECT ... FOR UPDATE`` / ``FOR SHARE`` where the backend supports them.
"""
import re
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import select, func, update, delete
from sqlalchemy.ext.asyncio import AsyncSession

from models import (
    Workspace, Member, MemberRole, Service, Task, TaskStatus, TaskFollower,
    TaskHistory, TaskMessage, TaskAttachment, KanbanPartition, utcnow,
)


def task_prefix_for(name: str) -> str:
    prefix = "".join(c for c in name[:4].upper() if c.isalpha())
    return prefix or "TASK"


class Repository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # --------------------------------------------------------
    # Workspaces
    # --------------------------------------------------------

    async def get_workspace(self, workspace_id: str, for_update: bool = False) -> Optional[Workspace]:
        stmt = select(Workspace).where(Workspace.id == workspace_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def workspaces_for_user(self, user_id: str) -> List[Workspace]:
        stmt = (
            select(Workspace)
            .join(Member, Member.workspace_id == Workspace.id)
            .where(Member.user_id == user_id)
            .order_by(Workspace.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def invite_code_taken(self, code: str) -> bool:
        stmt = select(func.count(Workspace.id)).where(Workspace.invite_code == code)
        return ((await self.session.execute(stmt)).scalar() or 0) > 0

    async def bump_workspace_version(self, workspace_id: str, expected: int) -> bool:
        """Compare-and-swap on the workspace version counter."""
        stmt = (
            update(Workspace)
            .where(Workspace.id == workspace_id, Workspace.version == expected)
            .values(version=expected + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def next_task_number(self, workspace: Workspace) -> str:
        workspace.task_counter = (workspace.task_counter or 0) + 1
        return f"{workspace.task_prefix}-{workspace.task_counter}"

    async def delete_workspace_cascade(self, workspace_id: str) -> None:
        task_ids = select(Task.id).where(Task.workspace_id == workspace_id)
        await self._delete_task_children(task_ids)
        for stmt in (
            delete(Task).where(Task.workspace_id == workspace_id),
            delete(Service).where(Service.workspace_id == workspace_id),
            delete(KanbanPartition).where(KanbanPartition.workspace_id == workspace_id),
            delete(Member).where(Member.workspace_id == workspace_id),
            delete(Workspace).where(Workspace.id == workspace_id),
        ):
            await self.session.execute(stmt.execution_options(synchronize_session=False))
        self.session.expunge_all()

    # --------------------------------------------------------
    # Members
    # --------------------------------------------------------

    async def get_member(
        self, workspace_id: str, user_id: str, for_share: bool = False,
    ) -> Optional[Member]:
        stmt = select(Member).where(
            Member.workspace_id == workspace_id, Member.user_id == user_id,
        )
        if for_share:
            stmt = stmt.with_for_update(read=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_members(self, workspace_id: str) -> List[Member]:
        stmt = (
            select(Member)
            .where(Member.workspace_id == workspace_id)
            .order_by(Member.joined_at.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_members(self, workspace_id: str, role: Optional[MemberRole] = None) -> int:
        await self.session.flush()
        stmt = select(func.count(Member.id)).where(Member.workspace_id == workspace_id)
        if role is not None:
            stmt = stmt.where(Member.role == role)
        return (await self.session.execute(stmt)).scalar() or 0

    # --------------------------------------------------------
    # Services
    # --------------------------------------------------------

    async def get_service(self, service_id: str) -> Optional[Service]:
        result = await self.session.execute(select(Service).where(Service.id == service_id))
        return result.scalar_one_or_none()

    async def list_services(self, workspace_id: str) -> List[Service]:
        stmt = select(Service).where(Service.workspace_id == workspace_id).order_by(Service.name.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def tasks_for_service(self, service_id: str) -> List[Task]:
        stmt = (
            select(Task)
            .where(Task.service_id == service_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # --------------------------------------------------------
    # Tasks
    # --------------------------------------------------------

    async def get_task(self, task_id: str, for_update: bool = False) -> Optional[Task]:
        stmt = select(Task).where(Task.id == task_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_tasks(
        self,
        workspace_id: str,
        service_id: Optional[str] = None,
        assignee_id: Optional[str] = None,
        statuses: Optional[Iterable[TaskStatus]] = None,
        due_before: Optional[datetime] = None,
        search: Optional[str] = None,
    ) -> List[Task]:
        stmt = select(Task).where(Task.workspace_id == workspace_id)
        if service_id:
            stmt = stmt.where(Task.service_id == service_id)
        if assignee_id:
            stmt = stmt.where(Task.assignee_id == assignee_id)
        if statuses is not None:
            stmt = stmt.where(Task.status.in_(list(statuses)))
        if due_before is not None:
            stmt = stmt.where(Task.due_date.is_not(None), Task.due_date <= due_before)
        if search:
            escaped = re.sub(r"([%_\\])", r"\\\1", search)
            stmt = stmt.where(Task.name.ilike(f"%{escaped}%", escape="\\"))
        stmt = stmt.order_by(Task.status.asc(), Task.position.asc(), Task.id.asc())
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete_task_cascade(self, task_id: str) -> None:
        await self._delete_task_children([task_id])
        await self.session.execute(
            delete(Task).where(Task.id == task_id).execution_options(synchronize_session=False)
        )

    async def _delete_task_children(self, task_ids) -> None:
        for model in (TaskHistory, TaskMessage, TaskAttachment, TaskFollower):
            await self.session.execute(
                delete(model)
                .where(model.task_id.in_(task_ids))
                .execution_options(synchronize_session=False)
            )

    # --------------------------------------------------------
    # Followers
    # --------------------------------------------------------

    async def follower_ids(self, task_id: str) -> Set[str]:
        await self.session.flush()
        stmt = select(TaskFollower.user_id).where(TaskFollower.task_id == task_id)
        return set((await self.session.execute(stmt)).scalars().all())

    async def followers_by_task(self, task_ids: List[str]) -> Dict[str, Set[str]]:
        out: Dict[str, Set[str]] = {tid: set() for tid in task_ids}
        if not task_ids:
            return out
        stmt = select(TaskFollower.task_id, TaskFollower.user_id).where(TaskFollower.task_id.in_(task_ids))
        for task_id, user_id in (await self.session.execute(stmt)).all():
            out[task_id].add(user_id)
        return out

    async def add_follower(self, task_id: str, user_id: str) -> None:
        self.session.add(TaskFollower(task_id=task_id, user_id=user_id))
        await self.session.flush()

    async def remove_follower(self, task_id: str, user_id: str) -> None:
        await self.session.execute(
            delete(TaskFollower)
            .where(TaskFollower.task_id == task_id, TaskFollower.user_id == user_id)
            .execution_options(synchronize_session=False)
        )

    # --------------------------------------------------------
    # Kanban partitions
    # --------------------------------------------------------

    async def ensure_partitions(self, workspace_id: str) -> None:
        for status in TaskStatus:
            self.session.add(KanbanPartition(workspace_id=workspace_id, status=status, version=0))
        await self.session.flush()

    async def partition_version(self, workspace_id: str, status: TaskStatus) -> int:
        stmt = select(KanbanPartition.version).where(
            KanbanPartition.workspace_id == workspace_id,
            KanbanPartition.status == status,
        )
        version = (await self.session.execute(stmt)).scalar_one_or_none()
        if version is None:
            self.session.add(KanbanPartition(workspace_id=workspace_id, status=status, version=0))
            await self.session.flush()
            return 0
        return version

    async def bump_partition(self, workspace_id: str, status: TaskStatus, expected: int) -> bool:
        """Compare-and-swap on the partition version; False if someone got there first."""
        stmt = (
            update(KanbanPartition)
            .where(
                KanbanPartition.workspace_id == workspace_id,
                KanbanPartition.status == status,
                KanbanPartition.version == expected,
            )
            .values(version=expected + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def lock_partition(self, workspace_id: str, status: TaskStatus) -> Optional[int]:
        """Take the partition row lock and bump its version unconditionally."""
        stmt = (
            select(KanbanPartition)
            .where(
                KanbanPartition.workspace_id == workspace_id,
                KanbanPartition.status == status,
            )
            .with_for_update()
        )
        partition = (await self.session.execute(stmt)).scalar_one_or_none()
        if partition is None:
            return None
        partition.version = (partition.version or 0) + 1
        partition.reindexed_at = utcnow()
        await self.session.flush()
        return partition.version

    async def column(
        self, workspace_id: str, status: TaskStatus, exclude: Optional[str] = None,
    ) -> List[Tuple[str, float]]:
        await self.session.flush()
        stmt = select(Task.id, Task.position).where(
            Task.workspace_id == workspace_id, Task.status == status,
        )
        if exclude:
            stmt = stmt.where(Task.id != exclude)
        rows = (await self.session.execute(stmt)).all()
        return [(task_id, position) for task_id, position in rows]

    async def set_positions(self, updates: Dict[str, float]) -> None:
        for task_id, position in updates.items():
            await self.session.execute(
                update(Task)
                .where(Task.id == task_id)
                .values(position=position)
                .execution_options(synchronize_session="evaluate")
            )

    # --------------------------------------------------------
    # Messages & attachments
    # --------------------------------------------------------

    async def list_messages(self, task_id: str) -> List[TaskMessage]:
        stmt = (
            select(TaskMessage)
            .where(TaskMessage.task_id == task_id)
            .order_by(TaskMessage.created_at.asc(), TaskMessage.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_attachment(self, attachment_id: str) -> Optional[TaskAttachment]:
        result = await self.session.execute(
            select(TaskAttachment).where(TaskAttachment.id == attachment_id)
        )
        return result.scalar_one_or_none()

    async def list_attachments(self, task_id: str) -> List[TaskAttachment]:
        stmt = (
            select(TaskAttachment)
            .where(TaskAttachment.task_id == task_id)
            .order_by(TaskAttachment.created_at.asc(), TaskAttachment.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
