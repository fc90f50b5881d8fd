# workspaces.py — Workspace administration and invite codes
import logging
import secrets
import string
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import INVITE_CODE_LENGTH
from database import unit_of_work
from errors import ForbiddenError, NotFoundError, ValidationError
from membership import MembershipRegistry
from models import MemberRole, User, Workspace, new_uuid, utcnow
from repository import Repository, task_prefix_for

logger = logging.getLogger("tasktrack.workspaces")

INVITE_ALPHABET = string.ascii_uppercase + string.digits
WORKSPACE_NAME_MAX_LENGTH = 100


def generate_invite_code(length: int = INVITE_CODE_LENGTH) -> str:
    return "".join(secrets.choice(INVITE_ALPHABET) for _ in range(length))


def _clean_name(name: Optional[str]) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Workspace name is required")
    name = name.strip()
    if len(name) > WORKSPACE_NAME_MAX_LENGTH:
        raise ValidationError(f"Workspace name exceeds {WORKSPACE_NAME_MAX_LENGTH} characters")
    return name


class WorkspaceService:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = Repository(session)
        self.members = MembershipRegistry(session, self.repo)

    async def _unique_invite_code(self) -> str:
        while True:
            code = generate_invite_code()
            if not await self.repo.invite_code_taken(code):
                return code

    async def create_workspace(
        self,
        actor_id: str,
        name: str,
        description: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Workspace:
        name = _clean_name(name)

        async def work():
            user = await self.session.get(User, actor_id)
            if user is None or not user.can_create_workspaces:
                raise ForbiddenError("This account cannot create workspaces")

            workspace = Workspace(
                id=new_uuid(),
                name=name,
                description=description or None,
                owner_id=actor_id,
                invite_code=await self._unique_invite_code(),
                task_prefix=task_prefix_for(name),
                task_counter=0,
                version=0,
            )
            self.session.add(workspace)
            await self.session.flush()
            await self.repo.ensure_partitions(workspace.id)
            await self.members.enroll(workspace.id, actor_id, MemberRole.ADMIN)
            logger.info(f"Workspace {workspace.id} '{name}' created by {actor_id}")
            return workspace

        return await unit_of_work(self.session, work, timeout)

    async def update_workspace(
        self,
        actor_id: str,
        workspace_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Workspace:
        async def work():
            await self.members.require_admin(actor_id, workspace_id)
            workspace = await self.repo.get_workspace(workspace_id, for_update=True)
            if name is not None:
                workspace.name = _clean_name(name)
            if description is not None:
                workspace.description = description or None
            workspace.updated_at = utcnow()
            await self.session.flush()
            return workspace

        return await unit_of_work(self.session, work, timeout)

    async def reset_invite_code(self, actor_id: str, workspace_id: str, timeout: Optional[float] = None) -> Workspace:
        async def work():
            await self.members.require_admin(actor_id, workspace_id)
            workspace = await self.repo.get_workspace(workspace_id, for_update=True)
            workspace.invite_code = await self._unique_invite_code()
            await self.session.flush()
            logger.info(f"Invite code of workspace {workspace_id} reset by {actor_id}")
            return workspace

        return await unit_of_work(self.session, work, timeout)

    async def join_workspace(
        self, actor_id: str, workspace_id: str, invite_code: str, timeout: Optional[float] = None,
    ) -> Workspace:
        async def work():
            workspace = await self.repo.get_workspace(workspace_id)
            if workspace is None:
                raise NotFoundError("Workspace not found")
            if not secrets.compare_digest(str(invite_code or ""), workspace.invite_code):
                raise ValidationError("Invalid invite code")
            await self.members.enroll(workspace_id, actor_id, MemberRole.MEMBER)
            return workspace

        return await unit_of_work(self.session, work, timeout)

    async def delete_workspace(self, actor_id: str, workspace_id: str, timeout: Optional[float] = None) -> None:
        async def work():
            await self.members.require_admin(actor_id, workspace_id)
            await self.repo.delete_workspace_cascade(workspace_id)
            logger.info(f"Workspace {workspace_id} deleted by {actor_id}")

        await unit_of_work(self.session, work, timeout)

    async def get_workspace(self, actor_id: str, workspace_id: str, timeout: Optional[float] = None) -> Workspace:
        async def work():
            await self.members.role_of(actor_id, workspace_id)
            return await self.repo.get_workspace(workspace_id)

        return await unit_of_work(self.session, work, timeout)

    async def list_workspaces(self, actor_id: str, timeout: Optional[float] = None) -> List[Workspace]:
        async def work():
            return await self.repo.workspaces_for_user(actor_id)

        return await unit_of_work(self.session, work, timeout)
