# membership.py — Workspace roles: the only source of truth for role checks
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from access_control import Actor
from config import ROLE_MUTATION_MAX_RETRIES
from database import unit_of_work
from errors import (
    ConflictError, ForbiddenError, NotFoundError, NotMemberError,
    PolicyViolationError, ValidationError,
)
from models import Member, MemberRole, User
from repository import Repository

logger = logging.getLogger("tasktrack.membership")


class MembershipRegistry:
    """Resolves and mutates workspace roles.

    Reads made through one registry share the caller's transaction, so a role
    resolved at the start of a multi-step mutation is the role the mutation
    commits under. Role mutations are serialized per workspace by a
    compare-and-swap on ``Workspace.version``.
    """

    def __init__(self, session: AsyncSession, repo: Optional[Repository] = None):
        self.session = session
        self.repo = repo or Repository(session)

    # --------------------------------------------------------
    # Reads
    # --------------------------------------------------------

    async def role_of(self, user_id: str, workspace_id: str, lock: bool = False) -> MemberRole:
        """Role of ``user_id`` in ``workspace_id``.

        Raises NotMemberError when there is no membership, including when the
        workspace itself does not exist.
        """
        member = await self.repo.get_member(workspace_id, user_id, for_share=lock)
        if member is None:
            raise NotMemberError()
        return MemberRole(member.role)

    async def actor(self, user_id: str, workspace_id: str, lock: bool = False) -> Actor:
        return Actor(user_id=user_id, role=await self.role_of(user_id, workspace_id, lock=lock))

    async def require_admin(self, user_id: str, workspace_id: str) -> Actor:
        actor = await self.actor(user_id, workspace_id, lock=True)
        if actor.role != MemberRole.ADMIN:
            raise ForbiddenError("Workspace admin role required")
        return actor

    async def ensure_assignable(self, workspace_id: str, user_id: Optional[str]) -> None:
        """Assignees and followers must hold ADMIN or MEMBER in the workspace."""
        if user_id is None:
            return
        member = await self.repo.get_member(workspace_id, user_id)
        if member is None or MemberRole(member.role) == MemberRole.VISITOR:
            raise ValidationError("User must be an admin or member of this workspace")

    async def list_members(self, actor_id: str, workspace_id: str, timeout: Optional[float] = None) -> List[Member]:
        async def work():
            await self.role_of(actor_id, workspace_id)
            return await self.repo.list_members(workspace_id)
        return await unit_of_work(self.session, work, timeout)

    # --------------------------------------------------------
    # Mutations
    # --------------------------------------------------------

    async def add_member(
        self,
        actor_id: str,
        workspace_id: str,
        user_id: str,
        role: MemberRole = MemberRole.MEMBER,
        timeout: Optional[float] = None,
    ) -> Member:
        async def work():
            await self.require_admin(actor_id, workspace_id)
            return await self.enroll(workspace_id, user_id, role)
        return await unit_of_work(self.session, work, timeout)

    async def enroll(self, workspace_id: str, user_id: str, role: MemberRole) -> Member:
        """Insert a membership inside the caller's transaction. No permission check."""
        await self._serialize(workspace_id)
        if await self.session.get(User, user_id) is None:
            raise NotFoundError("User not found")
        if await self.repo.get_member(workspace_id, user_id) is not None:
            raise ConflictError("User is already a member of this workspace")
        member = Member(workspace_id=workspace_id, user_id=user_id, role=MemberRole(role))
        self.session.add(member)
        await self.session.flush()
        logger.info(f"Member {user_id} added to workspace {workspace_id} as {MemberRole(role).value}")
        return member

    async def change_role(
        self,
        actor_id: str,
        workspace_id: str,
        user_id: str,
        role: MemberRole,
        timeout: Optional[float] = None,
    ) -> Member:
        async def work():
            await self.require_admin(actor_id, workspace_id)
            await self._serialize(workspace_id)
            target = await self.repo.get_member(workspace_id, user_id, for_share=True)
            if target is None:
                raise NotFoundError("Member not found")
            new_role = MemberRole(role)
            if MemberRole(target.role) == new_role:
                return target
            if MemberRole(target.role) == MemberRole.ADMIN:
                await self._guard_last_admin(workspace_id)
            target.role = new_role
            await self.session.flush()
            logger.info(f"Member {user_id} in workspace {workspace_id} is now {new_role.value}")
            return target
        return await unit_of_work(self.session, work, timeout)

    async def remove_member(
        self,
        actor_id: str,
        workspace_id: str,
        user_id: str,
        timeout: Optional[float] = None,
    ) -> None:
        async def work():
            actor = await self.actor(actor_id, workspace_id, lock=True)
            if actor_id != user_id and actor.role != MemberRole.ADMIN:
                raise ForbiddenError("Only admins can remove other members")
            await self._serialize(workspace_id)
            target = await self.repo.get_member(workspace_id, user_id, for_share=True)
            if target is None:
                raise NotFoundError("Member not found")
            if await self.repo.count_members(workspace_id) <= 1:
                logger.warning(f"Refused to remove the only member of workspace {workspace_id}")
                raise PolicyViolationError("Cannot remove the only member of a workspace")
            if MemberRole(target.role) == MemberRole.ADMIN:
                await self._guard_last_admin(workspace_id)
            await self.session.delete(target)
            await self.session.flush()
            logger.info(f"Member {user_id} removed from workspace {workspace_id}")
        await unit_of_work(self.session, work, timeout)

    # --------------------------------------------------------
    # Helpers
    # --------------------------------------------------------

    async def _guard_last_admin(self, workspace_id: str) -> None:
        if await self.repo.count_members(workspace_id, MemberRole.ADMIN) <= 1:
            logger.warning(f"Refused to drop the last admin of workspace {workspace_id}")
            raise PolicyViolationError("A workspace must keep at least one admin")

    async def _serialize(self, workspace_id: str) -> None:
        """Claim the workspace's role-mutation slot.

        The workspace row is locked, then its version is swapped. A lost swap
        means another role mutation committed between our read and write; the
        read is retried, then the unit of work fails with ConflictError.
        """
        for _ in range(ROLE_MUTATION_MAX_RETRIES + 1):
            workspace = await self.repo.get_workspace(workspace_id, for_update=True)
            if workspace is None:
                raise NotFoundError("Workspace not found")
            await self.session.refresh(workspace, ["version"])
            if await self.repo.bump_workspace_version(workspace_id, workspace.version):
                await self.session.flush()
                return
            logger.warning(f"Role mutation raced on workspace {workspace_id}, retrying")
        raise ConflictError("Concurrent membership change, try again")
