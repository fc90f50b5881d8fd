# services.py — Service catalogue: the grouping labels tasks belong to
import logging
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail import AuditTrailRecorder
from database import unit_of_work
from errors import NotFoundError, PolicyViolationError, ValidationError
from membership import MembershipRegistry
from models import Service, new_uuid, utcnow
from repository import Repository
from snapshots import snapshot_of

logger = logging.getLogger("tasktrack.services")

SERVICE_NAME_MAX_LENGTH = 100


def _clean_name(name: Optional[str]) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Service name is required")
    name = name.strip()
    if len(name) > SERVICE_NAME_MAX_LENGTH:
        raise ValidationError(f"Service name exceeds {SERVICE_NAME_MAX_LENGTH} characters")
    return name


class ServiceCatalog:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.repo = Repository(session)
        self.members = MembershipRegistry(session, self.repo)
        self.audit = AuditTrailRecorder(session)

    async def _service(self, service_id: str, workspace_id: Optional[str] = None) -> Service:
        service = await self.repo.get_service(service_id)
        if service is None or (workspace_id is not None and service.workspace_id != workspace_id):
            raise NotFoundError("Service not found")
        return service

    async def create_service(
        self, actor_id: str, workspace_id: str, name: str, timeout: Optional[float] = None,
    ) -> Service:
        name = _clean_name(name)

        async def work():
            await self.members.require_admin(actor_id, workspace_id)
            service = Service(id=new_uuid(), workspace_id=workspace_id, name=name)
            self.session.add(service)
            await self.session.flush()
            logger.info(f"Service {service.id} '{name}' created in workspace {workspace_id}")
            return service

        return await unit_of_work(self.session, work, timeout)

    async def rename_service(
        self,
        actor_id: str,
        service_id: str,
        name: str,
        workspace_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Service:
        name = _clean_name(name)

        async def work():
            service = await self._service(service_id, workspace_id)
            await self.members.require_admin(actor_id, service.workspace_id)
            service.name = name
            service.updated_at = utcnow()
            await self.session.flush()
            return service

        return await unit_of_work(self.session, work, timeout)

    async def list_services(self, actor_id: str, workspace_id: str, timeout: Optional[float] = None) -> List[Service]:
        async def work():
            await self.members.role_of(actor_id, workspace_id)
            return await self.repo.list_services(workspace_id)

        return await unit_of_work(self.session, work, timeout)

    async def delete_service(
        self,
        actor_id: str,
        service_id: str,
        reassign_to: Optional[str] = None,
        workspace_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> int:
        """Delete a service, moving its tasks to ``reassign_to`` first.

        Without ``reassign_to`` a service that still has tasks is kept.
        Returns the number of tasks moved.
        """
        async def work():
            service = await self._service(service_id, workspace_id)
            await self.members.require_admin(actor_id, service.workspace_id)
            tasks = await self.repo.tasks_for_service(service.id)

            if tasks and reassign_to is None:
                raise PolicyViolationError(
                    f"Service still has {len(tasks)} task(s); reassign them before deleting"
                )
            if tasks:
                target = await self.repo.get_service(reassign_to)
                if target is None or target.workspace_id != service.workspace_id or target.id == service.id:
                    raise ValidationError("reassign_to must be another service of the same workspace")
                for task in tasks:
                    before = snapshot_of(task)
                    task.service_id = target.id
                    self.audit.record(actor_id, task, before, snapshot_of(task))
                await self.session.flush()

            await self.session.delete(service)
            await self.session.flush()
            logger.info(f"Service {service_id} deleted by {actor_id}; {len(tasks)} task(s) reassigned")
            return len(tasks)

        return await unit_of_work(self.session, work, timeout)
