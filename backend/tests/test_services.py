# tests/test_services.py — Workspace administration and the service catalogue
import pytest

from errors import (
    ConflictError, ForbiddenError, NotFoundError, NotMemberError,
    PolicyViolationError, ValidationError,
)
from lifecycle import TaskLifecycleEngine
from membership import MembershipRegistry
from models import MemberRole
from services import ServiceCatalog
from workspaces import INVITE_ALPHABET, WorkspaceService, generate_invite_code


# ============================================================
# WORKSPACES
# ============================================================

def test_invite_code_shape():
    code = generate_invite_code()
    assert len(code) == 10
    assert set(code) <= set(INVITE_ALPHABET)


@pytest.mark.asyncio
async def test_create_workspace_enrolls_creator_as_admin(db_session, admin_user):
    admin_id = admin_user.id
    ws = await WorkspaceService(db_session).create_workspace(admin_id, "  Site Reliability ")
    assert ws.name == "Site Reliability"
    assert ws.task_prefix == "SITE"
    assert await MembershipRegistry(db_session).role_of(admin_id, ws.id) == MemberRole.ADMIN


@pytest.mark.asyncio
async def test_create_workspace_requires_permission(db_session, member_user):
    member_id = member_user.id
    with pytest.raises(ForbiddenError):
        await WorkspaceService(db_session).create_workspace(member_id, "Side project")


@pytest.mark.asyncio
@pytest.mark.parametrize("name", ["", "   ", "x" * 101])
async def test_workspace_name_validated(db_session, admin_user, name):
    admin_id = admin_user.id
    with pytest.raises(ValidationError):
        await WorkspaceService(db_session).create_workspace(admin_id, name)


@pytest.mark.asyncio
async def test_join_with_invite_code(db_session, workspace, outsider):
    outsider_id = outsider.id
    service = WorkspaceService(db_session)

    with pytest.raises(ValidationError):
        await service.join_workspace(outsider_id, workspace.id, "WRONGCODE0")
    with pytest.raises(NotMemberError):
        await service.get_workspace(outsider_id, workspace.id)

    await service.join_workspace(outsider_id, workspace.id, workspace.invite_code)
    assert await MembershipRegistry(db_session).role_of(outsider_id, workspace.id) == MemberRole.MEMBER
    with pytest.raises(ConflictError):
        await service.join_workspace(outsider_id, workspace.id, workspace.invite_code)


@pytest.mark.asyncio
async def test_join_unknown_workspace(db_session, outsider):
    outsider_id = outsider.id
    with pytest.raises(NotFoundError):
        await WorkspaceService(db_session).join_workspace(outsider_id, "no-such-workspace", "ABC")


@pytest.mark.asyncio
async def test_reset_invite_code(db_session, workspace, outsider):
    outsider_id = outsider.id
    service = WorkspaceService(db_session)
    with pytest.raises(ForbiddenError):
        await service.reset_invite_code(workspace.member, workspace.id)

    fresh = (await service.reset_invite_code(workspace.admin, workspace.id)).invite_code
    assert fresh != workspace.invite_code
    with pytest.raises(ValidationError):
        await service.join_workspace(outsider_id, workspace.id, workspace.invite_code)


@pytest.mark.asyncio
async def test_update_workspace_admin_only(db_session, workspace):
    service = WorkspaceService(db_session)
    with pytest.raises(ForbiddenError):
        await service.update_workspace(workspace.member, workspace.id, name="Mine now")
    ws = await service.update_workspace(workspace.admin, workspace.id, name="Ops", description="")
    assert (ws.name, ws.description) == ("Ops", None)


@pytest.mark.asyncio
async def test_list_workspaces_only_memberships(db_session, workspace, outsider):
    outsider_id = outsider.id
    service = WorkspaceService(db_session)
    assert [w.id for w in await service.list_workspaces(workspace.visitor)] == [workspace.id]
    assert await service.list_workspaces(outsider_id) == []


@pytest.mark.asyncio
async def test_only_admin_deletes_workspace(db_session, workspace):
    service = WorkspaceService(db_session)
    with pytest.raises(ForbiddenError):
        await service.delete_workspace(workspace.member, workspace.id)
    await service.delete_workspace(workspace.admin, workspace.id)
    with pytest.raises(NotMemberError):
        await service.get_workspace(workspace.admin, workspace.id)


# ============================================================
# SERVICES
# ============================================================

@pytest.mark.asyncio
async def test_services_admin_managed(db_session, workspace):
    catalog = ServiceCatalog(db_session)
    with pytest.raises(ForbiddenError):
        await catalog.create_service(workspace.member, workspace.id, "Billing")

    billing = await catalog.create_service(workspace.admin, workspace.id, "Billing")
    renamed = await catalog.rename_service(workspace.admin, billing.id, "Payments", workspace_id=workspace.id)
    assert renamed.name == "Payments"
    names = [s.name for s in await catalog.list_services(workspace.visitor, workspace.id)]
    assert names == ["Payments", "Platform"]


@pytest.mark.asyncio
async def test_service_scoped_to_workspace(db_session, workspace, admin_user):
    admin_id = admin_user.id
    other = await WorkspaceService(db_session).create_workspace(admin_id, "Elsewhere")
    with pytest.raises(NotFoundError):
        await ServiceCatalog(db_session).rename_service(admin_id, workspace.service_id, "x", workspace_id=other.id)


@pytest.mark.asyncio
async def test_delete_empty_service(db_session, workspace):
    catalog = ServiceCatalog(db_session)
    spare = (await catalog.create_service(workspace.admin, workspace.id, "Spare")).id
    assert await catalog.delete_service(workspace.admin, spare) == 0
    assert [s.name for s in await catalog.list_services(workspace.admin, workspace.id)] == ["Platform"]


@pytest.mark.asyncio
async def test_service_with_tasks_needs_reassignment(db_session, workspace):
    engine = TaskLifecycleEngine(db_session)
    catalog = ServiceCatalog(db_session)
    task_id = (await engine.create_task(workspace.member, workspace.id, workspace.service_id, {"name": "x"})).id

    with pytest.raises(PolicyViolationError):
        await catalog.delete_service(workspace.admin, workspace.service_id)
    with pytest.raises(ValidationError):
        await catalog.delete_service(workspace.admin, workspace.service_id, reassign_to=workspace.service_id)

    target = (await catalog.create_service(workspace.admin, workspace.id, "Successor")).id
    assert await catalog.delete_service(workspace.admin, workspace.service_id, reassign_to=target) == 1

    assert (await engine.get_task(workspace.member, task_id)).service_id == target
    history = await engine.get_history(workspace.member, task_id)
    assert (history[-1].field_name, history[-1].new_value) == ("service_id", target)
