# routers/workspaces.py — Workspaces, members and services
from datetime import datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail import as_utc
from auth import get_current_user, CurrentUser
from database import get_db_session
from membership import MembershipRegistry
from models import Member, MemberRole, Service, Workspace
from services import ServiceCatalog
from workspaces import WorkspaceService

router = APIRouter(prefix="/api/v1/workspaces", tags=["Workspaces"])


# ============================================================
# SCHEMAS
# ============================================================

# --- Workspace ---
class WorkspaceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None


class WorkspaceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None


class JoinRequest(BaseModel):
    invite_code: str = Field(..., min_length=1, max_length=64)


class WorkspaceOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    owner_id: str
    task_prefix: str
    # Only returned to admins
    invite_code: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


# --- Member ---
class MemberAdd(BaseModel):
    user_id: str
    role: MemberRole = MemberRole.MEMBER


class RoleChange(BaseModel):
    role: MemberRole


class MemberOut(BaseModel):
    user_id: str
    workspace_id: str
    role: str
    joined_at: Optional[str] = None


# --- Service ---
class ServiceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class ServiceOut(BaseModel):
    id: str
    workspace_id: str
    name: str
    created_at: Optional[str] = None


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return as_utc(dt).isoformat() if isinstance(dt, datetime) else str(dt)


def _workspace_out(ws: Workspace, show_invite: bool = False) -> WorkspaceOut:
    return WorkspaceOut(
        id=ws.id,
        name=ws.name,
        description=ws.description,
        owner_id=ws.owner_id,
        task_prefix=ws.task_prefix,
        invite_code=ws.invite_code if show_invite else None,
        created_at=_ts(ws.created_at),
        updated_at=_ts(ws.updated_at),
    )


def _member_out(m: Member) -> MemberOut:
    return MemberOut(
        user_id=m.user_id,
        workspace_id=m.workspace_id,
        role=m.role.value if isinstance(m.role, MemberRole) else m.role,
        joined_at=_ts(m.joined_at),
    )


def _service_out(s: Service) -> ServiceOut:
    return ServiceOut(id=s.id, workspace_id=s.workspace_id, name=s.name, created_at=_ts(s.created_at))


# ============================================================
# WORKSPACE ENDPOINTS
# ============================================================

@router.get("", response_model=List[WorkspaceOut])
async def list_workspaces(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """List workspaces the caller belongs to"""
    workspaces = await WorkspaceService(db).list_workspaces(user.id)
    return [_workspace_out(ws) for ws in workspaces]


@router.post("", response_model=WorkspaceOut, status_code=201)
async def create_workspace(
    data: WorkspaceCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a workspace; the caller becomes its first admin"""
    ws = await WorkspaceService(db).create_workspace(user.id, data.name, data.description)
    return _workspace_out(ws, show_invite=True)


@router.get("/{workspace_id}", response_model=WorkspaceOut)
async def get_workspace(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    ws = await WorkspaceService(db).get_workspace(user.id, workspace_id)
    role = await MembershipRegistry(db).role_of(user.id, workspace_id)
    return _workspace_out(ws, show_invite=role == MemberRole.ADMIN)


@router.patch("/{workspace_id}", response_model=WorkspaceOut)
async def update_workspace(
    workspace_id: str,
    data: WorkspaceUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    ws = await WorkspaceService(db).update_workspace(user.id, workspace_id, data.name, data.description)
    return _workspace_out(ws, show_invite=True)


@router.delete("/{workspace_id}")
async def delete_workspace(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Delete a workspace and everything in it"""
    await WorkspaceService(db).delete_workspace(user.id, workspace_id)
    return {"status": "deleted", "workspace_id": workspace_id}


@router.post("/{workspace_id}/invite-code", response_model=WorkspaceOut)
async def reset_invite_code(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    ws = await WorkspaceService(db).reset_invite_code(user.id, workspace_id)
    return _workspace_out(ws, show_invite=True)


@router.post("/{workspace_id}/join", response_model=WorkspaceOut)
async def join_workspace(
    workspace_id: str,
    data: JoinRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    ws = await WorkspaceService(db).join_workspace(user.id, workspace_id, data.invite_code)
    return _workspace_out(ws)


# ============================================================
# MEMBER ENDPOINTS
# ============================================================

@router.get("/{workspace_id}/members", response_model=List[MemberOut])
async def list_members(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    members = await MembershipRegistry(db).list_members(user.id, workspace_id)
    return [_member_out(m) for m in members]


@router.post("/{workspace_id}/members", response_model=MemberOut, status_code=201)
async def add_member(
    workspace_id: str,
    data: MemberAdd,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    member = await MembershipRegistry(db).add_member(user.id, workspace_id, data.user_id, data.role)
    return _member_out(member)


@router.patch("/{workspace_id}/members/{member_user_id}", response_model=MemberOut)
async def change_role(
    workspace_id: str,
    member_user_id: str,
    data: RoleChange,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    member = await MembershipRegistry(db).change_role(user.id, workspace_id, member_user_id, data.role)
    return _member_out(member)


@router.delete("/{workspace_id}/members/{member_user_id}")
async def remove_member(
    workspace_id: str,
    member_user_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Remove a member, or leave the workspace when removing yourself"""
    await MembershipRegistry(db).remove_member(user.id, workspace_id, member_user_id)
    return {"status": "removed", "user_id": member_user_id}


# ============================================================
# SERVICE ENDPOINTS
# ============================================================

@router.get("/{workspace_id}/services", response_model=List[ServiceOut])
async def list_services(
    workspace_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    services = await ServiceCatalog(db).list_services(user.id, workspace_id)
    return [_service_out(s) for s in services]


@router.post("/{workspace_id}/services", response_model=ServiceOut, status_code=201)
async def create_service(
    workspace_id: str,
    data: ServiceCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    service = await ServiceCatalog(db).create_service(user.id, workspace_id, data.name)
    return _service_out(service)


@router.patch("/{workspace_id}/services/{service_id}", response_model=ServiceOut)
async def rename_service(
    workspace_id: str,
    service_id: str,
    data: ServiceCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    service = await ServiceCatalog(db).rename_service(user.id, service_id, data.name, workspace_id=workspace_id)
    return _service_out(service)


@router.delete("/{workspace_id}/services/{service_id}")
async def delete_service(
    workspace_id: str,
    service_id: str,
    reassign_to: Optional[str] = Query(None, description="Service that receives the tasks"),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    moved = await ServiceCatalog(db).delete_service(
        user.id, service_id, reassign_to=reassign_to, workspace_id=workspace_id,
    )
    return {"status": "deleted", "service_id": service_id, "tasks_reassigned": moved}
