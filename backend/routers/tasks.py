# routers/tasks.py — Kanban tasks, followers, history, messages and attachments
from datetime import date, datetime
from typing import Optional, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from audit_trail import as_utc
from auth import get_current_user, CurrentUser
from collaboration import CollaborationService
from config import MESSAGE_MAX_LENGTH
from database import get_db_session
from lifecycle import TaskLifecycleEngine
from models import Task, TaskAttachment, TaskHistory, TaskMessage

router = APIRouter(prefix="/api/v1", tags=["Tasks"])


# ============================================================
# SCHEMAS
# ============================================================

# --- Task ---
class TaskCreate(BaseModel):
    service_id: str
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: str = "medium"
    is_confidential: bool = False


class TaskUpdate(BaseModel):
    """Partial update; only the fields sent are applied."""
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    service_id: Optional[str] = None
    assignee_id: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: Optional[str] = None
    is_confidential: Optional[bool] = None
    status: Optional[str] = None


class TaskMove(BaseModel):
    status: str
    destination_index: Optional[int] = Field(None, ge=0)


class TaskOut(BaseModel):
    id: str
    task_number: str
    workspace_id: str
    service_id: str
    name: str
    description: Optional[str] = None
    status: str
    position: float
    priority: str
    creator_id: str
    assignee_id: Optional[str] = None
    due_date: Optional[str] = None
    is_confidential: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class HistoryOut(BaseModel):
    id: str
    task_id: str
    actor_id: str
    action: str
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    sequence: int
    created_at: Optional[str] = None


# --- Messages & attachments ---
class MessageCreate(BaseModel):
    content: str = Field("", max_length=MESSAGE_MAX_LENGTH)
    attachment_id: Optional[str] = None


class MessageOut(BaseModel):
    id: str
    task_id: str
    sender_id: str
    content: str
    attachment_id: Optional[str] = None
    attachment_name: Optional[str] = None
    attachment_size: Optional[int] = None
    attachment_type: Optional[str] = None
    created_at: Optional[str] = None


class AttachmentCreate(BaseModel):
    filename: str = Field(..., min_length=1, max_length=255)
    storage_key: str = Field(..., min_length=1)
    file_size: int = Field(0, ge=0)
    mime_type: Optional[str] = None


class AttachmentOut(BaseModel):
    id: str
    task_id: str
    uploader_id: str
    filename: str
    storage_key: str
    file_size: int
    mime_type: Optional[str] = None
    created_at: Optional[str] = None


# ============================================================
# HELPERS
# ============================================================

def _ts(dt) -> Optional[str]:
    if dt is None:
        return None
    return as_utc(dt).isoformat() if isinstance(dt, datetime) else str(dt)


def _val(v) -> str:
    return v.value if hasattr(v, "value") else v


def _task_out(t: Task) -> TaskOut:
    return TaskOut(
        id=t.id,
        task_number=t.task_number,
        workspace_id=t.workspace_id,
        service_id=t.service_id,
        name=t.name,
        description=t.description,
        status=_val(t.status),
        position=t.position,
        priority=_val(t.priority),
        creator_id=t.creator_id,
        assignee_id=t.assignee_id,
        due_date=_ts(t.due_date),
        is_confidential=bool(t.is_confidential),
        created_at=_ts(t.created_at),
        updated_at=_ts(t.updated_at),
    )


def _history_out(h: TaskHistory) -> HistoryOut:
    return HistoryOut(
        id=h.id, task_id=h.task_id, actor_id=h.actor_id, action=h.action,
        field_name=h.field_name, old_value=h.old_value, new_value=h.new_value,
        sequence=h.sequence, created_at=_ts(h.created_at),
    )


def _message_out(m: TaskMessage) -> MessageOut:
    return MessageOut(
        id=m.id, task_id=m.task_id, sender_id=m.sender_id, content=m.content or "",
        attachment_id=m.attachment_id, attachment_name=m.attachment_name,
        attachment_size=m.attachment_size, attachment_type=m.attachment_type,
        created_at=_ts(m.created_at),
    )


def _attachment_out(a: TaskAttachment) -> AttachmentOut:
    return AttachmentOut(
        id=a.id, task_id=a.task_id, uploader_id=a.uploader_id, filename=a.filename,
        storage_key=a.storage_key, file_size=a.file_size or 0, mime_type=a.mime_type,
        created_at=_ts(a.created_at),
    )


# ============================================================
# TASK ENDPOINTS
# ============================================================

@router.get("/workspaces/{workspace_id}/tasks", response_model=List[TaskOut])
async def list_tasks(
    workspace_id: str,
    service_id: Optional[str] = Query(None),
    assignee_id: Optional[str] = Query(None),
    status: Optional[str] = Query(None),
    due_before: Optional[date] = Query(None, description="Tasks due on or before this date"),
    search: Optional[str] = Query(None, max_length=200),
    include_archived: bool = Query(False),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """List the tasks of a workspace the caller is allowed to see"""
    tasks = await TaskLifecycleEngine(db).list_visible_tasks(
        user.id, workspace_id,
        service_id=service_id,
        assignee_id=assignee_id,
        status=status,
        due_before=due_before,
        search=search,
        include_archived=include_archived,
    )
    return [_task_out(t) for t in tasks]


@router.post("/workspaces/{workspace_id}/tasks", response_model=TaskOut, status_code=201)
async def create_task(
    workspace_id: str,
    data: TaskCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a task in the TODO column"""
    fields = data.model_dump(exclude={"service_id"})
    task = await TaskLifecycleEngine(db).create_task(user.id, workspace_id, data.service_id, fields)
    return _task_out(task)


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await TaskLifecycleEngine(db).get_task(user.id, task_id)
    return _task_out(task)


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    data: TaskUpdate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    task = await TaskLifecycleEngine(db).update_task(user.id, task_id, data.model_dump(exclude_unset=True))
    return _task_out(task)


@router.post("/tasks/{task_id}/move", response_model=TaskOut)
async def move_task(
    task_id: str,
    data: TaskMove,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Change status and/or drop the task at an index of the destination column"""
    task = await TaskLifecycleEngine(db).change_status(
        user.id, task_id, data.status, destination_index=data.destination_index,
    )
    return _task_out(task)


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await TaskLifecycleEngine(db).delete_task(user.id, task_id)
    return {"status": "deleted", "task_id": task_id}


@router.get("/tasks/{task_id}/history", response_model=List[HistoryOut])
async def get_history(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    entries = await TaskLifecycleEngine(db).get_history(user.id, task_id)
    return [_history_out(h) for h in entries]


# ============================================================
# FOLLOWERS
# ============================================================

@router.get("/tasks/{task_id}/followers", response_model=List[str])
async def list_followers(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    return await TaskLifecycleEngine(db).list_followers(user.id, task_id)


@router.post("/tasks/{task_id}/follow")
async def follow_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await TaskLifecycleEngine(db).follow(user.id, task_id)
    return {"status": "following", "task_id": task_id}


@router.delete("/tasks/{task_id}/follow")
async def unfollow_task(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await TaskLifecycleEngine(db).unfollow(user.id, task_id)
    return {"status": "unfollowed", "task_id": task_id}


# ============================================================
# MESSAGES & ATTACHMENTS
# ============================================================

@router.get("/tasks/{task_id}/messages", response_model=List[MessageOut])
async def list_messages(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    messages = await CollaborationService(db).list_messages(user.id, task_id)
    return [_message_out(m) for m in messages]


@router.post("/tasks/{task_id}/messages", response_model=MessageOut, status_code=201)
async def post_message(
    task_id: str,
    data: MessageCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    message = await CollaborationService(db).post_message(
        user.id, task_id, data.content, attachment_id=data.attachment_id,
    )
    return _message_out(message)


@router.get("/tasks/{task_id}/attachments", response_model=List[AttachmentOut])
async def list_attachments(
    task_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    attachments = await CollaborationService(db).list_attachments(user.id, task_id)
    return [_attachment_out(a) for a in attachments]


@router.post("/tasks/{task_id}/attachments", response_model=AttachmentOut, status_code=201)
async def add_attachment(
    task_id: str,
    data: AttachmentCreate,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Register attachment metadata; the blob is uploaded to file storage separately"""
    attachment = await CollaborationService(db).add_attachment(
        user.id, task_id, data.filename, data.storage_key,
        file_size=data.file_size, mime_type=data.mime_type,
    )
    return _attachment_out(attachment)


@router.delete("/attachments/{attachment_id}")
async def remove_attachment(
    attachment_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
):
    await CollaborationService(db).remove_attachment(user.id, attachment_id)
    return {"status": "deleted", "attachment_id": attachment_id}
