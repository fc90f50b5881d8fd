# tests/test_collaboration.py — Task messages and attachments
import pytest

from collaboration import CollaborationService
from errors import ForbiddenError, NotFoundError, ValidationError
from lifecycle import TaskLifecycleEngine


async def new_task(db_session, ws, **fields):
    fields.setdefault("name", "Investigate latency")
    task = await TaskLifecycleEngine(db_session).create_task(ws.member, ws.id, ws.service_id, fields)
    return task.id


async def history_actions(db_session, actor_id, task_id):
    return [e.action for e in await TaskLifecycleEngine(db_session).get_history(actor_id, task_id)]


@pytest.mark.asyncio
async def test_post_and_list_messages(db_session, workspace):
    task_id = await new_task(db_session, workspace)
    collab = CollaborationService(db_session)

    first = await collab.post_message(workspace.member, task_id, "  Looking into it ")
    second = await collab.post_message(workspace.colleague, task_id, "p99 doubled since Friday")
    assert first.content == "Looking into it"

    messages = await collab.list_messages(workspace.visitor, task_id)
    assert [m.id for m in messages] == [first.id, second.id]

    history = await TaskLifecycleEngine(db_session).get_history(workspace.member, task_id)
    assert [e.action for e in history] == ["created", "commented", "commented"]
    assert history[1].new_value == first.id


@pytest.mark.asyncio
@pytest.mark.parametrize("content", ["", "   ", None, "x" * 1001])
async def test_rejects_empty_or_oversized_message(db_session, workspace, content):
    task_id = await new_task(db_session, workspace)
    with pytest.raises(ValidationError):
        await CollaborationService(db_session).post_message(workspace.member, task_id, content)


@pytest.mark.asyncio
async def test_visitor_cannot_comment(db_session, workspace):
    task_id = await new_task(db_session, workspace)
    with pytest.raises(ForbiddenError):
        await CollaborationService(db_session).post_message(workspace.visitor, task_id, "hello")


@pytest.mark.asyncio
async def test_confidential_thread_is_concealed(db_session, workspace):
    task_id = await new_task(db_session, workspace, is_confidential=True, assignee_id=workspace.member)
    collab = CollaborationService(db_session)
    await collab.post_message(workspace.member, task_id, "credentials rotated")

    for user_id in (workspace.colleague, workspace.visitor):
        with pytest.raises(NotFoundError):
            await collab.list_messages(user_id, task_id)
        with pytest.raises(NotFoundError):
            await collab.post_message(user_id, task_id, "let me see")


@pytest.mark.asyncio
async def test_attachment_lifecycle(db_session, workspace):
    task_id = await new_task(db_session, workspace)
    collab = CollaborationService(db_session)

    attachment = await collab.add_attachment(
        workspace.colleague, task_id, "trace.json", "blobs/abc123", file_size=2048, mime_type="application/json",
    )
    attachment_id = attachment.id
    message = await collab.post_message(workspace.colleague, task_id, None, attachment_id=attachment_id)
    assert (message.attachment_name, message.attachment_size) == ("trace.json", 2048)

    assert [a.id for a in await collab.list_attachments(workspace.visitor, task_id)] == [attachment_id]

    await collab.remove_attachment(workspace.member, attachment_id)
    assert await collab.list_attachments(workspace.member, task_id) == []
    assert await history_actions(db_session, workspace.member, task_id) == [
        "created", "attachment_added", "commented", "attachment_removed",
    ]


@pytest.mark.asyncio
async def test_attachment_must_belong_to_task(db_session, workspace):
    collab = CollaborationService(db_session)
    first = await new_task(db_session, workspace)
    second = await new_task(db_session, workspace)
    attachment_id = (await collab.add_attachment(workspace.member, first, "a.txt", "blobs/a")).id

    with pytest.raises(NotFoundError):
        await collab.post_message(workspace.member, second, "see attached", attachment_id=attachment_id)


@pytest.mark.asyncio
@pytest.mark.parametrize("filename,storage_key,size", [
    ("", "blobs/a", 0),
    ("a.txt", "", 0),
    ("a.txt", "blobs/a", -1),
])
async def test_attachment_metadata_validated(db_session, workspace, filename, storage_key, size):
    task_id = await new_task(db_session, workspace)
    with pytest.raises(ValidationError):
        await CollaborationService(db_session).add_attachment(
            workspace.member, task_id, filename, storage_key, file_size=size,
        )


@pytest.mark.asyncio
async def test_visitor_cannot_attach(db_session, workspace):
    task_id = await new_task(db_session, workspace)
    with pytest.raises(ForbiddenError):
        await CollaborationService(db_session).add_attachment(workspace.visitor, task_id, "a.txt", "blobs/a")


@pytest.mark.asyncio
async def test_hidden_attachment_looks_missing(db_session, workspace):
    task_id = await new_task(db_session, workspace, is_confidential=True, assignee_id=workspace.member)
    collab = CollaborationService(db_session)
    attachment_id = (await collab.add_attachment(workspace.member, task_id, "a.txt", "blobs/a")).id

    for user_id in (workspace.colleague, workspace.visitor):
        with pytest.raises(NotFoundError) as exc:
            await collab.remove_attachment(user_id, attachment_id)
        assert exc.value.message == "Attachment not found"
    with pytest.raises(NotFoundError):
        await collab.remove_attachment(workspace.member, "no-such-attachment")
    assert len(await collab.list_attachments(workspace.member, task_id)) == 1
