# tests/test_tasks.py — Task router tests
import pytest
from httpx import AsyncClient

from tests.conftest import get_auth_headers


async def create_task(client: AsyncClient, workspace, user, **fields):
    payload = {"service_id": workspace.service_id, "name": "Upgrade Postgres"}
    payload.update(fields)
    resp = await client.post(f"/api/v1/workspaces/{workspace.id}/tasks", json=payload, headers=get_auth_headers(user))
    assert resp.status_code == 201, resp.text
    return resp.json()


@pytest.mark.asyncio
async def test_create_task(client: AsyncClient, workspace, member_user):
    """Member creates a task; it lands at the bottom of TODO"""
    data = await create_task(client, workspace, member_user, priority="high", due_date="2026-05-01T09:00:00Z")
    assert data["status"] == "TODO"
    assert data["task_number"] == "OPER-1"
    assert data["priority"] == "high"
    assert data["creator_id"] == member_user.id
    assert data["due_date"].startswith("2026-05-01T09:00:00")

    followers = await client.get(f"/api/v1/tasks/{data['id']}/followers", headers=get_auth_headers(member_user))
    assert followers.json() == [member_user.id]


@pytest.mark.asyncio
async def test_visitor_cannot_create_task(client: AsyncClient, workspace, visitor_user):
    resp = await client.post(
        f"/api/v1/workspaces/{workspace.id}/tasks",
        json={"service_id": workspace.service_id, "name": "Sneaky"},
        headers=get_auth_headers(visitor_user),
    )
    assert resp.status_code == 404
    assert resp.json()["detail"] == "Not found or access denied"


@pytest.mark.asyncio
async def test_invalid_priority_rejected(client: AsyncClient, workspace, member_user):
    resp = await client.post(
        f"/api/v1/workspaces/{workspace.id}/tasks",
        json={"service_id": workspace.service_id, "name": "x", "priority": "urgent"},
        headers=get_auth_headers(member_user),
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "TT-TASK-003"


@pytest.mark.asyncio
async def test_confidential_task_requires_assignee(client: AsyncClient, workspace, member_user):
    headers = get_auth_headers(member_user)
    resp = await client.post(
        f"/api/v1/workspaces/{workspace.id}/tasks",
        json={"service_id": workspace.service_id, "name": "Incident", "is_confidential": True},
        headers=headers,
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "TT-TASK-003"
    assert resp.json()["detail"] == "At least one assignee is required for confidential tasks"

    task = await create_task(client, workspace, member_user, is_confidential=True, assignee_id=member_user.id)
    cleared = await client.patch(f"/api/v1/tasks/{task['id']}", json={"assignee_id": None}, headers=headers)
    assert cleared.status_code == 422
    assert cleared.json()["code"] == "TT-TASK-003"


@pytest.mark.asyncio
async def test_confidential_task_concealed(client: AsyncClient, workspace, member_user, other_member, visitor_user):
    task = await create_task(client, workspace, member_user, is_confidential=True, assignee_id=member_user.id)
    url = f"/api/v1/tasks/{task['id']}"

    for user in (other_member, visitor_user):
        resp = await client.get(url, headers=get_auth_headers(user))
        assert resp.status_code == 404
        listed = await client.get(f"/api/v1/workspaces/{workspace.id}/tasks", headers=get_auth_headers(user))
        assert task["id"] not in [t["id"] for t in listed.json()]

    # Same body as a task that never existed
    missing = await client.get("/api/v1/tasks/does-not-exist", headers=get_auth_headers(other_member))
    hidden = await client.get(url, headers=get_auth_headers(other_member))
    assert missing.json()["detail"] == hidden.json()["detail"]
    assert missing.json()["code"] == hidden.json()["code"]


@pytest.mark.asyncio
async def test_update_by_non_owner_concealed(client: AsyncClient, workspace, member_user, other_member):
    task = await create_task(client, workspace, member_user)
    resp = await client.patch(
        f"/api/v1/tasks/{task['id']}", json={"name": "Mine"}, headers=get_auth_headers(other_member),
    )
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_update_and_history(client: AsyncClient, workspace, member_user):
    headers = get_auth_headers(member_user)
    task = await create_task(client, workspace, member_user, name="Draft")

    resp = await client.patch(f"/api/v1/tasks/{task['id']}", json={"name": "Final", "priority": "low"}, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["name"] == "Final"

    history = (await client.get(f"/api/v1/tasks/{task['id']}/history", headers=headers)).json()
    assert [(h["action"], h["field_name"]) for h in history] == [
        ("created", None),
        ("field_changed", "name"),
        ("field_changed", "priority"),
    ]
    assert [h["sequence"] for h in history] == [1, 2, 3]


@pytest.mark.asyncio
async def test_update_rejects_unknown_fields(client: AsyncClient, workspace, member_user):
    task = await create_task(client, workspace, member_user)
    resp = await client.patch(
        f"/api/v1/tasks/{task['id']}", json={"creator_id": "someone"}, headers=get_auth_headers(member_user),
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_move_task(client: AsyncClient, workspace, member_user):
    headers = get_auth_headers(member_user)
    first = await create_task(client, workspace, member_user, name="first")
    second = await create_task(client, workspace, member_user, name="second")

    for task in (first, second):
        resp = await client.post(f"/api/v1/tasks/{task['id']}/move", json={"status": "IN_PROGRESS"}, headers=headers)
        assert resp.status_code == 200

    resp = await client.post(
        f"/api/v1/tasks/{second['id']}/move",
        json={"status": "IN_PROGRESS", "destination_index": 0},
        headers=headers,
    )
    assert resp.json()["position"] < 0

    board = await client.get(
        f"/api/v1/workspaces/{workspace.id}/tasks", params={"status": "IN_PROGRESS"}, headers=headers,
    )
    assert [t["name"] for t in board.json()] == ["second", "first"]


@pytest.mark.asyncio
async def test_move_to_unknown_status(client: AsyncClient, workspace, member_user):
    task = await create_task(client, workspace, member_user)
    resp = await client.post(
        f"/api/v1/tasks/{task['id']}/move", json={"status": "SHIPPED"}, headers=get_auth_headers(member_user),
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "TT-TASK-002"


@pytest.mark.asyncio
async def test_archived_task_stays_archived(client: AsyncClient, workspace, member_user, visitor_user):
    headers = get_auth_headers(member_user)
    task = await create_task(client, workspace, member_user)
    url = f"/api/v1/tasks/{task['id']}"

    await client.post(f"{url}/move", json={"status": "ARCHIVED"}, headers=headers)
    back = await client.post(f"{url}/move", json={"status": "TODO"}, headers=headers)
    assert back.status_code == 422

    board = await client.get(f"/api/v1/workspaces/{workspace.id}/tasks", headers=headers)
    assert board.json() == []
    archive = await client.get(
        f"/api/v1/workspaces/{workspace.id}/tasks", params={"include_archived": "true"}, headers=headers,
    )
    assert [t["id"] for t in archive.json()] == [task["id"]]
    as_visitor = await client.get(
        f"/api/v1/workspaces/{workspace.id}/tasks",
        params={"include_archived": "true"},
        headers=get_auth_headers(visitor_user),
    )
    assert as_visitor.json() == []


@pytest.mark.asyncio
async def test_list_filters(client: AsyncClient, workspace, member_user, other_member):
    headers = get_auth_headers(member_user)
    due = await create_task(client, workspace, member_user, name="Renew cert", due_date="2026-03-01T12:00:00Z")
    await create_task(client, workspace, member_user, name="Audit logs", assignee_id=other_member.id)

    url = f"/api/v1/workspaces/{workspace.id}/tasks"
    by_date = await client.get(url, params={"due_before": "2026-03-01"}, headers=headers)
    assert [t["id"] for t in by_date.json()] == [due["id"]]
    by_assignee = await client.get(url, params={"assignee_id": other_member.id}, headers=headers)
    assert [t["name"] for t in by_assignee.json()] == ["Audit logs"]
    by_search = await client.get(url, params={"search": "CERT"}, headers=headers)
    assert [t["name"] for t in by_search.json()] == ["Renew cert"]


@pytest.mark.asyncio
async def test_follow_unfollow(client: AsyncClient, workspace, member_user, other_member):
    task = await create_task(client, workspace, member_user)
    url = f"/api/v1/tasks/{task['id']}"
    colleague = get_auth_headers(other_member)

    assert (await client.post(f"{url}/follow", headers=colleague)).status_code == 200
    followers = (await client.get(f"{url}/followers", headers=colleague)).json()
    assert sorted(followers) == sorted([member_user.id, other_member.id])

    assert (await client.delete(f"{url}/follow", headers=colleague)).status_code == 200
    creator_leaves = await client.delete(f"{url}/follow", headers=get_auth_headers(member_user))
    assert creator_leaves.status_code == 409


@pytest.mark.asyncio
async def test_messages_and_attachments(client: AsyncClient, workspace, member_user, visitor_user):
    headers = get_auth_headers(member_user)
    task = await create_task(client, workspace, member_user)
    url = f"/api/v1/tasks/{task['id']}"

    attachment = await client.post(
        f"{url}/attachments",
        json={"filename": "plan.pdf", "storage_key": "blobs/plan", "file_size": 512, "mime_type": "application/pdf"},
        headers=headers,
    )
    assert attachment.status_code == 201
    attachment_id = attachment.json()["id"]

    message = await client.post(
        f"{url}/messages", json={"content": "Plan attached", "attachment_id": attachment_id}, headers=headers,
    )
    assert message.status_code == 201
    assert message.json()["attachment_name"] == "plan.pdf"

    thread = await client.get(f"{url}/messages", headers=get_auth_headers(visitor_user))
    assert [m["content"] for m in thread.json()] == ["Plan attached"]

    refused = await client.delete(f"/api/v1/attachments/{attachment_id}", headers=get_auth_headers(visitor_user))
    assert refused.status_code == 404
    removed = await client.delete(f"/api/v1/attachments/{attachment_id}", headers=headers)
    assert removed.status_code == 200
    assert (await client.get(f"{url}/attachments", headers=headers)).json() == []


@pytest.mark.asyncio
async def test_delete_task(client: AsyncClient, workspace, member_user, admin_user):
    task = await create_task(client, workspace, member_user)
    url = f"/api/v1/tasks/{task['id']}"

    resp = await client.delete(url, headers=get_auth_headers(admin_user))
    assert resp.status_code == 200
    assert (await client.get(f"{url}/history", headers=get_auth_headers(member_user))).status_code == 404
