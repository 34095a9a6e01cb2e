from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import func, select

from tasksphere.db import SessionLocal
from tasksphere.invites import INVITE_ALPHABET, generate_invite_code, normalize_invite_code
from tasksphere.models import QueueEntry, Task, TaskReminder
from tasksphere.reminders.scheduler import reminder_scheduler
from tasksphere.routers import task_lists as task_lists_router

from conftest import create_list, create_task, join_list, register


def test_invite_codes_are_uppercase_alphanumeric() -> None:
  for _ in range(50):
    code = generate_invite_code()
    assert len(code) == 8
    assert all(c in INVITE_ALPHABET for c in code)
  assert normalize_invite_code("  ab12cd34 ") == "AB12CD34"


@pytest.mark.anyio
async def test_create_join_and_members(client: AsyncClient) -> None:
  owner = await register(client, "owner@example.com", name="Owner")
  member = await register(client, "member@example.com", name="Member")

  tl = await create_list(client, owner["headers"], name="Groceries")
  assert tl["role"] == "owner"
  assert tl["memberCount"] == 1
  assert tl["ownerName"] == "Owner"

  joined = await join_list(client, member["headers"], tl["inviteCode"].lower())
  assert joined["id"] == tl["id"]
  assert joined["role"] == "member"
  assert joined["memberCount"] == 2

  again = await client.post("/task-lists/join", json={"inviteCode": tl["inviteCode"]}, headers=member["headers"])
  assert again.status_code == 400, again.text

  bad = await client.post("/task-lists/join", json={"inviteCode": "ZZZZZZZZ"}, headers=member["headers"])
  assert bad.status_code == 404, bad.text

  members = await client.get(f"/task-lists/{tl['id']}/members", headers=member["headers"])
  assert members.status_code == 200, members.text
  assert [(m["email"], m["role"]) for m in members.json()] == [
    ("owner@example.com", "owner"),
    ("member@example.com", "member"),
  ]

  mine = await client.get("/task-lists", headers=member["headers"])
  assert [x["id"] for x in mine.json()] == [tl["id"]]


@pytest.mark.anyio
async def test_non_member_is_denied(client: AsyncClient) -> None:
  owner = await register(client, "o2@example.com", name="Owner")
  outsider = await register(client, "x2@example.com", name="Outsider")
  tl = await create_list(client, owner["headers"])

  res = await client.get(f"/task-lists/{tl['id']}/members", headers=outsider["headers"])
  assert res.status_code == 403
  res = await client.get(f"/task-lists/{tl['id']}/tasks", headers=outsider["headers"])
  assert res.status_code == 403
  res = await client.post(f"/task-lists/{tl['id']}/tasks", json={"name": "nope"}, headers=outsider["headers"])
  assert res.status_code == 403


@pytest.mark.anyio
async def test_only_owner_can_delete_and_delete_cascades(client: AsyncClient) -> None:
  owner = await register(client, "o3@example.com", name="Owner")
  member = await register(client, "m3@example.com", name="Member")
  tl = await create_list(client, owner["headers"])
  await join_list(client, member["headers"], tl["inviteCode"])

  due = (datetime.now(timezone.utc) + timedelta(days=2)).isoformat()
  t = await create_task(client, owner["headers"], tl["id"], name="Cascade me", dueDate=due)
  r = await client.post(
    f"/tasks/{t['id']}/reminders", json={"timeValue": 1, "timeUnit": "hours"}, headers=owner["headers"]
  )
  assert r.status_code == 201, r.text
  reminder_id = r.json()[0]["id"]
  assert reminder_scheduler.is_scheduled(reminder_id)
  q = await client.post(f"/users/{member['user']['id']}/queue", json={"taskId": t["id"]}, headers=member["headers"])
  assert q.status_code == 201, q.text

  res = await client.delete(f"/task-lists/{tl['id']}", headers=member["headers"])
  assert res.status_code == 403
  assert res.json()["detail"] == "Only the owner can delete this task list"

  res = await client.delete(f"/task-lists/{uuid.uuid4()}", headers=owner["headers"])
  assert res.status_code == 404

  res = await client.delete(f"/task-lists/{tl['id']}", headers=owner["headers"])
  assert res.status_code == 200, res.text
  assert not reminder_scheduler.is_scheduled(reminder_id)

  async with SessionLocal() as db:
    assert (await db.execute(select(func.count(Task.id)))).scalar_one() == 0
    assert (await db.execute(select(func.count(TaskReminder.id)))).scalar_one() == 0
    assert (await db.execute(select(func.count()).select_from(QueueEntry))).scalar_one() == 0

  res = await client.get("/task-lists", headers=member["headers"])
  assert res.json() == []


@pytest.mark.anyio
async def test_projects_and_requesters(client: AsyncClient) -> None:
  owner = await register(client, "o4@example.com", name="Owner")
  tl = await create_list(client, owner["headers"])
  other = await create_list(client, owner["headers"], name="Other")

  p = await client.post(f"/task-lists/{tl['id']}/projects", json={"name": "Website"}, headers=owner["headers"])
  assert p.status_code == 201, p.text
  rq = await client.post(
    f"/task-lists/{tl['id']}/requesters", json={"name": "Client", "email": "client@example.com"}, headers=owner["headers"]
  )
  assert rq.status_code == 201, rq.text

  t = await create_task(
    client, owner["headers"], tl["id"], name="Landing page", projectId=p.json()["id"], requesterId=rq.json()["id"]
  )
  assert t["projectName"] == "Website"
  assert t["requesterName"] == "Client"

  # References from another list are rejected.
  res = await client.post(
    f"/task-lists/{other['id']}/tasks", json={"name": "x", "projectId": p.json()["id"]}, headers=owner["headers"]
  )
  assert res.status_code == 400, res.text

  res = await client.delete(f"/projects/{p.json()['id']}", headers=owner["headers"])
  assert res.status_code == 200, res.text
  tasks = (await client.get(f"/task-lists/{tl['id']}/tasks", headers=owner["headers"])).json()
  assert tasks[0]["projectId"] is None

  listed = await client.get(f"/task-lists/{tl['id']}/requesters", headers=owner["headers"])
  assert [r["name"] for r in listed.json()] == ["Client"]


@pytest.mark.anyio
async def test_create_retries_when_invite_code_is_taken_at_insert(client: AsyncClient, monkeypatch) -> None:
  alice = await register(client, "collide@example.com", name="Alice")
  first = await create_list(client, alice["headers"], name="First")

  # The lookup found the code free, but another list holds it by insert time.
  codes = iter([first["inviteCode"], "ZZZZ9999"])

  async def _stale_lookup(db):
    return next(codes)

  monkeypatch.setattr(task_lists_router, "unique_invite_code", _stale_lookup)
  second = await create_list(client, alice["headers"], name="Second")
  assert second["inviteCode"] == "ZZZZ9999"
  assert second["role"] == "owner"
  assert second["memberCount"] == 1

  lists = (await client.get("/task-lists", headers=alice["headers"])).json()
  assert sorted(tl["name"] for tl in lists) == ["First", "Second"]
