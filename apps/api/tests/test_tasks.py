from __future__ import annotations

import uuid

import pytest
from httpx import AsyncClient

from tasksphere.realtime.hub import hub, list_room, user_room
from tasksphere.routers.tasks import normalize_task_updates

from conftest import FakeSocket, create_list, create_task, join_list, register


def test_normalize_task_updates_maps_aliases_and_drops_unknown_keys() -> None:
  out = normalize_task_updates(
    {"dueDate": None, "assignedTo": "u1", "estimated_hours": 2, "id": "x", "created_by": "y", "listId": "z"}
  )
  assert out == {"due_date": None, "assigned_to": "u1", "estimated_hours": 2}


@pytest.mark.anyio
async def test_create_and_list_tasks_with_enrichment(client: AsyncClient) -> None:
  owner = await register(client, "t1@example.com", name="Owner")
  member = await register(client, "t1m@example.com", name="Member")
  tl = await create_list(client, owner["headers"])
  await join_list(client, member["headers"], tl["inviteCode"])

  sock = FakeSocket()
  hub.join(list_room(tl["id"]), sock)

  t = await create_task(
    client,
    owner["headers"],
    tl["id"],
    name="  Write <i>report</i> ",
    priority="high",
    estimatedHours=2.5,
    assignedTo=member["user"]["id"],
  )
  assert t["name"] == "Write report"
  assert t["status"] is False
  assert t["priority"] == "high"
  assert t["estimatedHours"] == 2.5
  assert t["assignedToName"] == "Member"
  assert t["assignedToEmail"] == "t1m@example.com"
  assert t["createdByName"] == "Owner"
  assert t["queuePosition"] is None
  assert t["nextReminderDatetime"] is None

  created = sock.events("taskCreated")
  assert len(created) == 1 and created[0]["id"] == t["id"]

  listed = await client.get(f"/task-lists/{tl['id']}/tasks", headers=member["headers"])
  assert listed.status_code == 200, listed.text
  assert [x["id"] for x in listed.json()] == [t["id"]]


@pytest.mark.anyio
async def test_create_task_validation(client: AsyncClient) -> None:
  owner = await register(client, "t2@example.com", name="Owner")
  outsider = await register(client, "t2x@example.com", name="Outsider")
  tl = await create_list(client, owner["headers"])

  res = await client.post(
    f"/task-lists/{tl['id']}/tasks", json={"name": "x", "assignedTo": outsider["user"]["id"]}, headers=owner["headers"]
  )
  assert res.status_code == 400
  assert res.json()["detail"] == "Assigned user must be a member of this task list"

  res = await client.post(f"/task-lists/{tl['id']}/tasks", json={"name": "x", "priority": "P1"}, headers=owner["headers"])
  assert res.status_code == 400

  res = await client.post(
    f"/task-lists/{tl['id']}/tasks", json={"name": "x", "estimatedHours": 1000}, headers=owner["headers"]
  )
  assert res.status_code == 400

  res = await client.post(f"/task-lists/{tl['id']}/tasks", json={"name": ""}, headers=owner["headers"])
  assert res.status_code == 400


@pytest.mark.anyio
async def test_update_accepts_whitelisted_fields_only(client: AsyncClient) -> None:
  owner = await register(client, "t3@example.com", name="Owner")
  tl = await create_list(client, owner["headers"])
  t = await create_task(client, owner["headers"], tl["id"], name="Original")

  res = await client.put(f"/tasks/{t['id']}", json={"id": "other", "createdBy": "me"}, headers=owner["headers"])
  assert res.status_code == 400
  assert res.json()["detail"] == "No valid fields to update"

  res = await client.put(f"/tasks/{t['id']}", json={"name": None}, headers=owner["headers"])
  assert res.status_code == 400

  res = await client.put(
    f"/tasks/{t['id']}",
    json={"name": "Renamed", "priority": "urgent", "dueDate": "2031-05-01T09:30:00Z", "bogus": 1},
    headers=owner["headers"],
  )
  assert res.status_code == 200, res.text
  body = res.json()
  assert body["name"] == "Renamed"
  assert body["priority"] == "urgent"
  assert body["dueDate"].startswith("2031-05-01T09:30:00")

  res = await client.put(f"/tasks/{t['id']}", json={"due_date": None, "status": True}, headers=owner["headers"])
  assert res.status_code == 200, res.text
  assert res.json()["dueDate"] is None
  assert res.json()["status"] is True

  res = await client.put(f"/tasks/{uuid.uuid4()}", json={"name": "x"}, headers=owner["headers"])
  assert res.status_code == 404


@pytest.mark.anyio
async def test_assignment_notifies_new_assignee(client: AsyncClient) -> None:
  owner = await register(client, "t4@example.com", name="Owner")
  member = await register(client, "t4m@example.com", name="Member")
  tl = await create_list(client, owner["headers"], name="Ops")
  await join_list(client, member["headers"], tl["inviteCode"])
  t = await create_task(client, owner["headers"], tl["id"], name="Deploy")

  sock = FakeSocket()
  hub.join(user_room(member["user"]["id"]), sock)

  res = await client.put(f"/tasks/{t['id']}", json={"assignedTo": member["user"]["id"]}, headers=owner["headers"])
  assert res.status_code == 200, res.text

  pushed = sock.events("newNotification")
  assert len(pushed) == 1
  assert pushed[0]["type"] == "task_assigned"
  assert pushed[0]["title"] == "Task Assignment Update"
  assert pushed[0]["message"] == 'You have been assigned to "Deploy" in Ops'

  notes = await client.get("/notifications", headers=member["headers"])
  assert [n["taskName"] for n in notes.json()] == ["Deploy"]

  # Re-sending the same assignee does not notify again.
  res = await client.put(f"/tasks/{t['id']}", json={"assignedTo": member["user"]["id"]}, headers=owner["headers"])
  assert res.status_code == 200
  assert len(sock.events("newNotification")) == 1

  # Self-assignment never notifies.
  own = FakeSocket()
  hub.join(user_room(owner["user"]["id"]), own)
  res = await client.put(f"/tasks/{t['id']}", json={"assignedTo": owner["user"]["id"]}, headers=owner["headers"])
  assert res.status_code == 200
  assert own.events("newNotification") == []


@pytest.mark.anyio
async def test_delete_task_emits_and_removes(client: AsyncClient) -> None:
  owner = await register(client, "t5@example.com", name="Owner")
  outsider = await register(client, "t5x@example.com", name="Outsider")
  tl = await create_list(client, owner["headers"])
  t = await create_task(client, owner["headers"], tl["id"], name="Temp")

  res = await client.delete(f"/tasks/{t['id']}", headers=outsider["headers"])
  assert res.status_code == 403

  sock = FakeSocket()
  hub.join(list_room(tl["id"]), sock)
  res = await client.delete(f"/tasks/{t['id']}", headers=owner["headers"])
  assert res.status_code == 200, res.text
  assert sock.events("taskDeleted") == [{"id": t["id"]}]

  listed = await client.get(f"/task-lists/{tl['id']}/tasks", headers=owner["headers"])
  assert listed.json() == []
  res = await client.delete(f"/tasks/{t['id']}", headers=owner["headers"])
  assert res.status_code == 404
