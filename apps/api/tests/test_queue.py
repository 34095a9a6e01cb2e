from __future__ import annotations

import logging

import pytest
from httpx import AsyncClient

from conftest import create_list, create_task, join_list, register


def _order(entries: list[dict]) -> list[tuple[str, int]]:
  return [(e["taskId"], e["position"]) for e in entries]


@pytest.mark.anyio
async def test_append_reorder_and_task_delete(client: AsyncClient) -> None:
  alice = await register(client, "alice@example.com", name="Alice")
  tl = await create_list(client, alice["headers"], name="Q4")
  t2 = await create_task(client, alice["headers"], tl["id"], name="T2")
  t3 = await create_task(client, alice["headers"], tl["id"], name="T3")
  base = f"/users/{alice['user']['id']}/queue"

  r = await client.post(base, json={"taskId": t2["id"]}, headers=alice["headers"])
  assert r.status_code == 201, r.text
  assert r.json()["position"] == 1
  r = await client.post(base, json={"taskId": t3["id"]}, headers=alice["headers"])
  assert r.json()["position"] == 2

  # Appending an already-queued task keeps its place.
  r = await client.post(base, json={"taskId": t2["id"]}, headers=alice["headers"])
  assert r.status_code == 201
  assert r.json()["position"] == 1

  q = await client.get(base, headers=alice["headers"])
  assert _order(q.json()) == [(t2["id"], 1), (t3["id"], 2)]

  perm = {"taskListId": tl["id"], "taskOrders": [{"taskId": t3["id"], "position": 1}, {"taskId": t2["id"], "position": 2}]}
  r = await client.put(f"{base}/reorder", json=perm, headers=alice["headers"])
  assert r.status_code == 200, r.text
  assert _order(r.json()) == [(t3["id"], 1), (t2["id"], 2)]

  again = await client.put(f"{base}/reorder", json=perm, headers=alice["headers"])
  assert again.status_code == 200
  assert again.json() == r.json()

  tasks = (await client.get(f"/task-lists/{tl['id']}/tasks", headers=alice["headers"])).json()
  assert {t["id"]: t["queuePosition"] for t in tasks} == {t2["id"]: 2, t3["id"]: 1}

  res = await client.delete(f"/tasks/{t3['id']}", headers=alice["headers"])
  assert res.status_code == 200, res.text
  q = await client.get(base, params={"taskListId": tl["id"]}, headers=alice["headers"])
  assert _order(q.json()) == [(t2["id"], 1)]


@pytest.mark.anyio
async def test_reorder_requires_full_permutation(client: AsyncClient) -> None:
  alice = await register(client, "q2@example.com", name="Alice")
  tl = await create_list(client, alice["headers"])
  other = await create_list(client, alice["headers"], name="Other")
  a = await create_task(client, alice["headers"], tl["id"], name="A")
  b = await create_task(client, alice["headers"], tl["id"], name="B")
  c = await create_task(client, alice["headers"], other["id"], name="C")
  base = f"/users/{alice['user']['id']}/queue"
  for t in (a, b, c):
    r = await client.post(base, json={"taskId": t["id"]}, headers=alice["headers"])
    assert r.status_code == 201, r.text
  # Queues are per list.
  assert r.json()["position"] == 1

  cases = [
    [{"taskId": a["id"], "position": 1}],
    [{"taskId": a["id"], "position": 1}, {"taskId": b["id"], "position": 3}],
    [{"taskId": a["id"], "position": 1}, {"taskId": a["id"], "position": 2}],
    [{"taskId": a["id"], "position": 1}, {"taskId": c["id"], "position": 2}],
  ]
  for orders in cases:
    r = await client.put(f"{base}/reorder", json={"taskOrders": orders}, headers=alice["headers"])
    assert r.status_code == 400, (orders, r.text)

  q = await client.get(base, params={"taskListId": tl["id"]}, headers=alice["headers"])
  assert _order(q.json()) == [(a["id"], 1), (b["id"], 2)]


@pytest.mark.anyio
async def test_remove_from_queue_closes_gap(client: AsyncClient) -> None:
  alice = await register(client, "q3@example.com", name="Alice")
  tl = await create_list(client, alice["headers"])
  tasks = [await create_task(client, alice["headers"], tl["id"], name=f"T{i}") for i in range(3)]
  base = f"/users/{alice['user']['id']}/queue"
  for t in tasks:
    await client.post(base, json={"taskId": t["id"]}, headers=alice["headers"])

  r = await client.delete(f"{base}/{tasks[0]['id']}", headers=alice["headers"])
  assert r.status_code == 200, r.text
  assert r.json()["message"] == "Task removed from queue"
  assert _order(r.json()["updatedPositions"]) == [(tasks[1]["id"], 1), (tasks[2]["id"], 2)]

  r = await client.delete(f"{base}/{tasks[0]['id']}", headers=alice["headers"])
  assert r.status_code == 404
  assert r.json()["detail"] == "Task not in queue"


@pytest.mark.anyio
async def test_task_delete_keeps_every_users_queue_dense(client: AsyncClient) -> None:
  alice = await register(client, "q4@example.com", name="Alice")
  bob = await register(client, "q4b@example.com", name="Bob")
  tl = await create_list(client, alice["headers"])
  await join_list(client, bob["headers"], tl["inviteCode"])
  t1, t2, t3 = [await create_task(client, alice["headers"], tl["id"], name=f"T{i}") for i in range(1, 4)]

  for who in (alice, bob):
    base = f"/users/{who['user']['id']}/queue"
    for t in (t1, t2, t3):
      r = await client.post(base, json={"taskId": t["id"]}, headers=who["headers"])
      assert r.status_code == 201, r.text
  bob_base = f"/users/{bob['user']['id']}/queue"
  r = await client.put(
    f"{bob_base}/reorder",
    json={
      "taskOrders": [
        {"taskId": t3["id"], "position": 1},
        {"taskId": t2["id"], "position": 2},
        {"taskId": t1["id"], "position": 3},
      ]
    },
    headers=bob["headers"],
  )
  assert r.status_code == 200, r.text

  res = await client.delete(f"/tasks/{t2['id']}", headers=bob["headers"])
  assert res.status_code == 200, res.text

  qa = await client.get(f"/users/{alice['user']['id']}/queue", headers=alice["headers"])
  assert _order(qa.json()) == [(t1["id"], 1), (t3["id"], 2)]
  qb = await client.get(bob_base, headers=bob["headers"])
  assert _order(qb.json()) == [(t3["id"], 1), (t1["id"], 2)]


@pytest.mark.anyio
async def test_other_users_queue_is_forbidden_and_logged(client: AsyncClient, caplog) -> None:
  alice = await register(client, "q5@example.com", name="Alice")
  bob = await register(client, "q5b@example.com", name="Bob")

  with caplog.at_level(logging.WARNING, logger="tasksphere.security"):
    res = await client.get(f"/users/{alice['user']['id']}/queue", headers=bob["headers"])
  assert res.status_code == 403
  events = [r for r in caplog.records if getattr(r, "event_type", None) == "ACCESS_DENIED"]
  assert len(events) == 1
  assert events[0].user_id == bob["user"]["id"]


@pytest.mark.anyio
async def test_queue_requires_list_membership(client: AsyncClient) -> None:
  alice = await register(client, "q6@example.com", name="Alice")
  bob = await register(client, "q6b@example.com", name="Bob")
  tl = await create_list(client, alice["headers"])
  t = await create_task(client, alice["headers"], tl["id"])

  r = await client.post(f"/users/{bob['user']['id']}/queue", json={"taskId": t["id"]}, headers=bob["headers"])
  assert r.status_code == 403
  r = await client.get(f"/users/{bob['user']['id']}/queue", params={"taskListId": tl["id"]}, headers=bob["headers"])
  assert r.status_code == 403
