"""
Per (user, list) work queue.

Positions for one user's entries inside one list are always the dense
sequence 1..N. Every mutation finishes with `renumber`, a single
UPDATE ... FROM over a row_number() window, so concurrent writers converge on
a dense ordering regardless of how their statements interleave.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from tasksphere.errors import Invalid, NotFound
from tasksphere.models import QueueEntry, Task, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_SQLSTATES = {"40001", "40P01"}
MAX_ATTEMPTS = 3


def _insert_for(db: AsyncSession):
  if db.get_bind().dialect.name == "postgresql":
    return postgresql.insert
  return sqlite.insert


def _is_retryable(exc: DBAPIError) -> bool:
  orig = exc.orig
  code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
  if code in RETRYABLE_SQLSTATES:
    return True
  return "database is locked" in str(orig)


async def run_with_retry(db: AsyncSession, op: Callable[[], Awaitable[T]], *, attempts: int = MAX_ATTEMPTS) -> T:
  """Run `op` and commit; on serialization/deadlock failures roll back and retry."""
  for attempt in range(1, attempts + 1):
    try:
      result = await op()
      await db.commit()
      return result
    except DBAPIError as exc:
      await db.rollback()
      if attempt >= attempts or not _is_retryable(exc):
        raise
      logger.warning("queue transaction conflict, retrying (attempt %s/%s)", attempt, attempts)
  raise RuntimeError("unreachable")


async def renumber(db: AsyncSession, *, list_id: str, user_id: str | None = None) -> None:
  """
  Rewrite positions as row_number() per user over (position, added_at, task_id).

  With `user_id` only that user's queue for the list is touched; without it
  every user's queue for the list is renumbered (task deletion).
  """
  q = aliased(QueueEntry)
  ranked = (
    select(
      q.user_id.label("user_id"),
      q.task_id.label("task_id"),
      func.row_number()
      .over(partition_by=q.user_id, order_by=(q.position.asc(), q.added_at.asc(), q.task_id.asc()))
      .label("new_position"),
    )
    .join(Task, Task.id == q.task_id)
    .where(Task.list_id == list_id)
  )
  if user_id is not None:
    ranked = ranked.where(q.user_id == user_id)
  ranked = ranked.subquery()

  stmt = (
    update(QueueEntry)
    .where(
      QueueEntry.user_id == ranked.c.user_id,
      QueueEntry.task_id == ranked.c.task_id,
      QueueEntry.position != ranked.c.new_position,
    )
    .values(position=ranked.c.new_position)
    .execution_options(synchronize_session=False)
  )
  await db.execute(stmt)


async def positions(db: AsyncSession, *, user_id: str, list_id: str) -> list[dict]:
  res = await db.execute(
    select(QueueEntry.task_id, QueueEntry.position)
    .join(Task, Task.id == QueueEntry.task_id)
    .where(QueueEntry.user_id == user_id, Task.list_id == list_id)
    .order_by(QueueEntry.position.asc())
  )
  return [{"taskId": task_id, "position": int(pos)} for task_id, pos in res.all()]


async def list_queue(db: AsyncSession, *, user_id: str, list_id: str | None = None) -> list[dict]:
  stmt = (
    select(QueueEntry, Task)
    .join(Task, Task.id == QueueEntry.task_id)
    .where(QueueEntry.user_id == user_id)
  )
  if list_id is not None:
    stmt = stmt.where(Task.list_id == list_id)
  stmt = stmt.order_by(Task.list_id.asc(), QueueEntry.position.asc())
  res = await db.execute(stmt)
  out: list[dict] = []
  for entry, task in res.all():
    out.append(
      {
        "taskId": entry.task_id,
        "userId": entry.user_id,
        "position": entry.position,
        "addedAt": entry.added_at,
        "taskListId": task.list_id,
        "name": task.name,
        "status": bool(task.status),
        "priority": task.priority,
        "dueDate": task.due_date,
      }
    )
  return out


async def append(db: AsyncSession, *, user_id: str, task: Task) -> dict:
  """Add `task` at the end of the user's queue for its list; a repeat add is a no-op."""

  async def _op() -> None:
    res = await db.execute(
      select(func.coalesce(func.max(QueueEntry.position), 0))
      .select_from(QueueEntry)
      .join(Task, Task.id == QueueEntry.task_id)
      .where(QueueEntry.user_id == user_id, Task.list_id == task.list_id)
    )
    next_pos = int(res.scalar_one()) + 1
    insert = _insert_for(db)
    stmt = (
      insert(QueueEntry)
      .values(user_id=user_id, task_id=task.id, position=next_pos, added_at=utcnow())
      .on_conflict_do_nothing(index_elements=["user_id", "task_id"])
    )
    await db.execute(stmt)
    await renumber(db, list_id=task.list_id, user_id=user_id)

  await run_with_retry(db, _op)

  res = await db.execute(
    select(QueueEntry)
    .where(QueueEntry.user_id == user_id, QueueEntry.task_id == task.id)
    .execution_options(populate_existing=True)
  )
  entry = res.scalar_one()
  return {
    "taskId": entry.task_id,
    "userId": entry.user_id,
    "position": entry.position,
    "addedAt": entry.added_at,
    "taskListId": task.list_id,
    "name": task.name,
    "status": bool(task.status),
    "priority": task.priority,
    "dueDate": task.due_date,
  }


async def reorder(db: AsyncSession, *, user_id: str, list_id: str, orders: list[tuple[str, int]]) -> list[dict]:
  """
  Apply a full permutation of the user's queue for one list.

  `orders` must name every queued task of the list exactly once with the
  positions 1..N. Applying the same permutation twice yields the same state.
  """
  task_ids = [t for t, _ in orders]
  if len(set(task_ids)) != len(task_ids):
    raise Invalid("Each task may appear only once in taskOrders")
  wanted = sorted(p for _, p in orders)
  if wanted != list(range(1, len(orders) + 1)):
    raise Invalid("Positions must form the sequence 1..N")

  async def _op() -> list[dict]:
    res = await db.execute(
      select(QueueEntry.task_id)
      .join(Task, Task.id == QueueEntry.task_id)
      .where(QueueEntry.user_id == user_id, Task.list_id == list_id)
    )
    current = set(res.scalars().all())
    if current != set(task_ids):
      raise Invalid("taskOrders must contain every queued task of the list exactly once")
    for task_id, pos in orders:
      await db.execute(
        update(QueueEntry)
        .where(and_(QueueEntry.user_id == user_id, QueueEntry.task_id == task_id))
        .values(position=int(pos))
        .execution_options(synchronize_session=False)
      )
    await renumber(db, list_id=list_id, user_id=user_id)
    return await positions(db, user_id=user_id, list_id=list_id)

  try:
    return await run_with_retry(db, _op)
  except Invalid:
    await db.rollback()
    raise


async def remove(db: AsyncSession, *, user_id: str, task_id: str) -> list[dict]:
  """Drop one entry and close the gap it leaves. Returns the new positions."""
  res = await db.execute(
    select(Task.list_id)
    .select_from(QueueEntry)
    .join(Task, Task.id == QueueEntry.task_id)
    .where(QueueEntry.user_id == user_id, QueueEntry.task_id == task_id)
  )
  list_id = res.scalar_one_or_none()
  if list_id is None:
    raise NotFound("Task not in queue")

  async def _op() -> list[dict]:
    await db.execute(delete(QueueEntry).where(QueueEntry.user_id == user_id, QueueEntry.task_id == task_id))
    await renumber(db, list_id=list_id, user_id=user_id)
    return await positions(db, user_id=user_id, list_id=list_id)

  return await run_with_retry(db, _op)


async def task_list_of(db: AsyncSession, task_id: str) -> str | None:
  res = await db.execute(select(Task.list_id).where(Task.id == task_id))
  return res.scalar_one_or_none()
