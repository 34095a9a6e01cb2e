from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasksphere.models import Notification, Task, TaskList
from tasksphere.realtime.hub import hub

logger = logging.getLogger(__name__)

TASK_ASSIGNED = "task_assigned"
TASK_REMINDER = "task_reminder"


def notification_out(n: Notification, *, task_name: str | None = None, list_name: str | None = None) -> dict:
  return {
    "id": n.id,
    "userId": n.user_id,
    "taskId": n.task_id,
    "taskListId": n.list_id,
    "type": n.type,
    "title": n.title,
    "message": n.message,
    "read": bool(n.read),
    "createdAt": n.created_at,
    "taskName": task_name,
    "taskListName": list_name,
  }


async def create_notification(
  db: AsyncSession,
  *,
  user_id: str,
  type: str,
  title: str,
  message: str,
  task_id: str | None = None,
  list_id: str | None = None,
) -> dict:
  """
  Persist a notification and push it to the recipient's room.

  The row is committed before the emit so subscribers only ever see stored
  notifications.
  """
  n = Notification(user_id=user_id, task_id=task_id, list_id=list_id, type=type, title=title, message=message, read=False)
  db.add(n)
  await db.commit()

  list_name = None
  if list_id:
    res = await db.execute(select(TaskList.name).where(TaskList.id == list_id))
    list_name = res.scalar_one_or_none()
  task_name = None
  if task_id:
    res = await db.execute(select(Task.name).where(Task.id == task_id))
    task_name = res.scalar_one_or_none()

  payload = notification_out(n, task_name=task_name, list_name=list_name)
  await hub.emit_to_user(user_id, "newNotification", payload)
  return payload


async def notify_safely(db: AsyncSession, **kwargs) -> dict | None:
  """create_notification for request handlers: failures are logged, never raised."""
  try:
    return await create_notification(db, **kwargs)
  except Exception:
    logger.exception("notification delivery failed type=%s user_id=%s", kwargs.get("type"), kwargs.get("user_id"))
    await db.rollback()
    return None
