"""Routes mounted only in development, for exercising the notification path by hand."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasksphere.deps import get_current_user, get_db, require_list_member
from tasksphere.models import Task, User
from tasksphere.notifications.service import TASK_REMINDER, create_notification
from tasksphere.reminders.timeutil import format_due_date

router = APIRouter(prefix="/dev", tags=["dev"])


@router.post("/trigger-notification/{task_id}")
async def trigger_notification(
  task_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  res = await db.execute(select(Task).where(Task.id == task_id))
  t = res.scalar_one_or_none()
  if not t:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  await require_list_member(t.list_id, user, db)
  when = format_due_date(t.due_date) if t.due_date else "no due date"
  return await create_notification(
    db,
    user_id=user.id,
    task_id=t.id,
    list_id=t.list_id,
    type=TASK_REMINDER,
    title="Test Reminder",
    message=f'"{t.name}" starts at {when}',
  )
