from __future__ import annotations

from fastapi import APIRouter, Body, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tasksphere.deps import get_current_user, get_db, require_list_member
from tasksphere.errors import ServiceError
from tasksphere.models import Task, TaskReminder, User
from tasksphere.reminders.scheduler import reminder_scheduler
from tasksphere.reminders.service import create_reminders, missed_reminders, reminder_out
from tasksphere.schemas import MissedReminderOut, ReminderCreateIn, ReminderOut

router = APIRouter(tags=["reminders"])


async def _member_task(db: AsyncSession, task_id: str, user: User) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id))
  t = res.scalar_one_or_none()
  if not t:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  await require_list_member(t.list_id, user, db)
  return t


@router.post("/tasks/{task_id}/reminders", response_model=list[ReminderOut], status_code=status.HTTP_201_CREATED)
async def add_reminders(
  task_id: str,
  payload: ReminderCreateIn | list[ReminderCreateIn] = Body(...),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[ReminderOut]:
  t = await _member_task(db, task_id, user)
  entries = payload if isinstance(payload, list) else [payload]
  if not entries:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="At least one reminder is required")
  try:
    rows, plan = await create_reminders(db, task=t, user_id=user.id, entries=entries)
    await db.commit()
  except ServiceError:
    await db.rollback()
    raise
  except IntegrityError:
    await db.rollback()
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="A reminder already exists for this time")
  reminder_scheduler.apply(plan)
  return [ReminderOut(**reminder_out(r)) for r in rows]


@router.get("/tasks/{task_id}/reminders", response_model=list[ReminderOut])
async def list_reminders(
  task_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[ReminderOut]:
  await _member_task(db, task_id, user)
  res = await db.execute(
    select(TaskReminder).where(TaskReminder.task_id == task_id).order_by(TaskReminder.reminder_datetime.asc())
  )
  return [ReminderOut(**reminder_out(r)) for r in res.scalars().all()]


@router.delete("/tasks/{task_id}/reminders/{reminder_id}")
async def delete_reminder(
  task_id: str,
  reminder_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  await _member_task(db, task_id, user)
  res = await db.execute(
    select(TaskReminder).where(
      TaskReminder.id == reminder_id,
      TaskReminder.task_id == task_id,
      TaskReminder.user_id == user.id,
    )
  )
  r = res.scalar_one_or_none()
  if not r:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Reminder not found")
  await db.delete(r)
  await db.commit()
  reminder_scheduler.cancel(reminder_id)
  return {"ok": True, "message": "Reminder deleted successfully"}


@router.get("/reminders/missed", response_model=list[MissedReminderOut])
async def list_missed_reminders(
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[MissedReminderOut]:
  return [MissedReminderOut(**item) for item in await missed_reminders(db, user_id=user.id)]
