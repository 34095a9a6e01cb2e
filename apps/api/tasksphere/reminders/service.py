from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tasksphere.db import SessionLocal
from tasksphere.errors import Conflict, Invalid
from tasksphere.models import Task, TaskList, TaskReminder, utcnow
from tasksphere.notifications.service import TASK_REMINDER, create_notification
from tasksphere.reminders.scheduler import SchedulePlan, reminder_scheduler
from tasksphere.reminders.timeutil import compute_reminder_datetime, format_due_date

logger = logging.getLogger(__name__)

MISSED_WINDOW = timedelta(days=7)
PARKED_AT = datetime(1970, 1, 1, tzinfo=timezone.utc)


def reminder_out(r: TaskReminder) -> dict:
  return {
    "id": r.id,
    "taskId": r.task_id,
    "userId": r.user_id,
    "reminderType": r.reminder_type,
    "timeValue": r.time_value,
    "timeUnit": r.time_unit,
    "reminderDatetime": r.reminder_datetime,
    "isSent": bool(r.is_sent),
    "sentAt": r.sent_at,
    "createdAt": r.created_at,
  }


async def create_reminders(
  db: AsyncSession,
  *,
  task: Task,
  user_id: str,
  entries: Iterable,
  now: datetime | None = None,
) -> tuple[list[TaskReminder], SchedulePlan]:
  """
  Validate and stage a batch of reminders for one task.

  Every entry is checked before anything is added, so one bad entry rejects
  the whole batch. The caller commits and then applies the returned plan.
  """
  if task.due_date is None:
    raise Invalid("Cannot set reminders on tasks without a due date")
  now = now or utcnow()

  staged: list[tuple[object, datetime]] = []
  seen: set[datetime] = set()
  for entry in entries:
    fire_at = compute_reminder_datetime(task.due_date, entry.timeValue, entry.timeUnit)
    if fire_at <= now:
      raise Invalid("Reminder time cannot be in the past")
    if fire_at in seen:
      raise Conflict("A reminder already exists for this time")
    res = await db.execute(
      select(TaskReminder.id).where(
        TaskReminder.task_id == task.id,
        TaskReminder.user_id == user_id,
        TaskReminder.reminder_datetime == fire_at,
      )
    )
    if res.scalar_one_or_none() is not None:
      raise Conflict("A reminder already exists for this time")
    seen.add(fire_at)
    staged.append((entry, fire_at))

  plan = SchedulePlan()
  rows: list[TaskReminder] = []
  for entry, fire_at in staged:
    r = TaskReminder(
      task_id=task.id,
      user_id=user_id,
      reminder_type=entry.reminderType,
      time_value=entry.timeValue,
      time_unit=entry.timeUnit,
      reminder_datetime=fire_at,
      is_sent=False,
    )
    db.add(r)
    rows.append(r)
  await db.flush()
  for r in rows:
    plan.schedule.append((r.id, r.reminder_datetime))
  return rows, plan


async def recalculate_for_task(
  db: AsyncSession,
  *,
  task_id: str,
  due_date: datetime | None,
  now: datetime | None = None,
) -> SchedulePlan:
  """
  Re-derive unsent reminders after a due-date change.

  Reminders whose new time is already past are deleted, the rest are moved.
  Two reminders of one user can land on the same time (for example "1 day"
  and "24 hours" once the due date leaves a DST switch); the later one is
  deleted. Sent reminders are kept as history and keep their slot.
  """
  now = now or utcnow()
  plan = SchedulePlan()
  res = await db.execute(
    select(TaskReminder)
    .where(TaskReminder.task_id == task_id)
    .order_by(TaskReminder.created_at, TaskReminder.id)
  )
  rows = res.scalars().all()
  taken: set[tuple[str, datetime]] = {(r.user_id, r.reminder_datetime) for r in rows if r.is_sent}
  moves: list[tuple[TaskReminder, datetime]] = []
  for r in rows:
    if r.is_sent:
      continue
    fire_at = None if due_date is None else compute_reminder_datetime(due_date, r.time_value, r.time_unit)
    if fire_at is None or fire_at <= now or (r.user_id, fire_at) in taken:
      await db.delete(r)
      plan.cancel.append(r.id)
      continue
    taken.add((r.user_id, fire_at))
    moves.append((r, fire_at))
  await db.flush()

  # Rows may trade times with each other, so they pass through distinct
  # placeholder times before taking their new ones.
  changed = [r for r, fire_at in moves if r.reminder_datetime != fire_at]
  if len(changed) > 1:
    for i, r in enumerate(changed):
      r.reminder_datetime = PARKED_AT + timedelta(microseconds=i)
    await db.flush()
  for r, fire_at in moves:
    r.reminder_datetime = fire_at
    plan.schedule.append((r.id, fire_at))
  await db.flush()
  return plan


async def cancel_unsent_for_task(db: AsyncSession, *, task_id: str) -> SchedulePlan:
  """Completion cascade: unsent reminders of a finished task are removed."""
  plan = SchedulePlan()
  res = await db.execute(
    select(TaskReminder.id).where(TaskReminder.task_id == task_id, TaskReminder.is_sent.is_(False))
  )
  plan.cancel.extend(res.scalars().all())
  if plan.cancel:
    await db.execute(
      delete(TaskReminder)
      .where(TaskReminder.task_id == task_id, TaskReminder.is_sent.is_(False))
      .execution_options(synchronize_session=False)
    )
  return plan


async def unsent_ids_for_list(db: AsyncSession, *, list_id: str) -> list[str]:
  res = await db.execute(
    select(TaskReminder.id)
    .join(Task, Task.id == TaskReminder.task_id)
    .where(Task.list_id == list_id, TaskReminder.is_sent.is_(False))
  )
  return list(res.scalars().all())


async def unsent_ids_for_task(db: AsyncSession, *, task_id: str) -> list[str]:
  res = await db.execute(
    select(TaskReminder.id).where(TaskReminder.task_id == task_id, TaskReminder.is_sent.is_(False))
  )
  return list(res.scalars().all())


async def missed_reminders(db: AsyncSession, *, user_id: str, now: datetime | None = None) -> list[dict]:
  now = now or utcnow()
  res = await db.execute(
    select(TaskReminder, Task.name, Task.due_date, Task.list_id, TaskList.name)
    .join(Task, Task.id == TaskReminder.task_id)
    .join(TaskList, TaskList.id == Task.list_id)
    .where(
      TaskReminder.user_id == user_id,
      TaskReminder.is_sent.is_(True),
      TaskReminder.sent_at > now - MISSED_WINDOW,
    )
    .order_by(TaskReminder.sent_at.desc())
  )
  out: list[dict] = []
  for r, task_name, due_date, list_id, list_name in res.all():
    item = reminder_out(r)
    item.update({"taskName": task_name, "dueDate": due_date, "taskListId": list_id, "taskListName": list_name})
    out.append(item)
  return out


async def fire_reminder(reminder_id: str, now: datetime | None = None) -> bool:
  """
  Scheduled callback: notify the reminder's owner, then mark it sent.

  A reminder whose time is still ahead was moved after this job started and
  has a newer job of its own, so it is left alone. If the notification cannot
  be stored the reminder stays unsent. Returns whether a notification was
  delivered.
  """
  now = now or utcnow()
  async with SessionLocal() as db:
    res = await db.execute(
      select(TaskReminder, Task).join(Task, Task.id == TaskReminder.task_id).where(TaskReminder.id == reminder_id)
    )
    row = res.first()
    if row is None:
      reminder_scheduler.forget(reminder_id)
      logger.info("reminder %s no longer exists, skipping", reminder_id)
      return False
    r, task = row
    if r.reminder_datetime > now:
      logger.info("reminder %s is not due until %s, skipping", reminder_id, r.reminder_datetime.isoformat())
      return False
    reminder_scheduler.forget(reminder_id)
    if r.is_sent:
      return False

    due = task.due_date or r.reminder_datetime
    try:
      await create_notification(
        db,
        user_id=r.user_id,
        task_id=task.id,
        list_id=task.list_id,
        type=TASK_REMINDER,
        title="Task Reminder",
        message=f'"{task.name}" starts at {format_due_date(due)}',
      )
    except Exception:
      logger.exception("reminder %s could not be delivered; leaving it unsent", reminder_id)
      await db.rollback()
      return False

    await db.execute(
      update(TaskReminder)
      .where(TaskReminder.id == reminder_id, TaskReminder.is_sent.is_(False))
      .values(is_sent=True, sent_at=now)
      .execution_options(synchronize_session=False)
    )
    await db.commit()
  logger.info("reminder %s fired for user %s", reminder_id, r.user_id)
  return True


async def recover_pending_reminders(now: datetime | None = None) -> int:
  """Schedule every unsent future reminder; past-due ones are left as missed."""
  now = now or utcnow()
  async with SessionLocal() as db:
    res = await db.execute(
      select(TaskReminder.id, TaskReminder.reminder_datetime).where(
        TaskReminder.is_sent.is_(False),
        TaskReminder.reminder_datetime > now,
      )
    )
    pending = res.all()
  for reminder_id, fire_at in pending:
    reminder_scheduler.schedule(reminder_id, fire_at)
  logger.info("recovered %s pending reminder(s)", len(pending))
  return len(pending)
