from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import ValidationError
from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from tasksphere.deps import get_current_user, get_db, is_list_member, require_list_member
from tasksphere.models import Project, QueueEntry, Requester, Task, TaskList, TaskReminder, User, utcnow
from tasksphere.notifications.service import TASK_ASSIGNED, notify_safely
from tasksphere.queue.service import renumber, run_with_retry
from tasksphere.realtime.hub import hub
from tasksphere.reminders.scheduler import SchedulePlan, reminder_scheduler
from tasksphere.reminders.service import cancel_unsent_for_task, recalculate_for_task, unsent_ids_for_task
from tasksphere.schemas import TaskCreateIn, TaskOut, TaskUpdateIn

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tasks"])

# Accepted update keys (camelCase or column name) -> column.
UPDATE_FIELDS: dict[str, str] = {
  "name": "name",
  "description": "description",
  "status": "status",
  "priority": "priority",
  "due_date": "due_date",
  "dueDate": "due_date",
  "estimated_hours": "estimated_hours",
  "estimatedHours": "estimated_hours",
  "project_id": "project_id",
  "projectId": "project_id",
  "requester_id": "requester_id",
  "requesterId": "requester_id",
  "assigned_to": "assigned_to",
  "assignedTo": "assigned_to",
}


def normalize_task_updates(payload: dict[str, Any]) -> dict[str, Any]:
  out: dict[str, Any] = {}
  for key, value in (payload or {}).items():
    column = UPDATE_FIELDS.get(key)
    if column is not None:
      out[column] = value
  return out


def _validation_message(exc: ValidationError) -> str:
  parts = []
  for err in exc.errors():
    loc = ".".join(str(p) for p in err.get("loc", ()))
    parts.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
  return "; ".join(parts)


async def task_rows(
  db: AsyncSession,
  *,
  user_id: str,
  list_id: str | None = None,
  task_id: str | None = None,
) -> list[TaskOut]:
  assignee = aliased(User)
  creator = aliased(User)
  next_reminder = (
    select(func.min(TaskReminder.reminder_datetime))
    .where(TaskReminder.task_id == Task.id, TaskReminder.is_sent.is_(False))
    .correlate(Task)
    .scalar_subquery()
  )
  stmt = (
    select(
      Task,
      Project.name,
      Requester.name,
      assignee.name,
      assignee.email,
      assignee.avatar_url,
      creator.name,
      QueueEntry.position,
      next_reminder,
    )
    .outerjoin(Project, Project.id == Task.project_id)
    .outerjoin(Requester, Requester.id == Task.requester_id)
    .outerjoin(assignee, assignee.id == Task.assigned_to)
    .outerjoin(creator, creator.id == Task.created_by)
    .outerjoin(QueueEntry, and_(QueueEntry.task_id == Task.id, QueueEntry.user_id == user_id))
    .execution_options(populate_existing=True)
  )
  if list_id is not None:
    stmt = stmt.where(Task.list_id == list_id)
  if task_id is not None:
    stmt = stmt.where(Task.id == task_id)
  stmt = stmt.order_by(Task.created_at.desc())
  res = await db.execute(stmt)
  out: list[TaskOut] = []
  for t, project_name, requester_name, a_name, a_email, a_avatar, c_name, position, next_at in res.all():
    out.append(
      TaskOut(
        id=t.id,
        taskListId=t.list_id,
        name=t.name,
        description=t.description,
        status=bool(t.status),
        priority=t.priority,
        dueDate=t.due_date,
        estimatedHours=float(t.estimated_hours) if t.estimated_hours is not None else None,
        projectId=t.project_id,
        projectName=project_name,
        requesterId=t.requester_id,
        requesterName=requester_name,
        assignedTo=t.assigned_to,
        assignedToName=a_name,
        assignedToEmail=a_email,
        assignedToAvatarUrl=a_avatar,
        createdBy=t.created_by,
        createdByName=c_name,
        queuePosition=position,
        nextReminderDatetime=next_at,
        createdAt=t.created_at,
        updatedAt=t.updated_at,
      )
    )
  return out


async def _task_out(db: AsyncSession, *, task_id: str, user_id: str) -> TaskOut:
  rows = await task_rows(db, user_id=user_id, task_id=task_id)
  if not rows:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  return rows[0]


async def _load_task(db: AsyncSession, task_id: str) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id))
  t = res.scalar_one_or_none()
  if not t:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  return t


async def _validate_refs(
  db: AsyncSession,
  *,
  list_id: str,
  project_id: str | None = None,
  requester_id: str | None = None,
  assigned_to: str | None = None,
) -> None:
  if assigned_to and not await is_list_member(list_id, assigned_to, db):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Assigned user must be a member of this task list")
  if project_id:
    res = await db.execute(select(Project.id).where(Project.id == project_id, Project.list_id == list_id))
    if res.scalar_one_or_none() is None:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project does not belong to this task list")
  if requester_id:
    res = await db.execute(select(Requester.id).where(Requester.id == requester_id, Requester.list_id == list_id))
    if res.scalar_one_or_none() is None:
      raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Requester does not belong to this task list")


async def _list_name(db: AsyncSession, list_id: str) -> str:
  res = await db.execute(select(TaskList.name).where(TaskList.id == list_id))
  return res.scalar_one_or_none() or ""


@router.get("/task-lists/{list_id}/tasks", response_model=list[TaskOut])
async def list_tasks(
  list_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[TaskOut]:
  await require_list_member(list_id, user, db)
  return await task_rows(db, user_id=user.id, list_id=list_id)


@router.post("/task-lists/{list_id}/tasks", response_model=TaskOut, status_code=status.HTTP_201_CREATED)
async def create_task(
  list_id: str,
  payload: TaskCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  await require_list_member(list_id, user, db)
  await _validate_refs(
    db,
    list_id=list_id,
    project_id=payload.projectId,
    requester_id=payload.requesterId,
    assigned_to=payload.assignedTo,
  )
  t = Task(
    list_id=list_id,
    name=payload.name,
    description=payload.description,
    priority=payload.priority,
    due_date=payload.dueDate,
    estimated_hours=payload.estimatedHours,
    project_id=payload.projectId,
    requester_id=payload.requesterId,
    assigned_to=payload.assignedTo,
    created_by=user.id,
    status=False,
  )
  db.add(t)
  await db.commit()

  out = await _task_out(db, task_id=t.id, user_id=user.id)
  await hub.emit_to_list(list_id, "taskCreated", out.model_dump())

  if t.assigned_to and t.assigned_to != user.id:
    list_name = await _list_name(db, list_id)
    await notify_safely(
      db,
      user_id=t.assigned_to,
      task_id=t.id,
      list_id=list_id,
      type=TASK_ASSIGNED,
      title="New Task Assigned",
      message=f'You have been assigned to "{t.name}" in {list_name}',
    )
  return out


@router.put("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
  task_id: str,
  payload: dict[str, Any] = Body(...),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskOut:
  t = await _load_task(db, task_id)
  await require_list_member(t.list_id, user, db)

  normalized = normalize_task_updates(payload)
  if not normalized:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No valid fields to update")
  try:
    parsed = TaskUpdateIn.model_validate(normalized)
  except ValidationError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_validation_message(exc))
  values = {k: getattr(parsed, k) for k in parsed.model_fields_set}

  await _validate_refs(
    db,
    list_id=t.list_id,
    project_id=values.get("project_id"),
    requester_id=values.get("requester_id"),
    assigned_to=values.get("assigned_to"),
  )

  old_assignee, old_due, old_status = t.assigned_to, t.due_date, bool(t.status)
  await db.execute(
    update(Task)
    .where(Task.id == task_id)
    .values(**values, updated_at=utcnow())
    .execution_options(synchronize_session=False)
  )

  plan = SchedulePlan()
  completed = values.get("status") is True and not old_status
  if completed:
    plan.extend(await cancel_unsent_for_task(db, task_id=task_id))
  elif "due_date" in values and values["due_date"] != old_due:
    plan.extend(await recalculate_for_task(db, task_id=task_id, due_date=values["due_date"]))
  await db.commit()
  reminder_scheduler.apply(plan)

  out = await _task_out(db, task_id=task_id, user_id=user.id)
  await hub.emit_to_list(out.taskListId, "taskUpdated", out.model_dump())

  new_assignee = values.get("assigned_to")
  if new_assignee and new_assignee != old_assignee and new_assignee != user.id:
    list_name = await _list_name(db, out.taskListId)
    await notify_safely(
      db,
      user_id=new_assignee,
      task_id=task_id,
      list_id=out.taskListId,
      type=TASK_ASSIGNED,
      title="Task Assignment Update",
      message=f'You have been assigned to "{out.name}" in {list_name}',
    )
  return out


@router.delete("/tasks/{task_id}")
async def delete_task(
  task_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  t = await _load_task(db, task_id)
  list_id = t.list_id
  await require_list_member(list_id, user, db)
  pending = await unsent_ids_for_task(db, task_id=task_id)

  async def _op() -> None:
    await db.execute(delete(Task).where(Task.id == task_id).execution_options(synchronize_session=False))
    await renumber(db, list_id=list_id)

  await run_with_retry(db, _op)
  for reminder_id in pending:
    reminder_scheduler.cancel(reminder_id)
  await hub.emit_to_list(list_id, "taskDeleted", {"id": task_id})
  logger.info("task deleted task_id=%s list_id=%s by user_id=%s", task_id, list_id, user.id)
  return {"ok": True, "message": "Task deleted successfully"}
