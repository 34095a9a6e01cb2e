from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tasksphere.deps import get_current_user, get_db, require_list_member, require_list_owner
from tasksphere.invites import MAX_ATTEMPTS, normalize_invite_code, unique_invite_code
from tasksphere.log import security_event
from tasksphere.models import Task, TaskList, TaskListMember, User
from tasksphere.reminders.scheduler import reminder_scheduler
from tasksphere.reminders.service import unsent_ids_for_list
from tasksphere.schemas import MemberOut, TaskListCreateIn, TaskListJoinIn, TaskListOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/task-lists", tags=["task-lists"])


def _list_out(tl: TaskList, *, owner_name: str | None, role: str | None, member_count: int, task_count: int) -> TaskListOut:
  return TaskListOut(
    id=tl.id,
    name=tl.name,
    description=tl.description,
    ownerId=tl.owner_id,
    ownerName=owner_name,
    inviteCode=tl.invite_code,
    role=role,
    memberCount=int(member_count or 0),
    taskCount=int(task_count or 0),
    createdAt=tl.created_at,
  )


def _counts_query():
  member_count = (
    select(func.count(TaskListMember.id)).where(TaskListMember.list_id == TaskList.id).correlate(TaskList).scalar_subquery()
  )
  task_count = select(func.count(Task.id)).where(Task.list_id == TaskList.id).correlate(TaskList).scalar_subquery()
  return member_count, task_count


async def _load_list_out(db: AsyncSession, list_id: str, user_id: str) -> TaskListOut:
  member_count, task_count = _counts_query()
  res = await db.execute(
    select(TaskList, User.name, TaskListMember.role, member_count, task_count)
    .join(User, User.id == TaskList.owner_id)
    .outerjoin(TaskListMember, (TaskListMember.list_id == TaskList.id) & (TaskListMember.user_id == user_id))
    .where(TaskList.id == list_id)
  )
  tl, owner_name, role, members, tasks = res.one()
  return _list_out(tl, owner_name=owner_name, role=role, member_count=members, task_count=tasks)


@router.get("", response_model=list[TaskListOut])
async def list_task_lists(
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[TaskListOut]:
  member_count, task_count = _counts_query()
  res = await db.execute(
    select(TaskList, User.name, TaskListMember.role, member_count, task_count)
    .join(TaskListMember, TaskListMember.list_id == TaskList.id)
    .join(User, User.id == TaskList.owner_id)
    .where(TaskListMember.user_id == user.id)
    .order_by(TaskList.created_at.desc())
  )
  return [
    _list_out(tl, owner_name=owner_name, role=role, member_count=members, task_count=tasks)
    for tl, owner_name, role, members, tasks in res.all()
  ]


@router.post("", response_model=TaskListOut, status_code=status.HTTP_201_CREATED)
async def create_task_list(
  payload: TaskListCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskListOut:
  user_id = user.id
  # A code can still be taken between the lookup and the insert.
  for _ in range(MAX_ATTEMPTS):
    tl = TaskList(
      name=payload.name,
      description=payload.description or None,
      owner_id=user_id,
      invite_code=await unique_invite_code(db),
    )
    db.add(tl)
    try:
      await db.flush()
      db.add(TaskListMember(list_id=tl.id, user_id=user_id, role="owner"))
      await db.commit()
    except IntegrityError:
      await db.rollback()
      logger.warning("invite code collided on insert, retrying")
      continue
    break
  else:
    raise RuntimeError("could not generate a unique invite code")
  logger.info("task list created list_id=%s owner_id=%s", tl.id, user_id)
  return await _load_list_out(db, tl.id, user_id)


@router.post("/join", response_model=TaskListOut)
async def join_task_list(
  payload: TaskListJoinIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskListOut:
  code = normalize_invite_code(payload.inviteCode)
  res = await db.execute(select(TaskList).where(TaskList.invite_code == code))
  tl = res.scalar_one_or_none()
  if not tl:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid invite code")
  mres = await db.execute(
    select(TaskListMember.id).where(TaskListMember.list_id == tl.id, TaskListMember.user_id == user.id)
  )
  if mres.scalar_one_or_none() is not None:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Already a member of this task list")
  db.add(TaskListMember(list_id=tl.id, user_id=user.id, role="member"))
  try:
    await db.commit()
  except IntegrityError:
    await db.rollback()
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Already a member of this task list")
  logger.info("user joined task list list_id=%s user_id=%s", tl.id, user.id)
  return await _load_list_out(db, tl.id, user.id)


@router.delete("/{list_id}")
async def delete_task_list(
  list_id: str,
  request: Request,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  tl = await require_list_owner(list_id, user, db)
  pending = await unsent_ids_for_list(db, list_id=list_id)
  await db.execute(delete(TaskList).where(TaskList.id == tl.id))
  await db.commit()
  for reminder_id in pending:
    reminder_scheduler.cancel(reminder_id)
  security_event("TASK_LIST_DELETED", request, user_id=user.id, listId=list_id, listName=tl.name)
  return {"ok": True, "message": "Task list deleted successfully"}


@router.get("/{list_id}/members", response_model=list[MemberOut])
async def list_members(
  list_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[MemberOut]:
  await require_list_member(list_id, user, db)
  res = await db.execute(
    select(User, TaskListMember.role, TaskListMember.joined_at)
    .join(TaskListMember, TaskListMember.user_id == User.id)
    .where(TaskListMember.list_id == list_id)
    .order_by(TaskListMember.joined_at.asc())
  )
  return [
    MemberOut(id=u.id, email=u.email, name=u.name, avatarUrl=u.avatar_url, role=role, joinedAt=joined_at)
    for u, role, joined_at in res.all()
  ]
