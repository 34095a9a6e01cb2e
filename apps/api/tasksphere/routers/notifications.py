from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tasksphere.deps import get_current_user, get_db
from tasksphere.models import Notification, Task, TaskList, User
from tasksphere.notifications.service import notification_out
from tasksphere.schemas import NotificationOut, UnreadCountOut

router = APIRouter(prefix="/notifications", tags=["notifications"])

LIST_LIMIT = 50


@router.get("", response_model=list[NotificationOut])
async def list_notifications(
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[dict]:
  res = await db.execute(
    select(Notification, Task.name, TaskList.name)
    .outerjoin(Task, Task.id == Notification.task_id)
    .outerjoin(TaskList, TaskList.id == Notification.list_id)
    .where(Notification.user_id == user.id)
    .order_by(Notification.created_at.desc())
    .limit(LIST_LIMIT)
  )
  return [notification_out(n, task_name=task_name, list_name=list_name) for n, task_name, list_name in res.all()]


@router.get("/unread-count", response_model=UnreadCountOut)
async def unread_count(
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> UnreadCountOut:
  res = await db.execute(
    select(func.count(Notification.id)).where(Notification.user_id == user.id, Notification.read.is_(False))
  )
  return UnreadCountOut(count=int(res.scalar_one() or 0))


@router.put("/mark-all-read")
async def mark_all_read(
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  await db.execute(
    update(Notification)
    .where(Notification.user_id == user.id, Notification.read.is_(False))
    .values(read=True)
    .execution_options(synchronize_session=False)
  )
  await db.commit()
  return {"ok": True}


@router.put("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
  notification_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  res = await db.execute(
    select(Notification).where(Notification.id == notification_id, Notification.user_id == user.id)
  )
  n = res.scalar_one_or_none()
  if not n:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
  n.read = True
  await db.commit()
  return notification_out(n)


@router.delete("/clear-all")
async def clear_all(
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  res = await db.execute(
    delete(Notification).where(Notification.user_id == user.id).execution_options(synchronize_session=False)
  )
  await db.commit()
  return {"ok": True, "deleted": int(res.rowcount or 0)}


@router.delete("/{notification_id}")
async def delete_notification(
  notification_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  res = await db.execute(
    delete(Notification)
    .where(Notification.id == notification_id, Notification.user_id == user.id)
    .execution_options(synchronize_session=False)
  )
  if not res.rowcount:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
  await db.commit()
  return {"ok": True}
