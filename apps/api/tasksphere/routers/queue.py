from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasksphere.deps import get_current_user, get_db, require_list_member, require_self
from tasksphere.models import Task, User
from tasksphere.queue import service as queue_service
from tasksphere.rate_limit import rate_limit
from tasksphere.schemas import QueueAddIn, QueueEntryOut, QueueRemoveOut, QueueReorderIn, QueuePositionOut

router = APIRouter(prefix="/users/{user_id}/queue", tags=["queue"], dependencies=[Depends(rate_limit("queue"))])


@router.get("", response_model=list[QueueEntryOut])
async def get_queue(
  user_id: str,
  request: Request,
  taskListId: str | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[QueueEntryOut]:
  require_self(user_id, user, request)
  if taskListId:
    await require_list_member(taskListId, user, db)
  rows = await queue_service.list_queue(db, user_id=user.id, list_id=taskListId or None)
  return [QueueEntryOut(**r) for r in rows]


@router.post("", response_model=QueueEntryOut, status_code=status.HTTP_201_CREATED)
async def add_to_queue(
  user_id: str,
  payload: QueueAddIn,
  request: Request,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> QueueEntryOut:
  require_self(user_id, user, request)
  res = await db.execute(select(Task).where(Task.id == payload.taskId))
  t = res.scalar_one_or_none()
  if not t:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  await require_list_member(t.list_id, user, db)
  return QueueEntryOut(**await queue_service.append(db, user_id=user.id, task=t))


@router.put("/reorder", response_model=list[QueuePositionOut])
async def reorder_queue(
  user_id: str,
  payload: QueueReorderIn,
  request: Request,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[QueuePositionOut]:
  require_self(user_id, user, request)
  task_ids = [o.taskId for o in payload.taskOrders]
  res = await db.execute(select(Task.id, Task.list_id).where(Task.id.in_(task_ids)))
  lists = {tid: lid for tid, lid in res.all()}
  if len(lists) != len(set(task_ids)):
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
  list_ids = set(lists.values())
  if payload.taskListId:
    list_ids.add(payload.taskListId)
  if len(list_ids) != 1:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="All tasks must belong to the same task list")
  list_id = list_ids.pop()
  await require_list_member(list_id, user, db)

  result = await queue_service.reorder(
    db,
    user_id=user.id,
    list_id=list_id,
    orders=[(o.taskId, o.position) for o in payload.taskOrders],
  )
  return [QueuePositionOut(**p) for p in result]


@router.delete("/{task_id}", response_model=QueueRemoveOut)
async def remove_from_queue(
  user_id: str,
  task_id: str,
  request: Request,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> QueueRemoveOut:
  require_self(user_id, user, request)
  list_id = await queue_service.task_list_of(db, task_id)
  if list_id is None:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not in queue")
  await require_list_member(list_id, user, db)
  updated = await queue_service.remove(db, user_id=user.id, task_id=task_id)
  return QueueRemoveOut(
    message="Task removed from queue",
    updatedPositions=[QueuePositionOut(**p) for p in updated],
  )
