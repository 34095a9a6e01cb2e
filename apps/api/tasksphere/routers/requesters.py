from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasksphere.deps import get_current_user, get_db, require_list_member
from tasksphere.models import Requester, User
from tasksphere.schemas import RequesterCreateIn, RequesterOut

router = APIRouter(tags=["requesters"])


def _requester_out(r: Requester) -> RequesterOut:
  return RequesterOut(id=r.id, taskListId=r.list_id, name=r.name, email=r.email, createdAt=r.created_at)


@router.get("/task-lists/{list_id}/requesters", response_model=list[RequesterOut])
async def list_requesters(
  list_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[RequesterOut]:
  await require_list_member(list_id, user, db)
  res = await db.execute(select(Requester).where(Requester.list_id == list_id).order_by(Requester.name.asc()))
  return [_requester_out(r) for r in res.scalars().all()]


@router.post("/task-lists/{list_id}/requesters", response_model=RequesterOut, status_code=status.HTTP_201_CREATED)
async def create_requester(
  list_id: str,
  payload: RequesterCreateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> RequesterOut:
  await require_list_member(list_id, user, db)
  r = Requester(list_id=list_id, name=payload.name, email=str(payload.email).lower() if payload.email else None)
  db.add(r)
  await db.commit()
  return _requester_out(r)


@router.delete("/requesters/{requester_id}")
async def delete_requester(
  requester_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  res = await db.execute(select(Requester).where(Requester.id == requester_id))
  r = res.scalar_one_or_none()
  if not r:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Requester not found")
  await require_list_member(r.list_id, user, db)
  await db.delete(r)
  await db.commit()
  return {"ok": True}
