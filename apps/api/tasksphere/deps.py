from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasksphere.db import SessionLocal
from tasksphere.log import security_event
from tasksphere.models import TaskList, TaskListMember, User
from tasksphere.security import TokenExpired, TokenInvalid, decode_access_token


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


def bearer_token(request: Request) -> str | None:
  auth = request.headers.get("authorization")
  if auth and auth.lower().startswith("bearer "):
    token = auth.split(" ", 1)[1].strip()
    return token or None
  return None


async def user_from_token(token: str, db: AsyncSession) -> User:
  try:
    payload = decode_access_token(token)
  except TokenExpired:
    raise HTTPException(
      status_code=status.HTTP_403_FORBIDDEN,
      detail={"message": "Token expired", "needsRefresh": True},
    )
  except TokenInvalid:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token")
  res = await db.execute(select(User).where(User.id == str(payload["userId"])))
  u = res.scalar_one_or_none()
  if not u:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token")
  return u


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
  token = bearer_token(request)
  if not token:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token required")
  user = await user_from_token(token, db)
  request.state.user_id = user.id
  return user


async def is_list_member(list_id: str, user_id: str, db: AsyncSession) -> bool:
  res = await db.execute(
    select(TaskListMember.id).where(TaskListMember.list_id == list_id, TaskListMember.user_id == user_id)
  )
  return res.scalar_one_or_none() is not None


async def require_list_member(list_id: str, user: User, db: AsyncSession) -> None:
  if not await is_list_member(list_id, user.id, db):
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


async def require_list_owner(list_id: str, user: User, db: AsyncSession) -> TaskList:
  res = await db.execute(select(TaskList).where(TaskList.id == list_id))
  tl = res.scalar_one_or_none()
  if not tl:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task list not found")
  if tl.owner_id != user.id:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Only the owner can delete this task list")
  return tl


def require_self(user_id: str, user: User, request: Request) -> None:
  if str(user_id) != str(user.id):
    security_event(
      "ACCESS_DENIED",
      request,
      user_id=user.id,
      targetUserId=str(user_id),
      path=request.url.path,
    )
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
