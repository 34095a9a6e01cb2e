from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from tasksphere.deps import get_current_user, get_db
from tasksphere.log import security_event
from tasksphere.models import User
from tasksphere.schemas import PasswordChangeIn, ProfileUpdateIn, UserOut
from tasksphere.security import hash_password, verify_password

router = APIRouter(prefix="/user", tags=["users"])


def user_out(u: User) -> UserOut:
  return UserOut(
    id=u.id,
    email=u.email,
    name=u.name,
    avatarUrl=u.avatar_url,
    darkModePreference=bool(u.dark_mode_preference),
    createdAt=u.created_at,
  )


@router.get("/profile", response_model=UserOut)
async def get_profile(user: User = Depends(get_current_user)) -> UserOut:
  return user_out(user)


@router.put("/profile", response_model=UserOut)
async def update_profile(
  payload: ProfileUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> UserOut:
  fields_set = payload.model_fields_set
  if "name" in fields_set and payload.name is not None:
    user.name = payload.name
  if "avatarUrl" in fields_set:
    user.avatar_url = payload.avatarUrl or None
  if "darkModePreference" in fields_set and payload.darkModePreference is not None:
    user.dark_mode_preference = payload.darkModePreference
  await db.commit()
  return user_out(user)


@router.put("/password")
async def change_password(
  payload: PasswordChangeIn,
  request: Request,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  if not await run_in_threadpool(verify_password, payload.currentPassword, user.password_hash):
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Current password is incorrect")
  user.password_hash = await run_in_threadpool(hash_password, payload.newPassword)
  user.refresh_token_hash = None
  await db.commit()
  security_event("PASSWORD_CHANGED", request, user_id=user.id)
  return {"ok": True}
