from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from tasksphere.deps import get_db
from tasksphere.log import security_event
from tasksphere.models import User
from tasksphere.rate_limit import rate_limit
from tasksphere.routers.users import user_out
from tasksphere.schemas import AuthOut, LoginIn, RefreshIn, RegisterIn, TokenPairOut
from tasksphere.security import (
  LoginStatus,
  TokenExpired,
  TokenInvalid,
  create_access_token,
  create_refresh_token,
  decode_refresh_token,
  hash_password,
  login_attempts,
  refresh_token_hash,
  refresh_token_matches,
  verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _locked_error(st: LoginStatus) -> HTTPException:
  return HTTPException(
    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
    detail={
      "message": f"Account temporarily locked. Try again in {st.remaining_minutes} minutes.",
      "remainingMinutes": st.remaining_minutes,
    },
  )


def _issue_tokens(u: User) -> tuple[str, str]:
  access = create_access_token(u.id)
  refresh = create_refresh_token(u.id)
  u.refresh_token_hash = refresh_token_hash(refresh)
  return access, refresh


@router.post("/register", response_model=AuthOut, status_code=status.HTTP_201_CREATED, dependencies=[Depends(rate_limit("auth"))])
async def register(payload: RegisterIn, db: AsyncSession = Depends(get_db)) -> AuthOut:
  email = payload.email
  res = await db.execute(select(User.id).where(User.email == email))
  if res.scalar_one_or_none() is not None:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")

  u = User(email=email, name=payload.name, password_hash=await run_in_threadpool(hash_password, payload.password))
  db.add(u)
  try:
    await db.flush()
    access, refresh = _issue_tokens(u)
    await db.commit()
  except IntegrityError:
    await db.rollback()
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")
  logger.info("user registered user_id=%s", u.id)
  return AuthOut(user=user_out(u), token=access, refreshToken=refresh)


@router.post("/login", response_model=AuthOut, dependencies=[Depends(rate_limit("auth"))])
async def login(payload: LoginIn, request: Request, db: AsyncSession = Depends(get_db)) -> AuthOut:
  email = payload.email.strip().lower()
  st = login_attempts.status(email)
  if st.locked:
    raise _locked_error(st)

  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  ok = u is not None and await run_in_threadpool(verify_password, payload.password, u.password_hash)
  if not ok:
    st = login_attempts.record_failure(email)
    security_event("LOGIN_FAILED", request, user_id=u.id if u else None, email=email)
    if st.locked:
      security_event("ACCOUNT_LOCKED", request, user_id=u.id if u else None, email=email)
      raise _locked_error(st)
    raise HTTPException(
      status_code=status.HTTP_401_UNAUTHORIZED,
      detail={"message": "Invalid credentials", "remainingAttempts": st.remaining_attempts},
    )

  login_attempts.reset(email)
  access, refresh = _issue_tokens(u)
  await db.commit()
  return AuthOut(user=user_out(u), token=access, refreshToken=refresh)


@router.post("/refresh", response_model=TokenPairOut, dependencies=[Depends(rate_limit("auth"))])
async def refresh(payload: RefreshIn, request: Request, db: AsyncSession = Depends(get_db)) -> TokenPairOut:
  try:
    claims = decode_refresh_token(payload.refreshToken)
  except TokenExpired:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Refresh token expired")
  except TokenInvalid:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid refresh token")

  res = await db.execute(select(User).where(User.id == str(claims["userId"])))
  u = res.scalar_one_or_none()
  if not u or not refresh_token_matches(payload.refreshToken, u.refresh_token_hash):
    security_event("REFRESH_REUSE", request, user_id=str(claims["userId"]))
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid refresh token")

  access, new_refresh = _issue_tokens(u)
  await db.commit()
  return TokenPairOut(token=access, refreshToken=new_refresh)
