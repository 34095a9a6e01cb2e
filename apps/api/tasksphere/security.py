from __future__ import annotations

import hashlib
import hmac
import math
import re
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from tasksphere.config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=settings.bcrypt_rounds)

PASSWORD_SPECIAL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


class TokenExpired(Exception):
  pass


class TokenInvalid(Exception):
  pass


def hash_password(password: str) -> str:
  return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
  try:
    return pwd_context.verify(password, password_hash)
  except ValueError:
    return False


def password_policy_errors(password: str) -> list[str]:
  errors: list[str] = []
  if len(password) < 8:
    errors.append("Password must be at least 8 characters long")
  if not re.search(r"[a-z]", password):
    errors.append("Password must contain a lowercase letter")
  if not re.search(r"[A-Z]", password):
    errors.append("Password must contain an uppercase letter")
  if not re.search(r"\d", password):
    errors.append("Password must contain a number")
  if not PASSWORD_SPECIAL_RE.search(password):
    errors.append("Password must contain a special character")
  return errors


def _encode(claims: dict, *, secret: str, expires: timedelta) -> str:
  now = datetime.now(timezone.utc)
  payload = dict(claims)
  payload["iat"] = int(now.timestamp())
  payload["exp"] = int((now + expires).timestamp())
  return jwt.encode(payload, secret, algorithm=settings.jwt_algorithm)


def _decode(token: str, *, secret: str, expected_type: str) -> dict:
  try:
    payload = jwt.decode(token, secret, algorithms=[settings.jwt_algorithm])
  except ExpiredSignatureError as exc:
    raise TokenExpired() from exc
  except JWTError as exc:
    raise TokenInvalid() from exc
  if payload.get("type") != expected_type or not payload.get("userId"):
    raise TokenInvalid()
  return payload


def create_access_token(user_id: str) -> str:
  return _encode(
    {"userId": user_id, "type": "access"},
    secret=settings.jwt_secret,
    expires=timedelta(minutes=settings.access_token_minutes),
  )


def create_refresh_token(user_id: str) -> str:
  return _encode(
    {"userId": user_id, "type": "refresh", "jti": secrets.token_urlsafe(16)},
    secret=settings.jwt_refresh_secret,
    expires=timedelta(days=settings.refresh_token_days),
  )


def decode_access_token(token: str) -> dict:
  return _decode(token, secret=settings.jwt_secret, expected_type="access")


def decode_refresh_token(token: str) -> dict:
  return _decode(token, secret=settings.jwt_refresh_secret, expected_type="refresh")


def refresh_token_hash(token: str) -> str:
  return hmac.new(settings.jwt_refresh_secret.encode("utf-8"), token.encode("utf-8"), hashlib.sha256).hexdigest()


def refresh_token_matches(token: str, stored_hash: str | None) -> bool:
  if not stored_hash:
    return False
  return hmac.compare_digest(refresh_token_hash(token), stored_hash)


@dataclass
class _Attempts:
  count: int
  first_at: float
  locked_until: float | None = None


@dataclass
class LoginStatus:
  locked: bool
  remaining_attempts: int = 0
  remaining_minutes: int = 0


class LoginAttemptTracker:
  """
  In-memory failed-login counter keyed by normalized email.

  A lock guards the map because bcrypt verification runs in the threadpool.
  """

  def __init__(self) -> None:
    self._lock = Lock()
    self._attempts: dict[str, _Attempts] = {}

  @property
  def max_attempts(self) -> int:
    return settings.login_max_attempts

  @property
  def window_seconds(self) -> int:
    return settings.login_window_minutes * 60

  @property
  def lockout_seconds(self) -> int:
    return settings.login_lockout_minutes * 60

  def _locked(self, a: _Attempts, now: float) -> LoginStatus | None:
    if a.locked_until is not None and now < a.locked_until:
      return LoginStatus(locked=True, remaining_minutes=max(1, math.ceil((a.locked_until - now) / 60)))
    return None

  def status(self, email: str, *, now: float | None = None) -> LoginStatus:
    now = time.time() if now is None else now
    with self._lock:
      a = self._attempts.get(email)
      if a is None:
        return LoginStatus(locked=False, remaining_attempts=self.max_attempts)
      locked = self._locked(a, now)
      if locked is not None:
        return locked
      if a.locked_until is not None or now - a.first_at > self.window_seconds:
        del self._attempts[email]
        return LoginStatus(locked=False, remaining_attempts=self.max_attempts)
      return LoginStatus(locked=False, remaining_attempts=max(0, self.max_attempts - a.count))

  def record_failure(self, email: str, *, now: float | None = None) -> LoginStatus:
    now = time.time() if now is None else now
    with self._lock:
      a = self._attempts.get(email)
      if a is not None:
        locked = self._locked(a, now)
        if locked is not None:
          return locked
      if a is None or a.locked_until is not None or now - a.first_at > self.window_seconds:
        a = _Attempts(count=0, first_at=now)
        self._attempts[email] = a
      a.count += 1
      if a.count >= self.max_attempts:
        a.locked_until = now + self.lockout_seconds
        return LoginStatus(locked=True, remaining_minutes=math.ceil(self.lockout_seconds / 60))
      return LoginStatus(locked=False, remaining_attempts=self.max_attempts - a.count)

  def reset(self, email: str) -> None:
    with self._lock:
      self._attempts.pop(email, None)

  def cleanup(self, *, now: float | None = None) -> int:
    now = time.time() if now is None else now
    removed = 0
    with self._lock:
      for email, a in list(self._attempts.items()):
        expired_lock = a.locked_until is not None and now >= a.locked_until
        expired_window = a.locked_until is None and now - a.first_at > self.window_seconds
        if expired_lock or expired_window:
          del self._attempts[email]
          removed += 1
    return removed

  def clear(self) -> None:
    with self._lock:
      self._attempts.clear()


login_attempts = LoginAttemptTracker()
