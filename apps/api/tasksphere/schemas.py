from __future__ import annotations

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, EmailStr, Field
from pydantic import field_validator

from tasksphere.security import password_policy_errors


_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TAG_RE = re.compile(r"<[^>]*>")

Priority = Literal["low", "medium", "high", "urgent"]
TimeUnit = Literal["minutes", "hours", "days", "weeks"]


def _parse_dt_utc(value: object) -> object:
  if value is None:
    return None
  if isinstance(value, datetime):
    dt = value
  elif isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if _DATE_ONLY_RE.fullmatch(s):
      dt = datetime.fromisoformat(s)
    else:
      dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
  else:
    return value

  if dt.tzinfo is None:
    return dt.replace(tzinfo=timezone.utc)
  return dt.astimezone(timezone.utc)


def clean_text(value: object) -> object:
  if not isinstance(value, str):
    return value
  return _TAG_RE.sub("", value).strip()


def _check_password(value: str) -> str:
  errors = password_policy_errors(value)
  if errors:
    raise ValueError("; ".join(errors))
  return value


class UserOut(BaseModel):
  id: str
  email: str
  name: str
  avatarUrl: str | None = None
  darkModePreference: bool = False
  createdAt: datetime | None = None


class RegisterIn(BaseModel):
  email: EmailStr
  password: str = Field(max_length=200)
  name: str = Field(min_length=1, max_length=100)

  @field_validator("email")
  @classmethod
  def _lower_email(cls, v: str) -> str:
    return str(v).strip().lower()

  @field_validator("name", mode="before")
  @classmethod
  def _clean_name(cls, v: object) -> object:
    return clean_text(v)

  @field_validator("password")
  @classmethod
  def _password_policy(cls, v: str) -> str:
    return _check_password(v)


class LoginIn(BaseModel):
  email: str = Field(min_length=1, max_length=320)
  password: str = Field(min_length=1, max_length=200)


class RefreshIn(BaseModel):
  refreshToken: str = Field(min_length=1)


class AuthOut(BaseModel):
  user: UserOut
  token: str
  refreshToken: str


class TokenPairOut(BaseModel):
  token: str
  refreshToken: str


class ProfileUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=100)
  avatarUrl: str | None = Field(default=None, max_length=500)
  darkModePreference: bool | None = None

  @field_validator("name", mode="before")
  @classmethod
  def _clean_name(cls, v: object) -> object:
    return clean_text(v)


class PasswordChangeIn(BaseModel):
  currentPassword: str = Field(min_length=1, max_length=200)
  newPassword: str = Field(max_length=200)

  @field_validator("newPassword")
  @classmethod
  def _password_policy(cls, v: str) -> str:
    return _check_password(v)


class TaskListCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=200)
  description: str | None = Field(default=None, max_length=1000)

  @field_validator("name", "description", mode="before")
  @classmethod
  def _clean(cls, v: object) -> object:
    return clean_text(v)


class TaskListJoinIn(BaseModel):
  inviteCode: str = Field(min_length=1, max_length=16)


class TaskListOut(BaseModel):
  id: str
  name: str
  description: str | None = None
  ownerId: str
  ownerName: str | None = None
  inviteCode: str
  role: str | None = None
  memberCount: int = 0
  taskCount: int = 0
  createdAt: datetime


class MemberOut(BaseModel):
  id: str
  email: str
  name: str
  avatarUrl: str | None = None
  role: str
  joinedAt: datetime


class ProjectCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=200)

  @field_validator("name", mode="before")
  @classmethod
  def _clean(cls, v: object) -> object:
    return clean_text(v)


class ProjectOut(BaseModel):
  id: str
  taskListId: str
  name: str
  createdAt: datetime


class RequesterCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=200)
  email: EmailStr | None = None

  @field_validator("name", mode="before")
  @classmethod
  def _clean(cls, v: object) -> object:
    return clean_text(v)

  @field_validator("email", mode="before")
  @classmethod
  def _blank_email(cls, v: object) -> object:
    if isinstance(v, str) and not v.strip():
      return None
    return v


class RequesterOut(BaseModel):
  id: str
  taskListId: str
  name: str
  email: str | None = None
  createdAt: datetime


class TaskCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=500)
  description: str | None = Field(default=None, max_length=2000)
  priority: Priority = "medium"
  dueDate: datetime | None = None
  estimatedHours: Decimal | None = Field(default=None, ge=0, le=Decimal("999.99"))
  projectId: str | None = None
  requesterId: str | None = None
  assignedTo: str | None = None

  @field_validator("name", "description", mode="before")
  @classmethod
  def _clean(cls, v: object) -> object:
    return clean_text(v)

  @field_validator("dueDate", mode="before")
  @classmethod
  def _due_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)


class TaskUpdateIn(BaseModel):
  """Canonical (column-named) update fields; see routers.tasks.normalize_task_updates."""

  name: str | None = Field(default=None, min_length=1, max_length=500)
  description: str | None = Field(default=None, max_length=2000)
  status: bool | None = None
  priority: Priority | None = None
  due_date: datetime | None = None
  estimated_hours: Decimal | None = Field(default=None, ge=0, le=Decimal("999.99"))
  project_id: str | None = None
  requester_id: str | None = None
  assigned_to: str | None = None

  @field_validator("name", "description", mode="before")
  @classmethod
  def _clean(cls, v: object) -> object:
    return clean_text(v)

  @field_validator("due_date", mode="before")
  @classmethod
  def _due_to_utc(cls, v: object) -> object:
    return _parse_dt_utc(v)

  @field_validator("name", "status", "priority")
  @classmethod
  def _not_null(cls, v: Any) -> Any:
    if v is None:
      raise ValueError("may not be null")
    return v


class TaskOut(BaseModel):
  id: str
  taskListId: str
  name: str
  description: str | None = None
  status: bool
  priority: Priority
  dueDate: datetime | None = None
  estimatedHours: float | None = None
  projectId: str | None = None
  projectName: str | None = None
  requesterId: str | None = None
  requesterName: str | None = None
  assignedTo: str | None = None
  assignedToName: str | None = None
  assignedToEmail: str | None = None
  assignedToAvatarUrl: str | None = None
  createdBy: str | None = None
  createdByName: str | None = None
  queuePosition: int | None = None
  nextReminderDatetime: datetime | None = None
  createdAt: datetime
  updatedAt: datetime


class ReminderCreateIn(BaseModel):
  reminderType: Literal["predefined", "custom"] = "predefined"
  timeValue: int = Field(ge=1, le=10000)
  timeUnit: TimeUnit


class ReminderOut(BaseModel):
  id: str
  taskId: str
  userId: str
  reminderType: str
  timeValue: int
  timeUnit: str
  reminderDatetime: datetime
  isSent: bool
  sentAt: datetime | None = None
  createdAt: datetime


class MissedReminderOut(ReminderOut):
  taskName: str
  dueDate: datetime | None = None
  taskListId: str
  taskListName: str


class QueueAddIn(BaseModel):
  taskId: str


class QueueOrderItem(BaseModel):
  taskId: str
  position: int = Field(ge=1)


class QueueReorderIn(BaseModel):
  taskListId: str | None = None
  taskOrders: list[QueueOrderItem] = Field(min_length=1)


class QueueEntryOut(BaseModel):
  taskId: str
  userId: str
  position: int
  addedAt: datetime
  taskListId: str
  name: str
  status: bool
  priority: str
  dueDate: datetime | None = None


class QueuePositionOut(BaseModel):
  taskId: str
  position: int


class QueueRemoveOut(BaseModel):
  message: str
  updatedPositions: list[QueuePositionOut]


class NotificationOut(BaseModel):
  id: str
  userId: str
  taskId: str | None = None
  taskListId: str | None = None
  type: str
  title: str
  message: str
  read: bool
  createdAt: datetime
  taskName: str | None = None
  taskListName: str | None = None


class UnreadCountOut(BaseModel):
  count: int
