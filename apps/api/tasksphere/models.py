from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
  Boolean,
  CheckConstraint,
  DateTime,
  ForeignKey,
  Index,
  Integer,
  Numeric,
  String,
  Text,
  TypeDecorator,
  UniqueConstraint,
  Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def _uuid() -> str:
  return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
  """Timestamp stored as UTC and always returned timezone-aware.

  SQLite has no timezone support, so values are written there as naive UTC and
  re-tagged on the way out.
  """

  impl = DateTime(timezone=True)
  cache_ok = True

  def process_bind_param(self, value, dialect):
    if value is None:
      return None
    if value.tzinfo is None:
      value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    if dialect.name == "sqlite":
      return value.replace(tzinfo=None)
    return value

  def process_result_value(self, value, dialect):
    if value is None:
      return None
    if value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


ID = Uuid(as_uuid=False)


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(ID, primary_key=True, default=_uuid)
  email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
  password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
  name: Mapped[str] = mapped_column(String(100), nullable=False)
  avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
  dark_mode_preference: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  refresh_token_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class TaskList(Base):
  __tablename__ = "task_lists"

  id: Mapped[str] = mapped_column(ID, primary_key=True, default=_uuid)
  name: Mapped[str] = mapped_column(String(200), nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  owner_id: Mapped[str] = mapped_column(ID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
  invite_code: Mapped[str] = mapped_column(String(16), nullable=False, unique=True, index=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class TaskListMember(Base):
  __tablename__ = "task_list_members"
  __table_args__ = (
    UniqueConstraint("list_id", "user_id", name="ux_task_list_members_list_user"),
    CheckConstraint("role IN ('owner', 'member')", name="ck_task_list_members_role"),
  )

  id: Mapped[str] = mapped_column(ID, primary_key=True, default=_uuid)
  list_id: Mapped[str] = mapped_column(ID, ForeignKey("task_lists.id", ondelete="CASCADE"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(ID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
  role: Mapped[str] = mapped_column(String(20), nullable=False, default="member")  # owner | member
  joined_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Project(Base):
  __tablename__ = "projects"

  id: Mapped[str] = mapped_column(ID, primary_key=True, default=_uuid)
  list_id: Mapped[str] = mapped_column(ID, ForeignKey("task_lists.id", ondelete="CASCADE"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String(200), nullable=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Requester(Base):
  __tablename__ = "requesters"

  id: Mapped[str] = mapped_column(ID, primary_key=True, default=_uuid)
  list_id: Mapped[str] = mapped_column(ID, ForeignKey("task_lists.id", ondelete="CASCADE"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String(200), nullable=False)
  email: Mapped[str | None] = mapped_column(String(255), nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Task(Base):
  __tablename__ = "tasks"
  __table_args__ = (
    CheckConstraint("priority IN ('low', 'medium', 'high', 'urgent')", name="ck_tasks_priority"),
    CheckConstraint("estimated_hours IS NULL OR (estimated_hours >= 0 AND estimated_hours <= 999.99)", name="ck_tasks_estimated_hours"),
    Index("ix_tasks_due_date", "due_date"),
  )

  id: Mapped[str] = mapped_column(ID, primary_key=True, default=_uuid)
  list_id: Mapped[str] = mapped_column(ID, ForeignKey("task_lists.id", ondelete="CASCADE"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String(500), nullable=False)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  priority: Mapped[str] = mapped_column(String(20), nullable=False, default="medium")
  due_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
  estimated_hours: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
  project_id: Mapped[str | None] = mapped_column(ID, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
  requester_id: Mapped[str | None] = mapped_column(ID, ForeignKey("requesters.id", ondelete="SET NULL"), nullable=True)
  assigned_to: Mapped[str | None] = mapped_column(ID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
  created_by: Mapped[str | None] = mapped_column(ID, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class QueueEntry(Base):
  __tablename__ = "user_task_queue"
  __table_args__ = (
    CheckConstraint("position >= 1", name="ck_user_task_queue_position"),
    Index("ix_user_task_queue_user_position", "user_id", "position"),
  )

  user_id: Mapped[str] = mapped_column(ID, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
  task_id: Mapped[str] = mapped_column(ID, ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
  position: Mapped[int] = mapped_column(Integer, nullable=False)
  added_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class Notification(Base):
  __tablename__ = "notifications"
  __table_args__ = (
    Index("ix_notifications_user_read", "user_id", "read"),
    Index("ix_notifications_created_at", "created_at"),
  )

  id: Mapped[str] = mapped_column(ID, primary_key=True, default=_uuid)
  user_id: Mapped[str] = mapped_column(ID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
  task_id: Mapped[str | None] = mapped_column(ID, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True)
  list_id: Mapped[str | None] = mapped_column(ID, ForeignKey("task_lists.id", ondelete="CASCADE"), nullable=True)
  type: Mapped[str] = mapped_column(String(50), nullable=False)  # task_assigned | task_reminder | ...
  title: Mapped[str] = mapped_column(String(255), nullable=False)
  message: Mapped[str] = mapped_column(Text, nullable=False)
  read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class TaskReminder(Base):
  __tablename__ = "task_reminders"
  __table_args__ = (
    UniqueConstraint("task_id", "user_id", "reminder_datetime", name="ux_task_reminders_task_user_time"),
    CheckConstraint("time_value >= 1", name="ck_task_reminders_time_value"),
    CheckConstraint("reminder_type IN ('predefined', 'custom')", name="ck_task_reminders_type"),
    CheckConstraint("time_unit IN ('minutes', 'hours', 'days', 'weeks')", name="ck_task_reminders_unit"),
  )

  id: Mapped[str] = mapped_column(ID, primary_key=True, default=_uuid)
  task_id: Mapped[str] = mapped_column(ID, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(ID, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
  reminder_type: Mapped[str] = mapped_column(String(20), nullable=False)
  time_value: Mapped[int] = mapped_column(Integer, nullable=False)
  time_unit: Mapped[str] = mapped_column(String(10), nullable=False)
  reminder_datetime: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
  is_sent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
  sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
