"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
  op.create_table(
    "users",
    sa.Column("id", sa.UUID(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("email", sa.String(255), nullable=False),
    sa.Column("password_hash", sa.String(255), nullable=False),
    sa.Column("name", sa.String(100), nullable=False),
    sa.Column("avatar_url", sa.String(500), nullable=True),
    sa.Column("dark_mode_preference", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("refresh_token_hash", sa.String(128), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
  )
  op.create_index("ix_users_email", "users", ["email"], unique=True)

  op.create_table(
    "task_lists",
    sa.Column("id", sa.UUID(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("name", sa.String(200), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("owner_id", sa.UUID(as_uuid=False), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("invite_code", sa.String(16), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
  )
  op.create_index("ix_task_lists_owner_id", "task_lists", ["owner_id"])
  op.create_index("ix_task_lists_invite_code", "task_lists", ["invite_code"], unique=True)

  op.create_table(
    "task_list_members",
    sa.Column("id", sa.UUID(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("list_id", sa.UUID(as_uuid=False), sa.ForeignKey("task_lists.id", ondelete="CASCADE"), nullable=False),
    sa.Column("user_id", sa.UUID(as_uuid=False), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("role", sa.String(20), nullable=False, server_default="member"),
    sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    sa.UniqueConstraint("list_id", "user_id", name="ux_task_list_members_list_user"),
    sa.CheckConstraint("role IN ('owner', 'member')", name="ck_task_list_members_role"),
  )
  op.create_index("ix_task_list_members_list_id", "task_list_members", ["list_id"])
  op.create_index("ix_task_list_members_user_id", "task_list_members", ["user_id"])

  op.create_table(
    "projects",
    sa.Column("id", sa.UUID(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("list_id", sa.UUID(as_uuid=False), sa.ForeignKey("task_lists.id", ondelete="CASCADE"), nullable=False),
    sa.Column("name", sa.String(200), nullable=False),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
  )
  op.create_index("ix_projects_list_id", "projects", ["list_id"])

  op.create_table(
    "requesters",
    sa.Column("id", sa.UUID(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("list_id", sa.UUID(as_uuid=False), sa.ForeignKey("task_lists.id", ondelete="CASCADE"), nullable=False),
    sa.Column("name", sa.String(200), nullable=False),
    sa.Column("email", sa.String(255), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
  )
  op.create_index("ix_requesters_list_id", "requesters", ["list_id"])

  op.create_table(
    "tasks",
    sa.Column("id", sa.UUID(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("list_id", sa.UUID(as_uuid=False), sa.ForeignKey("task_lists.id", ondelete="CASCADE"), nullable=False),
    sa.Column("name", sa.String(500), nullable=False),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("status", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("priority", sa.String(20), nullable=False, server_default="medium"),
    sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
    sa.Column("estimated_hours", sa.Numeric(5, 2), nullable=True),
    sa.Column("project_id", sa.UUID(as_uuid=False), sa.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True),
    sa.Column("requester_id", sa.UUID(as_uuid=False), sa.ForeignKey("requesters.id", ondelete="SET NULL"), nullable=True),
    sa.Column("assigned_to", sa.UUID(as_uuid=False), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    sa.Column("created_by", sa.UUID(as_uuid=False), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    sa.CheckConstraint("priority IN ('low', 'medium', 'high', 'urgent')", name="ck_tasks_priority"),
    sa.CheckConstraint(
      "estimated_hours IS NULL OR (estimated_hours >= 0 AND estimated_hours <= 999.99)",
      name="ck_tasks_estimated_hours",
    ),
  )
  op.create_index("ix_tasks_list_id", "tasks", ["list_id"])
  op.create_index("ix_tasks_assigned_to", "tasks", ["assigned_to"])
  op.create_index("ix_tasks_due_date", "tasks", ["due_date"])

  op.create_table(
    "user_task_queue",
    sa.Column("user_id", sa.UUID(as_uuid=False), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("task_id", sa.UUID(as_uuid=False), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
    sa.Column("position", sa.Integer(), nullable=False),
    sa.Column("added_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    sa.PrimaryKeyConstraint("user_id", "task_id"),
    sa.CheckConstraint("position >= 1", name="ck_user_task_queue_position"),
  )
  op.create_index("ix_user_task_queue_user_position", "user_task_queue", ["user_id", "position"])

  op.create_table(
    "notifications",
    sa.Column("id", sa.UUID(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("user_id", sa.UUID(as_uuid=False), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("task_id", sa.UUID(as_uuid=False), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=True),
    sa.Column("list_id", sa.UUID(as_uuid=False), sa.ForeignKey("task_lists.id", ondelete="CASCADE"), nullable=True),
    sa.Column("type", sa.String(50), nullable=False),
    sa.Column("title", sa.String(255), nullable=False),
    sa.Column("message", sa.Text(), nullable=False),
    sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
  )
  op.create_index("ix_notifications_user_id", "notifications", ["user_id"])
  op.create_index("ix_notifications_user_read", "notifications", ["user_id", "read"])
  op.create_index("ix_notifications_created_at", "notifications", ["created_at"])

  op.create_table(
    "task_reminders",
    sa.Column("id", sa.UUID(as_uuid=False), primary_key=True, nullable=False),
    sa.Column("task_id", sa.UUID(as_uuid=False), sa.ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False),
    sa.Column("user_id", sa.UUID(as_uuid=False), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    sa.Column("reminder_type", sa.String(20), nullable=False),
    sa.Column("time_value", sa.Integer(), nullable=False),
    sa.Column("time_unit", sa.String(10), nullable=False),
    sa.Column("reminder_datetime", sa.DateTime(timezone=True), nullable=False),
    sa.Column("is_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
    sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    sa.UniqueConstraint("task_id", "user_id", "reminder_datetime", name="ux_task_reminders_task_user_time"),
    sa.CheckConstraint("time_value >= 1", name="ck_task_reminders_time_value"),
    sa.CheckConstraint("reminder_type IN ('predefined', 'custom')", name="ck_task_reminders_type"),
    sa.CheckConstraint("time_unit IN ('minutes', 'hours', 'days', 'weeks')", name="ck_task_reminders_unit"),
  )
  op.create_index("ix_task_reminders_task_id", "task_reminders", ["task_id"])
  op.create_index("ix_task_reminders_user_id", "task_reminders", ["user_id"])
  op.create_index("ix_task_reminders_reminder_datetime", "task_reminders", ["reminder_datetime"])
  op.create_index("ix_task_reminders_is_sent", "task_reminders", ["is_sent"])


def downgrade() -> None:
  op.drop_table("task_reminders")
  op.drop_table("notifications")
  op.drop_table("user_task_queue")
  op.drop_table("tasks")
  op.drop_table("requesters")
  op.drop_table("projects")
  op.drop_table("task_list_members")
  op.drop_table("task_lists")
  op.drop_table("users")
