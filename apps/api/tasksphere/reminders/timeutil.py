from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from tasksphere.config import settings


def zone(name: str | None = None) -> tzinfo:
  tz_name = (name or settings.reminder_timezone or "UTC").strip()
  if tz_name.upper() == "UTC":
    return timezone.utc
  return ZoneInfo(tz_name)


def compute_reminder_datetime(due: datetime, value: int, unit: str, *, tz_name: str | None = None) -> datetime:
  """
  Fire time for an offset before `due`.

  minutes/hours subtract elapsed time. days/weeks subtract calendar days in
  the reminder timezone, so the local wall-clock time is kept across DST.
  """
  if due.tzinfo is None:
    due = due.replace(tzinfo=timezone.utc)
  if unit == "minutes":
    return (due - timedelta(minutes=value)).astimezone(timezone.utc)
  if unit == "hours":
    return (due - timedelta(hours=value)).astimezone(timezone.utc)
  if unit == "days":
    days = value
  elif unit == "weeks":
    days = value * 7
  else:
    raise ValueError(f"unknown time unit: {unit}")
  local = due.astimezone(zone(tz_name))
  return (local - relativedelta(days=days)).astimezone(timezone.utc)


def format_due_date(dt: datetime, *, tz_name: str | None = None) -> str:
  """Render like "Jan 1, 10:00 AM" in the reminder timezone."""
  local = dt.astimezone(zone(tz_name))
  hour = local.hour % 12 or 12
  suffix = "AM" if local.hour < 12 else "PM"
  return f"{local:%b} {local.day}, {hour}:{local:%M} {suffix}"
