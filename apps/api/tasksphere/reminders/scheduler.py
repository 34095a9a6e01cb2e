from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from tasksphere.config import settings
from tasksphere.reminders.timeutil import zone

logger = logging.getLogger(__name__)

FIRE_REMINDER_REF = "tasksphere.reminders.service:fire_reminder"


def reminder_job_id(reminder_id: str) -> str:
  return f"reminder-{reminder_id}"


class ReminderScheduler:
  """
  In-process job scheduler.

  Keeps a map of reminder id -> APScheduler job so a reminder is scheduled at
  most once; rescheduling replaces the previous job. Jobs added before
  `start()` are held by APScheduler as pending and begin running on start.
  """

  def __init__(self) -> None:
    self._scheduler = AsyncIOScheduler(
      timezone=zone(settings.reminder_timezone),
      job_defaults={"coalesce": True, "misfire_grace_time": 300},
    )
    self._jobs: dict[str, Job] = {}

  @property
  def running(self) -> bool:
    return bool(self._scheduler.running)

  def start(self) -> None:
    if not self.running:
      self._scheduler.start()
      logger.info("scheduler started with %s reminder job(s)", len(self._jobs))

  def shutdown(self) -> None:
    if self.running:
      self._scheduler.shutdown(wait=False)

  def schedule(self, reminder_id: str, run_at: datetime) -> None:
    self.cancel(reminder_id)
    job = self._scheduler.add_job(
      FIRE_REMINDER_REF,
      trigger=DateTrigger(run_date=run_at),
      args=[reminder_id],
      id=reminder_job_id(reminder_id),
      replace_existing=True,
    )
    self._jobs[reminder_id] = job
    logger.debug("scheduled reminder %s at %s", reminder_id, run_at.isoformat())

  def cancel(self, reminder_id: str) -> bool:
    """Best-effort removal; a job that already fired is simply forgotten."""
    self._jobs.pop(reminder_id, None)
    try:
      self._scheduler.remove_job(reminder_job_id(reminder_id))
    except JobLookupError:
      return False
    logger.debug("cancelled reminder %s", reminder_id)
    return True

  def forget(self, reminder_id: str) -> None:
    self._jobs.pop(reminder_id, None)

  def is_scheduled(self, reminder_id: str) -> bool:
    return reminder_id in self._jobs

  def scheduled_at(self, reminder_id: str) -> datetime | None:
    job = self._jobs.get(reminder_id)
    if job is None:
      return None
    return getattr(job.trigger, "run_date", None)

  def scheduled_ids(self) -> set[str]:
    return set(self._jobs.keys())

  def apply(self, plan: "SchedulePlan") -> None:
    for reminder_id in plan.cancel:
      self.cancel(reminder_id)
    for reminder_id, run_at in plan.schedule:
      self.schedule(reminder_id, run_at)

  def add_daily(self, func: Callable[..., Any], *, hour: int, minute: int = 0, job_id: str) -> None:
    self._scheduler.add_job(func, trigger=CronTrigger(hour=hour, minute=minute), id=job_id, replace_existing=True)

  def add_interval(self, func: Callable[..., Any], *, hours: int, job_id: str) -> None:
    self._scheduler.add_job(func, trigger=IntervalTrigger(hours=hours), id=job_id, replace_existing=True)

  def clear(self) -> None:
    for reminder_id in list(self._jobs.keys()):
      self.cancel(reminder_id)


class SchedulePlan:
  """Scheduler changes collected inside a transaction and applied after commit."""

  def __init__(self) -> None:
    self.schedule: list[tuple[str, datetime]] = []
    self.cancel: list[str] = []

  def extend(self, other: "SchedulePlan") -> "SchedulePlan":
    self.schedule.extend(other.schedule)
    self.cancel.extend(other.cancel)
    return self

  def __bool__(self) -> bool:
    return bool(self.schedule or self.cancel)


reminder_scheduler = ReminderScheduler()
