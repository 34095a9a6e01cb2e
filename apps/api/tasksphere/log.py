from __future__ import annotations

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from fastapi import Request

from tasksphere.config import settings

SECURITY_LOGGER_NAME = "tasksphere.security"

_CONTROL_CHARS_RE = re.compile(r"[\n\r\t\x00-\x1F\x7F]")

security_logger = logging.getLogger(SECURITY_LOGGER_NAME)


def sanitize_for_log(value: Any) -> Any:
  """Strip control characters from strings, recursing into dicts and lists."""
  if isinstance(value, str):
    return _CONTROL_CHARS_RE.sub("", value)
  if isinstance(value, dict):
    return {k: sanitize_for_log(v) for k, v in value.items()}
  if isinstance(value, (list, tuple)):
    return [sanitize_for_log(v) for v in value]
  return value


class ControlCharFilter(logging.Filter):
  def filter(self, record: logging.LogRecord) -> bool:
    if isinstance(record.msg, str):
      record.msg = sanitize_for_log(record.msg)
    if isinstance(record.args, tuple):
      record.args = tuple(sanitize_for_log(a) for a in record.args)
    elif isinstance(record.args, dict):
      record.args = sanitize_for_log(record.args)
    return True


def configure_logging() -> None:
  root = logging.getLogger()
  root.setLevel(settings.log_level.upper())
  if not any(getattr(h, "_tasksphere", False) for h in root.handlers):
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    handler.addFilter(ControlCharFilter())
    handler._tasksphere = True  # type: ignore[attr-defined]
    root.addHandler(handler)

  if settings.log_dir and not security_logger.handlers:
    Path(settings.log_dir).mkdir(parents=True, exist_ok=True)
    fh = RotatingFileHandler(Path(settings.log_dir) / "security.log", maxBytes=5 * 1024 * 1024, backupCount=5)
    fh.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(message)s"))
    fh.addFilter(ControlCharFilter())
    security_logger.addHandler(fh)


def request_id_of(request: Request | None) -> str | None:
  if request is None:
    return None
  return getattr(request.state, "request_id", None)


def security_event(
  event_type: str,
  request: Request | None = None,
  *,
  user_id: str | None = None,
  **details: Any,
) -> None:
  ip = request.client.host if request is not None and request.client else None
  clean = sanitize_for_log(details)
  security_logger.warning(
    "security event %s request_id=%s ip=%s user_id=%s %s",
    event_type,
    request_id_of(request),
    ip,
    user_id,
    clean,
    extra={"event_type": event_type, "request_id": request_id_of(request), "client_ip": ip, "user_id": user_id},
  )
