from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from time import monotonic

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from tasksphere.config import settings
from tasksphere.db import SessionLocal, engine, init_models, keepalive
from tasksphere.errors import ServiceError, service_error_handler
from tasksphere.log import configure_logging, sanitize_for_log
from tasksphere.rate_limit import check_rate_limit, rate_limited_detail
from tasksphere.realtime.socket import router as realtime_router
from tasksphere.reminders.scheduler import reminder_scheduler
from tasksphere.reminders.service import recover_pending_reminders
from tasksphere.routers.auth import router as auth_router
from tasksphere.routers.dev import router as dev_router
from tasksphere.routers.notifications import router as notifications_router
from tasksphere.routers.projects import router as projects_router
from tasksphere.routers.queue import router as queue_router
from tasksphere.routers.reminders import router as reminders_router
from tasksphere.routers.requesters import router as requesters_router
from tasksphere.routers.task_lists import router as task_lists_router
from tasksphere.routers.tasks import router as tasks_router
from tasksphere.routers.users import router as users_router
from tasksphere.security import login_attempts

logger = logging.getLogger(__name__)
access_logger = logging.getLogger("tasksphere.access")

_PLACEHOLDER_SECRETS = {"dev-access-secret-change-me", "dev-refresh-secret-change-me", ""}
_UNLIMITED_PATHS = {"/health", "/health/db"}


def _check_secrets() -> None:
  if settings.environment.strip().lower() != "production":
    return
  if settings.jwt_secret.strip() in _PLACEHOLDER_SECRETS or settings.jwt_refresh_secret.strip() in _PLACEHOLDER_SECRETS:
    raise RuntimeError("JWT_SECRET and JWT_REFRESH_SECRET are required and must not be placeholders")
  if settings.jwt_secret == settings.jwt_refresh_secret:
    raise RuntimeError("JWT_SECRET and JWT_REFRESH_SECRET must differ")


@asynccontextmanager
async def lifespan(_: FastAPI):
  configure_logging()
  _check_secrets()
  if settings.db_create_all:
    await init_models()
  if settings.scheduler_enabled:
    await recover_pending_reminders()
    reminder_scheduler.add_daily(keepalive, hour=settings.keepalive_hour, job_id="db-keepalive")
    reminder_scheduler.add_interval(login_attempts.cleanup, hours=1, job_id="login-attempts-cleanup")
    reminder_scheduler.start()
  logger.info("tasksphere api started environment=%s", settings.environment)
  yield
  reminder_scheduler.shutdown()
  await engine.dispose()


app = FastAPI(
  title="TaskSphere API",
  version=settings.app_version,
  lifespan=lifespan,
  docs_url="/docs" if settings.api_docs_enabled else None,
  redoc_url="/redoc" if settings.api_docs_enabled else None,
  openapi_url="/openapi.json" if settings.api_docs_enabled else None,
)

app.add_exception_handler(ServiceError, service_error_handler)


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(_, exc: RequestValidationError) -> JSONResponse:
  parts = []
  for err in exc.errors():
    loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
    msg = str(err.get("msg", "Invalid value"))
    parts.append(f"{'.'.join(loc)}: {msg}" if loc else msg)
  return JSONResponse(status_code=400, content={"detail": "; ".join(parts) or "Invalid request"})


@app.exception_handler(Exception)
async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
  logger.exception("unhandled error request_id=%s path=%s", getattr(request.state, "request_id", None), request.url.path)
  return JSONResponse(status_code=500, content={"detail": "Internal server error"})


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(users_router)
app.include_router(task_lists_router)
app.include_router(tasks_router)
app.include_router(reminders_router)
app.include_router(projects_router)
app.include_router(requesters_router)
app.include_router(queue_router)
app.include_router(notifications_router)
app.include_router(realtime_router)
if settings.is_development():
  app.include_router(dev_router)


@app.middleware("http")
async def _request_middleware(request: Request, call_next):
  request_id = sanitize_for_log(request.headers.get("x-request-id") or uuid.uuid4().hex)[:64]
  request.state.request_id = request_id
  start = monotonic()

  response = None
  if request.url.path not in _UNLIMITED_PATHS:
    allowed, retry_after = check_rate_limit("general", request)
    if not allowed:
      response = JSONResponse(
        status_code=429,
        content={"detail": rate_limited_detail(retry_after)},
        headers={"Retry-After": str(retry_after)},
      )
  if response is None:
    try:
      response = await asyncio.wait_for(call_next(request), timeout=settings.request_timeout_seconds)
    except asyncio.TimeoutError:
      logger.warning("request timed out request_id=%s path=%s", request_id, request.url.path)
      response = JSONResponse(status_code=503, content={"detail": "Request timeout"})

  elapsed_ms = (monotonic() - start) * 1000.0
  response.headers["X-Request-Id"] = request_id
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  response.headers.setdefault("X-Frame-Options", "DENY")
  response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
  response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
  access_logger.info(
    "%s %s %s %.1fms request_id=%s",
    request.method,
    request.url.path,
    response.status_code,
    elapsed_ms,
    request_id,
  )
  return response


@app.get("/health")
async def health() -> dict:
  return {"ok": True, "version": settings.app_version}


@app.get("/health/db")
async def health_db() -> dict:
  async with SessionLocal() as db:
    await db.execute(text("SELECT 1"))
  return {"ok": True}
