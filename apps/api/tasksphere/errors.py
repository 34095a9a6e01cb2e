"""Domain errors raised by services and rendered by the app-level handler."""

from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse


class ServiceError(Exception):
  status_code: int = status.HTTP_400_BAD_REQUEST

  def __init__(self, message: str) -> None:
    super().__init__(message)
    self.message = message


class Invalid(ServiceError):
  status_code = status.HTTP_400_BAD_REQUEST


class Conflict(ServiceError):
  status_code = status.HTTP_400_BAD_REQUEST


class NotFound(ServiceError):
  status_code = status.HTTP_404_NOT_FOUND


async def service_error_handler(_: Request, exc: ServiceError) -> JSONResponse:
  return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})
