from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock

import redis
from fastapi import HTTPException, Request, status

from tasksphere.config import settings

logger = logging.getLogger(__name__)


@dataclass
class _Bucket:
  reset_at: float
  count: int


class RateLimiter:
  """
  Fixed-window rate limiter keyed by "<kind>:<ip>".

  Buckets live in process memory unless REDIS_URL is set, in which case
  they are shared through Redis counters with a TTL.
  """

  def __init__(self) -> None:
    self._lock = Lock()
    self._buckets: dict[str, _Bucket] = {}
    self._redis = None
    if settings.redis_url:
      try:
        self._redis = redis.Redis.from_url(settings.redis_url, decode_responses=True)
      except Exception:
        logger.warning("redis unavailable for rate limiting; using in-memory buckets")
        self._redis = None

  def hit(self, key: str, *, limit: int, window_seconds: int) -> tuple[bool, int]:
    """
    Returns (allowed, retry_after_seconds).
    """
    if self._redis is not None:
      try:
        rk = f"rl:{key}"
        pipe = self._redis.pipeline()
        pipe.incr(rk, 1)
        pipe.ttl(rk)
        count, ttl = pipe.execute()
        if int(count) == 1:
          self._redis.expire(rk, int(window_seconds))
          ttl = int(window_seconds)
        retry = max(1, int(ttl)) if int(ttl) > 0 else int(window_seconds)
        if int(count) > int(limit):
          return False, retry
        return True, 0
      except Exception:
        logger.warning("redis rate limit check failed; falling back to in-memory buckets")

    now = time.time()
    with self._lock:
      b = self._buckets.get(key)
      if b is None or now >= b.reset_at:
        self._buckets[key] = _Bucket(reset_at=now + window_seconds, count=1)
        return True, 0
      if b.count >= limit:
        retry = max(1, int(b.reset_at - now))
        return False, retry
      b.count += 1
      return True, 0

  def reset_prefix(self, prefix: str) -> None:
    with self._lock:
      for k in list(self._buckets.keys()):
        if k.startswith(prefix):
          del self._buckets[k]


limiter = RateLimiter()


def _client_ip(request: Request) -> str:
  return request.client.host if request.client else "unknown"


def check_rate_limit(kind: str, request: Request) -> tuple[bool, int]:
  return limiter.hit(
    f"{kind}:{_client_ip(request)}",
    limit=settings.rate_limit_max(kind),
    window_seconds=settings.rate_limit_window_seconds,
  )


def rate_limited_detail(retry_after: int) -> dict:
  return {
    "code": "rate_limited",
    "message": "Too many requests, please try again later.",
    "retryAfterSeconds": retry_after,
  }


def rate_limit(kind: str):
  """Route dependency enforcing the named per-IP limit."""

  async def _dependency(request: Request) -> None:
    allowed, retry_after = check_rate_limit(kind, request)
    if not allowed:
      raise HTTPException(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        detail=rate_limited_detail(retry_after),
        headers={"Retry-After": str(retry_after)},
      )

  return _dependency
