from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

_DB_DIR = Path(tempfile.mkdtemp(prefix="tasksphere-"))
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_DB_DIR / 'tasksphere_test.db'}")
os.environ["ENVIRONMENT"] = "development"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"

from tasksphere.config import settings
from tasksphere.db import engine
from tasksphere.main import app
from tasksphere.models import Base
from tasksphere.rate_limit import limiter
from tasksphere.realtime.hub import hub
from tasksphere.reminders.scheduler import reminder_scheduler
from tasksphere.security import login_attempts

PASSWORD = "Str0ng!Pass"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


def _reset_state() -> None:
  limiter.reset_prefix("")
  login_attempts.clear()
  reminder_scheduler.clear()
  hub.clear()


async def _reset_db() -> None:
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
    await conn.run_sync(Base.metadata.create_all)
  await engine.dispose()


@pytest.fixture(autouse=True)
def _clean_between_tests() -> None:
  _reset_state()
  yield
  _reset_state()


@pytest.fixture
async def fresh_db() -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. tasksphere_test)."
    )
  await _reset_db()
  yield
  await engine.dispose()


@pytest.fixture
async def client(fresh_db) -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


async def register(client: AsyncClient, email: str, name: str = "Test User", password: str = PASSWORD) -> dict:
  res = await client.post("/auth/register", json={"email": email, "password": password, "name": name})
  assert res.status_code == 201, res.text
  body = res.json()
  return {
    "user": body["user"],
    "token": body["token"],
    "refreshToken": body["refreshToken"],
    "headers": {"Authorization": f"Bearer {body['token']}"},
  }


async def create_list(client: AsyncClient, headers: dict, name: str = "Team") -> dict:
  res = await client.post("/task-lists", json={"name": name}, headers=headers)
  assert res.status_code == 201, res.text
  return res.json()


async def join_list(client: AsyncClient, headers: dict, invite_code: str) -> dict:
  res = await client.post("/task-lists/join", json={"inviteCode": invite_code}, headers=headers)
  assert res.status_code == 200, res.text
  return res.json()


async def create_task(client: AsyncClient, headers: dict, list_id: str, **fields) -> dict:
  payload = {"name": "Task"}
  payload.update(fields)
  res = await client.post(f"/task-lists/{list_id}/tasks", json=payload, headers=headers)
  assert res.status_code == 201, res.text
  return res.json()


class FakeSocket:
  """Stand-in for a websocket: records everything sent to it."""

  def __init__(self, *, fail: bool = False) -> None:
    self.sent: list[dict] = []
    self.fail = fail

  async def send_json(self, data) -> None:
    if self.fail:
      raise RuntimeError("socket closed")
    self.sent.append(data)

  def events(self, name: str) -> list[dict]:
    return [m["data"] for m in self.sent if m["event"] == name]
