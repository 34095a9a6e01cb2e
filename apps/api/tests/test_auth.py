from __future__ import annotations

import time

import pytest
from httpx import AsyncClient
from jose import jwt

from tasksphere.config import settings
from tasksphere.db import SessionLocal
from tasksphere.models import User
from tasksphere.routers import auth as auth_router

from conftest import PASSWORD, register


@pytest.mark.anyio
async def test_register_login_and_profile(client: AsyncClient) -> None:
  reg = await register(client, "Alice@Example.com", name="Alice")
  assert reg["user"]["email"] == "alice@example.com"
  assert reg["user"]["name"] == "Alice"
  assert reg["token"] and reg["refreshToken"]

  dup = await client.post("/auth/register", json={"email": "alice@example.com", "password": PASSWORD, "name": "A2"})
  assert dup.status_code == 400, dup.text
  assert dup.json()["detail"] == "User already exists"

  res = await client.post("/auth/login", json={"email": "ALICE@example.com", "password": PASSWORD})
  assert res.status_code == 200, res.text
  token = res.json()["token"]

  me = await client.get("/user/profile", headers={"Authorization": f"Bearer {token}"})
  assert me.status_code == 200, me.text
  assert me.json()["id"] == reg["user"]["id"]
  assert me.json()["darkModePreference"] is False


@pytest.mark.anyio
async def test_register_rejects_weak_password(client: AsyncClient) -> None:
  res = await client.post("/auth/register", json={"email": "weak@example.com", "password": "password", "name": "W"})
  assert res.status_code == 400, res.text
  assert "uppercase" in res.json()["detail"]


@pytest.mark.anyio
async def test_login_lockout_after_five_failures(client: AsyncClient) -> None:
  await register(client, "bob@example.com", name="Bob")

  for expected_remaining in (4, 3, 2, 1):
    res = await client.post("/auth/login", json={"email": "bob@example.com", "password": "Wrong!Pass1"})
    assert res.status_code == 401, res.text
    assert res.json()["detail"]["remainingAttempts"] == expected_remaining

  res = await client.post("/auth/login", json={"email": "bob@example.com", "password": "Wrong!Pass1"})
  assert res.status_code == 429, res.text
  assert res.json()["detail"]["remainingMinutes"] == settings.login_lockout_minutes

  # Correct password is refused while locked.
  res = await client.post("/auth/login", json={"email": "bob@example.com", "password": PASSWORD})
  assert res.status_code == 429, res.text


@pytest.mark.anyio
async def test_successful_login_resets_failure_count(client: AsyncClient) -> None:
  await register(client, "carol@example.com", name="Carol")
  for _ in range(3):
    res = await client.post("/auth/login", json={"email": "carol@example.com", "password": "Wrong!Pass1"})
    assert res.status_code == 401
  res = await client.post("/auth/login", json={"email": "carol@example.com", "password": PASSWORD})
  assert res.status_code == 200, res.text

  res = await client.post("/auth/login", json={"email": "carol@example.com", "password": "Wrong!Pass1"})
  assert res.status_code == 401
  assert res.json()["detail"]["remainingAttempts"] == settings.login_max_attempts - 1


@pytest.mark.anyio
async def test_refresh_rotates_and_rejects_reuse(client: AsyncClient) -> None:
  reg = await register(client, "dave@example.com", name="Dave")
  old_refresh = reg["refreshToken"]

  res = await client.post("/auth/refresh", json={"refreshToken": old_refresh})
  assert res.status_code == 200, res.text
  new_refresh = res.json()["refreshToken"]
  assert new_refresh != old_refresh
  me = await client.get("/user/profile", headers={"Authorization": f"Bearer {res.json()['token']}"})
  assert me.status_code == 200

  reuse = await client.post("/auth/refresh", json={"refreshToken": old_refresh})
  assert reuse.status_code == 403, reuse.text

  again = await client.post("/auth/refresh", json={"refreshToken": new_refresh})
  assert again.status_code == 200, again.text


@pytest.mark.anyio
async def test_access_token_errors(client: AsyncClient) -> None:
  reg = await register(client, "erin@example.com", name="Erin")

  res = await client.get("/user/profile")
  assert res.status_code == 401
  assert res.json()["detail"] == "Access token required"

  res = await client.get("/user/profile", headers={"Authorization": "Bearer not-a-jwt"})
  assert res.status_code == 403
  assert res.json()["detail"] == "Invalid token"

  # A refresh token is not accepted as an access token.
  res = await client.get("/user/profile", headers={"Authorization": f"Bearer {reg['refreshToken']}"})
  assert res.status_code == 403

  expired = jwt.encode(
    {"userId": reg["user"]["id"], "type": "access", "exp": int(time.time()) - 30},
    settings.jwt_secret,
    algorithm=settings.jwt_algorithm,
  )
  res = await client.get("/user/profile", headers={"Authorization": f"Bearer {expired}"})
  assert res.status_code == 403
  assert res.json()["detail"] == {"message": "Token expired", "needsRefresh": True}


@pytest.mark.anyio
async def test_profile_update_and_password_change(client: AsyncClient) -> None:
  reg = await register(client, "fay@example.com", name="Fay")
  headers = reg["headers"]

  res = await client.put("/user/profile", json={"name": "<b>Fay L</b>", "darkModePreference": True}, headers=headers)
  assert res.status_code == 200, res.text
  assert res.json()["name"] == "Fay L"
  assert res.json()["darkModePreference"] is True

  bad = await client.put(
    "/user/password", json={"currentPassword": "Wrong!Pass1", "newPassword": "N3w!Password"}, headers=headers
  )
  assert bad.status_code == 400

  ok = await client.put(
    "/user/password", json={"currentPassword": PASSWORD, "newPassword": "N3w!Password"}, headers=headers
  )
  assert ok.status_code == 200, ok.text

  # Changing the password invalidates the outstanding refresh token.
  res = await client.post("/auth/refresh", json={"refreshToken": reg["refreshToken"]})
  assert res.status_code == 403

  res = await client.post("/auth/login", json={"email": "fay@example.com", "password": "N3w!Password"})
  assert res.status_code == 200, res.text


@pytest.mark.anyio
async def test_register_race_on_same_email_is_rejected(client: AsyncClient, monkeypatch) -> None:
  async def _hash_while_other_request_registers(fn, *args):
    async with SessionLocal() as other:
      other.add(User(email="race@example.com", name="First", password_hash="x"))
      await other.commit()
    return fn(*args)

  monkeypatch.setattr(auth_router, "run_in_threadpool", _hash_while_other_request_registers)
  res = await client.post("/auth/register", json={"email": "race@example.com", "password": PASSWORD, "name": "Second"})
  assert res.status_code == 400, res.text
  assert res.json()["detail"] == "User already exists"
