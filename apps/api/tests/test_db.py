from __future__ import annotations

from pathlib import Path

from tasksphere import db
from tasksphere.config import settings


def test_connect_args_use_ca_file_for_postgres(monkeypatch) -> None:
  seen: dict = {}

  def _context(cafile=None):
    seen["cafile"] = cafile
    return "tls-context"

  monkeypatch.setattr(db.ssl, "create_default_context", _context)
  monkeypatch.setattr(settings, "database_ca_cert", "/etc/ssl/db-ca.pem")
  monkeypatch.setattr(settings, "database_url", "postgresql+asyncpg://app@db/tasksphere")
  assert db.connect_args() == {"ssl": "tls-context"}
  assert seen["cafile"] == "/etc/ssl/db-ca.pem"

  monkeypatch.setattr(settings, "database_url", "sqlite+aiosqlite:///./local.db")
  assert db.connect_args() == {}


def test_migrations_connect_with_app_tls_settings() -> None:
  env = (Path(__file__).resolve().parents[1] / "alembic" / "env.py").read_text()
  assert "connect_args=connect_args()" in env
