from __future__ import annotations

import logging
import ssl

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tasksphere.config import settings

logger = logging.getLogger(__name__)


def connect_args() -> dict:
  url = settings.database_url
  if url.startswith("postgresql") and settings.database_ca_cert:
    ctx = ssl.create_default_context(cafile=settings.database_ca_cert)
    return {"ssl": ctx}
  return {}


engine = create_async_engine(settings.database_url, pool_pre_ping=True, connect_args=connect_args())

SessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


if engine.dialect.name == "sqlite":

  @event.listens_for(engine.sync_engine, "connect")
  def _sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


async def keepalive() -> None:
  async with SessionLocal() as db:
    await db.execute(text("SELECT 1"))
  logger.info("database keep-alive ok")


async def init_models() -> None:
  from tasksphere.models import Base

  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
