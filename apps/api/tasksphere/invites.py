from __future__ import annotations

import secrets
import string

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasksphere.models import TaskList

INVITE_ALPHABET = string.digits + string.ascii_uppercase
INVITE_CODE_LENGTH = 8
MAX_ATTEMPTS = 10


def generate_invite_code() -> str:
  return "".join(secrets.choice(INVITE_ALPHABET) for _ in range(INVITE_CODE_LENGTH))


def normalize_invite_code(code: str) -> str:
  return (code or "").strip().upper()


async def unique_invite_code(db: AsyncSession) -> str:
  for _ in range(MAX_ATTEMPTS):
    code = generate_invite_code()
    res = await db.execute(select(TaskList.id).where(TaskList.invite_code == code))
    if res.scalar_one_or_none() is None:
      return code
  raise RuntimeError("could not generate a unique invite code")
