from __future__ import annotations

import logging
from typing import Any, Protocol

from fastapi.encoders import jsonable_encoder

logger = logging.getLogger(__name__)


class Connection(Protocol):
  async def send_json(self, data: Any) -> None: ...


def user_room(user_id: str) -> str:
  return f"user_{user_id}"


def list_room(list_id: str) -> str:
  return f"list_{list_id}"


class RealtimeHub:
  """
  Process-local subscription rooms.

  Rooms are keyed "user_<id>" and "list_<id>". All access happens on the
  event loop, so no locking is needed.
  """

  def __init__(self) -> None:
    self._rooms: dict[str, set[Connection]] = {}

  def join(self, room: str, conn: Connection) -> None:
    self._rooms.setdefault(room, set()).add(conn)

  def leave(self, room: str, conn: Connection) -> None:
    members = self._rooms.get(room)
    if not members:
      return
    members.discard(conn)
    if not members:
      del self._rooms[room]

  def disconnect(self, conn: Connection) -> None:
    for room in list(self._rooms.keys()):
      self.leave(room, conn)

  def members(self, room: str) -> set[Connection]:
    return set(self._rooms.get(room, ()))

  def rooms_of(self, conn: Connection) -> set[str]:
    return {room for room, members in self._rooms.items() if conn in members}

  async def emit(self, room: str, event: str, data: Any) -> int:
    message = {"event": event, "data": jsonable_encoder(data)}
    delivered = 0
    for conn in self.members(room):
      try:
        await conn.send_json(message)
        delivered += 1
      except Exception:
        logger.warning("dropping realtime connection after failed send to %s", room)
        self.disconnect(conn)
    return delivered

  async def emit_to_user(self, user_id: str, event: str, data: Any) -> int:
    return await self.emit(user_room(user_id), event, data)

  async def emit_to_list(self, list_id: str, event: str, data: Any) -> int:
    return await self.emit(list_room(list_id), event, data)

  def clear(self) -> None:
    self._rooms.clear()


hub = RealtimeHub()
