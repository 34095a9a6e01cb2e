from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect, status

from tasksphere.db import SessionLocal
from tasksphere.deps import is_list_member, user_from_token
from tasksphere.realtime.hub import Connection, hub, list_room, user_room

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


async def _error(conn: Connection, message: str) -> None:
  await conn.send_json({"event": "error", "data": {"message": message}})


async def handle_client_message(conn: Connection, user_id: str, message: Any) -> None:
  """Apply one {"event", "data"} message from a connected client."""
  if not isinstance(message, dict):
    await _error(conn, "Malformed message")
    return
  event = message.get("event")
  target = message.get("data")
  target = str(target) if target is not None else ""

  if event == "joinUser":
    if target != user_id:
      await _error(conn, "Cannot join another user's room")
      return
    hub.join(user_room(user_id), conn)
    return

  if event == "joinTaskList":
    async with SessionLocal() as db:
      allowed = bool(target) and await is_list_member(target, user_id, db)
    if not allowed:
      await _error(conn, "Access denied")
      return
    hub.join(list_room(target), conn)
    return

  if event == "leaveTaskList":
    hub.leave(list_room(target), conn)
    return

  await _error(conn, f"Unknown event: {event}")


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket) -> None:
  token = websocket.query_params.get("token")
  if not token:
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
    return
  try:
    async with SessionLocal() as db:
      user = await user_from_token(token, db)
  except HTTPException:
    await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
    return

  await websocket.accept()
  hub.join(user_room(user.id), websocket)
  logger.info("realtime client connected user_id=%s", user.id)
  try:
    while True:
      raw = await websocket.receive_text()
      try:
        message = json.loads(raw)
      except ValueError:
        await _error(websocket, "Malformed message")
        continue
      await handle_client_message(websocket, user.id, message)
  except WebSocketDisconnect:
    pass
  finally:
    hub.disconnect(websocket)
    logger.info("realtime client disconnected user_id=%s", user.id)
