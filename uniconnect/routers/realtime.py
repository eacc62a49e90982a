"""WebSocket relay of realtime change events for public tables."""
from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..backend.realtime import ChangeEvent, RealtimeBus

router = APIRouter(prefix="/realtime")
logger = logging.getLogger(__name__)

RELAYED_TABLES = frozenset({"posts", "post_media", "likes", "comments", "stories", "story_likes", "follows"})


async def _send(websocket: WebSocket, message: dict[str, Any]) -> None:
    await websocket.send_text(json.dumps(message, default=str))


@router.websocket("/ws")
async def realtime_updates(websocket: WebSocket) -> None:
    """Clients send ``{"type": "subscribe", "table": ..., "event": ..., "filter": ...}`` and receive change events."""

    bus: RealtimeBus = websocket.app.state.backend.bus
    await websocket.accept()
    channel = bus.channel(f"ws-{id(websocket):x}")
    logger.info("Realtime socket connected from %s", websocket.client)

    async def forward(change: ChangeEvent) -> None:
        try:
            await _send(websocket, {"type": "change", "payload": change.to_payload()})
        except (RuntimeError, WebSocketDisconnect):
            logger.debug("Dropping change for closed realtime socket %s", websocket.client)

    try:
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                break

            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                payload = {"type": raw}
            if not isinstance(payload, dict):
                payload = {}

            message_type = str(payload.get("type") or "").lower()
            if message_type == "ping":
                await _send(websocket, {"type": "pong"})
            elif message_type == "subscribe":
                table = str(payload.get("table") or "")
                if table not in RELAYED_TABLES:
                    await _send(websocket, {"type": "error", "error": f"Table {table!r} is not available"})
                    continue
                try:
                    channel.on(str(payload.get("event") or "*"), table, forward, filter=payload.get("filter"))
                except ValueError as exc:
                    await _send(websocket, {"type": "error", "error": str(exc)})
                    continue
                channel.subscribe()
                await _send(websocket, {"type": "subscribed", "table": table})
    finally:
        bus.remove_channel(channel)
        logger.info("Realtime socket disconnected from %s", websocket.client)


__all__ = ["router", "RELAYED_TABLES"]
