"""WebSocket handler for confirmation outcome pushes."""

import asyncio
import json
import logging

from fastapi import WebSocket, WebSocketDisconnect

from devconfirm.config import settings
from devconfirm.services.notification_service import NotificationDispatcher
from devconfirm.utils.security import decode_token

logger = logging.getLogger(__name__)


class WebSocketSink:
    """Dispatcher sink that hands events to the socket's event loop.

    Called from timer and broker threads; schedules the send and returns
    immediately.
    """

    def __init__(self, ws: WebSocket, loop: asyncio.AbstractEventLoop):
        self._ws = ws
        self._loop = loop

    def __call__(self, event: dict) -> None:
        future = asyncio.run_coroutine_threadsafe(self._ws.send_json(event), self._loop)
        future.add_done_callback(self._log_failure)

    @staticmethod
    def _log_failure(future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.warning("WebSocket push failed: %s", future.exception())


def _token_user(token: str) -> str | None:
    try:
        payload = decode_token(token)
    except Exception:
        return None
    return payload.get("sub")


async def websocket_notifications(ws: WebSocket, dispatcher: NotificationDispatcher, token: str | None = None):
    """WebSocket endpoint: bind with {"type": "auth", "userId"}, then receive outcomes."""
    await ws.accept()
    loop = asyncio.get_running_loop()
    user_id = None
    sink = None

    try:
        while True:
            data = await ws.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                await ws.send_json({"type": "error", "message": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await ws.send_json({"type": "error", "message": "Invalid message"})
                continue

            msg_type = msg.get("type", "")

            if msg_type == "auth" and msg.get("userId"):
                claimed = str(msg["userId"])
                msg_token = msg.get("token") or token
                if settings.ws_require_token or msg_token:
                    if not msg_token or _token_user(msg_token) != claimed:
                        await ws.close(code=4001, reason="Invalid token")
                        return

                if sink is not None:
                    dispatcher.unregister_session(user_id, sink)
                user_id = claimed
                sink = WebSocketSink(ws, loop)
                dispatcher.register_session(user_id, sink)
                await ws.send_json({"type": "auth_success"})
                logger.info("User %s connected via WebSocket", user_id)
            elif msg_type == "auth":
                await ws.send_json({"type": "error", "message": "Missing userId"})
            elif msg_type == "ping":
                await ws.send_json({"type": "pong"})
            else:
                await ws.send_json({"type": "error", "message": f"Unknown type: {msg_type}"})
    except WebSocketDisconnect:
        pass
    finally:
        if sink is not None:
            dispatcher.unregister_session(user_id, sink)
            logger.info("User %s disconnected from WebSocket", user_id)
