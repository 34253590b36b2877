"""Notification dispatcher: pushes confirmation outcomes to the watching client.

One live sink per user (last registration wins). Pushing is best effort:
with no sink the event is dropped and the client falls back to polling.
"""

import logging
import threading
from typing import Callable, Optional

from devconfirm.models.confirmation import ConfirmationRecord

logger = logging.getLogger(__name__)

Sink = Callable[[dict], None]

SUCCESS = "confirmation_success"
FAILED = "confirmation_failed"
EXPIRED = "confirmation_expired"


def success_event(record: ConfirmationRecord) -> dict:
    return {
        "type": SUCCESS,
        "confirmationId": record.confirmation_id,
        "action": record.action,
        "deviceId": record.device_id,
    }


def failed_event(record: ConfirmationRecord, error: str = "Invalid signature") -> dict:
    return {
        "type": FAILED,
        "confirmationId": record.confirmation_id,
        "action": record.action,
        "error": error,
    }


def expired_event(record: ConfirmationRecord) -> dict:
    return {
        "type": EXPIRED,
        "confirmationId": record.confirmation_id,
        "action": record.action,
    }


class NotificationDispatcher:
    def __init__(self):
        self._sinks: dict[str, Sink] = {}  # user_id -> sink
        self._lock = threading.Lock()

    def register_session(self, user_id: str, sink: Sink) -> None:
        with self._lock:
            replaced = user_id in self._sinks
            self._sinks[user_id] = sink
        if replaced:
            logger.info("Replaced push session for user %s", user_id)

    def unregister_session(self, user_id: str, sink: Optional[Sink] = None) -> None:
        """Drop the user's sink. With ``sink`` given, only if it is still the current one."""
        with self._lock:
            current = self._sinks.get(user_id)
            if current is None:
                return
            if sink is not None and current is not sink:
                return
            del self._sinks[user_id]

    def has_session(self, user_id: str) -> bool:
        with self._lock:
            return user_id in self._sinks

    def push(self, user_id: str, event: dict) -> bool:
        """Deliver an event if the user has a live sink. Never raises."""
        with self._lock:
            sink = self._sinks.get(user_id)
        if sink is None:
            logger.debug("No push session for user %s, dropping %s", user_id, event.get("type"))
            return False
        try:
            sink(event)
        except Exception as e:
            logger.warning("Push to user %s failed, dropping session: %s", user_id, e)
            self.unregister_session(user_id, sink)
            return False
        return True

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sinks)
