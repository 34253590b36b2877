"""Shared builders for engine-level tests."""

import time

from devconfirm.services.confirmation_service import ConfirmationService
from devconfirm.services.device_registry import DeviceRegistry
from devconfirm.services.notification_service import NotificationDispatcher
from devconfirm.services.transport import LoopbackTransport
from devconfirm.store import InMemoryStore
from devconfirm.utils.security import compute_signature

SECRET_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
SECRET = bytes.fromhex(SECRET_HEX)


class Engine:
    """Registry + dispatcher + confirmation service over a loopback broker."""

    def __init__(self, timeout_seconds: float = 300.0, retention_seconds=86400):
        self.transport = LoopbackTransport()
        self.dispatcher = NotificationDispatcher()
        self.device_store = InMemoryStore()
        self.confirmation_store = InMemoryStore()
        self.registry = DeviceRegistry(self.device_store, self.transport)
        self.service = ConfirmationService(
            self.confirmation_store,
            self.registry,
            self.transport,
            self.dispatcher,
            timeout_seconds=timeout_seconds,
            retention_seconds=retention_seconds,
        )
        self.events: list[dict] = []

    def watch(self, user_id: str) -> list[dict]:
        self.dispatcher.register_session(user_id, self.events.append)
        return self.events


def sign(challenge_hex: str, secret: bytes = SECRET) -> str:
    return compute_signature(secret, bytes.fromhex(challenge_hex))


def wait_for(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()
