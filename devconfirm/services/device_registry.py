"""Device registry: maps device ids to their owner and shared secret."""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from devconfirm.errors import AlreadyExists, InvalidFormat, NotFound, Unauthorized
from devconfirm.models.device import DeviceRecord
from devconfirm.services.transport import TransportAdapter, is_valid_device_id
from devconfirm.store import KeyValueStore
from devconfirm.utils.security import parse_shared_secret

logger = logging.getLogger(__name__)


class DeviceRegistry:
    def __init__(self, store: KeyValueStore, transport: Optional[TransportAdapter] = None):
        self._store = store
        self._transport = transport
        self._lock = threading.RLock()

    def register(
        self,
        device_id: str,
        shared_secret_hex: str,
        owner_user_id: str,
        display_name: Optional[str] = None,
    ) -> DeviceRecord:
        """Register a device. Raises InvalidFormat, InvalidSecretFormat or AlreadyExists."""
        if not is_valid_device_id(device_id):
            raise InvalidFormat("Device id must be non-empty and must not contain '/', '+' or '#'")
        secret = parse_shared_secret(shared_secret_hex)
        now = datetime.now(timezone.utc)
        device = DeviceRecord(
            device_id=device_id,
            owner_user_id=owner_user_id,
            shared_secret=secret,
            display_name=display_name or f"Device {device_id[-6:]}",
            registered_at=now,
            last_seen_at=now,
        )

        with self._lock:
            if self._store.get(device_id) is not None:
                raise AlreadyExists(f"Device already registered: {device_id}")
            self._store.set(device_id, device.model_dump(mode="json"))

        if self._transport is not None:
            self._transport.subscribe_device_responses(device_id)

        logger.info("Device registered: %s for user: %s", device_id, owner_user_id)
        return device

    def get(self, device_id: str) -> DeviceRecord:
        data = self._store.get(device_id)
        if data is None:
            raise NotFound(f"Device not found: {device_id}")
        return DeviceRecord.model_validate(data)

    def exists(self, device_id: str) -> bool:
        return self._store.get(device_id) is not None

    def list_by_owner(self, user_id: str) -> list[DeviceRecord]:
        return [
            DeviceRecord.model_validate(d)
            for d in self._store.list()
            if d.get("owner_user_id") == user_id
        ]

    def remove(self, device_id: str, requesting_user_id: str) -> None:
        """Delete a device owned by the requester and stop listening to it."""
        with self._lock:
            device = self.get(device_id)
            if device.owner_user_id != requesting_user_id:
                raise Unauthorized("Device is owned by another user")
            self._store.delete(device_id)

        if self._transport is not None:
            self._transport.unsubscribe_device_responses(device_id)

        logger.info("Device removed: %s for user: %s", device_id, requesting_user_id)

    def touch_last_seen(self, device_id: str) -> None:
        with self._lock:
            data = self._store.get(device_id)
            if data is None:
                return
            data["last_seen_at"] = datetime.now(timezone.utc).isoformat()
            self._store.set(device_id, data)

    def subscribe_all(self) -> int:
        """Listen on every stored device's response topic (start-up)."""
        if self._transport is None:
            return 0
        devices = self._store.list()
        for d in devices:
            self._transport.subscribe_device_responses(d["device_id"])
        return len(devices)
