"""Confirmation engine: challenge issuance, signature verification, expiry.

A confirmation moves from pending to exactly one terminal state. The expiry
timer and an inbound device response both take the record's lock and re-read
the stored status, so whichever arrives first wins and the other becomes a
no-op. Only the winner dispatches. The lock is dropped once the record is
terminal.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from devconfirm.errors import DeliveryError, NotFound, Unauthorized
from devconfirm.models.confirmation import ConfirmationRecord, ConfirmationStatus
from devconfirm.models.device import DeviceRecord
from devconfirm.services.device_registry import DeviceRegistry
from devconfirm.services.notification_service import (
    NotificationDispatcher,
    expired_event,
    failed_event,
    success_event,
)
from devconfirm.services.transport import DeviceResponseMessage, TransportAdapter
from devconfirm.store import KeyValueStore
from devconfirm.utils.security import (
    compute_signature,
    generate_challenge,
    new_confirmation_id,
    signatures_match,
)

logger = logging.getLogger(__name__)

DEFAULT_ACTION = "Generic confirmation"


class ConfirmationService:
    def __init__(
        self,
        store: KeyValueStore,
        registry: DeviceRegistry,
        transport: TransportAdapter,
        dispatcher: NotificationDispatcher,
        timeout_seconds: float = 300.0,
        retention_seconds: Optional[float] = 86400,
    ):
        self._store = store
        self._registry = registry
        self._transport = transport
        self._dispatcher = dispatcher
        self._timeout = timeout_seconds
        self._retention = retention_seconds

        self._guard = threading.Lock()  # protects _locks and _timers
        self._locks: dict[str, threading.Lock] = {}
        self._timers: dict[str, threading.Timer] = {}
        self._closed = False

        transport.set_response_handler(self._on_device_response)

    # --- Record access ---

    def _load(self, confirmation_id: str) -> Optional[ConfirmationRecord]:
        data = self._store.get(confirmation_id)
        return ConfirmationRecord.model_validate(data) if data is not None else None

    def _save(self, record: ConfirmationRecord) -> None:
        self._store.set(record.confirmation_id, record.model_dump(mode="json"))

    def _record_lock(self, confirmation_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(confirmation_id)
            if lock is None:
                lock = self._locks[confirmation_id] = threading.Lock()
            return lock

    def _finish(self, confirmation_id: str) -> None:
        """Drop the lock and timer of a record that can no longer change."""
        with self._guard:
            self._locks.pop(confirmation_id, None)
        self._cancel_timer(confirmation_id)

    def _resolve(
        self,
        record: ConfirmationRecord,
        status: ConfirmationStatus,
        reason: Optional[str] = None,
    ) -> ConfirmationRecord:
        """Stamp and save a terminal status. Caller holds the record lock."""
        now = datetime.now(timezone.utc)
        record.status = status
        record.resolved_at = now
        if status is ConfirmationStatus.CONFIRMED:
            record.confirmed_at = now
        if reason:
            record.failure_reason = reason
        self._save(record)
        return record

    def _transition(
        self,
        confirmation_id: str,
        status: ConfirmationStatus,
        reason: Optional[str] = None,
    ) -> Optional[ConfirmationRecord]:
        """Move a pending record to ``status``. Returns None if it was not pending."""
        with self._record_lock(confirmation_id):
            record = self._load(confirmation_id)
            if record is not None and record.status is ConfirmationStatus.PENDING:
                record = self._resolve(record, status, reason)
            else:
                record = None
        # Missing or terminal either way, so the lock has nothing left to guard
        self._finish(confirmation_id)
        return record

    @property
    def lock_count(self) -> int:
        with self._guard:
            return len(self._locks)

    # --- Timers ---

    def _arm_timer(self, confirmation_id: str, delay: float) -> None:
        timer = threading.Timer(delay, self.expire, args=(confirmation_id,))
        timer.daemon = True
        with self._guard:
            if self._closed:
                return
            self._timers[confirmation_id] = timer
        timer.start()

        # A device may have answered before the timer existed
        record = self._load(confirmation_id)
        if record is not None and record.status.is_terminal:
            self._cancel_timer(confirmation_id)

    def _cancel_timer(self, confirmation_id: str) -> None:
        with self._guard:
            timer = self._timers.pop(confirmation_id, None)
        if timer is not None:
            timer.cancel()

    @property
    def active_timer_count(self) -> int:
        with self._guard:
            return len(self._timers)

    # --- Operations ---

    def request_confirmation(
        self,
        user_id: str,
        device_id: str,
        action: Optional[str] = None,
    ) -> ConfirmationRecord:
        """Issue a challenge to one of the user's devices.

        Raises NotFound / Unauthorized for a bad device and DeliveryError when
        the challenge could not be published (the record is then left failed).
        """
        device = self._registry.get(device_id)
        if device.owner_user_id != user_id:
            raise Unauthorized("Device is owned by another user")

        self.prune_resolved()

        record = ConfirmationRecord(
            confirmation_id=new_confirmation_id(),
            user_id=user_id,
            device_id=device_id,
            action=action or DEFAULT_ACTION,
            challenge=generate_challenge(),
        )
        # Stored before publishing so a fast reply always finds it
        self._save(record)

        try:
            self._transport.publish_challenge(device_id, record.challenge_payload())
        except Exception as e:
            self._transition(record.confirmation_id, ConfirmationStatus.FAILED, reason="delivery_failed")
            logger.error("Failed to publish challenge %s to device %s: %s", record.confirmation_id, device_id, e)
            if isinstance(e, DeliveryError):
                raise
            raise DeliveryError("Failed to send challenge to device") from e

        self._arm_timer(record.confirmation_id, self._timeout)
        logger.info("Confirmation %s requested for device %s", record.confirmation_id, device_id)
        return self._load(record.confirmation_id) or record

    def verify_response(
        self,
        device_id: str,
        confirmation_id: str,
        signature_hex: str,
    ) -> Optional[ConfirmationStatus]:
        """Check a device's signature and resolve the confirmation.

        Returns the new status, or None when the response was discarded
        (unknown or resolved confirmation, wrong device, revoked device, or
        lost the race against expiry).
        """
        with self._record_lock(confirmation_id):
            record = self._load(confirmation_id)
            device = self._responding_device(record, device_id, confirmation_id)
            if device is None:
                updated = None
                settled = record is None or record.status.is_terminal
            else:
                expected = compute_signature(device.shared_secret, record.challenge)
                if signatures_match(expected, signature_hex):
                    updated = self._resolve(record, ConfirmationStatus.CONFIRMED)
                else:
                    updated = self._resolve(record, ConfirmationStatus.FAILED, reason="invalid_signature")
                settled = True
        if settled:
            self._finish(confirmation_id)
        if updated is None:
            return None

        if updated.status is ConfirmationStatus.CONFIRMED:
            self._registry.touch_last_seen(device_id)
            logger.info("Device confirmed! User: %s, Action: %s", updated.user_id, updated.action)
            self._dispatcher.push(updated.user_id, success_event(updated))
        else:
            logger.warning("Invalid signature from device %s", device_id)
            self._dispatcher.push(updated.user_id, failed_event(updated, "Invalid signature"))
        return updated.status

    def _responding_device(
        self,
        record: Optional[ConfirmationRecord],
        device_id: str,
        confirmation_id: str,
    ) -> Optional[DeviceRecord]:
        """The registered device allowed to answer ``record``, or None.

        Runs under the record lock so a removal or reassignment that lands
        before the verdict is honoured.
        """
        if record is None:
            logger.warning("Unknown confirmation ID %s from device %s", confirmation_id, device_id)
            return None
        if record.status.is_terminal:
            logger.info("Confirmation %s is not pending (status: %s)", confirmation_id, record.status.value)
            return None
        if record.device_id != device_id:
            logger.warning("Device %s answered confirmation %s issued to %s", device_id, confirmation_id, record.device_id)
            return None

        # Ownership is re-checked against the registry, not the record
        try:
            device = self._registry.get(device_id)
        except NotFound:
            logger.warning("Response from unknown device: %s", device_id)
            return None
        if device.owner_user_id != record.user_id:
            logger.warning("Device %s no longer belongs to user %s", device_id, record.user_id)
            return None
        return device

    def expire(self, confirmation_id: str) -> bool:
        """Timer entry point: pending -> expired. Returns False if already resolved."""
        with self._guard:
            self._timers.pop(confirmation_id, None)
        current = self._load(confirmation_id)
        if current is None or current.status.is_terminal:
            return False
        record = self._transition(confirmation_id, ConfirmationStatus.EXPIRED)
        if record is None:
            return False
        logger.info("Confirmation %s expired", confirmation_id)
        self._dispatcher.push(record.user_id, expired_event(record))
        return True

    def get_status(self, confirmation_id: str, requesting_user_id: str) -> ConfirmationRecord:
        record = self._load(confirmation_id)
        if record is None:
            raise NotFound(f"Confirmation not found: {confirmation_id}")
        if record.user_id != requesting_user_id:
            raise Unauthorized("Confirmation belongs to another user")
        return record

    def list_for_user(self, user_id: str) -> list[ConfirmationRecord]:
        """User's confirmations, newest first."""
        records = [
            ConfirmationRecord.model_validate(d)
            for d in self._store.list()
            if d.get("user_id") == user_id
        ]
        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def _on_device_response(self, device_id: str, message: DeviceResponseMessage) -> None:
        self.verify_response(device_id, message.confirmation_id, message.signature_hex)

    # --- Lifecycle ---

    def resume_pending(self) -> int:
        """Re-arm expiry for pending records left in a durable store."""
        now = datetime.now(timezone.utc)
        resumed = 0
        for data in self._store.list():
            record = ConfirmationRecord.model_validate(data)
            if record.status is not ConfirmationStatus.PENDING:
                continue
            remaining = self._timeout - (now - record.created_at).total_seconds()
            if remaining <= 0:
                self.expire(record.confirmation_id)
            else:
                self._arm_timer(record.confirmation_id, remaining)
            resumed += 1
        if resumed:
            logger.info("Resumed %d pending confirmation(s)", resumed)
        return resumed

    def prune_resolved(self, now: Optional[datetime] = None) -> int:
        """Best-effort removal of resolved records past the retention window."""
        if not self._retention or self._retention <= 0:
            return 0
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self._retention)
        dead = []
        for data in self._store.list():
            record = ConfirmationRecord.model_validate(data)
            if record.status.is_terminal and (record.resolved_at or record.created_at) < cutoff:
                dead.append(record.confirmation_id)
        for cid in dead:
            self._store.delete(cid)
        return len(dead)

    def shutdown(self) -> None:
        with self._guard:
            self._closed = True
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()
