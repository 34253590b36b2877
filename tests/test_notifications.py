"""Notification dispatcher: single sink per user, best-effort push."""

from devconfirm.models.confirmation import ConfirmationRecord
from devconfirm.services.notification_service import (
    NotificationDispatcher,
    expired_event,
    failed_event,
    success_event,
)


def _record():
    return ConfirmationRecord(
        confirmation_id="c1",
        user_id="U1",
        device_id="D1",
        action="Transfer $100",
        challenge=b"\x00" * 32,
    )


def test_event_shapes():
    record = _record()
    assert success_event(record) == {
        "type": "confirmation_success",
        "confirmationId": "c1",
        "action": "Transfer $100",
        "deviceId": "D1",
    }
    assert failed_event(record) == {
        "type": "confirmation_failed",
        "confirmationId": "c1",
        "action": "Transfer $100",
        "error": "Invalid signature",
    }
    assert expired_event(record) == {
        "type": "confirmation_expired",
        "confirmationId": "c1",
        "action": "Transfer $100",
    }


def test_push_without_sink_is_dropped():
    dispatcher = NotificationDispatcher()
    assert dispatcher.push("U1", {"type": "x"}) is False


def test_last_registration_wins():
    dispatcher = NotificationDispatcher()
    old, new = [], []
    dispatcher.register_session("U1", old.append)
    dispatcher.register_session("U1", new.append)

    assert dispatcher.push("U1", {"type": "x"}) is True
    assert old == []
    assert new == [{"type": "x"}]
    assert dispatcher.session_count == 1


def test_unregister_is_idempotent_and_respects_current_sink():
    dispatcher = NotificationDispatcher()
    old, new = [], []
    dispatcher.register_session("U1", old.append)
    sink = new.append
    dispatcher.register_session("U1", sink)

    # A stale connection closing must not evict the newer one
    dispatcher.unregister_session("U1", old.append)
    assert dispatcher.has_session("U1")

    dispatcher.unregister_session("U1")
    dispatcher.unregister_session("U1")
    assert not dispatcher.has_session("U1")


def test_failing_sink_is_dropped_without_raising():
    dispatcher = NotificationDispatcher()

    def broken(event):
        raise ConnectionError("socket closed")

    dispatcher.register_session("U1", broken)
    assert dispatcher.push("U1", {"type": "x"}) is False
    assert not dispatcher.has_session("U1")
