"""DevConfirm Models."""

from devconfirm.models.device import DeviceRecord
from devconfirm.models.confirmation import ConfirmationRecord, ConfirmationStatus
from devconfirm.models.kv import KVEntry

__all__ = [
    "DeviceRecord",
    "ConfirmationRecord",
    "ConfirmationStatus",
    "KVEntry",
]
