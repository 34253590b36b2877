"""Device request/response schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from devconfirm.models.device import DeviceRecord


class DeviceRegisterRequest(BaseModel):
    device_id: str = Field(min_length=1)
    device_secret: str  # 64 hex chars
    device_name: Optional[str] = None


class DeviceResponse(BaseModel):
    device_id: str
    device_name: str
    registered_at: datetime
    last_seen_at: Optional[datetime]

    @classmethod
    def from_record(cls, device: DeviceRecord) -> "DeviceResponse":
        return cls(
            device_id=device.device_id,
            device_name=device.display_name,
            registered_at=device.registered_at,
            last_seen_at=device.last_seen_at,
        )


class DeviceListResponse(BaseModel):
    devices: list[DeviceResponse]
