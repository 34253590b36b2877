"""Device record."""

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_serializer, field_validator


class DeviceRecord(BaseModel):
    device_id: str
    owner_user_id: str
    shared_secret: bytes = Field(repr=False)  # 32 raw bytes, never returned by the API
    display_name: str
    registered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_seen_at: Optional[datetime] = None

    @field_validator("shared_secret", mode="before")
    @classmethod
    def _secret_from_hex(cls, v):
        if isinstance(v, str):
            return bytes.fromhex(v)
        return v

    @field_serializer("shared_secret", when_used="json")
    def _secret_to_hex(self, v: bytes) -> str:
        return v.hex()
