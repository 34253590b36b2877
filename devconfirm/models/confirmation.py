"""Confirmation record and status."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_serializer, field_validator


class ConfirmationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self is not ConfirmationStatus.PENDING


class ConfirmationRecord(BaseModel):
    confirmation_id: str
    user_id: str
    device_id: str
    action: str
    challenge: bytes = Field(repr=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: ConfirmationStatus = ConfirmationStatus.PENDING
    confirmed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    @field_validator("challenge", mode="before")
    @classmethod
    def _challenge_from_hex(cls, v):
        if isinstance(v, str):
            return bytes.fromhex(v)
        return v

    @field_serializer("challenge", when_used="json")
    def _challenge_to_hex(self, v: bytes) -> str:
        return v.hex()

    @property
    def challenge_hex(self) -> str:
        return self.challenge.hex()

    @property
    def created_at_ms(self) -> int:
        return int(self.created_at.timestamp() * 1000)

    def challenge_payload(self) -> dict:
        """Message published on the device challenge topic."""
        return {
            "challenge": self.challenge_hex,
            "confirmationId": self.confirmation_id,
            "action": self.action,
            "timestamp": self.created_at_ms,
        }
