"""Confirmation request/response schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from devconfirm.models.confirmation import ConfirmationRecord


class ConfirmationRequest(BaseModel):
    device_id: str
    action: Optional[str] = None


class ConfirmationResponse(BaseModel):
    confirmation_id: str
    device_id: str
    action: str
    status: str
    created_at: datetime
    confirmed_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: ConfirmationRecord) -> "ConfirmationResponse":
        return cls(
            confirmation_id=record.confirmation_id,
            device_id=record.device_id,
            action=record.action,
            status=record.status.value,
            created_at=record.created_at,
            confirmed_at=record.confirmed_at,
        )


class ConfirmationRequestResponse(ConfirmationResponse):
    message: str


class ConfirmationListResponse(BaseModel):
    confirmations: list[ConfirmationResponse]
