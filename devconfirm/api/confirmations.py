"""Confirmation API endpoints: request, poll, history."""

from fastapi import APIRouter, Depends

from devconfirm.api.deps import get_confirmations, get_current_user_id, http_error
from devconfirm.errors import ConfirmError
from devconfirm.schemas.confirmation import (
    ConfirmationListResponse,
    ConfirmationRequest,
    ConfirmationRequestResponse,
    ConfirmationResponse,
)
from devconfirm.services.confirmation_service import ConfirmationService

router = APIRouter(tags=["confirmations"])


@router.post("/confirmations", response_model=ConfirmationRequestResponse)
def request_confirmation(
    request: ConfirmationRequest,
    user_id: str = Depends(get_current_user_id),
    confirmations: ConfirmationService = Depends(get_confirmations),
):
    """Send a challenge to the device. The outcome arrives via push or polling."""
    try:
        record = confirmations.request_confirmation(user_id, request.device_id, request.action)
    except ConfirmError as e:
        raise http_error(e)
    return ConfirmationRequestResponse(
        **ConfirmationResponse.from_record(record).model_dump(),
        message="Challenge sent to device. Please press the button on your device to confirm.",
    )


@router.get("/confirmations", response_model=ConfirmationListResponse)
def list_confirmations(
    user_id: str = Depends(get_current_user_id),
    confirmations: ConfirmationService = Depends(get_confirmations),
):
    """Confirmation history, newest first."""
    return ConfirmationListResponse(
        confirmations=[ConfirmationResponse.from_record(r) for r in confirmations.list_for_user(user_id)]
    )


@router.get("/confirmations/{confirmation_id}", response_model=ConfirmationResponse)
def get_confirmation(
    confirmation_id: str,
    user_id: str = Depends(get_current_user_id),
    confirmations: ConfirmationService = Depends(get_confirmations),
):
    """Poll a confirmation's status."""
    try:
        record = confirmations.get_status(confirmation_id, user_id)
    except ConfirmError as e:
        raise http_error(e)
    return ConfirmationResponse.from_record(record)
