"""Device management API endpoints."""

from fastapi import APIRouter, Depends, status

from devconfirm.api.deps import get_current_user_id, get_registry, http_error
from devconfirm.errors import ConfirmError
from devconfirm.schemas.device import DeviceListResponse, DeviceRegisterRequest, DeviceResponse
from devconfirm.services.device_registry import DeviceRegistry

router = APIRouter(tags=["devices"])


@router.get("/devices", response_model=DeviceListResponse)
def list_devices(
    user_id: str = Depends(get_current_user_id),
    registry: DeviceRegistry = Depends(get_registry),
):
    """List all devices for the current user."""
    return DeviceListResponse(
        devices=[DeviceResponse.from_record(d) for d in registry.list_by_owner(user_id)]
    )


@router.post("/devices", response_model=DeviceResponse)
def register_device(
    request: DeviceRegisterRequest,
    user_id: str = Depends(get_current_user_id),
    registry: DeviceRegistry = Depends(get_registry),
):
    """Register a device with its 32-byte shared secret (hex)."""
    try:
        device = registry.register(
            device_id=request.device_id,
            shared_secret_hex=request.device_secret,
            owner_user_id=user_id,
            display_name=request.device_name,
        )
    except ConfirmError as e:
        raise http_error(e)
    return DeviceResponse.from_record(device)


@router.delete("/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_device(
    device_id: str,
    user_id: str = Depends(get_current_user_id),
    registry: DeviceRegistry = Depends(get_registry),
):
    """Remove a device and stop listening for its responses."""
    try:
        registry.remove(device_id, user_id)
    except ConfirmError as e:
        raise http_error(e)
