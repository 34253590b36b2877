"""Common API dependencies: current user extraction, service lookup, error mapping."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from devconfirm.errors import ConfirmError
from devconfirm.services.confirmation_service import ConfirmationService
from devconfirm.services.device_registry import DeviceRegistry
from devconfirm.utils.security import decode_token

bearer_scheme = HTTPBearer()


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> str:
    """Extract the user id from the identity provider's access token."""
    try:
        payload = decode_token(credentials.credentials)
    except Exception:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    if payload.get("type") != "access" or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
        )
    return payload["sub"]


def get_registry(request: Request) -> DeviceRegistry:
    return request.app.state.registry


def get_confirmations(request: Request) -> ConfirmationService:
    return request.app.state.confirmations


def http_error(exc: ConfirmError) -> HTTPException:
    """Map an engine error to a stable client-facing error."""
    return HTTPException(
        status_code=exc.status_code,
        detail={"error": exc.code, "message": exc.message},
    )
