"""System status API endpoints."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from devconfirm.api.deps import get_current_user_id

router = APIRouter(tags=["system"])


@router.get("/health")
def health(request: Request):
    """Health check with broker connection state (no auth required)."""
    transport = request.app.state.transport
    return {
        "status": "ok",
        "broker": "connected" if transport.connected else "disconnected",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/users/me")
def get_me(user_id: str = Depends(get_current_user_id)):
    """Resolve the caller's user id (used to bind the push channel)."""
    return {"user_id": user_id}
