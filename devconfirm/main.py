"""DevConfirm Server - FastAPI Application Entry Point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from devconfirm.config import settings
from devconfirm.services.confirmation_service import ConfirmationService
from devconfirm.services.device_registry import DeviceRegistry
from devconfirm.services.notification_service import NotificationDispatcher
from devconfirm.services.transport import create_transport
from devconfirm.store import InMemoryStore, SQLStore

logger = logging.getLogger(__name__)


def _create_stores():
    """Device and confirmation stores for the configured backend."""
    if settings.store_backend == "sqlite":
        from devconfirm.database import engine, init_db

        init_db(engine)
        return SQLStore(engine, "devices"), SQLStore(engine, "confirmations")
    return InMemoryStore(), InMemoryStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the engine, connect to the broker, and resume pending work."""
    logging.getLogger("devconfirm").setLevel(settings.log_level.upper())

    device_store, confirmation_store = _create_stores()
    transport = create_transport(settings)
    dispatcher = NotificationDispatcher()
    registry = DeviceRegistry(device_store, transport)
    confirmations = ConfirmationService(
        confirmation_store,
        registry,
        transport,
        dispatcher,
        timeout_seconds=settings.confirmation_timeout_seconds,
        retention_seconds=settings.confirmation_retention_seconds,
    )

    app.state.transport = transport
    app.state.dispatcher = dispatcher
    app.state.registry = registry
    app.state.confirmations = confirmations

    transport.start()
    registry.subscribe_all()
    confirmations.resume_pending()
    logger.info("%s started (transport=%s, store=%s)", settings.server_name, settings.transport, settings.store_backend)

    yield

    confirmations.shutdown()
    transport.stop()
    logger.info("Shutting down gracefully")


app = FastAPI(
    title="DevConfirm",
    description="Hardware-button second factor: challenge/response confirmations over MQTT",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Register API routers ---
from devconfirm.api.confirmations import router as confirmations_router  # noqa: E402
from devconfirm.api.devices import router as devices_router  # noqa: E402
from devconfirm.api.system import router as system_router  # noqa: E402

API_PREFIX = "/api/v1"

app.include_router(system_router, prefix=API_PREFIX)
app.include_router(devices_router, prefix=API_PREFIX)
app.include_router(confirmations_router, prefix=API_PREFIX)


# --- WebSocket endpoints ---
from devconfirm.ws.notifications import websocket_notifications  # noqa: E402


@app.websocket("/ws")
async def ws_endpoint(ws: WebSocket, token: str = Query(default="")):
    await websocket_notifications(ws, ws.app.state.dispatcher, token or None)


@app.get("/")
def root():
    """Server info."""
    return {
        "name": settings.server_name,
        "version": "0.1.0",
        "status": "running",
    }
