# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from collections.abc import AsyncIterator, Iterable
from typing import Any

from fastapi import APIRouter, FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from .backend import BackendClient
from .config import RelayConfig, set_debug_logging
from .connection.connection import RelayConnection
from .connection.handlers import RelayHandler
from .connection.manager import ClientManager
from .dependencies import client_manager_from_scope
from .errors import InvalidServiceKeyError
from .extensions import ExtensionRegistry
from .management import create_management_router

log = logging.getLogger("relay.router")


# =============================================================================
# Router factory
# =============================================================================


def create_relay_router(config: RelayConfig, extensions: ExtensionRegistry | None = None) -> APIRouter:
    """Create a FastAPI :class:`APIRouter` with the relay endpoints.

    The returned router exposes:

    * ``config.ws_path``         -- WebSocket endpoint for browser clients
    * ``config.base_auth_path``  -- service-key protected management routes

    Routes contributed by *extensions* are mounted under the management
    prefix when they ask for authentication, at the root otherwise.

    The endpoints resolve the :class:`ClientManager` from
    ``app.state.client_manager``; :func:`create_relay_app` sets it up.
    """

    router = APIRouter()

    # ------------------------------------------------------------------ #
    # WebSocket endpoint
    # ------------------------------------------------------------------ #

    @router.websocket(config.ws_path)
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await websocket.accept()

        client_ip = websocket.client.host if websocket.client else "unknown"

        try:
            manager = client_manager_from_scope(websocket)
        except RuntimeError as exc:
            log.error("Failed to get client manager: %s", exc)
            with contextlib.suppress(Exception):
                await websocket.send_json(
                    {"t": "error", "p": {"message": "Server configuration error", "code": "SERVER_ERROR"}}
                )
            await websocket.close(code=1011, reason="Server configuration error")
            return

        conn_id = f"ws_{uuid.uuid4().hex[:16]}"
        connection = RelayConnection(
            conn_id=conn_id,
            ws=websocket,
            max_message_size=config.max_message_size,
            send_queue_size=config.send_queue_size,
        )
        message_handler = RelayHandler(connection, manager)

        try:
            await connection.initialize()
            manager.add_session(conn_id, connection)
            log.info("WebSocket %s connected from %s", conn_id, client_ip)

            # ----- Main message loop -----
            while connection.is_running:
                try:
                    message = await asyncio.wait_for(websocket.receive(), timeout=1.0)

                    if message["type"] == "websocket.receive":
                        raw = message.get("text") or message.get("bytes")
                        if raw is not None:
                            parsed = connection.handle_incoming(raw)
                            if parsed is not None:
                                await message_handler.handle_message(parsed)

                    elif message["type"] == "websocket.disconnect":
                        log.info("WebSocket %s disconnect message received", conn_id)
                        break

                except TimeoutError:
                    # Normal -- allows checking the running flag
                    continue

                except WebSocketDisconnect:
                    log.info("WebSocket %s disconnected", conn_id)
                    break

        except Exception as exc:
            log.error("WebSocket %s error: %s: %s", conn_id, type(exc).__name__, exc, exc_info=True)

        finally:
            try:
                manager.cleanup_session(conn_id)
            except Exception as exc:
                log.error("Error cleaning up session %s: %s", conn_id, exc, exc_info=True)

            try:
                await connection.cleanup()
            except Exception as exc:
                log.error("Error during connection cleanup: %s", exc)

            if websocket.application_state != WebSocketState.DISCONNECTED:
                with contextlib.suppress(Exception):
                    await websocket.close(code=1000, reason="Normal closure")

    # ------------------------------------------------------------------ #
    # Management and extension routes
    # ------------------------------------------------------------------ #

    management = create_management_router(config)
    public = APIRouter()
    for contributor in extensions.route_contributors if extensions else []:
        (management if contributor.auth else public).include_router(contributor.routes())

    router.include_router(management)
    router.include_router(public)
    return router


# =============================================================================
# Application factory
# =============================================================================


def install_exception_handlers(app: FastAPI) -> None:
    """Map a rejected service key to HTTP 403."""

    @app.exception_handler(InvalidServiceKeyError)
    async def invalid_service_key_handler(request: Request, exc: InvalidServiceKeyError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"error": "Invalid service key."})


def create_relay_app(
    config: RelayConfig,
    extensions: Iterable[Any] = (),
    backend: BackendClient | None = None,
) -> FastAPI:
    """Build a runnable FastAPI application for *config*.

    Extensions are taken from *extensions* plus the dotted paths listed in
    ``config.extensions``.  A *backend* may be injected (tests); otherwise
    one is built from ``config.backend`` and closed on shutdown.
    """
    registry = ExtensionRegistry(list(extensions))
    for dotted_path in config.extensions:
        registry.load(dotted_path)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        set_debug_logging(config.debug)
        backend_client = backend or BackendClient(config.backend, service_key=config.service_key)
        manager = ClientManager(config, backend_client, registry)
        app.state.client_manager = manager
        registry.setup(manager)
        log.info(
            "Relay started: ws=%s management=%s backend=%s",
            config.ws_path,
            config.base_auth_path,
            config.backend.url,
        )
        try:
            yield
        finally:
            await manager.shutdown()
            if backend is None:
                await backend_client.aclose()
            log.info("Relay stopped")

    app = FastAPI(title="Relay", lifespan=lifespan)
    app.include_router(create_relay_router(config, registry))
    install_exception_handlers(app)
    return app
