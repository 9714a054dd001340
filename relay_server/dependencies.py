# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import Request

from .errors import InvalidServiceKeyError

if TYPE_CHECKING:
    from fastapi import WebSocket

    from .connection.manager import ClientManager

log = logging.getLogger("relay.dependencies")


def _resolve_app(connection: Request | WebSocket) -> Any:
    app = connection.scope.get("app")
    if not app:
        request = connection.scope.get("request")
        if request and hasattr(request, "app"):
            app = request.app
    return app


def get_client_manager(request: Request) -> ClientManager:
    """Resolve the ClientManager from the FastAPI app state.

    Intended for ``Depends()`` in the management routes and in routers
    contributed by extensions.

    Raises
    ------
    RuntimeError
        If the ClientManager is not available in app state.
    """
    return client_manager_from_scope(request)


def client_manager_from_scope(connection: Request | WebSocket) -> ClientManager:
    app = _resolve_app(connection)
    if not app:
        raise RuntimeError(
            "Cannot access FastAPI app from connection scope.  "
            "Ensure the route is being served by a FastAPI application."
        )

    manager = getattr(app.state, "client_manager", None)
    if manager is None:
        raise RuntimeError(
            "ClientManager not found in app.state.  "
            "Make sure to assign it during application lifespan/startup."
        )
    return manager


def check_service_key(request: Request) -> None:
    """Reject management requests whose service-key header does not match.

    The header name comes from ``RelayConfig.service_key_header``; the
    comparison is delegated to the backend client, which holds the key.
    """
    manager = get_client_manager(request)
    header = manager.config.service_key_header
    candidate = request.headers.get(header, "")
    if not manager.backend.validate_service_key(candidate):
        log.warning(
            "Rejected management request to %s from %s: invalid service key",
            request.url.path,
            request.client.host if request.client else "unknown",
        )
        raise InvalidServiceKeyError("Invalid service key.")
