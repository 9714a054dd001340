# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from fastapi import APIRouter

    from .connection.manager import ClientManager
    from .core.types import AuthenticatedClientRecord

log = logging.getLogger("relay.extensions")


# =============================================================================
# Capability interfaces
# =============================================================================


class LifecycleObserver:
    """Hook called at fixed points of the connection lifecycle.

    Override the hooks you need in a subclass, then register it with
    ``ExtensionRegistry.add(observer)``.  Hooks run synchronously inside the
    event that triggered them; exceptions are logged and swallowed.
    """

    def setup(self, manager: ClientManager) -> None:
        """Called once after the application has started."""
        pass

    def connection_opened(self, session_id: str) -> None:
        pass

    def connection_closed(self, session_id: str) -> None:
        pass

    def client_authenticated(self, session_id: str, record: AuthenticatedClientRecord) -> None:
        pass

    def client_to_channel_message(self, session_id: str, message: dict[str, Any]) -> None:
        """A member of a client-writable channel sent *message* into it."""
        pass

    def client_to_client_message(self, session_id: str, message: dict[str, Any]) -> None:
        """A client sent a message without a channel (only when allowed by config)."""
        pass

    def message_published(self, message: dict[str, Any], sent_count: int) -> None:
        pass


@runtime_checkable
class RouteContributor(Protocol):
    """Adds HTTP routes to the application.

    When ``auth`` is true the routes are mounted under the service-key
    protected management prefix.
    """

    auth: bool

    def routes(self) -> APIRouter: ...


# =============================================================================
# Registry
# =============================================================================


class ExtensionRegistry:
    """Registered extensions, invoked by the orchestrator at fixed points."""

    def __init__(self, extensions: list[Any] | None = None):
        self.observers: list[LifecycleObserver] = []
        self.route_contributors: list[RouteContributor] = []
        for extension in extensions or []:
            self.add(extension)

    def add(self, extension: Any) -> None:
        matched = False
        if isinstance(extension, LifecycleObserver):
            self.observers.append(extension)
            matched = True
        if isinstance(extension, RouteContributor):
            self.route_contributors.append(extension)
            matched = True
        if not matched:
            raise TypeError(
                f"{type(extension).__name__} is neither a LifecycleObserver nor a RouteContributor"
            )
        log.info("Registered extension %s", type(extension).__name__)

    def load(self, dotted_path: str) -> Any:
        """Import ``package.module:attribute`` (or ``package.module.attribute``) and register it."""
        if ":" in dotted_path:
            module_name, attr = dotted_path.split(":", 1)
        else:
            module_name, _, attr = dotted_path.rpartition(".")
        module = importlib.import_module(module_name)
        extension = getattr(module, attr)
        if isinstance(extension, type):
            extension = extension()
        self.add(extension)
        return extension

    def setup(self, manager: ClientManager) -> None:
        self.emit("setup", manager)

    def emit(self, hook: str, *args: Any) -> None:
        for observer in self.observers:
            try:
                getattr(observer, hook)(*args)
            except Exception as e:
                log.error(
                    "Extension %s failed in %s: %s", type(observer).__name__, hook, e, exc_info=True
                )

    def __len__(self) -> int:
        return len(self.observers) + len(self.route_contributors)
