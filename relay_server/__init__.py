"""Relay server -- realtime pub/sub relay between a backend application and browsers.

Run standalone::

    python -m relay_server --config settings.json

Or embed into a FastAPI app::

    from relay_server import RelayConfig, create_relay_app

    app = create_relay_app(RelayConfig(service_key="s3cret"))

See :class:`RelayConfig` for all settings and :mod:`relay_server.extensions`
for observing lifecycle events or contributing routes.
"""

from .config import BackendConfig, RelayConfig, load_config
from .extensions import ExtensionRegistry, LifecycleObserver, RouteContributor
from .router import create_relay_app, create_relay_router

__version__ = "1.0.0"
__all__ = [
    "create_relay_app",
    "create_relay_router",
    "RelayConfig",
    "BackendConfig",
    "load_config",
    "ExtensionRegistry",
    "LifecycleObserver",
    "RouteContributor",
]
