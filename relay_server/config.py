# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import orjson

log = logging.getLogger("relay.config")


@dataclass
class BackendConfig:
    """Where and how to reach the backend application.

    Attributes:
        scheme: ``"http"`` or ``"https"``.
        host: Backend host name.
        port: Backend port.
        base_path: Path prefix of the backend application.
        message_path: Path (relative to *base_path*) that receives relay messages.
        http_auth: ``"user:password"`` for HTTP Basic auth, empty to disable.
        strict_ssl: Verify TLS certificates when *scheme* is https.
        timeout: Seconds before an outbound backend request is abandoned.
    """

    scheme: str = "http"
    host: str = "localhost"
    port: int = 80
    base_path: str = "/"
    message_path: str = "nodejs/message"
    http_auth: str = ""
    strict_ssl: bool = True
    timeout: float = 10.0

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}{self.base_path}{self.message_path}"


@dataclass
class RelayConfig:
    """Configuration for the relay server.

    Attributes:
        service_key:
            Shared secret required on every management request and on
            backend responses.  Empty disables the check (development only).
        service_key_header:
            Request header that carries the service key.
        base_auth_path:
            Prefix of the service-key protected management routes.
        ws_path:
            Path of the WebSocket endpoint.
        debug:
            Start with verbose diagnostic logging enabled.
        clients_can_write_to_clients:
            Forward client messages that carry no ``channel`` to observers.
        presence_delay:
            Seconds a uid must stay without sessions before it is reported offline.
        content_channel_delay:
            Seconds before a token-channel disconnect notification is sent.
        auth_cache_size / auth_cache_ttl:
            Bounds of the authenticated-client cache used on reconnect.
        max_message_size:
            Maximum inbound WebSocket frame size in bytes.
        send_queue_size:
            Per-connection outbound queue length; overflow drops messages.
        extensions:
            Dotted import paths of extension objects loaded at startup.
    """

    service_key: str = ""
    service_key_header: str = "RelayServiceKey"
    base_auth_path: str = "/relay/"
    ws_path: str = "/relay/ws"
    debug: bool = False
    clients_can_write_to_clients: bool = False
    presence_delay: float = 2.0
    content_channel_delay: float = 2.0
    auth_cache_size: int = 10_000
    auth_cache_ttl: float = 3600.0
    max_message_size: int = 65_536
    send_queue_size: int = 1000
    host: str = "0.0.0.0"
    port: int = 8080
    backend: BackendConfig = field(default_factory=BackendConfig)
    extensions: list[str] = field(default_factory=list)


# =============================================================================
# Loading
# =============================================================================

# Settings file keys (camelCase, as written by the backend's admin UI)
_RELAY_KEYS = {
    "serviceKey": "service_key",
    "serviceKeyHeader": "service_key_header",
    "baseAuthPath": "base_auth_path",
    "wsPath": "ws_path",
    "debug": "debug",
    "clientsCanWriteToClients": "clients_can_write_to_clients",
    "presenceDelay": "presence_delay",
    "contentChannelDelay": "content_channel_delay",
    "authCacheSize": "auth_cache_size",
    "authCacheTtl": "auth_cache_ttl",
    "maxMessageSize": "max_message_size",
    "sendQueueSize": "send_queue_size",
    "host": "host",
    "port": "port",
    "extensions": "extensions",
}

_BACKEND_KEYS = {
    "scheme": "scheme",
    "host": "host",
    "port": "port",
    "basePath": "base_path",
    "messagePath": "message_path",
    "httpAuth": "http_auth",
    "strictSSL": "strict_ssl",
    "timeout": "timeout",
}


def _translate(data: dict[str, Any], mapping: dict[str, str], section: str) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        attr = mapping.get(key)
        if attr is None:
            log.warning("Ignoring unknown %s setting '%s'", section, key)
            continue
        kwargs[attr] = value
    return kwargs


def config_from_dict(data: dict[str, Any]) -> RelayConfig:
    """Build a :class:`RelayConfig` from a settings mapping."""
    data = dict(data)
    backend_data = data.pop("backend", None) or {}
    if not isinstance(backend_data, dict):
        raise ValueError("'backend' setting must be an object")

    config = RelayConfig(**_translate(data, _RELAY_KEYS, "relay"))
    config.backend = BackendConfig(**_translate(backend_data, _BACKEND_KEYS, "backend"))
    return config


def load_config(path: str | Path) -> RelayConfig:
    """Read a JSON settings file and return the resulting configuration."""
    raw = Path(path).read_bytes()
    data = orjson.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Settings file {path} must contain a JSON object")
    config = config_from_dict(data)
    log.info("Loaded settings from %s", path)
    return config


def config_to_dict(config: RelayConfig) -> dict[str, Any]:
    """Inverse of :func:`config_from_dict`, secrets masked (for diagnostics)."""
    reverse = {v: k for k, v in _RELAY_KEYS.items()}
    result = {reverse[f.name]: getattr(config, f.name) for f in fields(config) if f.name in reverse}
    result["serviceKey"] = "***" if config.service_key else ""
    backend_reverse = {v: k for k, v in _BACKEND_KEYS.items()}
    result["backend"] = {
        backend_reverse[f.name]: getattr(config.backend, f.name) for f in fields(config.backend)
    }
    if config.backend.http_auth:
        result["backend"]["httpAuth"] = "***"
    return result


# =============================================================================
# Runtime diagnostics
# =============================================================================


def set_debug_logging(enabled: bool) -> None:
    """Switch the ``relay`` logger hierarchy between DEBUG and INFO."""
    logging.getLogger("relay").setLevel(logging.DEBUG if enabled else logging.INFO)
    log.info("Debug logging %s", "enabled" if enabled else "disabled")
