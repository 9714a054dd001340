"""Shared fixtures for relay tests."""

import asyncio
import os
import sys
from typing import Any

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from relay_server.config import RelayConfig
from relay_server.connection.manager import ClientManager
from relay_server.core.types import AuthenticatedClientRecord
from relay_server.errors import AuthenticationRejectedError, BackendUnavailableError
from relay_server.extensions import ExtensionRegistry, LifecycleObserver

# Debounce windows shrunk so tests do not sleep for seconds
SHORT_DELAY = 0.05


class FakeTransport:
    """Records what the registries send instead of writing to a socket."""

    def __init__(self, accepting: bool = True):
        self.accepting = accepting
        self.sent: list[dict[str, Any]] = []
        self.closed: tuple[int, str] | None = None

    def send(self, message: dict[str, Any]) -> bool:
        if not self.accepting:
            return False
        self.sent.append(message)
        return True

    def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = (code, reason)

    def of_kind(self, key: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if key in m]


class FakeBackend:
    """Stands in for BackendClient: answers from a token table."""

    def __init__(self, service_key: str = ""):
        self.service_key = service_key
        self.records: dict[str, dict[str, Any]] = {}
        self.rejected: set[str] = set()
        self.unavailable = False
        self.gate: asyncio.Event | None = None
        self.calls: list[tuple[str, str, dict[str, str]]] = []
        self.offline_reports: list[str] = []

    def grant(self, auth_token: str, uid: Any = None, channels=(), presence_uids=(), **extra) -> None:
        self.records[auth_token] = {
            "authToken": auth_token,
            "uid": uid,
            "channels": list(channels),
            "presenceUids": list(presence_uids),
            **extra,
        }

    async def authenticate(self, session_id, auth_token, content_tokens=None):
        self.calls.append((session_id, auth_token, content_tokens or {}))
        if self.gate is not None:
            await self.gate.wait()
        if self.unavailable:
            raise BackendUnavailableError("backend down")
        if auth_token in self.rejected or auth_token not in self.records:
            raise AuthenticationRejectedError("rejected", auth_token)
        return AuthenticatedClientRecord.from_backend(self.records[auth_token])

    async def report_offline(self, uid: str) -> None:
        self.offline_reports.append(uid)

    def validate_service_key(self, candidate) -> bool:
        return not self.service_key or candidate == self.service_key

    async def aclose(self) -> None:
        pass


class RecordingObserver(LifecycleObserver):
    def __init__(self):
        self.events: list[tuple] = []

    def setup(self, manager) -> None:
        self.events.append(("setup",))

    def connection_opened(self, session_id):
        self.events.append(("opened", session_id))

    def connection_closed(self, session_id):
        self.events.append(("closed", session_id))

    def client_authenticated(self, session_id, record):
        self.events.append(("authenticated", session_id, record.uid))

    def client_to_channel_message(self, session_id, message):
        self.events.append(("to_channel", session_id, message))

    def client_to_client_message(self, session_id, message):
        self.events.append(("to_client", session_id, message))

    def message_published(self, message, sent_count):
        self.events.append(("published", message, sent_count))

    def named(self, name: str) -> list[tuple]:
        return [e for e in self.events if e[0] == name]


@pytest.fixture()
def relay_config():
    return RelayConfig(
        service_key="test-key",
        presence_delay=SHORT_DELAY,
        content_channel_delay=SHORT_DELAY,
    )


@pytest.fixture()
def backend():
    return FakeBackend()


@pytest.fixture()
def observer():
    return RecordingObserver()


@pytest.fixture()
def manager(relay_config, backend, observer):
    return ClientManager(relay_config, backend, ExtensionRegistry([observer]))
