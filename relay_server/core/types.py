# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

"""
Relay Core Types

Type definitions shared by the registries:
- SessionState: lifecycle of one connection
- PresenceEvent: presence transitions sent to observers
- SessionTransport: what a session needs from its connection
- Session, AuthenticatedClientRecord, Channel, TokenChannel
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SessionState(Enum):
    """Connection lifecycle as seen by the orchestrator"""

    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    DISCONNECTED = "disconnected"


class PresenceEvent(Enum):
    """Presence transitions"""

    ONLINE = "online"
    OFFLINE = "offline"


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class SessionTransport(Protocol):
    """Outbound side of a live connection.

    ``send`` must not block: it enqueues and returns whether the message
    was accepted.  ``close`` schedules the connection to be torn down.
    """

    def send(self, message: dict[str, Any]) -> bool: ...

    def close(self, code: int = 1000, reason: str = "") -> None: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_uid(uid: Any) -> str | None:
    """Backend uids arrive as ints or strings; 0 and empty mean anonymous."""
    if uid is None or isinstance(uid, bool):
        return None
    uid = str(uid).strip()
    if uid in ("", "0"):
        return None
    return uid


# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass
class Session:
    """One live connection and the identity it has claimed"""

    session_id: str
    transport: Any  # SessionTransport
    auth_token: str | None = None
    uid: str | None = None
    state: SessionState = SessionState.CONNECTED

    @property
    def is_authenticated(self) -> bool:
        return self.state == SessionState.AUTHENTICATED

    @property
    def identity(self) -> str | None:
        """uid when authenticated to a user, else the raw auth token."""
        return self.uid or self.auth_token


@dataclass
class AuthenticatedClientRecord:
    """What the backend granted to an auth token"""

    auth_token: str
    uid: str | None = None
    channels: list[str] = field(default_factory=list)
    presence_uids: list[str] = field(default_factory=list)
    content_tokens: dict[str, str] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_backend(cls, data: dict[str, Any]) -> "AuthenticatedClientRecord":
        """Build a record from a decoded backend authentication response."""
        channels = data.get("channels") or []
        if isinstance(channels, dict):
            channels = list(channels.values())
        presence_uids = data.get("presenceUids") or []
        if isinstance(presence_uids, dict):
            presence_uids = list(presence_uids.values())
        content_tokens = data.get("contentTokens") or {}
        if not isinstance(content_tokens, dict):
            content_tokens = {}

        known = {"authToken", "uid", "channels", "presenceUids", "contentTokens", "serviceKey"}
        return cls(
            auth_token=str(data.get("authToken") or ""),
            uid=normalize_uid(data.get("uid")),
            channels=[str(c) for c in channels],
            presence_uids=[u for u in (normalize_uid(p) for p in presence_uids) if u],
            content_tokens={str(k): str(v) for k, v in content_tokens.items()},
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class Channel:
    """Named broadcast group"""

    name: str
    client_writable: bool = False
    session_ids: set[str] = field(default_factory=set)


@dataclass
class TokenChannel:
    """Channel admission by one-shot tokens"""

    name: str
    # token -> payload, not yet claimed
    tokens: dict[str, dict[str, Any]] = field(default_factory=dict)
    # session_id -> payload of the token it claimed
    sessions: dict[str, dict[str, Any]] = field(default_factory=dict)


# =============================================================================
# EOF
# =============================================================================
