# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

"""
Typed messages decoded once at the boundary.

Client frames arrive as ``{"t": <type>, "p": <payload>}`` JSON objects
and become :class:`Authenticate`, :class:`ClientMessage` or :class:`Ping`.
Management request bodies become :class:`PublishRequest`,
:class:`ContentTokenGrant`, :class:`ContentChannelQuery` or
:class:`DebugToggle`.  Anything malformed raises
:class:`~relay_server.errors.MessageDecodeError`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from ..errors import MessageDecodeError

CHANNEL_NAME_RE = re.compile(r"^[a-z0-9_]+$", re.IGNORECASE)
UID_RE = re.compile(r"^\d+$")


def is_valid_channel_name(name: Any) -> bool:
    return isinstance(name, str) and bool(CHANNEL_NAME_RE.match(name))


def is_valid_uid(uid: Any) -> bool:
    return isinstance(uid, str) and bool(UID_RE.match(uid))


# ---------------------------------------------------------------------------
# Client frames
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Authenticate:
    auth_token: str
    content_tokens: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ClientMessage:
    """Arbitrary client message; ``channel`` is None for client-to-client."""

    type: str
    body: dict[str, Any]
    channel: str | None = None


@dataclass(frozen=True)
class Ping:
    payload: dict[str, Any] = field(default_factory=dict)


ClientFrame = Authenticate | ClientMessage | Ping


def _decode_content_tokens(raw: Any) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise MessageDecodeError("contentTokens must be an object")
    tokens: dict[str, str] = {}
    for channel, token in raw.items():
        if not isinstance(token, (str, int)) or isinstance(token, bool):
            raise MessageDecodeError(f"content token for '{channel}' must be a string")
        tokens[str(channel)] = str(token)
    return tokens


def decode_client_frame(frame: Any) -> ClientFrame:
    """Decode one parsed WebSocket frame into a typed client event."""
    if not isinstance(frame, dict):
        raise MessageDecodeError("Frame must be a JSON object")

    frame_type = frame.get("t")
    payload = frame.get("p", {})
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise MessageDecodeError("Frame payload must be a JSON object")

    if frame_type == "authenticate":
        auth_token = payload.get("authToken")
        if not isinstance(auth_token, str) or not auth_token:
            raise MessageDecodeError("authenticate requires a non-empty authToken", "AUTH_TOKEN_MISSING")
        return Authenticate(
            auth_token=auth_token,
            content_tokens=_decode_content_tokens(payload.get("contentTokens")),
        )

    if frame_type == "message":
        message_type = payload.get("type")
        if not isinstance(message_type, str) or not message_type:
            raise MessageDecodeError("message requires a 'type'")
        channel = payload.get("channel")
        if channel is not None and not isinstance(channel, str):
            raise MessageDecodeError("message 'channel' must be a string")
        return ClientMessage(type=message_type, body=payload, channel=channel)

    if frame_type == "ping":
        return Ping(payload=payload)

    raise MessageDecodeError(f"Unknown frame type: {frame_type!r}", "UNKNOWN_TYPE")


# ---------------------------------------------------------------------------
# Management requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PublishRequest:
    """Message pushed by the backend; ``broadcast`` ignores ``channel``."""

    message: dict[str, Any]
    channel: str | None = None
    broadcast: bool = False


@dataclass(frozen=True)
class ContentTokenGrant:
    channel: str
    token: str
    payload: dict[str, Any]


@dataclass(frozen=True)
class ContentChannelQuery:
    channel: str


@dataclass(frozen=True)
class DebugToggle:
    debug: bool


_MISSING = "Required parameters are missing."


def _require_object(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise MessageDecodeError("Request body must be a JSON object")
    return body


def decode_publish_request(body: Any) -> PublishRequest:
    body = _require_object(body)
    channel = body.get("channel")
    broadcast = bool(body.get("broadcast"))
    if not broadcast and not channel:
        raise MessageDecodeError(_MISSING)
    if channel is not None and not isinstance(channel, str):
        raise MessageDecodeError("'channel' must be a string")
    return PublishRequest(message=body, channel=channel or None, broadcast=broadcast)


def decode_content_token_grant(body: Any) -> ContentTokenGrant:
    body = _require_object(body)
    channel = body.get("channel")
    token = body.get("token")
    if not channel or not token:
        raise MessageDecodeError(_MISSING)
    return ContentTokenGrant(channel=str(channel), token=str(token), payload=body)


def decode_content_channel_query(body: Any) -> ContentChannelQuery:
    body = _require_object(body)
    channel = body.get("channel")
    if not channel:
        raise MessageDecodeError(_MISSING)
    return ContentChannelQuery(channel=str(channel))


def decode_debug_toggle(body: Any) -> DebugToggle:
    body = _require_object(body)
    if "debug" not in body:
        raise MessageDecodeError(_MISSING)
    debug = body["debug"]
    if isinstance(debug, str):
        debug = debug.strip().lower() in ("1", "true", "yes", "on")
    return DebugToggle(debug=bool(debug))
