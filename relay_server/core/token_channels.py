# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

"""
Token-channel admission.

The backend hands a one-shot token to a not-yet-connected recipient
out-of-band and registers it here with :meth:`set_token`.  When the
recipient's connection authenticates it presents ``{channel: token}``
pairs; a matching pending token is moved to the channel's claimed map and
deleted, so a second session presenting the same token is refused.
"""

import logging
from typing import Any

from .sessions import SessionRegistry
from .types import TokenChannel

log = logging.getLogger("relay.token_channels")


class TokenChannelAuthenticator:
    def __init__(self, sessions: SessionRegistry):
        self._sessions = sessions
        self._channels: dict[str, TokenChannel] = {}

    def _ensure(self, channel: str) -> TokenChannel:
        token_channel = self._channels.get(channel)
        if token_channel is None:
            token_channel = TokenChannel(name=channel)
            self._channels[channel] = token_channel
        return token_channel

    def set_token(self, channel: str, token: str, payload: dict[str, Any]) -> None:
        self._ensure(channel).tokens[token] = payload
        log.debug("Set content token for channel '%s'", channel)

    def claim(self, channel: str, session_id: str, token: str) -> bool:
        token_channel = self._channels.get(channel)
        if token_channel is None:
            log.debug("claim: no token channel '%s'", channel)
            return False

        payload = token_channel.tokens.pop(token, None)
        if payload is None:
            log.debug("claim: token for channel '%s' is unknown or already claimed", channel)
            return False

        token_channel.sessions[session_id] = payload
        log.debug("Added token for channel '%s' for session %s", channel, session_id)
        return True

    def claim_bundle(self, session_id: str, bundle: dict[str, str]) -> list[str]:
        """One claim attempt per ``(channel, token)`` pair; returns the channels joined."""
        return [channel for channel, token in bundle.items() if self.claim(channel, session_id, token)]

    def release_session(self, channel: str, session_id: str) -> dict[str, Any] | None:
        token_channel = self._channels.get(channel)
        if token_channel is None:
            return None
        return token_channel.sessions.pop(session_id, None)

    def channels_claimed_by(self, session_id: str) -> list[str]:
        return [name for name, tc in self._channels.items() if session_id in tc.sessions]

    def members_of(self, channel: str) -> dict[str, list[str]]:
        users: dict[str, list[str]] = {"uids": [], "authTokens": []}
        token_channel = self._channels.get(channel) if channel else None
        if token_channel is None:
            return users

        for session_id in token_channel.sessions:
            session = self._sessions.find(session_id)
            if session is None:
                continue
            if session.uid:
                users["uids"].append(session.uid)
            elif session.auth_token:
                users["authTokens"].append(session.auth_token)
        return users

    def publish(self, channel: str, message: dict[str, Any]) -> bool:
        token_channel = self._channels.get(channel)
        if token_channel is None:
            log.info("publish: The token channel '%s' doesn't exist.", channel)
            return False
        for session_id in list(token_channel.sessions):
            self._sessions.send(session_id, message)
        return True

    def check_disconnect(self, channel: str, identity: str | None, uid: str | None) -> int:
        """Tell the remaining members that *identity* left *channel*.

        Nothing is sent if the token channel is gone or if *identity* still
        holds a claimed session in it (it reconnected within the window).
        The notification carries *uid*, None for anonymous sessions, never
        the auth token *identity* may stand for.  Returns the number of
        sessions notified.
        """
        token_channel = self._channels.get(channel)
        if token_channel is None:
            log.debug("check_disconnect: no token channel '%s'", channel)
            return 0

        for session_id in self._sessions.session_ids_for_identity(identity):
            if session_id in token_channel.sessions:
                log.debug("check_disconnect: %s still present in '%s'", uid or "anonymous session", channel)
                return 0

        message = {
            "channel": channel,
            "contentChannelNotification": True,
            "data": {"uid": uid, "type": "disconnect"},
        }
        sent = 0
        for session_id in list(token_channel.sessions):
            if self._sessions.send(session_id, message):
                sent += 1
        log.debug(
            "Sent disconnect notification for %s to %d sessions in '%s'", uid or "anonymous session", sent, channel
        )
        return sent

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Pending tokens and claimed session counts per channel (health check)."""
        return {
            name: {"tokens": dict(tc.tokens), "sessions": len(tc.sessions)}
            for name, tc in self._channels.items()
        }

    def __len__(self) -> int:
        return len(self._channels)
