# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

import logging
from typing import TYPE_CHECKING, Any

from .types import Session

if TYPE_CHECKING:
    from ..extensions import ExtensionRegistry

log = logging.getLogger("relay.sessions")


class SessionRegistry:
    """Live connections keyed by session id.

    Lookups by uid or auth token are linear scans; the session count is
    bounded by what one process can hold open.
    """

    def __init__(self, extensions: "ExtensionRegistry | None" = None):
        self._sessions: dict[str, Session] = {}
        self._extensions = extensions

    def register(self, session: Session) -> None:
        self._sessions[session.session_id] = session
        log.debug("Registered session %s (%d live)", session.session_id, len(self._sessions))
        if self._extensions is not None:
            self._extensions.emit("connection_opened", session.session_id)

    def unregister(self, session_id: str) -> Session | None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        log.debug("Unregistered session %s (%d live)", session_id, len(self._sessions))
        if self._extensions is not None:
            self._extensions.emit("connection_closed", session_id)
        return session

    def find(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def session_ids_for_uid(self, uid: str | None) -> list[str]:
        if uid is None:
            return []
        return [sid for sid, s in self._sessions.items() if s.uid == uid]

    def session_ids_for_auth_token(self, auth_token: str | None) -> list[str]:
        if not auth_token:
            return []
        return [sid for sid, s in self._sessions.items() if s.auth_token == auth_token]

    def session_ids_for_identity(self, identity: str | None) -> list[str]:
        """Sessions whose uid, or auth token when anonymous, equals *identity*."""
        if not identity:
            return []
        return [sid for sid, s in self._sessions.items() if s.identity == identity]

    def send(self, session_id: str, message: dict[str, Any]) -> bool:
        """Hand *message* to the session's transport; False if it is gone."""
        session = self._sessions.get(session_id)
        if session is None:
            log.debug("send: no live session %s", session_id)
            return False
        return bool(session.transport.send(message))

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions
