# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

"""
Presence tracking per uid.

    absent --(first authenticated session)--> online
    online --(last session gone for `delay` seconds, no reconnect)--> absent

The online transition fires synchronously and only when the uid had no
entry yet, so concurrent authentications of the same uid notify once.
The offline transition is debounced: every disconnect of the uid
replaces the pending check, and the check itself re-verifies that the
uid has no live session before notifying observers and the backend.
"""

import logging
from typing import Any, Protocol

from .messages import is_valid_uid
from .scheduler import DebounceScheduler
from .sessions import SessionRegistry
from .types import PresenceEvent

log = logging.getLogger("relay.presence")


class OfflineReporter(Protocol):
    async def report_offline(self, uid: str) -> None: ...


class PresenceTracker:
    def __init__(
        self,
        sessions: SessionRegistry,
        backend: OfflineReporter,
        delay: float = 2.0,
        scheduler: DebounceScheduler | None = None,
    ):
        self._sessions = sessions
        self._backend = backend
        self.delay = delay
        self.scheduler = scheduler or DebounceScheduler("presence")
        # uid -> uids allowed to observe this uid's presence
        self.online_users: dict[str, list[str]] = {}

    def is_online(self, uid: str) -> bool:
        return uid in self.online_users

    def observers_of(self, uid: str) -> list[str]:
        return list(self.online_users.get(uid, []))

    def mark_online(self, uid: str, observers: list[str]) -> bool:
        """Record *uid* as online; notifies observers only on the first session."""
        first = uid not in self.online_users
        self.online_users[uid] = list(observers)
        self.scheduler.cancel(uid)
        if first:
            self.notify(uid, PresenceEvent.ONLINE)
        return first

    def session_closed(self, uid: str) -> None:
        self.scheduler.schedule_once(uid, self.delay, lambda: self.check_online_status(uid))

    async def check_online_status(self, uid: str) -> bool:
        if self._sessions.session_ids_for_uid(uid):
            log.debug("check_online_status: %s reconnected, staying online", uid)
            return False
        log.debug("Sending offline notification for %s", uid)
        return await self.set_user_offline(uid)

    async def set_user_offline(self, uid: str) -> bool:
        if uid not in self.online_users:
            return False
        self.notify(uid, PresenceEvent.OFFLINE)
        del self.online_users[uid]
        await self._backend.report_offline(uid)
        return True

    def notify(self, uid: str, event: PresenceEvent) -> int:
        message: dict[str, Any] = {"presenceNotification": {"uid": uid, "event": event.value}}
        sent = 0
        for observer in self.online_users.get(uid, []):
            session_ids = self._sessions.session_ids_for_uid(observer)
            if session_ids:
                log.debug("Sending presence notification for %s to %s", uid, observer)
            for session_id in session_ids:
                if self._sessions.send(session_id, message):
                    sent += 1
        return sent

    def set_presence_list(self, uid: str, uids: list[str]) -> bool:
        """Replace the observer list of *uid*; every entry must be a decimal uid."""
        for candidate in uids:
            if not is_valid_uid(candidate):
                log.info("Invalid uid in presence list for %s: %s", uid, candidate)
                return False
        self.online_users[uid] = list(uids)
        return True

    def shutdown(self) -> None:
        self.scheduler.cancel_all()

    def __len__(self) -> int:
        return len(self.online_users)
