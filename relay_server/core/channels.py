# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

import logging
from typing import Any

from .sessions import SessionRegistry
from .types import Channel

log = logging.getLogger("relay.channels")


class ChannelRegistry:
    """Named channels and the sessions that belong to them.

    Channel names are trusted here; the management routes validate them
    before they reach the registry.
    """

    def __init__(self, sessions: SessionRegistry):
        self._sessions = sessions
        self._channels: dict[str, Channel] = {}

    # -----------------------------------------------------------------
    # Channels
    # -----------------------------------------------------------------

    def ensure_channel(self, name: str, client_writable: bool = False) -> Channel:
        channel = self._channels.get(name)
        if channel is None:
            channel = Channel(name=name, client_writable=client_writable)
            self._channels[name] = channel
            log.debug("Created channel '%s'", name)
        return channel

    def add_channel(self, name: str, client_writable: bool = False) -> bool:
        if name in self._channels:
            log.info("Channel name '%s' already exists.", name)
            return False
        self._channels[name] = Channel(name=name, client_writable=client_writable)
        log.debug("Successfully added channel '%s'", name)
        return True

    def remove_channel(self, name: str) -> bool:
        if self._channels.pop(name, None) is None:
            log.info("Non-existent channel name '%s'", name)
            return False
        log.debug("Successfully removed channel '%s'", name)
        return True

    def check_channel(self, name: str) -> bool:
        return name in self._channels

    def get(self, name: str) -> Channel | None:
        return self._channels.get(name)

    def is_writable_by_clients(self, name: str) -> bool:
        channel = self._channels.get(name)
        return channel.client_writable if channel else False

    # -----------------------------------------------------------------
    # Membership
    # -----------------------------------------------------------------

    def is_member(self, session_id: str, name: str) -> bool:
        channel = self._channels.get(name)
        return channel is not None and session_id in channel.session_ids

    def add_member(self, name: str, session_id: str) -> bool:
        if session_id not in self._sessions:
            log.info("add_member: session %s is not live", session_id)
            return False
        self.ensure_channel(name).session_ids.add(session_id)
        return True

    def remove_member(self, name: str, session_id: str) -> bool:
        channel = self._channels.get(name)
        if channel is None or session_id not in channel.session_ids:
            return False
        channel.session_ids.discard(session_id)
        return True

    def remove_session(self, session_id: str) -> list[str]:
        """Strip *session_id* from every channel; returns the channels it left."""
        left = []
        for channel in self._channels.values():
            if session_id in channel.session_ids:
                channel.session_ids.discard(session_id)
                left.append(channel.name)
        return left

    def channels_for_session(self, session_id: str) -> list[str]:
        return [c.name for c in self._channels.values() if session_id in c.session_ids]

    # -----------------------------------------------------------------
    # Delivery
    # -----------------------------------------------------------------

    def publish(self, name: str, message: dict[str, Any]) -> int:
        """Send *message* to every live member; returns how many were reached."""
        channel = self._channels.get(name)
        if channel is None:
            log.info("publish: The channel '%s' doesn't exist.", name)
            return 0

        sent = 0
        stale = []
        for session_id in list(channel.session_ids):
            if session_id not in self._sessions:
                stale.append(session_id)
                continue
            if self._sessions.send(session_id, message):
                sent += 1

        if stale:
            channel.session_ids.difference_update(stale)
            log.debug("publish: pruned %d stale members from '%s'", len(stale), name)

        log.debug("Sent message to %d clients in channel '%s'", sent, name)
        return sent

    def broadcast_all(self, message: dict[str, Any]) -> int:
        sent = 0
        for session_id in self._sessions.session_ids():
            if self._sessions.send(session_id, message):
                sent += 1
        log.debug("Broadcast message to %d clients", sent)
        return sent

    def __len__(self) -> int:
        return len(self._channels)

    def __contains__(self, name: object) -> bool:
        return name in self._channels
