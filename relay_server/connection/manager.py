# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

"""
ClientManager - coordinates the registries for every connection event

Connection lifecycle:

    add_session          -> Session registered (CONNECTED)
    authenticate         -> reconnect cache or backend (AUTHENTICATING)
    setup_client_connection
                         -> channels joined, content tokens claimed,
                            presence fired (AUTHENTICATED)
    cleanup_session      -> memberships stripped, debounced presence and
                            content-channel checks scheduled, session
                            removed (DISCONNECTED)

Administrative commands from the management routes (kick, logout,
channel membership, publishing, content tokens) land here as well.
Everything runs on one event loop; registry mutations never await, so
no locking is needed.
"""

import asyncio
import logging
from functools import partial
from typing import Any

from ..config import RelayConfig
from ..core.auth_cache import AuthenticatedClientCache
from ..core.channels import ChannelRegistry
from ..core.messages import Authenticate, ClientMessage, PublishRequest
from ..core.presence import PresenceTracker
from ..core.scheduler import DebounceScheduler
from ..core.sessions import SessionRegistry
from ..core.token_channels import TokenChannelAuthenticator
from ..core.types import AuthenticatedClientRecord, Session, SessionState
from ..errors import AuthenticationRejectedError, BackendError
from ..extensions import ExtensionRegistry

log = logging.getLogger("relay.manager")

CLOSE_KICKED = 4403
CLOSE_LOGGED_OUT = 4401
CLOSE_GOING_AWAY = 1001


class ClientManager:
    """Facade over the session, channel, token-channel and presence registries.

    Example Usage:
        ```python
        manager = ClientManager(config, backend)
        manager.add_session("ws_1a2b", connection)
        await manager.authenticate("ws_1a2b", Authenticate(auth_token="t0k"))
        manager.publish_message_to_channel({"channel": "news", "text": "hi"})
        ```
    """

    def __init__(
        self,
        config: RelayConfig,
        backend,
        extensions: ExtensionRegistry | None = None,
    ):
        self.config = config
        self.backend = backend
        self.extensions = extensions or ExtensionRegistry()

        self.sessions = SessionRegistry(self.extensions)
        self.channels = ChannelRegistry(self.sessions)
        self.tokens = TokenChannelAuthenticator(self.sessions)
        self.presence = PresenceTracker(self.sessions, backend, delay=config.presence_delay)
        self.auth_cache = AuthenticatedClientCache(config.auth_cache_size, config.auth_cache_ttl)
        self.content_scheduler = DebounceScheduler("content_channel")

        # session_id -> in-flight backend authentication
        self._auth_tasks: dict[str, asyncio.Future] = {}

    # -----------------------------------------------------------------
    # Connect / authenticate
    # -----------------------------------------------------------------

    def add_session(self, session_id: str, transport: Any) -> Session:
        session = Session(session_id=session_id, transport=transport)
        self.sessions.register(session)
        return session

    def _begin_authentication(self, session_id: str) -> Session | None:
        session = self.sessions.find(session_id)
        if session is None:
            log.info(f"authenticate: session {session_id} went away")
            return None

        log.debug(f"Authenticating session {session_id}")
        session.state = SessionState.AUTHENTICATING

        previous = self._auth_tasks.pop(session_id, None)
        if previous is not None:
            previous.cancel()
        return session

    def authenticate_from_cache(self, session_id: str, frame: Authenticate) -> bool:
        """Set the session up from a cached record, without suspending.

        Returns False when the token has no cached record (or the session
        is gone); :meth:`authenticate` then asks the backend.
        """
        record = self.auth_cache.get(frame.auth_token)
        if record is None or self._begin_authentication(session_id) is None:
            return False
        log.debug(f"Reusing existing authentication data for session {session_id}")
        return self.setup_client_connection(session_id, record, frame.content_tokens)

    async def authenticate(self, session_id: str, frame: Authenticate) -> bool:
        """Resolve *frame*'s auth token and set the session up.

        A cached record for the token skips the backend.  Any backend
        failure leaves the session registered but unauthenticated.
        """
        if self.authenticate_from_cache(session_id, frame):
            return True
        if self._begin_authentication(session_id) is None:
            return False

        task = asyncio.ensure_future(
            self.backend.authenticate(session_id, frame.auth_token, frame.content_tokens)
        )
        self._auth_tasks[session_id] = task
        try:
            record = await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            log.debug(f"Authentication for session {session_id} cancelled")
            return False
        except AuthenticationRejectedError:
            self.auth_cache.remove(frame.auth_token)
            self._authentication_failed(session_id, task)
            return False
        except BackendError as e:
            log.warning(f"Authentication for session {session_id} failed: {e}")
            self._authentication_failed(session_id, task)
            return False
        finally:
            if self._auth_tasks.get(session_id) is task:
                del self._auth_tasks[session_id]

        self.auth_cache.put(record)
        return self.setup_client_connection(
            session_id, record, frame.content_tokens or record.content_tokens
        )

    def _authentication_failed(self, session_id: str, task: asyncio.Future) -> None:
        session = self.sessions.find(session_id)
        # a newer authenticate frame owns the state now
        if session is not None and self._auth_tasks.get(session_id) in (None, task):
            session.state = SessionState.CONNECTED

    def setup_client_connection(
        self,
        session_id: str,
        record: AuthenticatedClientRecord,
        content_tokens: dict[str, str] | None = None,
    ) -> bool:
        session = self.sessions.find(session_id)
        if session is None:
            log.info(f"Client socket '{session_id}' went away.")
            return False

        previous_uid = session.uid
        session.auth_token = record.auth_token
        session.uid = record.uid

        # re-authenticated as someone else: the old uid lost this session
        if previous_uid and previous_uid != session.uid:
            self.presence.session_closed(previous_uid)

        # exactly the granted channels
        self.channels.remove_session(session_id)
        for channel in record.channels:
            self.channels.add_member(channel, session_id)

        if session.uid:
            self.presence.mark_online(session.uid, record.presence_uids)

        claimed = self.tokens.claim_bundle(session_id, content_tokens or {})

        session.state = SessionState.AUTHENTICATED
        self.extensions.emit("client_authenticated", session_id, record)

        log.debug(
            f"Added channels for uid {session.uid}: {record.channels}, token channels: {claimed}"
        )
        return True

    # -----------------------------------------------------------------
    # Client messages
    # -----------------------------------------------------------------

    def process_message(self, session_id: str, message: ClientMessage) -> bool:
        """Hand a client message to observers if the sender may write it.

        Channel messages need membership of a client-writable channel.
        Messages without a channel need `clients_can_write_to_clients` and
        an authenticated sender.
        """
        session = self.sessions.find(session_id)
        if session is None:
            return False

        if message.channel is not None:
            if self.channels.is_writable_by_clients(message.channel) and self.channels.is_member(
                session_id, message.channel
            ):
                self.extensions.emit("client_to_channel_message", session_id, message.body)
                return True
            log.debug(
                f"Received unauthorised message from client {session_id}: "
                f"cannot write to channel '{message.channel}'"
            )
            return False

        if self.config.clients_can_write_to_clients and session.is_authenticated:
            self.extensions.emit("client_to_client_message", session_id, message.body)
            return True

        log.debug(f"Received unauthorised message from client {session_id}: cannot write to client")
        return False

    # -----------------------------------------------------------------
    # Disconnect
    # -----------------------------------------------------------------

    def cleanup_session(self, session_id: str) -> bool:
        task = self._auth_tasks.pop(session_id, None)
        if task is not None:
            task.cancel()

        session = self.sessions.find(session_id)
        if session is None:
            return False

        log.debug(f"Cleaning up after session {session_id}, uid {session.uid}")

        self.channels.remove_session(session_id)

        if session.uid:
            self.presence.session_closed(session.uid)

        identity = session.identity
        for channel in self.tokens.channels_claimed_by(session_id):
            payload = self.tokens.release_session(channel, session_id)
            if payload and payload.get("notifyOnDisconnect"):
                self.content_scheduler.schedule_once(
                    f"{channel}:{identity}",
                    self.config.content_channel_delay,
                    partial(self.tokens.check_disconnect, channel, identity, session.uid),
                )

        session.state = SessionState.DISCONNECTED
        self.sessions.unregister(session_id)
        return True

    def _disconnect(self, session_ids: list[str], code: int, reason: str) -> int:
        for session_id in session_ids:
            session = self.sessions.find(session_id)
            if session is None:
                continue
            self.cleanup_session(session_id)
            session.transport.close(code, reason)
        return len(session_ids)

    def kick_user(self, uid: str) -> int:
        """Drop every cached record and live session of *uid*."""
        self.auth_cache.remove_uid(uid)
        count = self._disconnect(self.sessions.session_ids_for_uid(uid), CLOSE_KICKED, "Kicked")
        log.info(f"Kicked uid {uid}: {count} sessions closed")
        return count

    def logout_user(self, auth_token: str) -> int:
        """Drop the cached record of *auth_token* and disconnect its sessions."""
        self.auth_cache.remove(auth_token)
        count = self._disconnect(
            self.sessions.session_ids_for_auth_token(auth_token), CLOSE_LOGGED_OUT, "Logged out"
        )
        log.info(f"Logged out auth token: {count} sessions closed")
        return count

    # -----------------------------------------------------------------
    # Channel administration
    # -----------------------------------------------------------------

    def add_user_to_channel(self, channel: str, uid: str) -> bool:
        self.channels.ensure_channel(channel)

        session_ids = self.sessions.session_ids_for_uid(uid)
        if not session_ids:
            log.info(f"No active sessions for uid: {uid}")
            return False
        for session_id in session_ids:
            self.channels.add_member(channel, session_id)
        log.debug(f"Added channel '{channel}' to sessions {session_ids}")

        # reconnects with a cached record rejoin the channel
        for record in self.auth_cache.records_for_uid(uid):
            if channel not in record.channels:
                record.channels.append(channel)
        return True

    def remove_user_from_channel(self, channel: str, uid: str) -> bool:
        if not self.channels.check_channel(channel):
            log.info(f"Non-existent channel name '{channel}'")
            return False

        for session_id in self.sessions.session_ids_for_uid(uid):
            self.channels.remove_member(channel, session_id)
        for record in self.auth_cache.records_for_uid(uid):
            if channel in record.channels:
                record.channels.remove(channel)

        log.debug(f"Successfully removed uid '{uid}' from channel '{channel}'")
        return True

    def add_auth_token_to_channel(self, channel: str, auth_token: str) -> bool:
        record = self.auth_cache.get(auth_token)
        if record is None:
            log.info("Unknown authToken")
            return False

        self.channels.ensure_channel(channel)
        session_ids = self.sessions.session_ids_for_auth_token(auth_token)
        if not session_ids:
            log.info("No active sessions for authToken")
            return False
        for session_id in session_ids:
            self.channels.add_member(channel, session_id)

        if channel not in record.channels:
            record.channels.append(channel)
        return True

    def remove_auth_token_from_channel(self, channel: str, auth_token: str) -> bool:
        record = self.auth_cache.get(auth_token)
        if record is None:
            log.info("Invalid authToken")
            return False
        if not self.channels.check_channel(channel):
            log.info(f"Non-existent channel name '{channel}'")
            return False

        for session_id in self.sessions.session_ids_for_auth_token(auth_token):
            self.channels.remove_member(channel, session_id)
        if channel in record.channels:
            record.channels.remove(channel)
        return True

    def add_channel(self, channel: str, client_writable: bool = False) -> bool:
        return self.channels.add_channel(channel, client_writable)

    def remove_channel(self, channel: str) -> bool:
        return self.channels.remove_channel(channel)

    def check_channel(self, channel: str) -> bool:
        active = self.channels.check_channel(channel)
        log.debug(f"Channel name '{channel}' is {'' if active else 'not '}active on the server.")
        return active

    # -----------------------------------------------------------------
    # Publishing
    # -----------------------------------------------------------------

    def publish(self, request: PublishRequest) -> int:
        """Deliver a backend publish request; returns the number of sessions reached."""
        if request.broadcast:
            sent = self.broadcast_message(request.message)
        else:
            sent = self.publish_message_to_channel(request.message)
        self.extensions.emit("message_published", request.message, sent)
        return sent

    def publish_message_to_channel(self, message: dict[str, Any]) -> int:
        channel = message.get("channel")
        if not channel:
            log.info("publish_message_to_channel: An invalid message object was provided.")
            return 0
        return self.channels.publish(channel, message)

    def broadcast_message(self, message: dict[str, Any]) -> int:
        return self.channels.broadcast_all(message)

    def publish_message_to_client(self, session_id: str, message: dict[str, Any]) -> bool:
        if self.sessions.send(session_id, message):
            log.debug(f"Sent message to client {session_id}")
            return True
        log.info(f"publish_message_to_client: Failed to find client {session_id}")
        return False

    def publish_message_to_content_channel(self, channel: str, message: dict[str, Any]) -> bool:
        return self.tokens.publish(channel, message)

    # -----------------------------------------------------------------
    # Content tokens and presence
    # -----------------------------------------------------------------

    def set_content_token(self, channel: str, token: str, payload: dict[str, Any]) -> None:
        self.tokens.set_token(channel, token, payload)

    def get_content_token_channel_users(self, channel: str) -> dict[str, list[str]]:
        return self.tokens.members_of(channel)

    def set_user_presence_list(self, uid: str, uids: list[str]) -> bool:
        return self.presence.set_presence_list(uid, uids)

    # -----------------------------------------------------------------
    # Stats / shutdown
    # -----------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        return {
            "authenticatedClients": len(self.auth_cache),
            "sockets": len(self.sessions),
            "onlineUsers": len(self.presence),
            "tokenChannels": len(self.tokens),
            "contentTokens": self.tokens.snapshot(),
        }

    async def shutdown(self) -> None:
        log.info(f"Shutting down client manager ({len(self.sessions)} sessions)")
        for task in self._auth_tasks.values():
            task.cancel()
        self._auth_tasks.clear()

        self.presence.shutdown()
        self.content_scheduler.cancel_all()

        for session_id in self.sessions.session_ids():
            session = self.sessions.find(session_id)
            if session is not None:
                session.transport.close(CLOSE_GOING_AWAY, "Server shutting down")

        await self.presence.scheduler.drain()
        await self.content_scheduler.drain()
