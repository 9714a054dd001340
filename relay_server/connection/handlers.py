# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from ..core.messages import Authenticate, ClientFrame, ClientMessage, Ping, decode_client_frame
from ..errors import MessageDecodeError

log = logging.getLogger("relay.handlers")

# A handler is an async callable that takes a decoded client frame
HandlerFunc = Callable[[Any], Coroutine[Any, Any, None]]


class RelayHandler:
    """Routes decoded client frames to the client manager.

    Frames are decoded once with :func:`decode_client_frame`; a frame that
    does not decode is answered with an ``error`` frame and changes no
    state.  Messages that arrive while an authentication is still waiting
    on the backend are held and processed, in order, once it settles.
    Extra frame classes can be routed with :meth:`register`.
    """

    def __init__(self, connection, manager):
        """
        Args:
            connection: RelayConnection the frames arrived on
            manager: ClientManager owning the registries
        """
        self.connection = connection
        self.manager = manager
        self._auth_task: asyncio.Task | None = None
        self._deferred: list[ClientFrame] = []

        self.handlers: dict[type, HandlerFunc] = {
            Authenticate: self.handle_authenticate,
            ClientMessage: self.handle_client_message,
            Ping: self.handle_ping,
        }

    def register(self, frame_class: type, handler: HandlerFunc) -> None:
        """Register a handler for a frame class, replacing any existing one."""
        self.handlers[frame_class] = handler
        log.debug(f"Registered handler for frame class: {frame_class.__name__}")

    # -----------------------------------------------------------------
    # Message routing
    # -----------------------------------------------------------------

    async def handle_message(self, message_data: Any) -> None:
        try:
            frame = decode_client_frame(message_data)
        except MessageDecodeError as e:
            log.info(f"Rejected frame on {self.connection.conn_id}: {e}")
            self._send_error(str(e), e.code)
            return

        handler = self.handlers.get(type(frame))
        if handler is None:
            log.warning(f"No handler for frame {type(frame).__name__}")
            return

        try:
            await handler(frame)
        except Exception as e:
            log.error(f"Error handling {type(frame).__name__}: {e}", exc_info=True)
            self._send_error("Error processing message", "HANDLER_ERROR")

    # -----------------------------------------------------------------
    # Handlers
    # -----------------------------------------------------------------

    async def handle_authenticate(self, frame: ClientFrame) -> None:
        conn_id = self.connection.conn_id
        if self.manager.authenticate_from_cache(conn_id, frame):
            self._auth_task = None
            self._flush_deferred()
            return

        # runs beside the receive loop so a disconnect can cancel it
        task = self.connection.start_task(self.manager.authenticate(conn_id, frame))
        self._auth_task = task
        task.add_done_callback(self._authentication_done)

    async def handle_client_message(self, frame: ClientFrame) -> None:
        if self._auth_task is not None and not self._auth_task.done():
            # held until the pending authentication settles
            if len(self._deferred) >= self.connection.send_queue_size:
                log.warning(f"Dropping message on {self.connection.conn_id}: authentication still pending")
                return
            self._deferred.append(frame)
            return
        self.manager.process_message(self.connection.conn_id, frame)

    async def handle_ping(self, frame: ClientFrame) -> None:
        self.connection.send({"t": "pong"})

    def _authentication_done(self, task) -> None:
        if task is not self._auth_task:
            return
        self._auth_task = None
        if task.cancelled():
            self._deferred.clear()
            return
        self._flush_deferred()

    def _flush_deferred(self) -> None:
        deferred, self._deferred = self._deferred, []
        for frame in deferred:
            self.manager.process_message(self.connection.conn_id, frame)

    def _send_error(self, message: str, code: str) -> None:
        self.connection.send({"t": "error", "p": {"code": code, "message": message}})
