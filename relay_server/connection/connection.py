# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import orjson

log = logging.getLogger("relay.connection")

MAX_MESSAGE_SIZE = 64 * 1024  # 64KB - reject frames larger than this
SEND_QUEUE_SIZE = 1000


class WebSocketState(Enum):
    """WebSocket connection states (mirrors Starlette for compatibility)"""

    CONNECTING = 0
    CONNECTED = 1
    DISCONNECTED = 2


def _orjson_default(obj):
    """orjson default handler for types not natively supported."""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, set):
        return list(obj)
    raise TypeError(f"Type {type(obj)} is not JSON serializable")


def dumps(data: dict[str, Any]) -> str:
    return orjson.dumps(data, default=_orjson_default).decode()


@dataclass(frozen=True)
class _CloseRequest:
    code: int
    reason: str


@dataclass
class ConnectionMetrics:
    messages_sent: int = 0
    messages_received: int = 0
    messages_dropped: int = 0
    bytes_sent: int = 0
    bytes_received: int = 0
    protocol_errors: int = 0
    connected_since: float = field(default_factory=time.time)


# =============================================================================
# RelayConnection
# =============================================================================


@dataclass
class RelayConnection:
    """One WebSocket connection: bounded outbound queue plus a sender task.

    ``send`` is synchronous and never waits: registries call it while
    fanning out, and a full queue drops the message instead of stalling
    the publisher.  ``close`` likewise only schedules the close.
    """

    conn_id: str
    ws: Any  # starlette WebSocket or anything with send_text, close and client_state

    max_message_size: int = MAX_MESSAGE_SIZE
    send_queue_size: int = SEND_QUEUE_SIZE

    metrics: ConnectionMetrics = field(default_factory=ConnectionMetrics)

    # Control
    _running: bool = True
    _queue: asyncio.Queue | None = field(default=None)
    _tasks: set[asyncio.Task] = field(default_factory=set)
    _last_activity: float = field(default_factory=time.time)
    _close_requested: bool = False

    async def initialize(self) -> None:
        # bounded in send(); close requests are always accepted
        self._queue = asyncio.Queue()
        self.start_task(self._sender_loop())
        log.info(f"WebSocket connection {self.conn_id} initialized")

    def start_task(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def is_running(self) -> bool:
        return self._running

    def _is_ws_connected(self) -> bool:
        """Check if the underlying WebSocket is still connected."""
        state = getattr(self.ws, "client_state", None)
        if state is None:
            return True
        if isinstance(state, Enum):
            return state.value == WebSocketState.CONNECTED.value or state.name == "CONNECTED"
        return state == WebSocketState.CONNECTED

    # -----------------------------------------------------------------
    # Outbound
    # -----------------------------------------------------------------

    def send(self, message: dict[str, Any]) -> bool:
        """Queue *message* for delivery; False if closed or the queue is full."""
        if not self._running or self._queue is None:
            return False
        if self._queue.qsize() >= self.send_queue_size:
            self.metrics.messages_dropped += 1
            log.warning(f"Send queue full for {self.conn_id}, dropping message")
            return False
        self._queue.put_nowait(message)
        return True

    def close(self, code: int = 1000, reason: str = "") -> None:
        """Schedule the socket to be closed after queued messages are flushed."""
        if self._close_requested or not self._running:
            return
        self._close_requested = True
        if self._queue is not None:
            self._queue.put_nowait(_CloseRequest(code, reason))

    async def _send_raw(self, message: dict[str, Any]) -> None:
        data = dumps(message)
        await self.ws.send_text(data)
        self.metrics.messages_sent += 1
        self.metrics.bytes_sent += len(data)

    async def _sender_loop(self) -> None:
        """Drain the outbound queue until cancelled."""
        assert self._queue is not None
        while self._running:
            try:
                message = await self._queue.get()

                if isinstance(message, _CloseRequest):
                    log.info(f"Closing connection {self.conn_id}: {message.code} {message.reason}")
                    with contextlib.suppress(Exception):
                        await self.ws.close(code=message.code, reason=message.reason)
                    self._running = False
                    break

                if not self._is_ws_connected():
                    self._running = False
                    break

                await self._send_raw(message)

            except asyncio.CancelledError:
                break
            except Exception as e:
                log.error(f"Sender loop error on {self.conn_id}: {e}")
                self.metrics.protocol_errors += 1

    # -----------------------------------------------------------------
    # Inbound
    # -----------------------------------------------------------------

    def handle_incoming(self, data: str | bytes) -> Any:
        """Parse one inbound frame; None if oversized or not JSON."""
        self._last_activity = time.time()

        message_size = len(data)
        if message_size > self.max_message_size:
            log.warning(
                f"Message size {message_size} exceeds limit {self.max_message_size} bytes, rejecting"
            )
            self.metrics.protocol_errors += 1
            self.send(
                {
                    "t": "error",
                    "p": {
                        "code": "MESSAGE_TOO_LARGE",
                        "message": f"Message size {message_size} exceeds maximum allowed size of {self.max_message_size} bytes",
                        "max_size": self.max_message_size,
                    },
                }
            )
            return None

        self.metrics.messages_received += 1
        self.metrics.bytes_received += message_size

        try:
            return orjson.loads(data)
        except orjson.JSONDecodeError as e:
            log.debug(f"Failed to parse frame on {self.conn_id}: {e}")
            self.metrics.protocol_errors += 1
            self.send({"t": "error", "p": {"code": "INVALID_JSON", "message": "Frame is not valid JSON"}})
            return None

    # -----------------------------------------------------------------
    # Teardown
    # -----------------------------------------------------------------

    async def cleanup(self) -> None:
        """Stop the sender task and log final counters."""
        self._running = False

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        log.info(
            f"Connection {self.conn_id} closed - "
            f"Messages: {self.metrics.messages_sent}/{self.metrics.messages_received}, "
            f"Bytes: {self.metrics.bytes_sent}/{self.metrics.bytes_received}, "
            f"Dropped: {self.metrics.messages_dropped}"
        )
