"""Example extension -- a chat channel relay plus a custom route.

Load it from the settings file::

    {"extensions": ["examples.example_extension:ChatExtension"]}

or pass an instance to ``create_relay_app(config, extensions=[ChatExtension()])``.

Messages a client sends into a client-writable channel it belongs to are
published back to every member of that channel.  ``GET /example`` answers
without a service key; routes with ``auth = True`` would be mounted under
the management prefix instead.
"""

import logging
from typing import Any

from fastapi import APIRouter

from relay_server import LifecycleObserver

log = logging.getLogger("relay.example_extension")


class ChatExtension(LifecycleObserver):
    auth = False

    def __init__(self):
        self.manager = None

    def setup(self, manager) -> None:
        self.manager = manager
        manager.add_channel("chat", client_writable=True)
        log.info("Chat extension ready")

    def client_to_channel_message(self, session_id: str, message: dict[str, Any]) -> None:
        sent = self.manager.publish_message_to_channel(message)
        log.debug(f"Relayed chat message from {session_id} to {sent} sessions")

    def routes(self) -> APIRouter:
        router = APIRouter()

        @router.get("/example")
        async def example() -> dict[str, Any]:
            return {"text": "Hello world."}

        return router
