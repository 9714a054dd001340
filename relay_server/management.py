# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

"""
Management routes called by the backend application.

Every route sits under ``RelayConfig.base_auth_path`` and requires the
service-key header.  Path parameters and bodies are validated here, so
the client manager only ever sees well-formed channel names and uids.
Validation failures answer ``{"status": "failed", "error": ...}``.
"""

from __future__ import annotations

import logging
from typing import Any

import orjson
from fastapi import APIRouter, Depends, Query, Request

from .config import RelayConfig, set_debug_logging
from .connection.manager import ClientManager
from .core.messages import (
    decode_content_channel_query,
    decode_content_token_grant,
    decode_debug_toggle,
    decode_publish_request,
    is_valid_channel_name,
    is_valid_uid,
)
from .dependencies import check_service_key, get_client_manager
from .errors import MessageDecodeError

log = logging.getLogger("relay.management")


def _success(**extra: Any) -> dict[str, Any]:
    return {"status": "success", **extra}


def _failed(error: str) -> dict[str, Any]:
    return {"status": "failed", "error": error}


async def _read_json(request: Request) -> Any:
    raw = await request.body()
    if not raw:
        return {}
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError as e:
        raise MessageDecodeError(f"Invalid JSON body: {e}") from e


def _management_prefix(config: RelayConfig) -> str:
    prefix = "/" + config.base_auth_path.strip("/")
    return "" if prefix == "/" else prefix


def create_management_router(config: RelayConfig) -> APIRouter:
    """Create the service-key protected management :class:`APIRouter`.

    The returned router exposes (relative to ``config.base_auth_path``):

    * ``publish``                                 -- publish to a channel or broadcast
    * ``user/kick/{uid}``, ``user/logout/{auth_token}``
    * ``user/channel/{add,remove}/{channel}/{uid}``
    * ``authtoken/channel/{add,remove}/{channel}/{auth_token}``
    * ``channel/{add,remove,check}/{channel}``
    * ``user/presence-list/{uid}/{uid_list}``
    * ``content/token``, ``content/token/users``, ``content/token/message``
    * ``health/check``, ``debug/toggle``
    """

    router = APIRouter(
        prefix=_management_prefix(config),
        dependencies=[Depends(check_service_key)],
    )

    # ------------------------------------------------------------------ #
    # Publishing
    # ------------------------------------------------------------------ #

    @router.post("/publish")
    async def publish_message(
        request: Request, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        try:
            publish = decode_publish_request(await _read_json(request))
        except MessageDecodeError as e:
            return _failed(str(e))

        if publish.broadcast:
            log.debug("Broadcasting message")
        sent = manager.publish(publish)
        return _success(sent=sent)

    # ------------------------------------------------------------------ #
    # Users
    # ------------------------------------------------------------------ #

    @router.post("/user/kick/{uid}")
    async def kick_user(uid: str, manager: ClientManager = Depends(get_client_manager)) -> dict[str, Any]:
        if not is_valid_uid(uid):
            log.info("Invalid uid: %s", uid)
            return _failed("Invalid uid.")
        manager.kick_user(uid)
        return _success()

    @router.post("/user/logout/{auth_token}")
    async def logout_user(
        auth_token: str, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        if not auth_token:
            return _failed("missing authToken")
        log.info("Logging out http session")
        manager.logout_user(auth_token)
        return _success()

    @router.post("/user/channel/add/{channel}/{uid}")
    async def add_user_to_channel(
        channel: str, uid: str, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        if not is_valid_uid(uid):
            log.info("Invalid uid: %s", uid)
            return _failed("Invalid uid.")
        if not is_valid_channel_name(channel):
            log.info("Invalid channel: %s", channel)
            return _failed("Invalid channel name.")

        if manager.add_user_to_channel(channel, uid):
            return _success()
        return _failed("No active sessions for uid.")

    @router.post("/user/channel/remove/{channel}/{uid}")
    async def remove_user_from_channel(
        channel: str, uid: str, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        if not is_valid_uid(uid):
            log.info("Invalid uid: %s", uid)
            return _failed("Invalid uid.")
        if not is_valid_channel_name(channel):
            log.info("Invalid channel: %s", channel)
            return _failed("Invalid channel name.")

        if manager.remove_user_from_channel(channel, uid):
            return _success()
        return _failed("Non-existent channel name.")

    @router.post("/user/presence-list/{uid}/{uid_list}")
    async def set_user_presence_list(
        uid: str, uid_list: str, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        if not is_valid_uid(uid):
            log.info("Invalid uid: %s", uid)
            return _failed("Invalid uid.")
        uids = [u.strip() for u in uid_list.split(",") if u.strip()]
        if not uids:
            return _failed("Empty uid list.")

        if manager.set_user_presence_list(uid, uids):
            return _success()
        return _failed("Invalid uid.")

    # ------------------------------------------------------------------ #
    # Auth tokens
    # ------------------------------------------------------------------ #

    @router.post("/authtoken/channel/add/{channel}/{auth_token}")
    async def add_auth_token_to_channel(
        channel: str, auth_token: str, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        if not is_valid_channel_name(channel):
            log.info("Invalid channel: %s", channel)
            return _failed("Invalid channel name.")

        if manager.add_auth_token_to_channel(channel, auth_token):
            return _success()
        return _failed("Invalid parameters.")

    @router.post("/authtoken/channel/remove/{channel}/{auth_token}")
    async def remove_auth_token_from_channel(
        channel: str, auth_token: str, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        if not is_valid_channel_name(channel):
            log.info("Invalid channel: %s", channel)
            return _failed("Invalid channel name.")

        if manager.remove_auth_token_from_channel(channel, auth_token):
            return _success()
        return _failed("Invalid parameters.")

    # ------------------------------------------------------------------ #
    # Channels
    # ------------------------------------------------------------------ #

    @router.post("/channel/add/{channel}")
    async def add_channel(
        channel: str,
        client_writable: bool = Query(False, alias="clientWritable"),
        manager: ClientManager = Depends(get_client_manager),
    ) -> dict[str, Any]:
        if not is_valid_channel_name(channel):
            log.info("Invalid channel: %s", channel)
            return _failed("Invalid channel name.")

        if manager.add_channel(channel, client_writable=client_writable):
            return _success()
        return _failed(f"Channel name '{channel}' already exists.")

    @router.post("/channel/remove/{channel}")
    async def remove_channel(
        channel: str, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        if not is_valid_channel_name(channel):
            log.info("Invalid channel: %s", channel)
            return _failed("Invalid channel name.")

        if manager.remove_channel(channel):
            return _success()
        return _failed("Non-existent channel name.")

    @router.get("/channel/check/{channel}")
    async def check_channel(
        channel: str, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        if not is_valid_channel_name(channel):
            log.info("Invalid channel: %s", channel)
            return _failed("Invalid channel name.")
        return _success(result=manager.check_channel(channel))

    # ------------------------------------------------------------------ #
    # Content tokens
    # ------------------------------------------------------------------ #

    @router.post("/content/token")
    async def set_content_token(
        request: Request, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        try:
            grant = decode_content_token_grant(await _read_json(request))
        except MessageDecodeError as e:
            return _failed(str(e))

        manager.set_content_token(grant.channel, grant.token, grant.payload)
        return _success()

    @router.post("/content/token/users")
    async def get_content_token_users(
        request: Request, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        try:
            query = decode_content_channel_query(await _read_json(request))
        except MessageDecodeError as e:
            return _failed(str(e))

        users = manager.get_content_token_channel_users(query.channel)
        log.debug("Content token users for '%s': %s", query.channel, users)
        return {"users": users}

    @router.post("/content/token/message")
    async def publish_message_to_content_channel(
        request: Request, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        try:
            body = await _read_json(request)
            query = decode_content_channel_query(body)
        except MessageDecodeError as e:
            log.info("publish_message_to_content_channel: An invalid message object was provided.")
            return _failed(str(e))

        if manager.publish_message_to_content_channel(query.channel, body):
            return _success()
        return _failed("Invalid message")

    # ------------------------------------------------------------------ #
    # Diagnostics
    # ------------------------------------------------------------------ #

    @router.get("/health/check")
    async def health_check(manager: ClientManager = Depends(get_client_manager)) -> dict[str, Any]:
        return _success(**manager.get_stats())

    @router.post("/debug/toggle")
    async def toggle_debug(
        request: Request, manager: ClientManager = Depends(get_client_manager)
    ) -> dict[str, Any]:
        try:
            toggle = decode_debug_toggle(await _read_json(request))
        except MessageDecodeError as e:
            return _failed(str(e))

        manager.config.debug = toggle.debug
        set_debug_logging(toggle.debug)
        return _success(debug=toggle.debug)

    return router
