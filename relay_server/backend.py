# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

"""
Backend Client - outbound calls to the trusted backend application

Every message is a form-encoded POST to ``BackendConfig.url`` carrying
two fields:

    messageJson = <JSON-serialized message>
    serviceKey  = <configured service key>

Two message types are sent:

- ``authenticate``: asks the backend to validate a connection's auth
  token.  The JSON answer carries ``validAuthToken``, ``uid``,
  ``channels``, ``contentTokens``, ``presenceUids`` and the backend's
  ``serviceKey``.
- ``userOffline``: best-effort presence report, answer ignored.

Each request has an explicit timeout and goes through a circuit breaker
so a dead backend fails fast instead of piling up pending requests.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import httpx
import orjson

from .config import BackendConfig
from .core.types import AuthenticatedClientRecord
from .errors import (
    AuthenticationRejectedError,
    BackendResponseError,
    BackendUnavailableError,
    InvalidServiceKeyError,
)
from .reliability.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from .reliability.config import CircuitBreakerConfig

log = logging.getLogger("relay.backend")

T = TypeVar("T")


class BackendClient:
    """Talks to the backend application over HTTP.

    Example Usage:
        ```python
        backend = BackendClient(BackendConfig(host="drupal.local"), service_key="s3cret")
        record = await backend.authenticate("ws_1a2b", "token-from-cookie", {})
        await backend.report_offline(record.uid)
        await backend.aclose()
        ```
    """

    def __init__(
        self,
        config: BackendConfig,
        service_key: str = "",
        http_client: httpx.AsyncClient | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ):
        self.config = config
        self.service_key = service_key

        auth = None
        if config.http_auth:
            username, _, password = config.http_auth.partition(":")
            auth = httpx.BasicAuth(username, password)

        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout),
            verify=config.strict_ssl if config.scheme == "https" else True,
            auth=auth,
        )
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            CircuitBreakerConfig(
                name="backend",
                failure_threshold=5,
                reset_timeout_seconds=30,
                ignored_exception_types=(AuthenticationRejectedError, InvalidServiceKeyError),
            )
        )

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    # -----------------------------------------------------------------
    # Service key
    # -----------------------------------------------------------------

    def validate_service_key(self, candidate: Any) -> bool:
        """Constant-time comparison; an unconfigured key accepts everything."""
        if not self.service_key:
            return True
        if not isinstance(candidate, str):
            return False
        return hmac.compare_digest(candidate.encode(), self.service_key.encode())

    # -----------------------------------------------------------------
    # Messages
    # -----------------------------------------------------------------

    async def authenticate(
        self,
        session_id: str,
        auth_token: str,
        content_tokens: dict[str, str] | None = None,
    ) -> AuthenticatedClientRecord:
        """Ask the backend who owns *auth_token*.

        Raises:
            BackendUnavailableError: transport failure, timeout or open breaker.
            BackendResponseError: non-2xx status or unparseable body.
            InvalidServiceKeyError: the answer carried the wrong service key.
            AuthenticationRejectedError: the backend declared the token invalid.
        """
        return await self._call(self._authenticate, session_id, auth_token, content_tokens or {})

    async def _authenticate(
        self, session_id: str, auth_token: str, content_tokens: dict[str, str]
    ) -> AuthenticatedClientRecord:
        message = {
            "messageType": "authenticate",
            "clientId": session_id,
            "authToken": auth_token,
            "contentTokens": content_tokens,
        }
        data = await self._post(message)

        if not self.validate_service_key(data.get("serviceKey")):
            log.warning("Invalid service key in authentication response for session %s", session_id)
            raise InvalidServiceKeyError("Backend response carried an invalid service key")

        # The cache is keyed by the token the client presented.
        data["authToken"] = auth_token
        record = AuthenticatedClientRecord.from_backend(data)

        if not data.get("validAuthToken"):
            log.info("Invalid login for uid '%s'", record.uid)
            raise AuthenticationRejectedError("Auth token rejected by backend", auth_token, record.uid)

        log.debug("Valid login for uid '%s'", record.uid)
        return record

    async def report_offline(self, uid: str) -> None:
        """Tell the backend *uid* went offline; failures are logged and dropped."""
        try:
            await self._call(self._post, {"uid": uid, "messageType": "userOffline"}, False)
        except (BackendUnavailableError, BackendResponseError) as e:
            log.warning("Failed to report uid %s offline: %s", uid, e)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -----------------------------------------------------------------
    # Transport
    # -----------------------------------------------------------------

    async def _call(self, func: Callable[..., Awaitable[T]], *args: Any) -> T:
        try:
            return await self._circuit_breaker.call(func, *args)
        except CircuitBreakerOpenError as e:
            raise BackendUnavailableError(str(e)) from e

    async def _post(self, message: dict[str, Any], expect_json: bool = True) -> dict[str, Any]:
        form = {
            "messageJson": orjson.dumps(message).decode(),
            "serviceKey": self.service_key,
        }
        log.debug("Sending %s message to backend %s", message.get("messageType"), self.config.url)

        try:
            response = await self._client.post(self.config.url, data=form)
        except httpx.TimeoutException as e:
            raise BackendUnavailableError(f"Backend request timed out after {self.config.timeout}s") from e
        except httpx.HTTPError as e:
            raise BackendUnavailableError(f"Backend request failed: {e}") from e

        if response.status_code == 404:
            log.warning("Backend message url not found: %s", self.config.url)
        if not response.is_success:
            raise BackendResponseError(
                f"Backend answered HTTP {response.status_code}", status_code=response.status_code
            )

        if not expect_json:
            return {}

        try:
            data = orjson.loads(response.content)
        except orjson.JSONDecodeError as e:
            log.debug("Failed message string: %s", response.text[:500])
            raise BackendResponseError(f"Failed to parse backend response: {e}") from e

        if not isinstance(data, dict):
            raise BackendResponseError("Backend response is not a JSON object")
        return data
