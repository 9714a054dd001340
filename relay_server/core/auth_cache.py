# =============================================================================
# Relay -- Realtime Relay Server
# =============================================================================

import logging
import time
from collections import OrderedDict
from collections.abc import Iterator

from .types import AuthenticatedClientRecord

log = logging.getLogger("relay.auth_cache")


class AuthenticatedClientCache:
    """Backend authentication results keyed by auth token.

    Lets a reconnecting client with the same token skip the backend round
    trip.  Bounded by *max_size* (least recently used evicted first) and
    *ttl* seconds since the record was stored.
    """

    def __init__(self, max_size: int = 10_000, ttl: float = 3600.0):
        self.max_size = max_size
        self.ttl = ttl
        self._records: OrderedDict[str, tuple[float, AuthenticatedClientRecord]] = OrderedDict()

    def get(self, auth_token: str) -> AuthenticatedClientRecord | None:
        entry = self._records.get(auth_token)
        if entry is None:
            return None
        stored_at, record = entry
        if self.ttl and time.monotonic() - stored_at > self.ttl:
            del self._records[auth_token]
            log.debug("Expired cached authentication for token %s", auth_token)
            return None
        self._records.move_to_end(auth_token)
        return record

    def put(self, record: AuthenticatedClientRecord) -> None:
        self._records[record.auth_token] = (time.monotonic(), record)
        self._records.move_to_end(record.auth_token)
        while len(self._records) > self.max_size:
            evicted, _ = self._records.popitem(last=False)
            log.debug("Evicted cached authentication for token %s", evicted)

    def remove(self, auth_token: str) -> bool:
        return self._records.pop(auth_token, None) is not None

    def remove_uid(self, uid: str) -> list[str]:
        """Drop every record for *uid*; returns the auth tokens removed."""
        tokens = [token for token, (_, record) in self._records.items() if record.uid == uid]
        for token in tokens:
            del self._records[token]
        return tokens

    def records_for_uid(self, uid: str) -> Iterator[AuthenticatedClientRecord]:
        return (record for _, record in list(self._records.values()) if record.uid == uid)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, auth_token: object) -> bool:
        return auth_token in self._records
