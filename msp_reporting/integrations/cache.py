"""In-memory credential and payload caches for upstream clients.

Both caches are owned by the application and handed to the clients that use
them. Reads and refreshes are not locked: two callers racing past an expired
entry both refresh it, which costs one redundant upstream call at most.
"""

import time
from collections.abc import Callable
from typing import Any


class TokenStore:
    """Holds a single bearer token and its expiry."""

    def __init__(
        self,
        refresh_margin_seconds: float = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.refresh_margin_seconds = refresh_margin_seconds
        self._clock = clock
        self._token: str | None = None
        self._expires_at: float | None = None

    def get(self) -> str | None:
        """Return the token unless it is absent or inside the refresh margin."""
        if self._token is None or self._expires_at is None:
            return None
        if self._clock() >= self._expires_at - self.refresh_margin_seconds:
            return None
        return self._token

    def set(self, token: str, expires_in: float) -> None:
        # Single tuple assignment so readers never see a token with a stale expiry
        self._token, self._expires_at = token, self._clock() + expires_in

    def clear(self) -> None:
        self._token, self._expires_at = None, None


class TTLCache:
    """Keyed payload cache with one fixed time-to-live."""

    def __init__(
        self,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        stored_at, value = entry
        if self._clock() - stored_at >= self.ttl_seconds:
            return None
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (self._clock(), value)

    def invalidate(self, key: str | None = None) -> None:
        """Drop one entry, or everything when no key is given."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)
