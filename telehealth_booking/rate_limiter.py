"""
Rate limiting for the booking endpoint.

Call sites depend only on the RequestLimiter protocol so a durable backend
can replace the in-memory one without touching them.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Protocol


class RequestLimiter(Protocol):
    async def allow_request(self, identity: str) -> bool:
        ...

    def retry_after(self, identity: str) -> int:
        ...


@dataclass
class _Window:
    started_at: float
    count: int = 0


class InMemoryRateLimiter:
    """
    Fixed-window counter per caller identity.

    State lives in this process only: it resets on restart and is not shared
    between instances. Expired windows are swept once max_tracked_identities
    is reached, or on demand through cleanup_expired().
    """

    def __init__(
        self,
        max_requests: int = 20,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
        max_tracked_identities: int = 10_000
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self.max_tracked_identities = max_tracked_identities
        self.windows: Dict[str, _Window] = {}
        self.lock = asyncio.Lock()

    def _expired(self, window: _Window, now: float) -> bool:
        return now - window.started_at >= self.window_seconds

    async def allow_request(self, identity: str) -> bool:
        """
        Count one request for identity.

        Returns:
            True if allowed, False if the current window is exhausted
        """
        async with self.lock:
            now = self.clock()
            if len(self.windows) >= self.max_tracked_identities:
                self._drop_expired(now)
            window = self.windows.get(identity)

            if window is None or self._expired(window, now):
                window = _Window(started_at=now)
                self.windows[identity] = window

            if window.count >= self.max_requests:
                return False

            window.count += 1
            return True

    async def cleanup_expired(self) -> int:
        """
        Drop windows that have already reset.

        Returns:
            Number of identities removed
        """
        async with self.lock:
            return self._drop_expired(self.clock())

    def _drop_expired(self, now: float) -> int:
        stale = [identity for identity, window in self.windows.items() if self._expired(window, now)]
        for identity in stale:
            del self.windows[identity]
        return len(stale)

    def retry_after(self, identity: str) -> int:
        """Seconds until identity's current window resets."""
        window = self.windows.get(identity)
        if window is None:
            return 0
        remaining = self.window_seconds - (self.clock() - window.started_at)
        return max(1, int(remaining + 0.999))
