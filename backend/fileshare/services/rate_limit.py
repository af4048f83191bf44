"""Per-client sliding-window rate limiting.

Timestamps live in a ``RateLimitStore`` handed to the middleware, so the
in-process store can be replaced by one backed by a shared cache when several
instances serve the same clients.
"""
import logging
import math
import time
from collections.abc import Callable
from typing import Protocol

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)


class RateLimitStore(Protocol):
    async def hit(self, key: str, now: float, window: float, limit: int) -> float | None:
        """Record a request for ``key``.

        Returns None when allowed, or the number of seconds until the oldest
        request in the window expires when ``limit`` is already reached (the
        rejected request is not recorded).
        """
        ...


class InMemoryRateLimitStore:
    """Process-local store: client key -> recent request timestamps."""

    def __init__(self, purge_every: int = 100):
        self._requests: dict[str, list[float]] = {}
        self._purge_every = purge_every
        self._calls = 0

    async def hit(self, key: str, now: float, window: float, limit: int) -> float | None:
        window_start = now - window
        recent = [t for t in self._requests.get(key, []) if t > window_start]

        self._calls += 1
        if self._calls % self._purge_every == 0:
            self._purge(window_start)

        if len(recent) >= limit:
            self._requests[key] = recent
            return recent[0] + window - now

        recent.append(now)
        self._requests[key] = recent
        return None

    def _purge(self, window_start: float) -> None:
        stale = [k for k, times in self._requests.items() if not times or times[-1] <= window_start]
        for k in stale:
            del self._requests[k]

    def __len__(self) -> int:
        return len(self._requests)


def client_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class RateLimitMiddleware(BaseHTTPMiddleware):

    def __init__(
        self,
        app,
        store: RateLimitStore,
        window_seconds: float,
        max_requests: int,
        exempt_paths: tuple[str, ...] = ("/health",),
        key_func: Callable[[Request], str] = client_address,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(app)
        self.store = store
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.exempt_paths = exempt_paths
        self.key_func = key_func
        self.clock = clock

    async def dispatch(self, request: Request, call_next):
        if request.url.path in self.exempt_paths:
            return await call_next(request)

        key = self.key_func(request)
        retry_after = await self.store.hit(key, self.clock(), self.window_seconds, self.max_requests)
        if retry_after is not None:
            seconds = max(1, math.ceil(retry_after))
            logger.warning("Rate limit exceeded for %s on %s", key, request.url.path)
            return JSONResponse(
                status_code=429,
                content={"message": "Too many requests, please try again later", "retryAfter": seconds},
                headers={"Retry-After": str(seconds)},
            )
        return await call_next(request)
