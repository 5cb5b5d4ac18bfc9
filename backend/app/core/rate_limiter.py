"""
Sliding-window rate limiting.

RateLimiter is shared by two callers:
- RateLimitMiddleware: per-IP budget on the HTTP API
- CommandGuard: per-session budget on AI commands (10 per rolling 60 s)

Uses in-memory storage. For multiple workers, consider Redis or similar distributed cache.
"""
import threading
import time
import logging
from collections import defaultdict
from typing import Callable, Dict, List, Tuple
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings

logger = logging.getLogger(__name__)


class RateLimiter:
    """In-memory rate limiter with sliding window."""

    def __init__(self, requests: int = 100, window: int = 60, clock: Callable[[], float] = time.time):
        """
        Args:
            requests: Maximum requests allowed in window
            window: Time window in seconds
            clock: Time source (injectable for tests)
        """
        self.requests = requests
        self.window = window
        self.clock = clock
        # Dict[client_id, List[timestamp]]
        self.clients: Dict[str, List[float]] = defaultdict(list)
        self.last_cleanup = clock()
        self._lock = threading.Lock()

    def is_allowed(self, client_id: str) -> Tuple[bool, int]:
        """
        Check if client is allowed to make request, recording it when allowed.

        Returns:
            (allowed: bool, remaining: int)
        """
        with self._lock:
            now = self.clock()

            # Cleanup old entries every 5 minutes
            if now - self.last_cleanup > 300:
                self._cleanup(now)
                self.last_cleanup = now

            # Remove timestamps outside window
            cutoff = now - self.window
            timestamps = [ts for ts in self.clients[client_id] if ts > cutoff]
            self.clients[client_id] = timestamps

            if len(timestamps) < self.requests:
                timestamps.append(now)
                return True, self.requests - len(timestamps)
            return False, 0

    def retry_after(self, client_id: str) -> int:
        """Seconds until the oldest timestamp in the window expires."""
        with self._lock:
            timestamps = self.clients.get(client_id) or []
            if not timestamps:
                return 0
            return max(1, int(timestamps[0] + self.window - self.clock()) + 1)

    def reset(self, client_id: str) -> None:
        with self._lock:
            self.clients.pop(client_id, None)

    def _cleanup(self, now: float):
        """Remove expired entries to prevent memory bloat."""
        cutoff = now - self.window
        for client_id in list(self.clients.keys()):
            timestamps = [ts for ts in self.clients[client_id] if ts > cutoff]
            if timestamps:
                self.clients[client_id] = timestamps
            else:
                del self.clients[client_id]

        logger.info(f"Rate limiter cleanup: {len(self.clients)} active clients")


# Global HTTP rate limiter instance
rate_limiter = RateLimiter(
    requests=settings.RATE_LIMIT_REQUESTS,
    window=settings.RATE_LIMIT_WINDOW_SECONDS
)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to apply rate limiting to all requests."""

    async def dispatch(self, request: Request, call_next):
        # Skip rate limiting for health checks
        if request.url.path in ["/health", "/docs", "/redoc", "/openapi.json"]:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        client_id = f"ip:{client_ip}"

        allowed, remaining = rate_limiter.is_allowed(client_id)

        if not allowed:
            logger.warning(
                f"Rate limit exceeded for {client_id} on {request.method} {request.url.path}"
            )
            return JSONResponse(
                status_code=429,
                content={"detail": f"Rate limit exceeded. Try again in {settings.RATE_LIMIT_WINDOW_SECONDS} seconds."},
                headers={
                    "Retry-After": str(settings.RATE_LIMIT_WINDOW_SECONDS),
                    "X-RateLimit-Limit": str(settings.RATE_LIMIT_REQUESTS),
                    "X-RateLimit-Remaining": "0"
                }
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(settings.RATE_LIMIT_REQUESTS)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Window"] = str(settings.RATE_LIMIT_WINDOW_SECONDS)

        return response
