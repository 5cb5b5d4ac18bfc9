"""
Command Guard — per-session admission control for AI commands.

Two checks before a command may run:
1. Processing flag: one command in flight per session; a second one is
   rejected, not queued
2. Rate limit: AI_RATE_LIMIT_COMMANDS per rolling AI_RATE_LIMIT_WINDOW_SECONDS

The flag is taken first so a rejected duplicate does not spend a rate slot,
and it is always released in finally.
"""
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from app.agent.session_store import SessionStore
from app.core.config import settings
from app.core.exceptions import CommandInProgressError, RateLimitExceededError
from app.core.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class CommandGuard:

    def __init__(self, store: SessionStore, limiter: Optional[RateLimiter] = None):
        self.store = store
        self.limiter = limiter or RateLimiter(
            requests=settings.AI_RATE_LIMIT_COMMANDS,
            window=settings.AI_RATE_LIMIT_WINDOW_SECONDS,
        )

    @staticmethod
    def _client_id(session_id: str) -> str:
        return f"session:{session_id}"

    def check_rate(self, session_id: str) -> None:
        """Record one command for the session or raise RateLimitExceededError."""
        client_id = self._client_id(session_id)
        allowed, remaining = self.limiter.is_allowed(client_id)
        if not allowed:
            retry_after = self.limiter.retry_after(client_id)
            logger.warning(f"[CommandGuard] Rate limit hit for session {session_id}, retry in {retry_after}s")
            raise RateLimitExceededError(session_id, retry_after)
        logger.debug(f"[CommandGuard] session={session_id} remaining={remaining}")

    @contextmanager
    def admit(self, session_id: str, count_rate: bool = True) -> Iterator[None]:
        """
        Hold the session's processing flag for the duration of the block.

        Raises:
            CommandInProgressError: another command holds the flag
            RateLimitExceededError: session is over its budget
        """
        if not self.store.try_acquire(session_id):
            logger.info(f"[CommandGuard] Session {session_id} busy, rejecting command")
            raise CommandInProgressError(session_id)
        try:
            if count_rate:
                self.check_rate(session_id)
            yield
        finally:
            self.store.release(session_id)
