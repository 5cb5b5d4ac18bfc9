"""
Exception types and safe HTTP error factories.

SECURITY PRINCIPLE: Don't expose internal details to users.
Use generic error messages externally, detailed logging internally.
Catalog service payloads and provider errors are logged, never echoed back.
"""
from typing import Optional

from fastapi import HTTPException, status
import logging

logger = logging.getLogger(__name__)


class CatalogAPIError(Exception):
    """
    Failure reported by the catalog REST service.

    status_code is None for transport failures (DNS, refused connection, timeout).
    """

    STATUS_CLASSES = {
        400: "validation",
        401: "auth",
        403: "forbidden",
        404: "not_found",
        409: "conflict",
    }

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}

    @property
    def status_class(self) -> str:
        if self.status_code is None:
            return "network"
        if self.status_code >= 500:
            return "server"
        return self.STATUS_CLASSES.get(self.status_code, "client")

    def __str__(self) -> str:
        return f"{self.message} (status={self.status_code}, class={self.status_class})"


class CommandInProgressError(Exception):
    """A session already has a command in flight."""

    def __init__(self, session_id: str):
        super().__init__(f"Session {session_id} is still processing a command")
        self.session_id = session_id


class RateLimitExceededError(Exception):
    """A session exceeded its command budget for the rolling window."""

    def __init__(self, session_id: str, retry_after: int):
        super().__init__(f"Session {session_id} exceeded its command rate limit")
        self.session_id = session_id
        self.retry_after = retry_after


class BusinessError:
    """HTTP exceptions with safe (non-leaky) messages."""

    @staticmethod
    def unauthorized(reason: str = "") -> HTTPException:
        """Generic 401 for missing or rejected catalog credentials."""
        logger.warning(f"Unauthorized access attempt: {reason}")
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed",
            headers={"WWW-Authenticate": "Bearer"},
        )

    @staticmethod
    def bad_request(detail: str) -> HTTPException:
        """
        400 for input validation errors.

        OK to include specific details here since user caused the issue.
        """
        logger.info(f"Bad request: {detail}")
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
        )

    @staticmethod
    def conflict(detail: str) -> HTTPException:
        """
        409 for session conflicts.
        Example: "Previous command is still processing"
        """
        logger.info(f"Conflict: {detail}")
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )

    @staticmethod
    def rate_limit_exceeded(detail: str = "Too many requests", retry_after: int = 60) -> HTTPException:
        """
        429 - Too many requests (rate limiting).
        """
        logger.warning(f"Rate limit exceeded: {detail}")
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=detail,
            headers={"Retry-After": str(retry_after)},
        )

    @staticmethod
    def upstream_unavailable(original_error: Exception = None) -> HTTPException:
        """
        502 - the catalog service failed or is unreachable.

        The upstream body is logged by the catalog client, not forwarded.
        """
        if original_error:
            logger.error(f"Upstream failure: {original_error}")
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Catalog service is unavailable. Please try again later.",
        )
