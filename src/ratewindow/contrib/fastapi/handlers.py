"""Exception handlers turning rejected requests into HTTP 429 responses."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ratewindow.contrib.fastapi.headers import get_rate_limit_headers
from ratewindow.exceptions import RateWindowError
from ratewindow.schemas import RateLimitResult

# Lazy import for Starlette - allows graceful handling if not installed
try:
    from starlette.responses import JSONResponse

    FASTAPI_AVAILABLE = True
except ImportError:
    JSONResponse = None  # type: ignore[misc, assignment]
    FASTAPI_AVAILABLE = False

if TYPE_CHECKING:
    from starlette.requests import Request

logger = logging.getLogger(__name__)


class RateLimitExceededError(RateWindowError):
    """Raised by the FastAPI integration when a request is rejected.

    Only used to produce an HTTP 429; the core API reports rejections as a
    plain ``False``.

    Attributes:
        identifier: Client identifier that hit the limit
        result: The check result that rejected the request
    """

    def __init__(self, identifier: str, result: RateLimitResult) -> None:
        self.identifier = identifier
        self.result = result
        super().__init__(
            f"Rate limit exceeded for {identifier} on limiter '{result.limiter_id}' "
            f"({result.reason}, retry in {result.retry_after}s)"
        )

    @property
    def limiter_id(self) -> str | None:
        return self.result.limiter_id

    @property
    def retry_after(self) -> int:
        return self.result.retry_after


def create_rate_limit_response(
    result: RateLimitResult,
    message: str | None = None,
) -> "JSONResponse":
    """Build the 429 response for a rejected check.

    Response format:
        {
            "detail": [
                {
                    "type": "rate_limit_exceeded",
                    "msg": "Rate limit exceeded. Retry in X seconds.",
                    "context": {"retry_after_seconds": X, "limit": Y, "limiter": "..."}
                }
            ]
        }
    """
    if not FASTAPI_AVAILABLE:
        raise RuntimeError(
            "FastAPI/Starlette not installed. Install with: pip install 'rate-window[fastapi]'"
        )

    if message is None:
        message = f"Rate limit exceeded. Retry in {result.retry_after} seconds."

    context: dict[str, Any] = {
        "retry_after_seconds": result.retry_after,
        "limit": result.limit,
    }
    if result.limiter_id:
        context["limiter"] = result.limiter_id

    return JSONResponse(
        status_code=429,
        content={
            "detail": [
                {
                    "type": "rate_limit_exceeded",
                    "msg": message,
                    "context": context,
                }
            ]
        },
        headers=get_rate_limit_headers(result),
    )


async def rate_limit_exception_handler(
    _request: "Request",
    exc: RateLimitExceededError,
) -> "JSONResponse":
    """FastAPI exception handler for RateLimitExceededError.

    Example:
        >>> app.add_exception_handler(RateLimitExceededError, rate_limit_exception_handler)
    """
    logger.warning(
        "Rate limit exceeded: identifier=%s, limiter=%s, limit=%d, reason=%s",
        exc.identifier,
        exc.limiter_id or "unknown",
        exc.result.limit,
        exc.result.reason,
    )
    return create_rate_limit_response(exc.result)


__all__ = [
    "RateLimitExceededError",
    "rate_limit_exception_handler",
    "create_rate_limit_response",
    "FASTAPI_AVAILABLE",
]
