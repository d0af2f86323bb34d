"""Rate limit header utilities for HTTP responses.

Headers follow the common ``X-RateLimit-*`` convention plus ``Retry-After``
(RFC 6585) on rejected requests.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ratewindow.schemas import RateLimitResult

if TYPE_CHECKING:
    from starlette.responses import Response


def get_rate_limit_headers(result: RateLimitResult) -> dict[str, str]:
    """Build rate limit headers for a check result.

    - X-RateLimit-Limit: Maximum requests admitted per window
    - X-RateLimit-Remaining: Requests remaining in the current window
    - X-RateLimit-Reset: Unix timestamp when the window ends
    - Retry-After: Seconds to wait (only when the request was rejected)

    Example:
        >>> headers = get_rate_limit_headers(result)
        >>> headers["X-RateLimit-Remaining"]
        '0'
    """
    headers = {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at),
    }

    if not result.allowed:
        headers["Retry-After"] = str(result.retry_after)

    return headers


def set_rate_limit_headers(response: "Response", result: RateLimitResult) -> None:
    """Set rate limit headers on a Starlette/FastAPI response.

    Example:
        >>> @app.get("/data")
        ... async def data(response: Response, request: Request):
        ...     result = await check("api", get_client_ip(request))
        ...     set_rate_limit_headers(response, result)
    """
    for name, value in get_rate_limit_headers(result).items():
        response.headers[name] = value


__all__ = [
    "get_rate_limit_headers",
    "set_rate_limit_headers",
]
