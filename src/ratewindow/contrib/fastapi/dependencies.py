"""FastAPI dependency injection for rate limiting."""

import inspect
import logging
from collections.abc import Awaitable, Callable

from ratewindow.contrib.fastapi.handlers import RateLimitExceededError
from ratewindow.contrib.fastapi.headers import set_rate_limit_headers
from ratewindow.contrib.fastapi.ip_utils import get_client_ip
from ratewindow.limiter import RateLimiter
from ratewindow.registry import get_registry
from ratewindow.schemas import RateLimitResult

# Lazy import for FastAPI - allows graceful handling if not installed
try:
    from starlette.requests import Request
    from starlette.responses import Response

    FASTAPI_AVAILABLE = True
except ImportError:
    Request = None  # type: ignore[misc, assignment]
    Response = None  # type: ignore[misc, assignment]
    FASTAPI_AVAILABLE = False

logger = logging.getLogger(__name__)

# Extracts the client identifier from a request; sync or async
IdentifierExtractor = Callable[["Request"], str | Awaitable[str]]


class RateLimitDependency:
    """FastAPI dependency admitting or rejecting a request.

    The dependency:
    1. Extracts a client identifier (default: client IP)
    2. Counts the request on the limiter
    3. Sets X-RateLimit-* headers on the response
    4. Raises RateLimitExceededError when the request is rejected

    Store failures are handled by the limiter's own failure policy.

    Example:
        >>> @app.get("/api/data")
        ... async def get_data(_: None = Depends(RateLimitDependency("api"))):
        ...     return {"data": "value"}

        Per API key instead of per IP:

        >>> def api_key(request: Request) -> str:
        ...     return hash_identifier(request.headers.get("X-API-Key", ""))
        >>>
        >>> limit_by_key = RateLimitDependency("api", identifier_extractor=api_key)
    """

    def __init__(
        self,
        limiter: str | RateLimiter,
        identifier_extractor: IdentifierExtractor | None = None,
        trusted_proxies: list[str] | None = None,
    ) -> None:
        """Initialize the rate limit dependency.

        Args:
            limiter: Limiter ID from the registry, or a RateLimiter instance
            identifier_extractor: Callable returning the client identifier
                (sync or async). Defaults to the client IP.
            trusted_proxies: Trusted proxy networks (CIDR) for IP extraction.
                Only used when identifier_extractor is None.
        """
        if not FASTAPI_AVAILABLE:
            raise RuntimeError(
                "FastAPI/Starlette not installed. Install with: pip install 'rate-window[fastapi]'"
            )

        self.limiter = limiter
        self.identifier_extractor = identifier_extractor
        self.trusted_proxies = trusted_proxies

    async def __call__(self, request: Request, response: Response) -> None:
        """Run the admission check for a request.

        Raises:
            RateLimitExceededError: If the request is rejected
            LimiterNotFoundError: If the limiter ID is not configured
        """
        identifier = await self._get_identifier(request)
        result = await self._check(identifier)

        set_rate_limit_headers(response, result)

        if not result.allowed:
            raise RateLimitExceededError(identifier, result)

    async def _get_identifier(self, request: "Request") -> str:
        if self.identifier_extractor is None:
            return get_client_ip(request, self.trusted_proxies)

        identifier = self.identifier_extractor(request)
        if inspect.isawaitable(identifier):
            identifier = await identifier
        return identifier

    async def _check(self, identifier: str) -> RateLimitResult:
        if isinstance(self.limiter, RateLimiter):
            return await self.limiter.check(identifier)
        return await get_registry().check(self.limiter, identifier)


def rate_limit(
    limiter: str | RateLimiter,
    identifier_extractor: IdentifierExtractor | None = None,
    trusted_proxies: list[str] | None = None,
) -> RateLimitDependency:
    """Factory function for creating rate limit dependencies.

    Example:
        >>> @app.get("/api/data")
        ... async def get_data(_: None = Depends(rate_limit("api"))):
        ...     return {"data": "value"}
    """
    return RateLimitDependency(
        limiter,
        identifier_extractor=identifier_extractor,
        trusted_proxies=trusted_proxies,
    )


__all__ = [
    "RateLimitDependency",
    "IdentifierExtractor",
    "rate_limit",
]
