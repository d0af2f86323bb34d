"""Optional rate limiting middleware for FastAPI applications.

This module provides ASGI middleware for applying rate limiting to all
requests or specific paths without requiring endpoint-level dependencies.
"""

from __future__ import annotations

import inspect
import logging
import re
from collections.abc import Callable
from typing import TYPE_CHECKING

from ratewindow.contrib.fastapi.dependencies import IdentifierExtractor
from ratewindow.contrib.fastapi.handlers import create_rate_limit_response
from ratewindow.contrib.fastapi.headers import get_rate_limit_headers
from ratewindow.contrib.fastapi.ip_utils import get_client_ip
from ratewindow.limiter import RateLimiter
from ratewindow.registry import get_registry
from ratewindow.schemas import RateLimitResult

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

# Lazy import for FastAPI/Starlette
try:
    from starlette.datastructures import MutableHeaders
    from starlette.requests import Request

    FASTAPI_AVAILABLE = True
except ImportError:
    Request = None  # type: ignore[misc, assignment]
    MutableHeaders = None  # type: ignore[misc, assignment]
    FASTAPI_AVAILABLE = False


logger = logging.getLogger(__name__)


PathMatcher = Callable[[str], bool]


def _create_path_matcher(
    include_paths: list[str] | None = None,
    exclude_paths: list[str] | None = None,
) -> PathMatcher:
    """Create a path matching function.

    Exclusions take precedence over inclusions; without inclusions every
    path matches.
    """
    include_patterns = [re.compile(p) for p in include_paths or []]
    exclude_patterns = [re.compile(p) for p in exclude_paths or []]

    def matcher(path: str) -> bool:
        if any(pattern.match(path) for pattern in exclude_patterns):
            return False
        if include_patterns:
            return any(pattern.match(path) for pattern in include_patterns)
        return True

    return matcher


class RateLimitMiddleware:
    """ASGI middleware for rate limiting requests.

    Requests are checked before they reach endpoint handlers. Rejected
    requests get a 429 response directly; admitted ones get X-RateLimit-*
    headers injected into the response.

    For endpoint-specific rate limiting, prefer RateLimitDependency.

    Example:
        >>> app = FastAPI()
        >>> app.add_middleware(RateLimitMiddleware, limiter="global")

        Rate limit specific paths:

        >>> app.add_middleware(
        ...     RateLimitMiddleware,
        ...     limiter="api",
        ...     include_paths=[r"^/api/.*"],
        ...     exclude_paths=[r"^/api/health$", r"^/api/metrics$"],
        ... )
    """

    def __init__(
        self,
        app: "ASGIApp",
        limiter: str | RateLimiter,
        include_paths: list[str] | None = None,
        exclude_paths: list[str] | None = None,
        identifier_extractor: IdentifierExtractor | None = None,
        trusted_proxies: list[str] | None = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application to wrap
            limiter: Limiter ID from the registry, or a RateLimiter instance
            include_paths: Regex patterns; only matching paths are limited.
                If None, all paths are included.
            exclude_paths: Regex patterns of paths that are never limited
            identifier_extractor: Callable returning the client identifier
                (sync or async). Defaults to the client IP.
            trusted_proxies: Trusted proxy networks for IP extraction
        """
        if not FASTAPI_AVAILABLE:
            raise RuntimeError(
                "FastAPI/Starlette not installed. Install with: pip install 'rate-window[fastapi]'"
            )

        self.app = app
        self.limiter = limiter
        self.identifier_extractor = identifier_extractor
        self.trusted_proxies = trusted_proxies
        self._path_matcher = _create_path_matcher(include_paths, exclude_paths)

    async def __call__(self, scope: "Scope", receive: "Receive", send: "Send") -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        path = scope.get("path", "/")
        if not self._path_matcher(path):
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive, send)
        identifier = await self._get_identifier(request)
        result = await self._check(identifier)

        if not result.allowed:
            logger.info(
                "Rejected %s %s for %s (limiter=%s, reason=%s)",
                scope.get("method", "GET"),
                path,
                identifier,
                result.limiter_id,
                result.reason,
            )
            response = create_rate_limit_response(result)
            await response(scope, receive, send)
            return

        await self._call_with_headers(scope, receive, send, result)

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

    async def _call_with_headers(
        self,
        scope: "Scope",
        receive: "Receive",
        send: "Send",
        result: RateLimitResult,
    ) -> None:
        rate_limit_headers = get_rate_limit_headers(result)

        async def send_with_headers(message: "Message") -> None:
            if message["type"] == "http.response.start":
                headers = MutableHeaders(raw=list(message.get("headers", [])))
                for name, value in rate_limit_headers.items():
                    headers.append(name, value)
                message["headers"] = headers.raw
            await send(message)

        await self.app(scope, receive, send_with_headers)


__all__ = [
    "RateLimitMiddleware",
]
