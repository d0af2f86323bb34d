"""FastAPI integration for rate-window.

Dependency injection, ASGI middleware, exception handlers and header
utilities. rate-window itself is framework-agnostic; this integration needs
FastAPI/Starlette:

    pip install 'rate-window[fastapi]'

Quick Start:
    >>> from fastapi import Depends, FastAPI
    >>> from ratewindow.contrib.fastapi import (
    ...     RateLimitDependency,
    ...     RateLimitExceededError,
    ...     rate_limit_exception_handler,
    ... )
    >>>
    >>> app = FastAPI()
    >>> app.add_exception_handler(RateLimitExceededError, rate_limit_exception_handler)
    >>>
    >>> @app.get("/api/data")
    ... async def get_data(_: None = Depends(RateLimitDependency("api"))):
    ...     return {"data": "value"}

Global limiting with path filters:
    >>> app.add_middleware(
    ...     RateLimitMiddleware,
    ...     limiter="global",
    ...     exclude_paths=[r"^/health$", r"^/metrics$"],
    ... )

Configuration (rate-window.toml):

    [stores.main]
    engine = "redis"
    url = "redis://localhost:6379/0"

    [limiters.api]
    store = "main"
    limit = 100
    window_seconds = 60
"""

from __future__ import annotations

from ratewindow.contrib.fastapi.dependencies import (
    IdentifierExtractor,
    RateLimitDependency,
    rate_limit,
)
from ratewindow.contrib.fastapi.handlers import (
    FASTAPI_AVAILABLE,
    RateLimitExceededError,
    create_rate_limit_response,
    rate_limit_exception_handler,
)
from ratewindow.contrib.fastapi.headers import (
    get_rate_limit_headers,
    set_rate_limit_headers,
)
from ratewindow.contrib.fastapi.ip_utils import (
    DEFAULT_TRUSTED_PROXY_NETWORKS,
    get_client_ip,
    validate_ip,
)
from ratewindow.contrib.fastapi.middleware import RateLimitMiddleware

__all__ = [
    "FASTAPI_AVAILABLE",
    # Dependencies
    "RateLimitDependency",
    "IdentifierExtractor",
    "rate_limit",
    # Handlers
    "RateLimitExceededError",
    "rate_limit_exception_handler",
    "create_rate_limit_response",
    # Headers
    "set_rate_limit_headers",
    "get_rate_limit_headers",
    # IP utilities
    "get_client_ip",
    "validate_ip",
    "DEFAULT_TRUSTED_PROXY_NETWORKS",
    # Middleware
    "RateLimitMiddleware",
]
