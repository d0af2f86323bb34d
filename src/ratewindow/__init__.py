"""rate-window: per-key fixed-window rate limiting.

Each request for a key (an IP address, an API key, a user id) atomically
increments that key's counter for the current window; the request is
admitted while the counter stays within the limit.

Features:
- One atomic increment per decision on every store
- Counter stores: in-memory (striped locks), Redis, PostgreSQL, NATS KV
- Fail-open (default) or fail-closed behavior when the store fails
- Store round-trip timeouts
- Configuration file support (TOML with env var expansion)
- Decision metrics, optional Prometheus export
- FastAPI dependency and middleware

Basic example:
    >>> from ratewindow import MemoryCounterStore, RateLimiter
    >>>
    >>> limiter = RateLimiter(MemoryCounterStore(), limit=100, window_seconds=60, name="api")
    >>> if not await limiter.allow(client_ip):
    ...     return Response(status_code=429)

Registry example:
    >>> from ratewindow import allow, configure_limiter, configure_store
    >>>
    >>> configure_store("main", "redis", url="redis://localhost:6379/0")
    >>> configure_limiter("login", store_id="main", limit=5, window_seconds=300, fail_closed=True)
    >>> await allow("login", client_ip)
"""

from ratewindow.config import (
    configure_fastapi,
    get_fastapi_config,
    load_config,
)
from ratewindow.core import CounterStore, RateLimiterMetrics
from ratewindow.domain.value_objects.identifier import (
    combine_identifiers,
    hash_identifier,
    normalize_ip,
)
from ratewindow.exceptions import (
    BackendError,
    BackendUnavailableError,
    ConfigValidationError,
    LimiterNotFoundError,
    RateWindowError,
    StoreNotFoundError,
)
from ratewindow.limiter import RateLimiter
from ratewindow.registry import (
    allow,
    check,
    check_multi_limiters,
    close_all_stores,
    configure_limiter,
    configure_store,
    get_limiter,
    get_registry,
    get_store,
    initialize_all_stores,
    initialize_store,
    list_limiters,
    list_stores,
)
from ratewindow.schemas import (
    LimiterReadOnlyConfig,
    LimiterState,
    MultiLimiterResult,
    RateLimitResult,
)
from ratewindow.stores import (
    MemoryCounterStore,
    NatsKvCounterStore,
    PostgresCounterStore,
    RedisCounterStore,
)

# Testing utilities
from ratewindow import testing

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Core abstractions
    "CounterStore",
    "RateLimiter",
    "RateLimiterMetrics",
    # Result types
    "RateLimitResult",
    "MultiLimiterResult",
    "LimiterReadOnlyConfig",
    "LimiterState",
    # Store implementations
    "MemoryCounterStore",
    "RedisCounterStore",
    "PostgresCounterStore",
    "NatsKvCounterStore",
    # Configuration
    "load_config",
    "configure_store",
    "configure_limiter",
    "configure_fastapi",
    "get_fastapi_config",
    # Registry operations
    "allow",
    "check",
    "check_multi_limiters",
    "get_limiter",
    "get_store",
    "get_registry",
    "initialize_store",
    "initialize_all_stores",
    "close_all_stores",
    "list_stores",
    "list_limiters",
    # Domain utilities (identifier handling)
    "hash_identifier",
    "normalize_ip",
    "combine_identifiers",
    # Testing utilities
    "testing",
    # Exceptions
    "RateWindowError",
    "BackendError",
    "BackendUnavailableError",
    "ConfigValidationError",
    "StoreNotFoundError",
    "LimiterNotFoundError",
]

# Auto-load configuration from rate-window.toml if it exists
from ratewindow.config import _auto_load_config

_auto_load_config()
