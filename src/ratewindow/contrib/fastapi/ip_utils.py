"""Client IP extraction for FastAPI rate limiting.

Proxy headers are only honored when the direct peer belongs to a trusted
proxy network; otherwise any client could pick its own identifier by sending
``X-Forwarded-For``.
"""

from __future__ import annotations

import ipaddress
import logging
from typing import TYPE_CHECKING

from ratewindow.config import get_fastapi_config
from ratewindow.domain.value_objects.identifier import normalize_ip

if TYPE_CHECKING:
    from starlette.requests import Request

logger = logging.getLogger(__name__)

Network = ipaddress.IPv4Network | ipaddress.IPv6Network

# Default trusted proxy networks (Docker, Kubernetes, load balancers)
DEFAULT_TRUSTED_PROXY_NETWORKS: list[str] = [
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "127.0.0.0/8",
    "::1/128",
    "fc00::/7",
]

UNKNOWN_CLIENT = "unknown"


def _parse_networks(networks: list[str]) -> list[Network]:
    result: list[Network] = []
    for net in networks:
        try:
            result.append(ipaddress.ip_network(net, strict=False))
        except ValueError:
            logger.warning("Invalid network string: %s", net)
    return result


def _in_networks(ip: str, networks: list[Network]) -> bool:
    try:
        addr = ipaddress.ip_address(ip)
    except ValueError:
        return False
    return any(addr in net for net in networks)


def validate_ip(ip: str) -> str | None:
    """Return the normalized form of an IP address, or None if it is not one."""
    try:
        ipaddress.ip_address(ip.strip())
    except ValueError:
        return None
    return normalize_ip(ip)


def _trusted_networks(trusted_proxies: list[str] | None) -> list[Network]:
    # Priority: parameter > [fastapi] config > defaults
    if trusted_proxies is not None:
        return _parse_networks(trusted_proxies)
    configured = get_fastapi_config().trusted_proxy_networks
    if configured is not None:
        return _parse_networks(configured)
    return _parse_networks(DEFAULT_TRUSTED_PROXY_NETWORKS)


def get_client_ip(request: "Request", trusted_proxies: list[str] | None = None) -> str:
    """Extract the client IP address of a request.

    When the direct peer is a trusted proxy, the ``X-Forwarded-For`` chain is
    read right to left and the first address outside the trusted networks is
    returned (the hop nearest to our proxies, which a client cannot forge).
    ``X-Real-IP`` is the fallback.

    Trusted proxy networks are determined in this order:
    1. ``trusted_proxies`` parameter
    2. ``fastapi.trusted_proxy_networks`` from rate-window.toml
    3. DEFAULT_TRUSTED_PROXY_NETWORKS (private networks)

    Returns:
        The client IP address, or "unknown" if it cannot be determined

    Example:
        >>> @app.get("/api/data")
        ... async def get_data(request: Request):
        ...     if not await allow("api", get_client_ip(request)):
        ...         raise HTTPException(429)
    """
    trusted_networks = _trusted_networks(trusted_proxies)

    direct_ip = request.client.host if request.client else None
    if not direct_ip:
        logger.warning("Request without client IP")
        return UNKNOWN_CLIENT

    validated_direct = validate_ip(direct_ip)
    if not validated_direct:
        logger.warning("Invalid direct IP: %s", direct_ip)
        return UNKNOWN_CLIENT

    if not _in_networks(validated_direct, trusted_networks):
        return validated_direct

    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        for hop in reversed(forwarded_for.split(",")):
            validated = validate_ip(hop)
            if validated and not _in_networks(validated, trusted_networks):
                return validated

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        validated = validate_ip(real_ip)
        if validated:
            return validated

    return validated_direct


__all__ = [
    "get_client_ip",
    "validate_ip",
    "DEFAULT_TRUSTED_PROXY_NETWORKS",
    "UNKNOWN_CLIENT",
]
