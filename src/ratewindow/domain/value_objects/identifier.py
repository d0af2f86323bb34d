"""Helpers for building the client identifiers passed to rate limiters.

Identifiers end up inside storage keys and log lines, so:
- hash_identifier: replaces sensitive values (API keys, emails) with a short digest
- normalize_ip: gives every spelling of an address the same identifier
- combine_identifiers: builds compound identifiers ("ip:route")
"""

from __future__ import annotations

import hashlib
import ipaddress

_ALGORITHMS = ("sha256", "sha384", "sha512", "blake2b")


def hash_identifier(
    identifier: str,
    *,
    length: int = 16,
    salt: str = "",
    algorithm: str = "sha256",
) -> str:
    """Hash a sensitive identifier into a short, stable hex digest.

    The identifier is trimmed and lower-cased first, so ``" Key-ABC "`` and
    ``"key-abc"`` share one counter.

    Args:
        identifier: Value to hash (API key, email, ...)
        length: Number of hex characters kept (1-128)
        salt: Prepended before hashing; use distinct salts per limiter to keep
            digests from being correlated across contexts
        algorithm: One of "sha256", "sha384", "sha512", "blake2b"

    Returns:
        Truncated hex digest

    Raises:
        ValueError: If algorithm is unsupported or length is out of range

    Example:
        >>> api_key_id = hash_identifier(request.headers["X-API-Key"], salt="api")
        >>> await limiter.allow(api_key_id)
    """
    if algorithm not in _ALGORITHMS:
        raise ValueError(f"Unsupported algorithm '{algorithm}'. Use one of {_ALGORITHMS}")

    if not 1 <= length <= 128:
        raise ValueError(f"length must be between 1 and 128, got {length}")

    normalized = f"{salt}{identifier.strip().lower()}"
    digest = hashlib.new(algorithm, normalized.encode()).hexdigest()
    return digest[:length]


def normalize_ip(address: str, *, ipv6_prefix: int | None = None) -> str:
    """Return the canonical text form of an IP address.

    IPv4-mapped IPv6 addresses (``::ffff:10.0.0.1``) become plain IPv4. With
    ``ipv6_prefix`` (e.g. 64), IPv6 clients are grouped by network, since a
    single host usually controls a whole /64.

    Values that are not IP addresses (e.g. "unknown") are returned trimmed
    and unchanged.

    Example:
        >>> normalize_ip("2001:DB8:0:0::1")
        '2001:db8::1'
        >>> normalize_ip("2001:db8::1", ipv6_prefix=64)
        '2001:db8::/64'
    """
    text = address.strip()
    try:
        ip = ipaddress.ip_address(text)
    except ValueError:
        return text

    if isinstance(ip, ipaddress.IPv6Address):
        if ip.ipv4_mapped is not None:
            return str(ip.ipv4_mapped)
        if ipv6_prefix is not None:
            return str(ipaddress.IPv6Network(f"{ip}/{ipv6_prefix}", strict=False))

    return str(ip)


def combine_identifiers(*identifiers: str | None, separator: str = ":") -> str:
    """Join identifier parts into one compound identifier.

    Empty parts and None are skipped.

    Example:
        >>> combine_identifiers("10.0.0.1", None, "/login")
        '10.0.0.1:/login'
    """
    return separator.join(str(part) for part in identifiers if part)


__all__ = [
    "hash_identifier",
    "normalize_ip",
    "combine_identifiers",
]
