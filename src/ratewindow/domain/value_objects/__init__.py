"""Value objects for the rate limiting domain.

Framework-agnostic helpers for building client identifiers.
"""

from __future__ import annotations

from ratewindow.domain.value_objects.identifier import (
    combine_identifiers,
    hash_identifier,
    normalize_ip,
)

__all__ = [
    "hash_identifier",
    "normalize_ip",
    "combine_identifiers",
]
