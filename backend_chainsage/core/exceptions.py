"""
Application-level exceptions.

Validation errors (InvalidAddress) surface to the caller. Upstream and
persistence errors (UpstreamUnavailable, PersistenceDegraded) are raised inside
a component and absorbed at its boundary, where they become degraded results.
Each exception carries a stable code and an HTTP status for the API server.
"""

from __future__ import annotations


class ChainSageError(Exception):
    """Base class for ChainSage domain errors."""

    code = "chainsage_error"
    http_status = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "code": self.code}


class InvalidAddress(ChainSageError, ValueError):
    """Address failed chain-address format validation."""

    code = "invalid_address"
    http_status = 400

    def __init__(self, address: str) -> None:
        super().__init__(f"Invalid address format: {address!r}")
        self.address = address


class NotFound(ChainSageError):
    """Lookup or removal of an entity that is not monitored."""

    code = "not_found"
    http_status = 404

    def __init__(self, address: str) -> None:
        super().__init__(f"Address not found in monitoring list: {address}")
        self.address = address


class UpstreamUnavailable(ChainSageError):
    """Chain indexer or AI service failed, timed out, or returned malformed data."""

    code = "upstream_unavailable"
    http_status = 503

    def __init__(self, service: str, reason: str = "") -> None:
        super().__init__(f"{service} unavailable: {reason}" if reason else f"{service} unavailable")
        self.service = service
        self.reason = reason


class PersistenceDegraded(ChainSageError):
    """Durable store or backup file read/write failed."""

    code = "persistence_degraded"
    http_status = 503

    def __init__(self, tier: str, reason: str = "") -> None:
        super().__init__(f"{tier} persistence failed: {reason}" if reason else f"{tier} persistence failed")
        self.tier = tier
        self.reason = reason
