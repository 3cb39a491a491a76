"""Exception hierarchy for the offer search service.

Every exception carries a machine-readable ``error_code``, a ``severity``
indicator, a ``retryable`` flag and an arbitrary ``context`` dict for
structured logging.  The sync consumer uses ``retryable`` to decide between
dropping a message and handing it back to the transport for redelivery; the
presentation layer maps the classes to HTTP status codes.
"""
from __future__ import annotations

from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Severity levels
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    """Severity levels for service exceptions."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class OfferSearchError(Exception):
    """Root exception for every offer search failure.

    Attributes:
        message:    Human-readable description.
        error_code: Machine-readable code (e.g. ``"OS_STORE_UNAVAILABLE"``).
        severity:   Impact severity.
        retryable:  ``True`` when re-attempting the same work may succeed.
        context:    Arbitrary key-value context for structured logging.
    """

    retryable: bool = False

    def __init__(
        self,
        message: str = "Offer search error",
        error_code: str = "OS_ERROR",
        severity: Severity = Severity.MEDIUM,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context: dict[str, Any] = context or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}("
            f"error_code={self.error_code!r}, "
            f"severity={self.severity.value!r}, "
            f"message={self.message!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise the exception for API error responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "retryable": self.retryable,
            "context": self.context,
        }


# ---------------------------------------------------------------------------
# Input exceptions (never retried)
# ---------------------------------------------------------------------------

class MalformedCommandError(OfferSearchError):
    """Raised when a sync command or its payload cannot be decoded.

    Redelivery cannot fix a malformed message, so consumers drop it.
    """

    def __init__(self, message: str = "Malformed sync command", **kwargs: Any) -> None:
        super().__init__(
            message,
            error_code=kwargs.pop("error_code", "OS_MALFORMED_COMMAND"),
            severity=kwargs.pop("severity", Severity.LOW),
            **kwargs,
        )


class InvalidQueryError(OfferSearchError):
    """Raised when a search request cannot be turned into a store query."""

    def __init__(self, message: str = "Invalid search query", **kwargs: Any) -> None:
        super().__init__(
            message,
            error_code=kwargs.pop("error_code", "OS_INVALID_QUERY"),
            severity=kwargs.pop("severity", Severity.LOW),
            **kwargs,
        )


# ---------------------------------------------------------------------------
# Dependency exceptions (retryable)
# ---------------------------------------------------------------------------

class DependencyUnavailableError(OfferSearchError):
    """Raised when an external collaborator is unreachable or timed out."""

    retryable = True

    def __init__(self, message: str = "Dependency unavailable", **kwargs: Any) -> None:
        super().__init__(
            message,
            error_code=kwargs.pop("error_code", "OS_DEPENDENCY_UNAVAILABLE"),
            severity=kwargs.pop("severity", Severity.HIGH),
            **kwargs,
        )


class DocumentStoreError(DependencyUnavailableError):
    """Raised when the document store rejects or cannot serve a request."""

    def __init__(self, message: str = "Document store unavailable", **kwargs: Any) -> None:
        super().__init__(message, error_code=kwargs.pop("error_code", "OS_STORE_UNAVAILABLE"), **kwargs)


class EntityProviderError(DependencyUnavailableError):
    """Raised when an upstream entity service lookup fails."""

    def __init__(self, message: str = "Entity provider unavailable", **kwargs: Any) -> None:
        super().__init__(message, error_code=kwargs.pop("error_code", "OS_PROVIDER_UNAVAILABLE"), **kwargs)


# ---------------------------------------------------------------------------
# Read path
# ---------------------------------------------------------------------------

class SearchCancelledError(OfferSearchError):
    """Raised when a read-path operation was cancelled by its caller.

    Cancellation is an outcome, not a fault, and is never retried.
    """

    def __init__(self, message: str = "Search operation was cancelled", **kwargs: Any) -> None:
        super().__init__(
            message,
            error_code=kwargs.pop("error_code", "OS_CANCELLED"),
            severity=kwargs.pop("severity", Severity.LOW),
            **kwargs,
        )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigurationError(OfferSearchError):
    """Raised when the service encounters an invalid or missing configuration."""

    def __init__(self, message: str = "Configuration error", **kwargs: Any) -> None:
        super().__init__(
            message,
            error_code=kwargs.pop("error_code", "OS_CONFIG_ERROR"),
            severity=kwargs.pop("severity", Severity.CRITICAL),
            **kwargs,
        )


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

__all__ = [
    "Severity",
    "OfferSearchError",
    "MalformedCommandError",
    "InvalidQueryError",
    "DependencyUnavailableError",
    "DocumentStoreError",
    "EntityProviderError",
    "SearchCancelledError",
    "ConfigurationError",
]
