"""Standardized error hierarchy for the secret loader.

Providers raise these errors internally. ``SecretProvider.load()`` converts
them into a numeric load status so that the orchestrator is the single place
deciding whether a failure is fatal.
"""

from typing import Any, Dict, Optional

# Adapter load status codes (see providers.base.LoadStatus)
STATUS_NOT_CONFIGURED = 1
STATUS_AUTH_FAILURE = 2


class SecretLoaderError(Exception):
    """Base exception for all secret loader errors.

    All errors include:
    - error_code: Machine-readable error code
    - message: Human-readable error message (never contains secret values)
    - details: Optional additional context
    - status: Load status code the error maps to
    """

    error_code: str = "SECRET_LOADER_ERROR"
    status: int = STATUS_AUTH_FAILURE

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        """Initialize secret loader error.

        Args:
            message: Human-readable error message
            error_code: Optional error code override
            details: Optional additional context
        """
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}


# Configuration errors (status 1)
class ProviderNotConfiguredError(SecretLoaderError):
    """Provider is enabled but a required setting is absent or invalid."""

    error_code = "PROVIDER_NOT_CONFIGURED"
    status = STATUS_NOT_CONFIGURED


class DependencyMissingError(ProviderNotConfiguredError):
    """A required CLI tool or client library is not available."""

    error_code = "DEPENDENCY_MISSING"


class UnknownProviderError(ProviderNotConfiguredError):
    """Provider identifier is well formed but not in the registry."""

    error_code = "UNKNOWN_PROVIDER"


# Authentication and transport errors (status 2)
class ProviderAuthenticationError(SecretLoaderError):
    """Credentials were missing, rejected, or yielded a malformed response."""

    error_code = "AUTHENTICATION_FAILED"
    status = STATUS_AUTH_FAILURE


class ProviderTransportError(SecretLoaderError):
    """Provider API was unreachable or returned an unusable response."""

    error_code = "TRANSPORT_FAILED"
    status = STATUS_AUTH_FAILURE


# Validation errors (rejected before any dispatch)
class InvalidProviderError(SecretLoaderError):
    """Provider identifier is empty or contains forbidden characters."""

    error_code = "INVALID_PROVIDER"


def get_error_code(error: Exception) -> str:
    """Get error code from exception.

    Args:
        error: Exception to extract code from

    Returns:
        Error code string, UNEXPECTED_ERROR for anything outside the hierarchy
    """
    if isinstance(error, SecretLoaderError):
        return error.error_code
    return "UNEXPECTED_ERROR"
