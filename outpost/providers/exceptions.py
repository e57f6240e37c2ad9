"""Provider-agnostic exceptions raised by cloud provider wrappers."""

from __future__ import annotations


class ProviderError(Exception):
    """Base class for all cloud provider errors."""


class ProviderCredentialsError(ProviderError):
    """Raised when provider credentials are missing or rejected."""


class ProviderAPIError(ProviderError):
    """Raised when a provider API call fails.

    Parameters
    ----------
    message : str
        Human readable error message
    error_code : str | None
        Provider error code (e.g. ``InvalidGroup.InUse``)
    operation : str | None
        Provider operation that failed (e.g. ``DeleteSecurityGroup``)

    Attributes
    ----------
    error_code : str | None
        Provider error code
    operation : str | None
        Provider operation name
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        operation: str | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.operation = operation


class ProviderConnectionError(ProviderError):
    """Raised when the provider endpoint cannot be reached."""
