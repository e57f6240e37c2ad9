"""Cloud provider wrappers."""

from outpost.providers.exceptions import (
    ProviderAPIError,
    ProviderConnectionError,
    ProviderCredentialsError,
    ProviderError,
)

__all__ = [
    "ProviderAPIError",
    "ProviderConnectionError",
    "ProviderCredentialsError",
    "ProviderError",
]
