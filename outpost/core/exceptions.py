"""Domain exceptions raised by outpost services.

Each class maps onto one outcome a caller has to handle differently:
malformed input, missing records, conflicting state, failed authentication
and failed remote execution.
"""

from __future__ import annotations


class OutpostError(Exception):
    """Base class for outpost domain errors."""


class BadRequestError(OutpostError):
    """Raised when a request cannot be served in the current configuration."""


class ValidationError(BadRequestError):
    """Raised when caller input fails validation before any external call."""


class InvalidCredentialsError(BadRequestError):
    """Raised when the provider rejects a candidate credential."""


class AuthenticationError(OutpostError):
    """Raised when a bearer token or identity cannot be verified."""


class NotFoundError(OutpostError):
    """Raised when a requested record does not exist."""


class ConflictError(OutpostError):
    """Raised when an operation conflicts with the current state."""


class DecryptionError(OutpostError):
    """Raised when a stored secret cannot be decrypted."""


class RemoteExecutionError(OutpostError):
    """Raised when a remote command fails or exits non-zero.

    Parameters
    ----------
    message : str
        Error message
    exit_code : int | None
        Remote exit code, or None when the command never completed
    """

    def __init__(self, message: str, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class CommandTimeoutError(RemoteExecutionError):
    """Raised when a remote command exceeds its wall-clock limit."""
