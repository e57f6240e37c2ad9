"""Translation of botocore exceptions into provider exceptions."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
    PartialCredentialsError,
)

from outpost.providers.aws.constants import CREDENTIAL_ERROR_CODES
from outpost.providers.exceptions import (
    ProviderAPIError,
    ProviderConnectionError,
    ProviderCredentialsError,
)

logger = logging.getLogger(__name__)


def client_error_code(error: ClientError) -> str:
    """Return the AWS error code of a ClientError, or an empty string."""
    return error.response.get("Error", {}).get("Code", "")


@contextmanager
def handle_aws_errors() -> Iterator[None]:
    """Re-raise botocore errors raised in the block as provider errors.

    Raises
    ------
    ProviderCredentialsError
        If credentials are missing or AWS rejects them
    ProviderConnectionError
        If the AWS endpoint cannot be reached
    ProviderAPIError
        For every other AWS API error, carrying the AWS error code
    """
    try:
        yield
    except ClientError as e:
        code = client_error_code(e)
        message = e.response.get("Error", {}).get("Message") or str(e)
        operation = getattr(e, "operation_name", None)

        if code in CREDENTIAL_ERROR_CODES:
            raise ProviderCredentialsError(message) from e

        raise ProviderAPIError(message, error_code=code or None, operation=operation) from e
    except (NoCredentialsError, PartialCredentialsError) as e:
        raise ProviderCredentialsError(str(e)) from e
    except EndpointConnectionError as e:
        raise ProviderConnectionError(str(e)) from e
    except BotoCoreError as e:
        raise ProviderAPIError(str(e)) from e
