"""Protocol definitions for the collaborators outpost services depend on.

Services receive implementations of these protocols through their
constructors. Concrete stores live in ``outpost.core.stores``; the EC2
compute client lives in ``outpost.providers.aws``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from outpost.core.models import (
    CloudCredential,
    ComputeInstance,
    DecryptedCredentials,
    InstanceDescription,
    InstanceStatus,
    SecurityRule,
)


@dataclass(frozen=True)
class LaunchParams:
    """Parameters for launching one instance."""

    instance_type: str
    image_id: str
    security_group_id: str
    key_name: str | None = None
    user_data: str | None = None


@runtime_checkable
class CredentialStore(Protocol):
    """Persistence for per-workspace cloud credentials."""

    async def get_by_workspace(self, workspace_id: str) -> CloudCredential | None: ...

    async def save(self, credential: CloudCredential) -> CloudCredential: ...

    async def delete(self, credential_id: str) -> None: ...


@runtime_checkable
class InstanceStore(Protocol):
    """Persistence for compute instance records."""

    async def create(self, instance: ComputeInstance) -> ComputeInstance: ...

    async def get(self, instance_id: str) -> ComputeInstance | None: ...

    async def get_for_workspace(
        self, workspace_id: str, instance_id: str
    ) -> ComputeInstance | None: ...

    async def list_for_workspace(self, workspace_id: str) -> list[ComputeInstance]: ...

    async def save(self, instance: ComputeInstance) -> ComputeInstance: ...

    async def count_by_status(
        self, credential_id: str, statuses: Iterable[InstanceStatus]
    ) -> int: ...


class SecretCipher(Protocol):
    """Symmetric encryption for secrets at rest."""

    def encrypt(self, plaintext: str) -> str: ...

    def decrypt(self, ciphertext: str) -> str: ...


class ComputeClient(Protocol):
    """Single-operation cloud compute API."""

    async def launch(self, creds: DecryptedCredentials, params: LaunchParams) -> str: ...

    async def describe(
        self, creds: DecryptedCredentials, provider_instance_id: str
    ) -> InstanceDescription: ...

    async def start(self, creds: DecryptedCredentials, provider_instance_id: str) -> None: ...

    async def stop(self, creds: DecryptedCredentials, provider_instance_id: str) -> None: ...

    async def terminate(
        self, creds: DecryptedCredentials, provider_instance_id: str
    ) -> None: ...

    async def create_security_group(
        self, creds: DecryptedCredentials, name: str, description: str
    ) -> str: ...

    async def delete_security_group(self, creds: DecryptedCredentials, group_id: str) -> None: ...

    async def list_ingress_rules(
        self, creds: DecryptedCredentials, group_id: str
    ) -> list[SecurityRule]: ...

    async def replace_ingress_rules(
        self, creds: DecryptedCredentials, group_id: str, rules: list[SecurityRule]
    ) -> None: ...

    async def validate_credentials(self, creds: DecryptedCredentials) -> bool: ...


class TokenVerifier(Protocol):
    """Verifies a bearer token and returns its claims."""

    def verify(self, token: str) -> dict[str, Any]: ...


class UserDirectory(Protocol):
    """Resolves user identities."""

    async def get_user(self, user_id: str) -> Any | None: ...


class WorkspaceDirectory(Protocol):
    """Resolves workspaces; a workspace exposes ``org_id``."""

    async def get_workspace(self, workspace_id: str) -> Any | None: ...


class OrganizationMembership(Protocol):
    """Answers whether a user is a member of an organization."""

    async def is_member(self, user_id: str, org_id: str) -> bool: ...


class TerminalChannel(Protocol):
    """Client side of a duplex terminal connection.

    Attributes
    ----------
    connection_id : str
        Unique id of the live connection
    auth : Mapping[str, Any]
        Handshake auth payload (may carry ``token``)
    headers : Mapping[str, str]
        Handshake headers (may carry ``authorization``)
    query : Mapping[str, str]
        Handshake query parameters (``workspaceId``, ``instanceId``)
    """

    connection_id: str
    auth: Mapping[str, Any]
    headers: Mapping[str, str]
    query: Mapping[str, str]

    async def emit(self, event: str, data: Any = None) -> None: ...

    async def close(self) -> None: ...
