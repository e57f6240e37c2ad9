"""Records and value objects shared across outpost services."""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Return a new random record identifier."""
    return str(uuid.uuid4())


class InstanceStatus(str, Enum):
    """Local lifecycle status of a compute instance record."""

    PROVISIONING = "PROVISIONING"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    TERMINATED = "TERMINATED"
    ERROR = "ERROR"


class InstanceAction(str, Enum):
    """User-triggered lifecycle actions."""

    START = "START"
    STOP = "STOP"
    TERMINATE = "TERMINATE"


ACTIVE_STATUSES = frozenset(
    (InstanceStatus.PROVISIONING, InstanceStatus.RUNNING, InstanceStatus.STOPPED)
)
"""Statuses that keep a credential in use."""

TERMINAL_STATUSES = frozenset((InstanceStatus.TERMINATED, InstanceStatus.ERROR))
"""Statuses no automated transition leaves."""


@dataclass
class CloudCredential:
    """Persisted per-workspace cloud credential with encrypted secrets."""

    workspace_id: str
    access_key_id_encrypted: str
    secret_access_key_encrypted: str
    region: str
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CloudCredential:
        return cls(
            id=data["id"],
            workspace_id=data["workspace_id"],
            access_key_id_encrypted=data["access_key_id_encrypted"],
            secret_access_key_encrypted=data["secret_access_key_encrypted"],
            region=data["region"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass(frozen=True)
class CredentialCandidate:
    """Plaintext credential submitted for validation and storage."""

    access_key_id: str
    secret_access_key: str
    region: str

    def __repr__(self) -> str:
        return f"CredentialCandidate(region={self.region!r})"


@dataclass(frozen=True)
class DecryptedCredentials:
    """Plaintext credential held in memory for one outbound provider call."""

    access_key_id: str
    secret_access_key: str
    region: str

    def __repr__(self) -> str:
        return f"DecryptedCredentials(region={self.region!r})"


@dataclass(frozen=True)
class CredentialMetadata:
    """Non-secret view of a stored credential."""

    id: str
    region: str
    created_at: datetime
    updated_at: datetime
    access_key_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "region": self.region,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
        if self.access_key_id is not None:
            data["access_key_id"] = self.access_key_id
        return data


@dataclass(frozen=True)
class Integration:
    """Integration enabled on a provisioned instance."""

    name: str
    config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ProvisionRequest:
    """Caller input for provisioning a new instance."""

    instance_type: str
    repo_url: str
    deploy_token: str
    integrations: list[Integration] = field(default_factory=list)

    def __repr__(self) -> str:
        return (
            f"ProvisionRequest(instance_type={self.instance_type!r}, "
            f"repo_url={self.repo_url!r}, integrations={self.integrations!r})"
        )


@dataclass(frozen=True)
class SecurityRule:
    """One inbound firewall rule as the provider reports it."""

    port: int
    cidr: str
    description: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"port": self.port, "cidr": self.cidr, "description": self.description}


@dataclass(frozen=True)
class InstanceDescription:
    """Provider-observed instance state; either field may be absent."""

    state: str | None = None
    public_ip: str | None = None


@dataclass
class ComputeInstance:
    """Persisted record of one provisioned instance.

    The record is created in ``PROVISIONING`` before any provider call and is
    never deleted; termination is a status.
    """

    workspace_id: str
    credential_id: str
    instance_type: str
    region: str
    repo_url: str
    deploy_token_encrypted: str
    integrations: list[Integration] = field(default_factory=list)
    status: InstanceStatus = InstanceStatus.PROVISIONING
    provider_instance_id: str | None = None
    security_group_id: str | None = None
    public_ip: str | None = None
    error_message: str | None = None
    launched_at: datetime | None = None
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        """Serialize every field, including the encrypted deploy token."""
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "credential_id": self.credential_id,
            "status": self.status.value,
            "instance_type": self.instance_type,
            "region": self.region,
            "repo_url": self.repo_url,
            "deploy_token_encrypted": self.deploy_token_encrypted,
            "integrations": [
                {"name": i.name, "config": dict(i.config)} for i in self.integrations
            ],
            "provider_instance_id": self.provider_instance_id,
            "security_group_id": self.security_group_id,
            "public_ip": self.public_ip,
            "error_message": self.error_message,
            "launched_at": self.launched_at.isoformat() if self.launched_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def to_public_dict(self) -> dict[str, Any]:
        """Serialize for callers outside the service; drops the deploy token."""
        data = self.to_dict()
        del data["deploy_token_encrypted"]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ComputeInstance:
        launched_at = data.get("launched_at")
        return cls(
            id=data["id"],
            workspace_id=data["workspace_id"],
            credential_id=data["credential_id"],
            status=InstanceStatus(data["status"]),
            instance_type=data["instance_type"],
            region=data["region"],
            repo_url=data["repo_url"],
            deploy_token_encrypted=data["deploy_token_encrypted"],
            integrations=[
                Integration(name=i["name"], config=i.get("config") or {})
                for i in data.get("integrations", [])
            ],
            provider_instance_id=data.get("provider_instance_id"),
            security_group_id=data.get("security_group_id"),
            public_ip=data.get("public_ip"),
            error_message=data.get("error_message"),
            launched_at=datetime.fromisoformat(launched_at) if launched_at else None,
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
        )


@dataclass(frozen=True)
class UpdateCheckResult:
    """Installed versus target agent version on an instance."""

    current_version: str
    latest_version: str
    update_available: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UpdateApplyResult:
    """Outcome of an in-place agent upgrade."""

    success: bool
    new_version: str
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success, "new_version": self.new_version}
        if self.error is not None:
            data["error"] = self.error
        return data
