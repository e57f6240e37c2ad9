"""Bearer token verification and static access directories."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import jwt

from outpost.core.exceptions import AuthenticationError

logger = logging.getLogger(__name__)


class JWTTokenVerifier:
    """Verify HMAC-signed JWTs issued for outpost users.

    Parameters
    ----------
    secret : str
        Shared signing secret
    algorithm : str
        JWT algorithm (default: HS256)

    Raises
    ------
    ValueError
        If no secret is configured
    """

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        if not secret:
            raise ValueError(
                "JWT secret is not configured. Set OUTPOST_JWT_SECRET or jwt_secret."
            )
        self.secret = secret
        self.algorithm = algorithm

    def verify(self, token: str) -> dict[str, Any]:
        """Decode a token and return its claims.

        Raises
        ------
        AuthenticationError
            If the signature, expiry or ``sub`` claim is invalid
        """
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={"require": ["sub"]},
            )
        except jwt.PyJWTError as e:
            logger.debug("Token rejected: %s", e)
            raise AuthenticationError(f"Invalid token: {e}") from e

    def issue(self, subject: str, **claims: Any) -> str:
        """Sign a token for a subject; used by the CLI to mint test tokens."""
        return jwt.encode({"sub": subject, **claims}, self.secret, algorithm=self.algorithm)


@dataclass(frozen=True)
class User:
    id: str


@dataclass(frozen=True)
class Workspace:
    id: str
    org_id: str


class StaticAccessDirectory:
    """Users, workspaces and memberships read from configuration.

    Implements ``UserDirectory``, ``WorkspaceDirectory`` and
    ``OrganizationMembership`` for single-tenant deployments.

    Parameters
    ----------
    organizations : Mapping[str, list[str]]
        Organization id to member user ids
    workspaces : Mapping[str, str]
        Workspace id to owning organization id
    """

    def __init__(
        self,
        organizations: Mapping[str, list[str]] | None = None,
        workspaces: Mapping[str, str] | None = None,
    ) -> None:
        self.organizations = {org: set(members) for org, members in (organizations or {}).items()}
        self.workspaces = dict(workspaces or {})

    async def get_user(self, user_id: str) -> User | None:
        if any(user_id in members for members in self.organizations.values()):
            return User(id=user_id)
        return None

    async def get_workspace(self, workspace_id: str) -> Workspace | None:
        org_id = self.workspaces.get(workspace_id)
        if org_id is None:
            return None
        return Workspace(id=workspace_id, org_id=org_id)

    async def is_member(self, user_id: str, org_id: str) -> bool:
        return user_id in self.organizations.get(org_id, set())
