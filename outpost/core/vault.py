"""Per-workspace cloud credential vault."""

from __future__ import annotations

import logging

from outpost.core.exceptions import ConflictError, InvalidCredentialsError, NotFoundError
from outpost.core.interfaces import ComputeClient, CredentialStore, InstanceStore, SecretCipher
from outpost.core.models import (
    ACTIVE_STATUSES,
    CloudCredential,
    CredentialCandidate,
    CredentialMetadata,
    DecryptedCredentials,
)
from outpost.utils import mask_secret

logger = logging.getLogger(__name__)


class CredentialVault:
    """Encrypt, store, validate and serve cloud credentials.

    Plaintext secrets leave the vault only through ``get_decrypted``, which is
    for outbound provider calls and never for callers outside the service.

    Parameters
    ----------
    credential_store : CredentialStore
        Persistence for credential records
    instance_store : InstanceStore
        Persistence for instance records, used to block deletion of
        credentials that still own active instances
    cipher : SecretCipher
        Encryption for secrets at rest
    compute_client : ComputeClient
        Provider client used for dry-run validation
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        instance_store: InstanceStore,
        cipher: SecretCipher,
        compute_client: ComputeClient,
    ) -> None:
        self.credential_store = credential_store
        self.instance_store = instance_store
        self.cipher = cipher
        self.compute_client = compute_client

    async def save(
        self, workspace_id: str, candidate: CredentialCandidate
    ) -> CredentialMetadata:
        """Validate and store the workspace credential.

        Replaces the existing workspace credential in place when there is one.

        Raises
        ------
        InvalidCredentialsError
            If the provider does not authorize the dry-run request
        """
        plaintext = DecryptedCredentials(
            access_key_id=candidate.access_key_id,
            secret_access_key=candidate.secret_access_key,
            region=candidate.region,
        )

        if not await self.compute_client.validate_credentials(plaintext):
            raise InvalidCredentialsError(
                "Invalid AWS credentials: the provider rejected a dry-run request"
            )

        access_key_encrypted = self.cipher.encrypt(candidate.access_key_id)
        secret_key_encrypted = self.cipher.encrypt(candidate.secret_access_key)

        record = await self.credential_store.get_by_workspace(workspace_id)

        if record is None:
            record = CloudCredential(
                workspace_id=workspace_id,
                access_key_id_encrypted=access_key_encrypted,
                secret_access_key_encrypted=secret_key_encrypted,
                region=candidate.region,
            )
            logger.info("Stored new credential for workspace %s", workspace_id)
        else:
            record.access_key_id_encrypted = access_key_encrypted
            record.secret_access_key_encrypted = secret_key_encrypted
            record.region = candidate.region
            logger.info("Replaced credential for workspace %s", workspace_id)

        saved = await self.credential_store.save(record)
        return CredentialMetadata(
            id=saved.id,
            region=saved.region,
            created_at=saved.created_at,
            updated_at=saved.updated_at,
        )

    async def _require(self, workspace_id: str) -> CloudCredential:
        record = await self.credential_store.get_by_workspace(workspace_id)
        if record is None:
            raise NotFoundError(f"No cloud credentials found for workspace {workspace_id}")
        return record

    async def get_masked(self, workspace_id: str) -> CredentialMetadata:
        record = await self._require(workspace_id)
        access_key_id = self.cipher.decrypt(record.access_key_id_encrypted)
        return CredentialMetadata(
            id=record.id,
            region=record.region,
            created_at=record.created_at,
            updated_at=record.updated_at,
            access_key_id=mask_secret(access_key_id),
        )

    async def get_decrypted(self, workspace_id: str) -> DecryptedCredentials:
        record = await self._require(workspace_id)
        return self.decrypt(record)

    def decrypt(self, record: CloudCredential) -> DecryptedCredentials:
        return DecryptedCredentials(
            access_key_id=self.cipher.decrypt(record.access_key_id_encrypted),
            secret_access_key=self.cipher.decrypt(record.secret_access_key_encrypted),
            region=record.region,
        )

    async def find_decrypted(self, workspace_id: str) -> tuple[str, DecryptedCredentials] | None:
        """Return the credential id and plaintext credentials, or None if absent."""
        record = await self.credential_store.get_by_workspace(workspace_id)
        if record is None:
            return None
        return record.id, self.decrypt(record)

    async def delete(self, workspace_id: str) -> None:
        """Delete the workspace credential.

        Raises
        ------
        NotFoundError
            If the workspace has no credential
        ConflictError
            If any instance launched with the credential is still active
        """
        record = await self._require(workspace_id)

        active = await self.instance_store.count_by_status(record.id, ACTIVE_STATUSES)
        if active:
            raise ConflictError(
                f"Cannot delete credentials: {active} instance(s) are still active. "
                "Terminate them first."
            )

        await self.credential_store.delete(record.id)
        logger.info("Deleted credential for workspace %s", workspace_id)
