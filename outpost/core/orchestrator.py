"""Instance lifecycle orchestration.

``InstanceOrchestrator`` owns the compute instance records: it provisions
instances, applies user actions, reconciles records against the provider and
manages each instance's SSH ingress rules.

Status changes all pass through ``_transition``, which only follows the edges
in ``ALLOWED_TRANSITIONS``::

    PROVISIONING -> RUNNING | ERROR
    RUNNING      -> STOPPED | TERMINATED
    STOPPED      -> RUNNING | TERMINATED

``TERMINATED`` and ``ERROR`` have no outgoing edges.
"""

from __future__ import annotations

import functools
import ipaddress
import logging

from outpost.constants import (
    DEFAULT_AMI_ID,
    OPEN_CIDR,
    OPEN_SSH_RULE_DESCRIPTION,
    SECURITY_GROUP_NAME_PREFIX,
    SSH_PORT,
    SSH_RULE_DESCRIPTION,
    ProviderState,
)
from outpost.core.boot_script import (
    build_boot_script,
    normalize_repo_url,
    validate_integration_names,
)
from outpost.core.exceptions import (
    BadRequestError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from outpost.core.interfaces import ComputeClient, InstanceStore, LaunchParams, SecretCipher
from outpost.core.models import (
    TERMINAL_STATUSES,
    ComputeInstance,
    DecryptedCredentials,
    InstanceAction,
    InstanceDescription,
    InstanceStatus,
    ProvisionRequest,
    SecurityRule,
    utc_now,
)
from outpost.core.reconciler import ReconciliationScheduler
from outpost.core.vault import CredentialVault
from outpost.providers.aws.constants import VALID_INSTANCE_TYPES

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.PROVISIONING: frozenset((InstanceStatus.RUNNING, InstanceStatus.ERROR)),
    InstanceStatus.RUNNING: frozenset((InstanceStatus.STOPPED, InstanceStatus.TERMINATED)),
    InstanceStatus.STOPPED: frozenset((InstanceStatus.RUNNING, InstanceStatus.TERMINATED)),
    InstanceStatus.TERMINATED: frozenset(),
    InstanceStatus.ERROR: frozenset(),
}

PROVIDER_STATE_TO_STATUS: dict[str, InstanceStatus] = {
    ProviderState.RUNNING.value: InstanceStatus.RUNNING,
    ProviderState.STOPPED.value: InstanceStatus.STOPPED,
    ProviderState.TERMINATED.value: InstanceStatus.TERMINATED,
    ProviderState.SHUTTING_DOWN.value: InstanceStatus.TERMINATED,
    ProviderState.PENDING.value: InstanceStatus.PROVISIONING,
}

ACTION_TARGETS: dict[InstanceAction, InstanceStatus] = {
    InstanceAction.START: InstanceStatus.RUNNING,
    InstanceAction.STOP: InstanceStatus.STOPPED,
    InstanceAction.TERMINATE: InstanceStatus.TERMINATED,
}

CREDENTIALS_NOT_CONFIGURED = "Cloud credentials not configured"
TERMINATED_WHILE_PROVISIONING = "Instance was terminated by the provider before it started"


def is_allowed_transition(current: InstanceStatus, target: InstanceStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class InstanceOrchestrator:
    """Provision, track and operate agent instances for workspaces.

    Parameters
    ----------
    instance_store : InstanceStore
        Persistence for instance records
    vault : CredentialVault
        Source of the workspace's decrypted cloud credentials
    compute_client : ComputeClient
        Cloud compute API
    cipher : SecretCipher
        Encryption for the deploy token at rest
    scheduler : ReconciliationScheduler | None
        Background poller; a default one is created when None
    ami_id : str
        Image launched for new instances
    key_pair_name : str | None
        EC2 key pair installed on new instances
    """

    def __init__(
        self,
        instance_store: InstanceStore,
        vault: CredentialVault,
        compute_client: ComputeClient,
        cipher: SecretCipher,
        scheduler: ReconciliationScheduler | None = None,
        ami_id: str = DEFAULT_AMI_ID,
        key_pair_name: str | None = None,
    ) -> None:
        self.instance_store = instance_store
        self.vault = vault
        self.compute_client = compute_client
        self.cipher = cipher
        self.scheduler = scheduler or ReconciliationScheduler()
        self.ami_id = ami_id
        self.key_pair_name = key_pair_name

    def _transition(self, record: ComputeInstance, target: InstanceStatus) -> bool:
        """Move a record to a new status if the edge is allowed.

        Returns
        -------
        bool
            True if the record now has the target status
        """
        if record.status == target:
            return True

        if not is_allowed_transition(record.status, target):
            logger.debug(
                "Ignoring transition %s -> %s for instance %s",
                record.status.value,
                target.value,
                record.id,
            )
            return False

        record.status = target
        return True

    async def provision(
        self, workspace_id: str, request: ProvisionRequest
    ) -> ComputeInstance:
        """Provision a new agent instance.

        Input is validated and credentials resolved before anything is stored.
        The record is then persisted in ``PROVISIONING`` before the first
        provider call, so a failure while creating the security group,
        rendering the boot script or launching leaves an ``ERROR`` record
        carrying the failure message instead of raising.

        Parameters
        ----------
        workspace_id : str
            Owning workspace
        request : ProvisionRequest
            Instance type, repository, deploy token and integrations

        Returns
        -------
        ComputeInstance
            The stored record, in ``PROVISIONING`` or ``ERROR``

        Raises
        ------
        ValidationError
            If the instance type, repository URL or an integration name is invalid
        BadRequestError
            If the workspace has no cloud credentials
        """
        if request.instance_type not in VALID_INSTANCE_TYPES:
            raise ValidationError(f"Unsupported instance type: {request.instance_type}")
        normalize_repo_url(request.repo_url)
        validate_integration_names(request.integrations)

        found = await self.vault.find_decrypted(workspace_id)
        if found is None:
            raise BadRequestError(CREDENTIALS_NOT_CONFIGURED)
        credential_id, creds = found

        record = await self.instance_store.create(
            ComputeInstance(
                workspace_id=workspace_id,
                credential_id=credential_id,
                instance_type=request.instance_type,
                region=creds.region,
                repo_url=request.repo_url,
                deploy_token_encrypted=self.cipher.encrypt(request.deploy_token),
                integrations=list(request.integrations),
            )
        )

        try:
            record.security_group_id = await self.compute_client.create_security_group(
                creds,
                f"{SECURITY_GROUP_NAME_PREFIX}{record.id}",
                f"Outpost agent instance {record.id}",
            )
            record = await self.instance_store.save(record)

            user_data = build_boot_script(
                request.repo_url, request.deploy_token, request.integrations
            )
            record.provider_instance_id = await self.compute_client.launch(
                creds,
                LaunchParams(
                    instance_type=request.instance_type,
                    image_id=self.ami_id,
                    security_group_id=record.security_group_id,
                    key_name=self.key_pair_name,
                    user_data=user_data,
                ),
            )
            record = await self.instance_store.save(record)
        except Exception as e:
            self._transition(record, InstanceStatus.ERROR)
            record.error_message = str(e) or e.__class__.__name__
            record = await self.instance_store.save(record)
            logger.error("Failed to provision instance %s: %s", record.id, record.error_message)
            return record

        self._schedule_reconciliation(record.id, creds)
        logger.info(
            "Provisioning instance %s (provider id %s) for workspace %s",
            record.id,
            record.provider_instance_id,
            workspace_id,
        )
        return record

    def _schedule_reconciliation(self, instance_id: str, creds: DecryptedCredentials) -> None:
        self.scheduler.schedule(
            instance_id, functools.partial(self._reconcile_once, creds=creds)
        )

    async def _reconcile_once(self, instance_id: str, creds: DecryptedCredentials) -> bool:
        """Run one reconciliation poll.

        Returns
        -------
        bool
            True when polling should stop
        """
        record = await self.instance_store.get(instance_id)

        if record is None or record.status in TERMINAL_STATUSES:
            return True

        if not record.provider_instance_id:
            return True

        record = await self._refresh(record, creds)

        if record.status == InstanceStatus.RUNNING:
            logger.info("Instance %s is now RUNNING (IP: %s)", record.id, record.public_ip)
            return True

        return record.status in TERMINAL_STATUSES

    def _apply_description(
        self, record: ComputeInstance, description: InstanceDescription
    ) -> None:
        target = PROVIDER_STATE_TO_STATUS.get(description.state or "")

        if target == InstanceStatus.TERMINATED and record.status == InstanceStatus.PROVISIONING:
            self._transition(record, InstanceStatus.ERROR)
            record.error_message = TERMINATED_WHILE_PROVISIONING
        elif target is not None:
            self._transition(record, target)

        record.public_ip = description.public_ip

        if record.status == InstanceStatus.RUNNING and record.launched_at is None:
            record.launched_at = utc_now()

    async def _refresh(
        self, record: ComputeInstance, creds: DecryptedCredentials
    ) -> ComputeInstance:
        description = await self.compute_client.describe(creds, record.provider_instance_id)
        self._apply_description(record, description)
        return await self.instance_store.save(record)

    async def _require_instance(self, workspace_id: str, instance_id: str) -> ComputeInstance:
        record = await self.instance_store.get_for_workspace(workspace_id, instance_id)
        if record is None:
            raise NotFoundError("Instance not found")
        return record

    async def _require_credentials(self, workspace_id: str) -> DecryptedCredentials:
        found = await self.vault.find_decrypted(workspace_id)
        if found is None:
            raise BadRequestError(CREDENTIALS_NOT_CONFIGURED)
        return found[1]

    async def list(self, workspace_id: str) -> list[ComputeInstance]:
        """Return the workspace's instances, newest first."""
        return await self.instance_store.list_for_workspace(workspace_id)

    async def get(self, workspace_id: str, instance_id: str) -> ComputeInstance:
        """Return an instance, refreshed from the provider when it may have changed.

        A failed refresh is logged and the last stored record is returned.

        Raises
        ------
        NotFoundError
            If the workspace has no such instance
        """
        record = await self._require_instance(workspace_id, instance_id)

        if record.status == InstanceStatus.TERMINATED or not record.provider_instance_id:
            return record

        try:
            creds = await self._require_credentials(workspace_id)
            record = await self._refresh(record, creds)
        except Exception as e:
            logger.warning("Failed to refresh status for instance %s: %s", record.id, e)

        return record

    async def sync_status(self, workspace_id: str, instance_id: str) -> ComputeInstance:
        """Refresh an instance from the provider on request.

        Records without a provider instance id are returned unchanged.
        Provider errors propagate.

        Raises
        ------
        NotFoundError
            If the workspace has no such instance
        BadRequestError
            If the workspace has no cloud credentials
        """
        record = await self._require_instance(workspace_id, instance_id)

        if not record.provider_instance_id:
            return record

        creds = await self._require_credentials(workspace_id)
        return await self._refresh(record, creds)

    async def perform_action(
        self, workspace_id: str, instance_id: str, action: InstanceAction | str
    ) -> ComputeInstance:
        """Start, stop or terminate an instance.

        The provider call only requests the transition; the record is set to
        the target status right away and later polls correct it.

        Raises
        ------
        NotFoundError
            If the workspace has no such instance
        ValidationError
            If the action is unknown
        BadRequestError
            If the instance was never launched or credentials are missing
        ConflictError
            If the current status cannot move to the action's target status
        """
        try:
            action = InstanceAction(action)
        except ValueError:
            raise ValidationError(f"Unknown instance action: {action}") from None

        record = await self._require_instance(workspace_id, instance_id)

        if not record.provider_instance_id:
            raise BadRequestError("Instance has not been assigned a provider instance yet")

        creds = await self._require_credentials(workspace_id)

        target = ACTION_TARGETS[action]
        if record.status != target and not is_allowed_transition(record.status, target):
            raise ConflictError(
                f"Cannot {action.value.lower()} an instance in status {record.status.value}"
            )

        if action == InstanceAction.START:
            await self.compute_client.start(creds, record.provider_instance_id)
        elif action == InstanceAction.STOP:
            await self.compute_client.stop(creds, record.provider_instance_id)
        else:
            await self.compute_client.terminate(creds, record.provider_instance_id)

        self._transition(record, target)

        if action == InstanceAction.TERMINATE:
            self.scheduler.cancel(record.id)
            if record.security_group_id:
                try:
                    await self.compute_client.delete_security_group(
                        creds, record.security_group_id
                    )
                except Exception as e:
                    logger.warning(
                        "Failed to delete security group %s: %s", record.security_group_id, e
                    )

        record = await self.instance_store.save(record)

        if action == InstanceAction.START:
            self._schedule_reconciliation(record.id, creds)

        logger.info(
            "Performed %s on instance %s (provider id %s)",
            action.value,
            record.id,
            record.provider_instance_id,
        )
        return record

    async def _require_security_group(
        self, workspace_id: str, instance_id: str
    ) -> tuple[str, DecryptedCredentials]:
        record = await self._require_instance(workspace_id, instance_id)
        if not record.security_group_id:
            raise BadRequestError("Instance has no security group")
        creds = await self._require_credentials(workspace_id)
        return record.security_group_id, creds

    async def get_security_rules(
        self, workspace_id: str, instance_id: str
    ) -> list[SecurityRule]:
        group_id, creds = await self._require_security_group(workspace_id, instance_id)
        return await self.compute_client.list_ingress_rules(creds, group_id)

    async def update_security_rules(
        self, workspace_id: str, instance_id: str, cidrs: list[str]
    ) -> list[SecurityRule]:
        """Replace the instance's SSH ingress rules with one rule per CIDR.

        An empty list opens SSH to every address.

        Parameters
        ----------
        workspace_id : str
            Owning workspace
        instance_id : str
            Instance record id
        cidrs : list[str]
            IPv4 CIDR blocks allowed to reach port 22

        Returns
        -------
        list[SecurityRule]
            Ingress rules as reported by the provider after the update

        Raises
        ------
        ValidationError
            If a CIDR is malformed
        BadRequestError
            If the instance has no security group or credentials are missing
        """
        for cidr in cidrs:
            try:
                ipaddress.ip_network(cidr, strict=False)
            except ValueError:
                raise ValidationError(f"Invalid CIDR block: {cidr}") from None

        group_id, creds = await self._require_security_group(workspace_id, instance_id)

        if not cidrs:
            logger.warning(
                "No CIDR blocks given for instance %s; opening SSH to %s",
                instance_id,
                OPEN_CIDR,
            )
            cidrs = [OPEN_CIDR]

        rules = [
            SecurityRule(
                port=SSH_PORT,
                cidr=cidr,
                description=OPEN_SSH_RULE_DESCRIPTION if cidr == OPEN_CIDR else SSH_RULE_DESCRIPTION,
            )
            for cidr in cidrs
        ]

        await self.compute_client.replace_ingress_rules(creds, group_id, rules)
        logger.info("Updated security rules for instance %s: %s", instance_id, ", ".join(cidrs))

        return await self.compute_client.list_ingress_rules(creds, group_id)
