"""Wiring of outpost services from configuration."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from outpost.core.auth import JWTTokenVerifier, StaticAccessDirectory
from outpost.core.encryption import AESGCMCipher
from outpost.core.interfaces import ComputeClient, CredentialStore, InstanceStore
from outpost.core.orchestrator import InstanceOrchestrator
from outpost.core.reconciler import ReconciliationScheduler
from outpost.core.stores import JsonCredentialStore, JsonInstanceStore
from outpost.core.vault import CredentialVault
from outpost.providers.aws.compute import EC2ComputeClient
from outpost.services.ssh import RemoteCommandExecutor
from outpost.services.terminal import InteractiveTerminalProxy
from outpost.services.updates import AgentUpdateService

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Service graph built from one configuration."""

    config: dict[str, Any]
    vault: CredentialVault
    orchestrator: InstanceOrchestrator
    scheduler: ReconciliationScheduler
    executor: RemoteCommandExecutor
    updates: AgentUpdateService


def build_services(
    config: dict[str, Any],
    compute_client: ComputeClient | None = None,
    credential_store: CredentialStore | None = None,
    instance_store: InstanceStore | None = None,
    connection_factory: Callable[..., Any] | None = None,
) -> Services:
    """Build the service graph.

    Stores default to the JSON stores under ``data_dir`` and the compute
    client to ``EC2ComputeClient``.

    Raises
    ------
    ValueError
        If the encryption key is missing or malformed
    """
    cipher = AESGCMCipher(config.get("encryption_key") or "")
    compute_client = compute_client or EC2ComputeClient()

    data_dir = Path(config["data_dir"]).expanduser()
    credential_store = credential_store or JsonCredentialStore(data_dir)
    instance_store = instance_store or JsonInstanceStore(data_dir)

    vault = CredentialVault(credential_store, instance_store, cipher, compute_client)
    scheduler = ReconciliationScheduler(
        poll_interval=config["poll_interval"],
        max_attempts=config["max_poll_attempts"],
    )
    orchestrator = InstanceOrchestrator(
        instance_store,
        vault,
        compute_client,
        cipher,
        scheduler=scheduler,
        ami_id=config["ami_id"],
        key_pair_name=config.get("key_pair_name"),
    )
    executor = RemoteCommandExecutor(
        config.get("ssh_private_key_path"),
        username=config["ssh_username"],
        port=config["ssh_port"],
        connection_factory=connection_factory,
        command_timeout=config["command_timeout"],
    )
    updates = AgentUpdateService(
        instance_store,
        executor,
        latest_version=config["agent_latest_version"],
        agent_package=config["agent_package"],
    )

    return Services(
        config=config,
        vault=vault,
        orchestrator=orchestrator,
        scheduler=scheduler,
        executor=executor,
        updates=updates,
    )


def build_terminal_proxy(services: Services) -> InteractiveTerminalProxy:
    """Build the terminal proxy with JWT auth and the configured access lists.

    Raises
    ------
    ValueError
        If no JWT secret is configured
    """
    config = services.config
    verifier = JWTTokenVerifier(config.get("jwt_secret") or "", config["jwt_algorithm"])
    access = config.get("access") or {}
    directory = StaticAccessDirectory(
        organizations=access.get("organizations"),
        workspaces=access.get("workspaces"),
    )
    return InteractiveTerminalProxy(
        token_verifier=verifier,
        users=directory,
        workspaces=directory,
        memberships=directory,
        orchestrator=services.orchestrator,
        executor=services.executor,
    )
