"""Agent version checks and in-place upgrades on instances."""

from __future__ import annotations

import json
import logging

from outpost.constants import AGENT_PACKAGE, AGENT_UPGRADE_COMMAND, UNKNOWN_VERSION
from outpost.core.exceptions import BadRequestError, NotFoundError
from outpost.core.interfaces import InstanceStore
from outpost.core.models import ComputeInstance, UpdateApplyResult, UpdateCheckResult
from outpost.services.ssh import RemoteCommandExecutor

logger = logging.getLogger(__name__)

OUTPUT_PREVIEW_LENGTH = 200


def parse_installed_version(output: str, package: str) -> str:
    """Extract a package version from ``npm list -g --json`` output.

    Returns
    -------
    str
        The version, or ``"unknown"`` when the output cannot be parsed
    """
    try:
        parsed = json.loads(output)
    except json.JSONDecodeError:
        return UNKNOWN_VERSION

    dependencies = parsed.get("dependencies") if isinstance(parsed, dict) else None
    entry = dependencies.get(package) if isinstance(dependencies, dict) else None
    version = entry.get("version") if isinstance(entry, dict) else None

    if isinstance(version, str) and version:
        return version

    return UNKNOWN_VERSION


class AgentUpdateService:
    """Check and upgrade the agent installed on an instance.

    Parameters
    ----------
    instance_store : InstanceStore
        Persistence for instance records
    executor : RemoteCommandExecutor
        Runs the version check and upgrade commands
    latest_version : str
        Agent version instances should run
    agent_package : str
        npm package name of the agent
    """

    def __init__(
        self,
        instance_store: InstanceStore,
        executor: RemoteCommandExecutor,
        latest_version: str,
        agent_package: str = AGENT_PACKAGE,
    ) -> None:
        self.instance_store = instance_store
        self.executor = executor
        self.latest_version = latest_version
        self.agent_package = agent_package

    @property
    def version_command(self) -> str:
        return f"npm list -g {self.agent_package} --depth=0 --json"

    async def _require_reachable(self, workspace_id: str, instance_id: str) -> ComputeInstance:
        instance = await self.instance_store.get_for_workspace(workspace_id, instance_id)
        if instance is None:
            raise NotFoundError("Instance not found")
        if not instance.public_ip:
            raise BadRequestError("Instance does not have a public IP address")
        return instance

    async def _installed_version(self, instance: ComputeInstance) -> str:
        output = await self.executor.execute(instance, self.version_command)
        version = parse_installed_version(output, self.agent_package)
        if version == UNKNOWN_VERSION:
            logger.warning(
                "Failed to parse npm list output for instance %s: %s",
                instance.id,
                output[:OUTPUT_PREVIEW_LENGTH],
            )
        return version

    async def check_for_updates(self, workspace_id: str, instance_id: str) -> UpdateCheckResult:
        """Compare the installed agent version with the configured target.

        Raises
        ------
        NotFoundError
            If the workspace has no such instance
        BadRequestError
            If the instance has no public IP
        RemoteExecutionError
            If the version check fails
        """
        instance = await self._require_reachable(workspace_id, instance_id)
        current = await self._installed_version(instance)

        return UpdateCheckResult(
            current_version=current,
            latest_version=self.latest_version,
            update_available=current != self.latest_version,
        )

    async def apply_update(self, workspace_id: str, instance_id: str) -> UpdateApplyResult:
        """Upgrade the agent and report the version installed afterwards.

        Failures of the upgrade or the follow-up version check are returned as
        ``success=False`` rather than raised.

        Raises
        ------
        NotFoundError
            If the workspace has no such instance
        BadRequestError
            If the instance has no public IP
        """
        instance = await self._require_reachable(workspace_id, instance_id)

        try:
            output = await self.executor.execute(instance, AGENT_UPGRADE_COMMAND)
            logger.info(
                "Update applied on instance %s: %s", instance_id, output[:OUTPUT_PREVIEW_LENGTH]
            )
            new_version = await self._installed_version(instance)
        except Exception as e:
            logger.error("Update failed on instance %s: %s", instance_id, e)
            return UpdateApplyResult(
                success=False, new_version="", error=str(e) or e.__class__.__name__
            )

        return UpdateApplyResult(success=True, new_version=new_version)
