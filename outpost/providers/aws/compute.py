"""EC2 compute client for outpost.

Every public method is a coroutine that runs one blocking boto3 operation in
a worker thread. Each operation gets its own EC2 client built from the
caller's credentials and region, and the client is closed when the operation
finishes, whether it succeeded or raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from outpost.constants import INSTANCE_NAME_PREFIX, MANAGED_BY_TAG
from outpost.core.interfaces import LaunchParams
from outpost.core.models import DecryptedCredentials, InstanceDescription, SecurityRule
from outpost.providers.aws.constants import DRY_RUN_AUTHORIZED_CODE, EC2_SERVICE_NAME
from outpost.providers.aws.errors import client_error_code, handle_aws_errors
from outpost.providers.aws.network import SecurityGroupManager
from outpost.providers.aws.utils import extract_instance_from_response
from outpost.providers.exceptions import ProviderAPIError

logger = logging.getLogger(__name__)


@contextmanager
def ec2_session(
    creds: DecryptedCredentials,
    boto3_client_factory: Callable[..., Any] | None = None,
) -> Iterator[Any]:
    """Yield an EC2 client scoped to one operation.

    Parameters
    ----------
    creds : DecryptedCredentials
        Access key, secret and region for the client
    boto3_client_factory : Callable[..., Any] | None
        Optional factory for creating boto3 clients. If None, uses boto3.client

    Yields
    ------
    Any
        Boto3 EC2 client, closed when the block exits
    """
    factory = boto3_client_factory or boto3.client
    client = factory(
        EC2_SERVICE_NAME,
        region_name=creds.region,
        aws_access_key_id=creds.access_key_id,
        aws_secret_access_key=creds.secret_access_key,
    )
    try:
        yield client
    finally:
        client.close()


class EC2ComputeClient:
    """Stateless EC2 wrapper issuing single operations per call."""

    def __init__(self, boto3_client_factory: Callable[..., Any] | None = None) -> None:
        """Initialize EC2 compute client.

        Parameters
        ----------
        boto3_client_factory : Callable[..., Any] | None
            Optional factory for creating boto3 clients. If None, uses boto3.client
        """
        self.boto3_client_factory = boto3_client_factory or boto3.client

    def _session(self, creds: DecryptedCredentials) -> Any:
        return ec2_session(creds, self.boto3_client_factory)

    async def launch(self, creds: DecryptedCredentials, params: LaunchParams) -> str:
        """Launch one instance.

        Parameters
        ----------
        creds : DecryptedCredentials
            Credentials and region to launch in
        params : LaunchParams
            Instance type, image, security group, optional key pair and boot script

        Returns
        -------
        str
            EC2 instance ID

        Raises
        ------
        ProviderAPIError
            If AWS rejects the launch or returns no instance ID
        """
        return await asyncio.to_thread(self._launch, creds, params)

    def _launch(self, creds: DecryptedCredentials, params: LaunchParams) -> str:
        run_kwargs: dict[str, Any] = {
            "ImageId": params.image_id,
            "InstanceType": params.instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            "SecurityGroupIds": [params.security_group_id],
            "TagSpecifications": [
                {
                    "ResourceType": "instance",
                    "Tags": [
                        {
                            "Key": "Name",
                            "Value": f"{INSTANCE_NAME_PREFIX}{int(time.time() * 1000)}",
                        },
                        {"Key": "ManagedBy", "Value": MANAGED_BY_TAG},
                    ],
                }
            ],
        }

        if params.key_name:
            run_kwargs["KeyName"] = params.key_name

        if params.user_data:
            run_kwargs["UserData"] = params.user_data

        with handle_aws_errors(), self._session(creds) as ec2_client:
            response = ec2_client.run_instances(**run_kwargs)

        instances = response.get("Instances") or []
        instance_id = instances[0].get("InstanceId") if instances else None

        if not instance_id:
            raise ProviderAPIError(
                "Instance launch returned no InstanceId", operation="RunInstances"
            )

        logger.info(
            "Launched %s instance %s in %s", params.instance_type, instance_id, creds.region
        )
        return instance_id

    async def describe(
        self, creds: DecryptedCredentials, provider_instance_id: str
    ) -> InstanceDescription:
        return await asyncio.to_thread(self._describe, creds, provider_instance_id)

    def _describe(
        self, creds: DecryptedCredentials, provider_instance_id: str
    ) -> InstanceDescription:
        with handle_aws_errors(), self._session(creds) as ec2_client:
            response = ec2_client.describe_instances(InstanceIds=[provider_instance_id])

        try:
            instance = extract_instance_from_response(response)
        except ValueError:
            logger.debug("No description returned for %s", provider_instance_id)
            return InstanceDescription()

        return InstanceDescription(
            state=instance.get("State", {}).get("Name"),
            public_ip=instance.get("PublicIpAddress"),
        )

    async def start(self, creds: DecryptedCredentials, provider_instance_id: str) -> None:
        await asyncio.to_thread(self._request, creds, "start_instances", provider_instance_id)

    async def stop(self, creds: DecryptedCredentials, provider_instance_id: str) -> None:
        await asyncio.to_thread(self._request, creds, "stop_instances", provider_instance_id)

    async def terminate(self, creds: DecryptedCredentials, provider_instance_id: str) -> None:
        await asyncio.to_thread(
            self._request, creds, "terminate_instances", provider_instance_id
        )

    def _request(
        self, creds: DecryptedCredentials, operation: str, provider_instance_id: str
    ) -> None:
        """Request a state transition; the new state is observed later via describe."""
        with handle_aws_errors(), self._session(creds) as ec2_client:
            getattr(ec2_client, operation)(InstanceIds=[provider_instance_id])
        logger.info("Requested %s for %s", operation, provider_instance_id)

    async def create_security_group(
        self, creds: DecryptedCredentials, name: str, description: str
    ) -> str:
        return await asyncio.to_thread(self._create_security_group, creds, name, description)

    def _create_security_group(
        self, creds: DecryptedCredentials, name: str, description: str
    ) -> str:
        with handle_aws_errors(), self._session(creds) as ec2_client:
            return SecurityGroupManager(ec2_client).create_security_group(name, description)

    async def delete_security_group(self, creds: DecryptedCredentials, group_id: str) -> None:
        await asyncio.to_thread(self._delete_security_group, creds, group_id)

    def _delete_security_group(self, creds: DecryptedCredentials, group_id: str) -> None:
        with handle_aws_errors(), self._session(creds) as ec2_client:
            SecurityGroupManager(ec2_client).delete_security_group(group_id)

    async def list_ingress_rules(
        self, creds: DecryptedCredentials, group_id: str
    ) -> list[SecurityRule]:
        return await asyncio.to_thread(self._list_ingress_rules, creds, group_id)

    def _list_ingress_rules(
        self, creds: DecryptedCredentials, group_id: str
    ) -> list[SecurityRule]:
        with handle_aws_errors(), self._session(creds) as ec2_client:
            return SecurityGroupManager(ec2_client).list_ingress_rules(group_id)

    async def replace_ingress_rules(
        self, creds: DecryptedCredentials, group_id: str, rules: list[SecurityRule]
    ) -> None:
        await asyncio.to_thread(self._replace_ingress_rules, creds, group_id, rules)

    def _replace_ingress_rules(
        self, creds: DecryptedCredentials, group_id: str, rules: list[SecurityRule]
    ) -> None:
        with handle_aws_errors(), self._session(creds) as ec2_client:
            SecurityGroupManager(ec2_client).replace_ingress_rules(group_id, rules)

    async def validate_credentials(self, creds: DecryptedCredentials) -> bool:
        """Check credentials with a dry-run ``DescribeInstances``.

        Returns
        -------
        bool
            True only when AWS answers ``DryRunOperation``; any other error
            means the credentials are unusable
        """
        return await asyncio.to_thread(self._validate_credentials, creds)

    def _validate_credentials(self, creds: DecryptedCredentials) -> bool:
        # Client construction can fail too, e.g. on a malformed region.
        try:
            with self._session(creds) as ec2_client:
                ec2_client.describe_instances(DryRun=True)
        except ClientError as e:
            code = client_error_code(e)
            if code == DRY_RUN_AUTHORIZED_CODE:
                return True
            logger.warning("Credential validation failed: %s", code or e)
            return False
        except BotoCoreError as e:
            logger.warning("Credential validation failed: %s", e)
            return False

        return True
