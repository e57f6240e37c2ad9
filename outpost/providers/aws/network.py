"""Security group management for agent instances."""

import logging
from typing import Any

from outpost.constants import OPEN_CIDR, SSH_PORT, SSH_RULE_DESCRIPTION
from outpost.core.models import SecurityRule
from outpost.providers.aws.constants import SSH_PROTOCOL
from outpost.providers.aws.errors import handle_aws_errors
from outpost.providers.exceptions import ProviderAPIError

logger = logging.getLogger(__name__)


def _ip_permission(rule: SecurityRule) -> dict[str, Any]:
    return {
        "IpProtocol": SSH_PROTOCOL,
        "FromPort": rule.port,
        "ToPort": rule.port,
        "IpRanges": [
            {"CidrIp": rule.cidr, "Description": rule.description or SSH_RULE_DESCRIPTION}
        ],
    }


class SecurityGroupManager:
    """Manage the per-instance security group through one EC2 client."""

    def __init__(self, ec2_client: Any) -> None:
        """Initialize SecurityGroupManager.

        Parameters
        ----------
        ec2_client : Any
            Boto3 EC2 client, owned by the caller
        """
        self.ec2_client = ec2_client

    def create_security_group(self, name: str, description: str) -> str:
        """Create a security group that admits SSH from anywhere.

        Parameters
        ----------
        name : str
            Security group name
        description : str
            Security group description

        Returns
        -------
        str
            Security group ID

        Raises
        ------
        ProviderAPIError
            If AWS returns no group ID or rejects the request
        """
        with handle_aws_errors():
            response = self.ec2_client.create_security_group(
                GroupName=name, Description=description
            )

        sg_id = response.get("GroupId")
        if not sg_id:
            raise ProviderAPIError(
                "Security group creation returned no GroupId",
                operation="CreateSecurityGroup",
            )

        logger.info("Created security group %s (%s)", sg_id, name)

        with handle_aws_errors():
            self.ec2_client.authorize_security_group_ingress(
                GroupId=sg_id,
                IpPermissions=[
                    _ip_permission(
                        SecurityRule(port=SSH_PORT, cidr=OPEN_CIDR, description=SSH_RULE_DESCRIPTION)
                    )
                ],
            )

        return sg_id

    def delete_security_group(self, group_id: str) -> None:
        with handle_aws_errors():
            self.ec2_client.delete_security_group(GroupId=group_id)
        logger.info("Deleted security group %s", group_id)

    def _describe_ingress(self, group_id: str) -> list[dict[str, Any]]:
        with handle_aws_errors():
            response = self.ec2_client.describe_security_group_rules(
                Filters=[{"Name": "group-id", "Values": [group_id]}]
            )
        return [r for r in response.get("SecurityGroupRules", []) if not r.get("IsEgress")]

    def list_ingress_rules(self, group_id: str) -> list[SecurityRule]:
        """Return the inbound rules of a security group.

        Egress rules are skipped. A rule without a port is reported as port 0
        and a rule without an IPv4 range as ``0.0.0.0/0``.
        """
        return [
            SecurityRule(
                port=rule.get("FromPort") or 0,
                cidr=rule.get("CidrIpv4") or OPEN_CIDR,
                description=rule.get("Description"),
            )
            for rule in self._describe_ingress(group_id)
        ]

    def replace_ingress_rules(self, group_id: str, rules: list[SecurityRule]) -> None:
        """Revoke every inbound rule, then authorize the given rules.

        Parameters
        ----------
        group_id : str
            Security group ID
        rules : list[SecurityRule]
            Complete new inbound rule set; an empty list leaves no inbound access
        """
        existing_ids = [
            r["SecurityGroupRuleId"]
            for r in self._describe_ingress(group_id)
            if r.get("SecurityGroupRuleId")
        ]

        if existing_ids:
            with handle_aws_errors():
                self.ec2_client.revoke_security_group_ingress(
                    GroupId=group_id, SecurityGroupRuleIds=existing_ids
                )
            logger.debug("Revoked %d ingress rules on %s", len(existing_ids), group_id)

        if rules:
            with handle_aws_errors():
                self.ec2_client.authorize_security_group_ingress(
                    GroupId=group_id,
                    IpPermissions=[_ip_permission(rule) for rule in rules],
                )

        logger.info("Security group %s now has %d ingress rules", group_id, len(rules))
