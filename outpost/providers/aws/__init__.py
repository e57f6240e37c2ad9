"""AWS provider implementation."""

from outpost.providers.aws.compute import EC2ComputeClient, ec2_session
from outpost.providers.aws.network import SecurityGroupManager

__all__ = ["EC2ComputeClient", "SecurityGroupManager", "ec2_session"]
