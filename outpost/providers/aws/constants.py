"""AWS-specific constants for EC2 operations."""

EC2_SERVICE_NAME = "ec2"
"""boto3 service name for every client outpost creates."""

SSH_PROTOCOL = "tcp"
"""IP protocol for SSH ingress rules."""

DRY_RUN_AUTHORIZED_CODE = "DryRunOperation"
"""Error code EC2 returns when a dry-run request would have succeeded.

Any other error code (``UnauthorizedOperation``, ``AuthFailure``,
``InvalidClientTokenId`` ...) means the credentials cannot be used.
"""

CREDENTIAL_ERROR_CODES = frozenset(
    (
        "AuthFailure",
        "InvalidClientTokenId",
        "SignatureDoesNotMatch",
        "UnrecognizedClientException",
        "ExpiredToken",
        "UnauthorizedOperation",
    )
)
"""EC2 error codes that indicate rejected or insufficient credentials."""

VALID_INSTANCE_TYPES = frozenset(
    (
        "t2.micro",
        "t2.small",
        "t2.medium",
        "t2.large",
        "t3.micro",
        "t3.small",
        "t3.medium",
        "t3.large",
        "t3.xlarge",
        "t3.2xlarge",
        "t3a.small",
        "t3a.medium",
        "t3a.large",
        "m5.large",
        "m5.xlarge",
        "m5.2xlarge",
        "c5.large",
        "c5.xlarge",
        "c5.2xlarge",
        "r5.large",
        "r5.xlarge",
    )
)
"""EC2 instance types an agent instance may be provisioned with."""
