"""Global constants for outpost.

This module contains application-wide constants shared by the vault, the
orchestrator, the SSH services and the CLI.
"""

from enum import Enum

DEFAULT_REGION = "us-east-1"
"""Default cloud provider region used when a credential omits one."""

DEFAULT_AMI_ID = "ami-0c02fb55956c7d316"
"""Image launched for new instances when no ``ami_id`` is configured."""

POLL_INTERVAL_SECONDS = 30
"""Delay in seconds between reconciliation polls of a provisioning instance.

Freshly launched instances usually need one or two minutes to leave the
``pending`` state, so polling more often only burns API quota.
"""

MAX_POLL_ATTEMPTS = 10
"""Number of reconciliation polls before giving up on an instance.

With the default interval this covers five minutes after launch. An instance
that has not reached ``running`` by then keeps its last observed status.
"""

COMMAND_TIMEOUT_SECONDS = 120
"""Hard wall-clock limit in seconds for a single remote command."""

SSH_USERNAME = "ubuntu"
"""Login user on provisioned instances."""

SSH_PORT = 22
"""Port the instance SSH daemon listens on and the port opened by default."""

SSH_CONNECT_TIMEOUT_SECONDS = 30
"""Timeout in seconds for TCP connect, banner and authentication."""

OPEN_CIDR = "0.0.0.0/0"
"""CIDR block that admits every IPv4 address."""

SSH_RULE_DESCRIPTION = "SSH access"
"""Description attached to restricted SSH ingress rules."""

OPEN_SSH_RULE_DESCRIPTION = "SSH access (open)"
"""Description attached to the fallback rule that admits every address."""

SECURITY_GROUP_NAME_PREFIX = "outpost-instance-"
"""Prefix of the per-instance security group name (suffix is the record id)."""

INSTANCE_NAME_PREFIX = "outpost-agent-"
"""Prefix of the ``Name`` tag applied to launched instances."""

MANAGED_BY_TAG = "outpost"
"""Value of the ``ManagedBy`` tag applied to every resource outpost creates."""

AGENT_PACKAGE = "@locusai/cli"
"""npm package of the agent installed on every instance."""

AGENT_UPGRADE_COMMAND = "sudo locus upgrade"
"""Command run on the instance to upgrade the agent in place."""

UNKNOWN_VERSION = "unknown"
"""Version reported when the installed agent version cannot be parsed."""

TERMINAL_TERM = "xterm-256color"
"""Terminal type requested for interactive shells."""

TERMINAL_DEFAULT_COLS = 80
"""Initial width in columns of an interactive shell."""

TERMINAL_DEFAULT_ROWS = 24
"""Initial height in rows of an interactive shell."""

TERMINAL_READ_SIZE = 4096
"""Maximum number of bytes read from a shell channel per receive."""

MAX_COMMAND_LENGTH = 10000
"""Maximum length in characters for commands sent to a remote instance."""

EXIT_ERROR = 1
"""Exit code indicating a general application error."""

EXIT_CONFIG_ERROR = 2
"""Exit code indicating invalid configuration or input."""


class ProviderState(str, Enum):
    """EC2 instance state names reported by ``DescribeInstances``."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    SHUTTING_DOWN = "shutting-down"
    TERMINATED = "terminated"
