"""Boot script generation for agent instances.

The script runs as EC2 user data on first boot: it clones the workspace
repository with the deploy token and prepares the agent. Every value
interpolated into the script is either allow-listed or shell-quoted, and the
token only ever lives in an environment variable that is unset right after
the clone.
"""

from __future__ import annotations

import re
import shlex
from collections.abc import Iterable

from outpost.core.exceptions import ValidationError
from outpost.core.models import Integration

HTTPS_SCHEME = "https://"

REPO_URL_PATTERN = re.compile(r"^[a-zA-Z0-9._\-/]+$")
"""Characters allowed in a repository URL once the scheme is stripped."""

INTEGRATION_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9._\-]+$")
"""Characters allowed in an integration name."""

SETUP_LOG_PATH = "/var/log/outpost-setup.log"
"""Boot script output goes here instead of the cloud-init console log."""

REPO_PARENT_DIR = "/home/ubuntu"

TOKEN_ENV_VAR = "DEPLOY_TOKEN"


def normalize_repo_url(repo_url: str) -> str:
    """Strip the ``https://`` scheme and check the rest against the allow-list.

    Parameters
    ----------
    repo_url : str
        Repository URL such as ``https://github.com/acme/app``

    Returns
    -------
    str
        URL without scheme (``github.com/acme/app``)

    Raises
    ------
    ValidationError
        If the URL contains characters outside ``[a-zA-Z0-9._-/]``
    """
    stripped = repo_url.removeprefix(HTTPS_SCHEME)
    if not REPO_URL_PATTERN.fullmatch(stripped):
        raise ValidationError("Invalid repository URL format")
    return stripped


def validate_integration_names(integrations: Iterable[Integration]) -> None:
    for integration in integrations:
        if not INTEGRATION_NAME_PATTERN.fullmatch(integration.name):
            raise ValidationError(f"Invalid integration name: {integration.name}")


def build_boot_script(
    repo_url: str, deploy_token: str, integrations: Iterable[Integration] = ()
) -> str:
    """Render the first-boot shell script for an agent instance.

    Parameters
    ----------
    repo_url : str
        Repository to clone
    deploy_token : str
        Token with read access to the repository
    integrations : Iterable[Integration]
        Integrations to set up after the clone

    Returns
    -------
    str
        Bash script for EC2 user data

    Raises
    ------
    ValidationError
        If the repository URL or an integration name is not allow-listed
    """
    integrations = list(integrations)
    repo_path = normalize_repo_url(repo_url)
    validate_integration_names(integrations)

    integration_lines = [
        f'echo "Setting up integration: {integration.name}"' for integration in integrations
    ]

    lines = [
        "#!/bin/bash",
        "set -euo pipefail",
        "",
        f"exec > {SETUP_LOG_PATH} 2>&1",
        "",
        'echo "=== Outpost agent setup ==="',
        'echo "Started at: $(date)"',
        "",
        f"export {TOKEN_ENV_VAR}={shlex.quote(deploy_token)}",
        "",
        f"cd {REPO_PARENT_DIR}",
        f'git clone "https://${{{TOKEN_ENV_VAR}}}@{repo_path}" repo',
        "",
        f"unset {TOKEN_ENV_VAR}",
        "",
        "cd repo",
        "",
        'echo "Configuring agent..."',
        'if [ -f ".locus/config.json" ]; then',
        '  echo "Found existing agent configuration"',
        "fi",
        "",
        *integration_lines,
        "",
        'echo "=== Setup complete ==="',
        'echo "Completed at: $(date)"',
        "",
    ]
    return "\n".join(lines)
