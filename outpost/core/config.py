"""Service configuration loading and validation."""

import copy
import logging
import os
from pathlib import Path
from typing import Any

import yaml
from omegaconf import OmegaConf
from omegaconf.errors import InterpolationResolutionError

from outpost.constants import (
    AGENT_PACKAGE,
    COMMAND_TIMEOUT_SECONDS,
    DEFAULT_AMI_ID,
    MAX_POLL_ATTEMPTS,
    POLL_INTERVAL_SECONDS,
    SSH_PORT,
    SSH_USERNAME,
)

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "outpost.yaml"
"""Config file read when neither an explicit path nor OUTPOST_CONFIG is given."""

DEFAULT_DATA_DIR = str(Path.home() / ".outpost")
"""Directory holding the JSON stores used by the CLI."""

ENV_OVERRIDES = {
    "OUTPOST_ENCRYPTION_KEY": "encryption_key",
    "OUTPOST_JWT_SECRET": "jwt_secret",
    "OUTPOST_SSH_PRIVATE_KEY_PATH": "ssh_private_key_path",
    "OUTPOST_AMI_ID": "ami_id",
    "OUTPOST_KEY_PAIR_NAME": "key_pair_name",
    "OUTPOST_AGENT_LATEST_VERSION": "agent_latest_version",
    "OUTPOST_DATA_DIR": "data_dir",
}
"""Environment variables that override config file values."""

SUPPORTED_JWT_ALGORITHMS = ("HS256", "HS384", "HS512")


class ConfigLoader:
    """Load YAML configuration, merge it over defaults and apply env overrides."""

    def __init__(self) -> None:
        self.BUILT_IN_DEFAULTS: dict[str, Any] = {
            "ami_id": DEFAULT_AMI_ID,
            "key_pair_name": None,
            "ssh_username": SSH_USERNAME,
            "ssh_private_key_path": None,
            "ssh_port": SSH_PORT,
            "poll_interval": POLL_INTERVAL_SECONDS,
            "max_poll_attempts": MAX_POLL_ATTEMPTS,
            "command_timeout": COMMAND_TIMEOUT_SECONDS,
            "agent_package": AGENT_PACKAGE,
            "agent_latest_version": "latest",
            "encryption_key": None,
            "jwt_secret": None,
            "jwt_algorithm": "HS256",
            "data_dir": DEFAULT_DATA_DIR,
            "host": "127.0.0.1",
            "port": 8000,
            "access": {"organizations": {}, "workspaces": {}},
        }

    def load_config(self, config_path: str | None = None) -> dict[str, Any]:
        """Load configuration.

        Parameters
        ----------
        config_path : str | None
            Path to YAML config file. If None, checks OUTPOST_CONFIG env var,
            then falls back to outpost.yaml. A missing file yields defaults.

        Returns
        -------
        dict[str, Any]
            Built-in defaults, overlaid with the file's values (variable
            interpolations resolved), overlaid with environment overrides

        Raises
        ------
        ValueError
            If the file is not valid YAML or a value cannot be resolved
        omegaconf.errors.InterpolationResolutionError
            If undefined variables are referenced
        """
        if config_path is None:
            config_path = os.environ.get("OUTPOST_CONFIG", DEFAULT_CONFIG_PATH)

        merged = copy.deepcopy(self.BUILT_IN_DEFAULTS)
        merged.update(self._read_file(Path(config_path)))

        for env_var, key in ENV_OVERRIDES.items():
            value = os.environ.get(env_var)
            if value:
                merged[key] = value
                logger.debug("Config key %s overridden by %s", key, env_var)

        return merged

    def _read_file(self, config_file: Path) -> dict[str, Any]:
        if not config_file.exists():
            logger.debug("Config file %s not found, using defaults", config_file)
            return {}

        try:
            cfg = OmegaConf.load(config_file)
        except yaml.YAMLError as e:
            logger.error("Failed to parse YAML config file %s: %s", config_file, e)
            raise ValueError(f"Invalid YAML in {config_file}: {e}") from e
        except OSError as e:
            logger.error("Failed to read config file %s: %s", config_file, e)
            raise RuntimeError(f"Failed to read config file {config_file}: {e}") from e

        if cfg is None:
            return {}

        try:
            config = OmegaConf.to_container(cfg, resolve=True, throw_on_missing=True)
        except InterpolationResolutionError as e:
            logger.error("Failed to resolve configuration variables: %s", e)
            raise
        except (ValueError, KeyError, AttributeError) as e:
            logger.error("Failed to resolve configuration variables: %s", e)
            raise ValueError(f"Configuration variable resolution error: {e}") from e

        if not isinstance(config, dict):
            raise ValueError(f"Config file {config_file} must contain a mapping")

        return config

    def validate_config(self, config: dict[str, Any]) -> None:
        """Validate configuration types and values.

        Parameters
        ----------
        config : dict[str, Any]
            Configuration to validate

        Raises
        ------
        ValueError
            If configuration is invalid
        """
        self._validate_positive_ints(config)
        self._validate_strings(config)
        self._validate_encryption_key(config.get("encryption_key"))
        self._validate_access(config.get("access"))

        if config.get("jwt_algorithm") not in SUPPORTED_JWT_ALGORITHMS:
            raise ValueError(
                f"jwt_algorithm must be one of {list(SUPPORTED_JWT_ALGORITHMS)}, "
                f"got {config.get('jwt_algorithm')!r}"
            )

    def _validate_positive_ints(self, config: dict[str, Any]) -> None:
        for field in (
            "ssh_port",
            "poll_interval",
            "max_poll_attempts",
            "command_timeout",
            "port",
        ):
            value = config.get(field)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{field} must be an integer")
            if value <= 0:
                raise ValueError(f"{field} must be positive, got {value}")

        for field in ("ssh_port", "port"):
            if config[field] > 65535:
                raise ValueError(f"{field} must be between 1 and 65535, got {config[field]}")

    def _validate_strings(self, config: dict[str, Any]) -> None:
        for field in ("ami_id", "ssh_username", "agent_package", "agent_latest_version", "host"):
            value = config.get(field)
            if not isinstance(value, str) or not value:
                raise ValueError(f"{field} must be a non-empty string")

        if not str(config["ami_id"]).startswith("ami-"):
            raise ValueError(f"ami_id must start with 'ami-', got {config['ami_id']!r}")

        for field in ("key_pair_name", "ssh_private_key_path", "jwt_secret", "data_dir"):
            value = config.get(field)
            if value is not None and not isinstance(value, str):
                raise ValueError(f"{field} must be a string")

    def _validate_encryption_key(self, key: Any) -> None:
        if key is None:
            return

        if not isinstance(key, str) or len(key) != 64:
            raise ValueError("encryption_key must be 64 hex characters")

        try:
            bytes.fromhex(key)
        except ValueError as e:
            raise ValueError("encryption_key must be hexadecimal") from e

    def _validate_access(self, access: Any) -> None:
        if not isinstance(access, dict):
            raise ValueError("access must be a dictionary")

        organizations = access.get("organizations") or {}
        if not isinstance(organizations, dict):
            raise ValueError("access.organizations must map organization ids to user lists")

        for org_id, members in organizations.items():
            if not isinstance(members, list) or not all(isinstance(m, str) for m in members):
                raise ValueError(f"access.organizations.{org_id} must be a list of user ids")

        workspaces = access.get("workspaces") or {}
        if not isinstance(workspaces, dict):
            raise ValueError("access.workspaces must map workspace ids to organization ids")

        for workspace_id, org_id in workspaces.items():
            if not isinstance(org_id, str):
                raise ValueError(f"access.workspaces.{workspace_id} must be an organization id")
