"""CLI entry point for outpost."""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import fire
import uvicorn

from outpost.api.terminal import create_app
from outpost.bootstrap import Services, build_services, build_terminal_proxy
from outpost.constants import DEFAULT_REGION, EXIT_CONFIG_ERROR, EXIT_ERROR
from outpost.core.auth import JWTTokenVerifier
from outpost.core.config import ConfigLoader
from outpost.core.exceptions import (
    BadRequestError,
    ConflictError,
    DecryptionError,
    NotFoundError,
    RemoteExecutionError,
)
from outpost.core.models import CredentialCandidate, Integration, ProvisionRequest
from outpost.logging import configure_logging
from outpost.providers.exceptions import ProviderCredentialsError, ProviderError
from outpost.utils import format_time_ago

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_WORKSPACE = "default"


def _split(values: str | list[str] | tuple[str, ...] | None) -> list[str]:
    """Normalize a Fire argument that may be a comma-separated string or a list."""
    if values is None:
        return []
    if isinstance(values, str):
        return [v.strip() for v in values.split(",") if v.strip()]
    return [str(v).strip() for v in values if str(v).strip()]


class OutpostCLI:
    """Provision and operate workspace agent instances.

    Parameters
    ----------
    workspace : str
        Workspace the commands act on
    config : str | None
        Path to the YAML config file (defaults to OUTPOST_CONFIG or outpost.yaml)
    """

    def __init__(self, workspace: str = DEFAULT_WORKSPACE, config: str | None = None) -> None:
        self._workspace = workspace
        self._config_path = config
        self._services: Services | None = None
        self._services_factory: Callable[[dict[str, Any]], Services] = build_services

        self.credentials = CredentialCommands(self)
        self.instances = InstanceCommands(self)
        self.updates = UpdateCommands(self)

    def _load_config(self) -> dict[str, Any]:
        loader = ConfigLoader()
        config = loader.load_config(self._config_path)
        loader.validate_config(config)
        return config

    def _get_services(self) -> Services:
        if self._services is None:
            self._services = self._services_factory(self._load_config())
        return self._services

    def _run(self, make_coro: Callable[[Services], Awaitable[T]]) -> T:
        """Run one command coroutine, then cancel leftover reconciliation."""
        services = self._get_services()

        async def runner() -> T:
            try:
                return await make_coro(services)
            finally:
                await services.scheduler.shutdown()

        return asyncio.run(runner())

    def serve(self, host: str | None = None, port: int | None = None) -> None:
        """Serve the terminal WebSocket endpoint with uvicorn."""
        services = self._get_services()
        app = create_app(build_terminal_proxy(services), services.scheduler)
        uvicorn.run(
            app,
            host=host or services.config["host"],
            port=port or services.config["port"],
            log_config=None,
        )

    def token(self, user_id: str) -> str:
        """Print a signed bearer token for a user (for local testing)."""
        config = self._load_config()
        return JWTTokenVerifier(config.get("jwt_secret") or "", config["jwt_algorithm"]).issue(
            user_id
        )


class CredentialCommands:
    """Manage the workspace's cloud credentials."""

    def __init__(self, cli: OutpostCLI) -> None:
        self._cli = cli

    def save(
        self,
        access_key_id: str,
        secret_access_key: str | None = None,
        region: str = DEFAULT_REGION,
    ) -> dict[str, Any]:
        """Validate and store credentials.

        The secret key may be given through AWS_SECRET_ACCESS_KEY instead of
        the command line.
        """
        secret = secret_access_key or os.environ.get("AWS_SECRET_ACCESS_KEY")
        if not secret:
            raise ValueError("secret_access_key is required (or set AWS_SECRET_ACCESS_KEY)")

        candidate = CredentialCandidate(
            access_key_id=access_key_id, secret_access_key=secret, region=region
        )
        metadata = self._cli._run(lambda s: s.vault.save(self._cli._workspace, candidate))
        return metadata.to_dict()

    def show(self) -> dict[str, Any]:
        metadata = self._cli._run(lambda s: s.vault.get_masked(self._cli._workspace))
        return metadata.to_dict()

    def delete(self) -> str:
        self._cli._run(lambda s: s.vault.delete(self._cli._workspace))
        return f"Deleted credentials for workspace {self._cli._workspace}"


class InstanceCommands:
    """Provision, inspect and operate instances."""

    def __init__(self, cli: OutpostCLI) -> None:
        self._cli = cli

    def provision(
        self,
        instance_type: str,
        repo_url: str,
        deploy_token: str | None = None,
        integrations: str | list[str] | None = None,
        wait: bool = False,
    ) -> dict[str, Any]:
        """Provision a new agent instance.

        Parameters
        ----------
        instance_type : str
            EC2 instance type, e.g. t3.small
        repo_url : str
            Repository cloned on first boot
        deploy_token : str | None
            Repository token; read from OUTPOST_DEPLOY_TOKEN when omitted
        integrations : str | list[str] | None
            Comma-separated integration names
        wait : bool
            Block until reconciliation finishes
        """
        token = deploy_token or os.environ.get("OUTPOST_DEPLOY_TOKEN")
        if not token:
            raise ValueError("deploy_token is required (or set OUTPOST_DEPLOY_TOKEN)")

        request = ProvisionRequest(
            instance_type=instance_type,
            repo_url=repo_url,
            deploy_token=token,
            integrations=[Integration(name=name) for name in _split(integrations)],
        )
        workspace = self._cli._workspace

        async def provision(services: Services) -> Any:
            record = await services.orchestrator.provision(workspace, request)
            if wait:
                await services.scheduler.wait(record.id)
                record = await services.orchestrator.get(workspace, record.id)
            return record

        return self._cli._run(provision).to_public_dict()

    def list(self) -> str:
        """List the workspace's instances, newest first."""
        records = self._cli._run(lambda s: s.orchestrator.list(self._cli._workspace))

        if not records:
            return "No instances"

        header = f"{'ID':<38} {'STATUS':<14} {'TYPE':<12} {'PUBLIC IP':<16} CREATED"
        rows = [
            f"{r.id:<38} {r.status.value:<14} {r.instance_type:<12} "
            f"{r.public_ip or '-':<16} {format_time_ago(r.created_at)}"
            for r in records
        ]
        return "\n".join([header, *rows])

    def get(self, instance_id: str) -> dict[str, Any]:
        record = self._cli._run(lambda s: s.orchestrator.get(self._cli._workspace, instance_id))
        return record.to_public_dict()

    def action(self, instance_id: str, action: str) -> dict[str, Any]:
        """Apply START, STOP or TERMINATE to an instance."""
        record = self._cli._run(
            lambda s: s.orchestrator.perform_action(
                self._cli._workspace, instance_id, action.upper()
            )
        )
        return record.to_public_dict()

    def sync(self, instance_id: str) -> dict[str, Any]:
        record = self._cli._run(
            lambda s: s.orchestrator.sync_status(self._cli._workspace, instance_id)
        )
        return record.to_public_dict()

    def rules(self, instance_id: str) -> list[dict[str, Any]]:
        rules = self._cli._run(
            lambda s: s.orchestrator.get_security_rules(self._cli._workspace, instance_id)
        )
        return [rule.to_dict() for rule in rules]

    def allow(self, instance_id: str, *cidrs: str) -> list[dict[str, Any]]:
        """Replace SSH ingress with the given CIDR blocks (none opens SSH to all)."""
        blocks = [block for cidr in cidrs for block in _split(cidr)]
        rules = self._cli._run(
            lambda s: s.orchestrator.update_security_rules(
                self._cli._workspace, instance_id, blocks
            )
        )
        return [rule.to_dict() for rule in rules]


class UpdateCommands:
    """Check and apply agent updates."""

    def __init__(self, cli: OutpostCLI) -> None:
        self._cli = cli

    def check(self, instance_id: str) -> dict[str, Any]:
        result = self._cli._run(
            lambda s: s.updates.check_for_updates(self._cli._workspace, instance_id)
        )
        return result.to_dict()

    def apply(self, instance_id: str) -> dict[str, Any]:
        result = self._cli._run(
            lambda s: s.updates.apply_update(self._cli._workspace, instance_id)
        )
        return result.to_dict()


def handle_credentials_error(error: ProviderCredentialsError, debug_mode: bool) -> None:
    """Handle rejected or missing cloud credentials.

    Raises
    ------
    ProviderCredentialsError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(f"Cloud credentials rejected: {error}\n", file=sys.stderr)
    print("Store working credentials for this workspace:", file=sys.stderr)
    print("  outpost credentials save --access-key-id=AKIA... --region=us-east-1", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def handle_request_error(error: Exception, debug_mode: bool) -> None:
    """Handle not-found, conflict and bad-request errors.

    Raises
    ------
    Exception
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    if isinstance(error, NotFoundError):
        print(f"Not found: {error}", file=sys.stderr)
    elif isinstance(error, ConflictError):
        print(f"Conflict: {error}", file=sys.stderr)
    else:
        print(f"Invalid request: {error}", file=sys.stderr)

    sys.exit(EXIT_ERROR)


def handle_decryption_error(error: DecryptionError, debug_mode: bool) -> None:
    if debug_mode:
        raise

    print(f"Decryption failed: {error}\n", file=sys.stderr)
    print("Stored secrets were encrypted under a different key.", file=sys.stderr)
    print("Check OUTPOST_ENCRYPTION_KEY or encryption_key in outpost.yaml.", file=sys.stderr)
    sys.exit(EXIT_CONFIG_ERROR)


def handle_value_error(error: ValueError, debug_mode: bool) -> None:
    """Handle configuration and argument errors.

    Raises
    ------
    ValueError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(f"Configuration error: {error}", file=sys.stderr)
    sys.exit(EXIT_CONFIG_ERROR)


def handle_api_error(error: ProviderError, debug_mode: bool) -> None:
    """Handle provider API errors with context-specific messages.

    Raises
    ------
    ProviderError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    error_code = getattr(error, "error_code", None)

    if error_code in ("InstanceLimitExceeded", "RequestLimitExceeded"):
        print("Cloud quota exceeded\n", file=sys.stderr)
        print("This usually means:", file=sys.stderr)
        print("  - Too many instances running", file=sys.stderr)
        print("  - Need to request quota increase\n", file=sys.stderr)
        print("Fix it:", file=sys.stderr)
        print("  outpost instances list", file=sys.stderr)
    elif error_code == "InvalidGroup.InUse":
        print(f"Security group still in use: {error}", file=sys.stderr)
        print("Wait for the instance to finish terminating and retry.", file=sys.stderr)
    else:
        print(f"Cloud API error: {error}", file=sys.stderr)

    sys.exit(EXIT_ERROR)


def handle_remote_error(error: RemoteExecutionError, debug_mode: bool) -> None:
    """Handle failed remote commands.

    Raises
    ------
    RemoteExecutionError
        Re-raised if debug mode is enabled
    """
    if debug_mode:
        raise

    print(f"Remote command failed: {error}\n", file=sys.stderr)
    print("Check that the instance is running and that its security group", file=sys.stderr)
    print("admits SSH from this machine: outpost instances rules <id>", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def handle_runtime_error(error: RuntimeError, debug_mode: bool) -> None:
    if debug_mode:
        raise

    print(f"Unexpected error: {error}", file=sys.stderr)
    sys.exit(EXIT_ERROR)


def main() -> None:
    """Entry point for the Fire CLI with graceful error handling."""
    configure_logging()

    debug_mode = os.environ.get("OUTPOST_DEBUG") == "1"

    try:
        fire.Fire(OutpostCLI)
    except ProviderCredentialsError as e:
        handle_credentials_error(e, debug_mode)
    except ProviderError as e:
        handle_api_error(e, debug_mode)
    except DecryptionError as e:
        handle_decryption_error(e, debug_mode)
    except (NotFoundError, ConflictError, BadRequestError) as e:
        handle_request_error(e, debug_mode)
    except RemoteExecutionError as e:
        handle_remote_error(e, debug_mode)
    except ValueError as e:
        handle_value_error(e, debug_mode)
    except RuntimeError as e:
        handle_runtime_error(e, debug_mode)


if __name__ == "__main__":
    main()
