"""SSH connections and bounded remote command execution."""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import paramiko
from paramiko.channel import Channel

from outpost.constants import (
    COMMAND_TIMEOUT_SECONDS,
    MAX_COMMAND_LENGTH,
    SSH_CONNECT_TIMEOUT_SECONDS,
    SSH_PORT,
    SSH_USERNAME,
    TERMINAL_DEFAULT_COLS,
    TERMINAL_DEFAULT_ROWS,
    TERMINAL_TERM,
)
from outpost.core.exceptions import (
    BadRequestError,
    CommandTimeoutError,
    RemoteExecutionError,
    ValidationError,
)
from outpost.core.models import ComputeInstance

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    """Exit code and decoded output of one remote command."""

    exit_code: int
    stdout: str
    stderr: str


class SSHConnection:
    """Blocking paramiko connection to one instance.

    Every method blocks; async callers run them in a worker thread.

    Parameters
    ----------
    host : str
        Remote host IP address or hostname
    key_file : str
        Path to SSH private key file
    username : str
        SSH username (default: ubuntu)
    port : int
        SSH port (default: 22)

    Attributes
    ----------
    client : paramiko.SSHClient | None
        SSH client instance (None when not connected)
    """

    def __init__(
        self,
        host: str,
        key_file: str,
        username: str = SSH_USERNAME,
        port: int = SSH_PORT,
    ) -> None:
        self.host = host
        self.key_file = key_file
        self.username = username
        self.port = port
        self.client: paramiko.SSHClient | None = None
        self._active_channel: Channel | None = None

    def connect(self, timeout: float = SSH_CONNECT_TIMEOUT_SECONDS) -> None:
        """Open the connection with key-based authentication.

        Raises
        ------
        paramiko.SSHException
            If the handshake or authentication fails
        OSError
            If the host cannot be reached
        """
        logger.debug("Connecting to %s@%s:%s", self.username, self.host, self.port)

        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.username,
                key_filename=self.key_file,
                look_for_keys=False,
                allow_agent=False,
                timeout=timeout,
                auth_timeout=timeout,
                banner_timeout=timeout,
            )
        except BaseException:
            client.close()
            raise

        # Set only once connected; close() may run from another thread.
        self.client = client

    def _require_client(self) -> paramiko.SSHClient:
        if self.client is None:
            raise RuntimeError("SSH connection is not open")
        return self.client

    def run(self, command: str) -> CommandResult:
        """Run one non-interactive command and wait for it to exit."""
        _, stdout, stderr = self._require_client().exec_command(command)
        self._active_channel = stdout.channel

        try:
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            exit_code = stdout.channel.recv_exit_status()
        finally:
            self._active_channel = None

        return CommandResult(exit_code=exit_code, stdout=out, stderr=err)

    def open_shell(
        self,
        term: str = TERMINAL_TERM,
        width: int = TERMINAL_DEFAULT_COLS,
        height: int = TERMINAL_DEFAULT_ROWS,
    ) -> Channel:
        """Open an interactive shell on a pseudo-terminal."""
        return self._require_client().invoke_shell(term=term, width=width, height=height)

    def close(self) -> None:
        """Close the connection; safe to call more than once."""
        if self._active_channel is not None:
            try:
                self._active_channel.close()
            except (OSError, paramiko.SSHException) as e:
                logger.debug("Failed to close active SSH channel: %s", e)
            finally:
                self._active_channel = None

        if self.client is not None:
            self.client.close()
            self.client = None


ConnectionFactory = Callable[..., Any]
"""Builds an unconnected ``SSHConnection``-like object from host and key file."""


class RemoteCommandExecutor:
    """Run single commands on instances over SSH with a hard timeout.

    Parameters
    ----------
    private_key_path : str | None
        Server-side private key matching the instances' key pair
    username : str
        SSH username on the instances
    port : int
        SSH port on the instances
    connection_factory : ConnectionFactory | None
        Factory for connections; defaults to ``SSHConnection``
    command_timeout : float
        Default wall-clock limit for ``execute`` in seconds
    """

    def __init__(
        self,
        private_key_path: str | None,
        username: str = SSH_USERNAME,
        port: int = SSH_PORT,
        connection_factory: ConnectionFactory | None = None,
        command_timeout: float = COMMAND_TIMEOUT_SECONDS,
    ) -> None:
        self.private_key_path = private_key_path
        self.username = username
        self.port = port
        self.connection_factory = connection_factory or SSHConnection
        self.command_timeout = command_timeout

    def open_connection(self, instance: ComputeInstance) -> Any:
        """Build an unconnected connection to an instance.

        Raises
        ------
        BadRequestError
            If the instance has no public IP or the private key is missing
        """
        if not instance.public_ip:
            raise BadRequestError("Instance does not have a public IP address")

        if not self.private_key_path:
            raise BadRequestError("SSH private key not configured on the server")

        if not Path(self.private_key_path).expanduser().is_file():
            raise BadRequestError("SSH private key not found on the server")

        return self.connection_factory(
            host=instance.public_ip,
            key_file=str(Path(self.private_key_path).expanduser()),
            username=self.username,
            port=self.port,
        )

    async def execute(
        self,
        instance: ComputeInstance,
        command: str,
        timeout: float | None = None,
    ) -> str:
        """Run one command on an instance and return its stdout.

        Parameters
        ----------
        instance : ComputeInstance
            Target instance; must have a public IP
        command : str
            Shell command to run
        timeout : float | None
            Wall-clock limit in seconds covering connect and execution;
            defaults to ``command_timeout``

        Returns
        -------
        str
            Standard output of the command

        Raises
        ------
        BadRequestError
            If the instance has no public IP or the private key is missing
        CommandTimeoutError
            If the command does not finish within ``timeout``
        RemoteExecutionError
            If the connection fails or the command exits non-zero
        """
        if len(command) > MAX_COMMAND_LENGTH:
            raise ValidationError(
                f"Command exceeds maximum length of {MAX_COMMAND_LENGTH} characters"
            )

        if timeout is None:
            timeout = self.command_timeout
        conn = self.open_connection(instance)

        abandoned = threading.Event()
        work = asyncio.ensure_future(
            asyncio.to_thread(self._connect_and_run, conn, command, abandoned)
        )

        try:
            result = await asyncio.wait_for(asyncio.shield(work), timeout)
        except asyncio.TimeoutError:
            logger.warning("Command on instance %s timed out after %ss", instance.id, timeout)
            raise CommandTimeoutError(f"SSH command timed out after {timeout} seconds") from None
        finally:
            if not work.done():
                # The worker thread may still be connecting; close again once it returns.
                abandoned.set()
                work.add_done_callback(functools.partial(_close_abandoned, conn))
            await asyncio.to_thread(conn.close)

        for line in result.stderr.splitlines():
            logger.debug("%s", line, extra={"stream": "stderr"})

        if result.exit_code != 0:
            detail = result.stderr or result.stdout
            raise RemoteExecutionError(
                f"Command exited with code {result.exit_code}: {detail.strip()}",
                exit_code=result.exit_code,
            )

        return result.stdout

    def _connect_and_run(
        self, conn: Any, command: str, abandoned: threading.Event
    ) -> CommandResult:
        try:
            conn.connect()
        except (paramiko.SSHException, OSError) as e:
            raise RemoteExecutionError(f"SSH connection error: {e}") from e

        if abandoned.is_set():
            raise CommandTimeoutError("SSH command abandoned before it started")

        logger.debug("Running remote command on %s", conn.host)
        try:
            return conn.run(command)
        except (paramiko.SSHException, OSError, EOFError) as e:
            raise RemoteExecutionError(f"SSH command failed: {e}") from e


def _close_abandoned(conn: Any, work: asyncio.Future[CommandResult]) -> None:
    if not work.cancelled() and work.exception() is not None:
        logger.debug("Abandoned command on %s ended with: %s", conn.host, work.exception())
    conn.close()
