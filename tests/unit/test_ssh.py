"""Unit tests for SSH connections and remote command execution."""

import asyncio
from pathlib import Path
from unittest.mock import MagicMock, patch

import paramiko
import pytest

from outpost.core.exceptions import (
    BadRequestError,
    CommandTimeoutError,
    RemoteExecutionError,
    ValidationError,
)
from outpost.core.models import ComputeInstance
from outpost.services.ssh import CommandResult, RemoteCommandExecutor, SSHConnection

from tests.unit.fakes.ssh import FakeSSHConnection, connection_factory


@pytest.fixture
def instance() -> ComputeInstance:
    return ComputeInstance(
        workspace_id="ws-1",
        credential_id="cred-1",
        instance_type="t3.small",
        region="us-east-1",
        repo_url="https://github.com/acme/app",
        deploy_token_encrypted="aa:bb:cc",
        public_ip="203.0.113.10",
    )


@patch("outpost.services.ssh.paramiko.SSHClient")
def test_connect_uses_key_file_only(mock_ssh_client: MagicMock) -> None:
    mock_client = MagicMock()
    mock_ssh_client.return_value = mock_client
    conn = SSHConnection(host="203.0.113.1", key_file="/tmp/test.pem")

    conn.connect(timeout=10)

    mock_client.set_missing_host_key_policy.assert_called_once()
    mock_client.connect.assert_called_once_with(
        hostname="203.0.113.1",
        port=22,
        username="ubuntu",
        key_filename="/tmp/test.pem",
        look_for_keys=False,
        allow_agent=False,
        timeout=10,
        auth_timeout=10,
        banner_timeout=10,
    )
    assert conn.client is mock_client


@patch("outpost.services.ssh.paramiko.SSHClient")
def test_failed_connect_closes_client(mock_ssh_client: MagicMock) -> None:
    mock_client = MagicMock()
    mock_client.connect.side_effect = OSError("No route to host")
    mock_ssh_client.return_value = mock_client
    conn = SSHConnection(host="203.0.113.1", key_file="/tmp/test.pem")

    with pytest.raises(OSError, match="No route to host"):
        conn.connect()

    mock_client.close.assert_called_once()
    assert conn.client is None


def test_run_collects_output_and_exit_code() -> None:
    conn = SSHConnection(host="203.0.113.1", key_file="/tmp/test.pem")
    conn.client = MagicMock()
    stdout, stderr = MagicMock(), MagicMock()
    stdout.read.return_value = b"hello\n"
    stderr.read.return_value = b"warn\n"
    stdout.channel.recv_exit_status.return_value = 3
    conn.client.exec_command.return_value = (MagicMock(), stdout, stderr)

    result = conn.run("echo hello")

    assert result == CommandResult(exit_code=3, stdout="hello\n", stderr="warn\n")
    conn.client.exec_command.assert_called_once_with("echo hello")


def test_run_without_connection_raises() -> None:
    with pytest.raises(RuntimeError, match="not open"):
        SSHConnection(host="h", key_file="k").run("ls")


def test_open_shell_requests_pty() -> None:
    conn = SSHConnection(host="203.0.113.1", key_file="/tmp/test.pem")
    conn.client = MagicMock()

    conn.open_shell("xterm-256color", 100, 30)

    conn.client.invoke_shell.assert_called_once_with(
        term="xterm-256color", width=100, height=30
    )


def test_close_is_idempotent() -> None:
    conn = SSHConnection(host="203.0.113.1", key_file="/tmp/test.pem")
    client = MagicMock()
    conn.client = client

    conn.close()
    conn.close()

    client.close.assert_called_once()
    assert conn.client is None


def test_open_connection_requires_public_ip(
    instance: ComputeInstance, private_key_file: Path
) -> None:
    instance.public_ip = None
    executor = RemoteCommandExecutor(str(private_key_file))

    with pytest.raises(BadRequestError, match="does not have a public IP"):
        executor.open_connection(instance)


def test_open_connection_requires_configured_key(instance: ComputeInstance) -> None:
    with pytest.raises(BadRequestError, match="not configured"):
        RemoteCommandExecutor(None).open_connection(instance)


def test_open_connection_requires_existing_key(
    instance: ComputeInstance, tmp_path: Path
) -> None:
    executor = RemoteCommandExecutor(str(tmp_path / "missing"))

    with pytest.raises(BadRequestError, match="not found on the server"):
        executor.open_connection(instance)


def test_open_connection_builds_connection(
    instance: ComputeInstance, private_key_file: Path
) -> None:
    factory, created = connection_factory()
    executor = RemoteCommandExecutor(
        str(private_key_file), username="admin", port=2222, connection_factory=factory
    )

    conn = executor.open_connection(instance)

    assert conn is created[0]
    assert conn.host == "203.0.113.10"
    assert conn.key_file == str(private_key_file)
    assert conn.username == "admin"
    assert conn.port == 2222


async def test_execute_returns_stdout_and_closes(
    instance: ComputeInstance, private_key_file: Path
) -> None:
    factory, created = connection_factory(
        lambda c: c.results.update(
            {"uname": CommandResult(exit_code=0, stdout="Linux\n", stderr="")}
        )
    )
    executor = RemoteCommandExecutor(str(private_key_file), connection_factory=factory)

    output = await executor.execute(instance, "uname")

    assert output == "Linux\n"
    assert created[0].commands == ["uname"]
    assert created[0].close_count == 1


async def test_execute_non_zero_exit_raises(
    instance: ComputeInstance, private_key_file: Path
) -> None:
    factory, created = connection_factory(
        lambda c: c.results.update(
            {"false": CommandResult(exit_code=2, stdout="", stderr="permission denied\n")}
        )
    )
    executor = RemoteCommandExecutor(str(private_key_file), connection_factory=factory)

    with pytest.raises(RemoteExecutionError, match="exited with code 2: permission denied") as exc_info:
        await executor.execute(instance, "false")

    assert exc_info.value.exit_code == 2
    assert created[0].close_count == 1


async def test_execute_timeout_closes_connection(
    instance: ComputeInstance, private_key_file: Path
) -> None:
    def slow(conn: FakeSSHConnection) -> None:
        conn.run_delay = 0.3

    factory, created = connection_factory(slow)
    executor = RemoteCommandExecutor(str(private_key_file), connection_factory=factory)

    with pytest.raises(CommandTimeoutError, match="timed out after 0.05 seconds"):
        await executor.execute(instance, "sleep 10", timeout=0.05)

    assert created[0].close_count == 1

    await asyncio.sleep(0.5)
    assert not created[0].connected


async def test_execute_timeout_during_connect_leaves_no_connection(
    instance: ComputeInstance, private_key_file: Path
) -> None:
    def slow_connect(conn: FakeSSHConnection) -> None:
        conn.connect_delay = 0.3

    factory, created = connection_factory(slow_connect)
    executor = RemoteCommandExecutor(str(private_key_file), connection_factory=factory)

    with pytest.raises(CommandTimeoutError):
        await executor.execute(instance, "uname", timeout=0.05)

    await asyncio.sleep(0.5)

    conn = created[0]
    assert not conn.connected
    assert conn.commands == []
    assert conn.close_count == 2


async def test_execute_uses_configured_default_timeout(
    instance: ComputeInstance, private_key_file: Path
) -> None:
    def slow(conn: FakeSSHConnection) -> None:
        conn.run_delay = 0.3

    factory, _ = connection_factory(slow)
    executor = RemoteCommandExecutor(
        str(private_key_file), connection_factory=factory, command_timeout=0.05
    )

    with pytest.raises(CommandTimeoutError, match="after 0.05 seconds"):
        await executor.execute(instance, "sleep 10")

    await asyncio.sleep(0.5)


async def test_execute_zero_timeout_is_not_replaced_by_default(
    instance: ComputeInstance, private_key_file: Path
) -> None:
    def slow(conn: FakeSSHConnection) -> None:
        conn.run_delay = 0.3

    factory, _ = connection_factory(slow)
    executor = RemoteCommandExecutor(
        str(private_key_file), connection_factory=factory, command_timeout=60
    )

    with pytest.raises(CommandTimeoutError, match="after 0 seconds"):
        await executor.execute(instance, "sleep 10", timeout=0)

    await asyncio.sleep(0.5)


@pytest.mark.parametrize(
    "error",
    [
        paramiko.SSHException("SSH session not active"),
        EOFError(),
        OSError("Connection reset by peer"),
    ],
)
async def test_execute_translates_command_transport_errors(
    instance: ComputeInstance, private_key_file: Path, error: Exception
) -> None:
    def broken(conn: FakeSSHConnection) -> None:
        conn.run_error = error

    factory, created = connection_factory(broken)
    executor = RemoteCommandExecutor(str(private_key_file), connection_factory=factory)

    with pytest.raises(RemoteExecutionError, match="SSH command failed"):
        await executor.execute(instance, "uname")

    assert created[0].close_count == 1


async def test_execute_connection_failure(
    instance: ComputeInstance, private_key_file: Path
) -> None:
    def refuse(conn: FakeSSHConnection) -> None:
        conn.connect_error = paramiko.SSHException("Authentication failed.")

    factory, created = connection_factory(refuse)
    executor = RemoteCommandExecutor(str(private_key_file), connection_factory=factory)

    with pytest.raises(RemoteExecutionError, match="SSH connection error: Authentication failed"):
        await executor.execute(instance, "uname")

    assert created[0].close_count == 1


async def test_execute_rejects_overlong_command(
    instance: ComputeInstance, private_key_file: Path
) -> None:
    factory, created = connection_factory()
    executor = RemoteCommandExecutor(str(private_key_file), connection_factory=factory)

    with pytest.raises(ValidationError, match="maximum length"):
        await executor.execute(instance, "x" * 10001)

    assert created == []
