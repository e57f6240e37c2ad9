"""Fake SSH connection and shell for testing with dependency injection."""

import queue
import time
from collections.abc import Callable
from typing import Any

from outpost.services.ssh import CommandResult

RECV_TIMEOUT_SECONDS = 5


class FakeShell:
    """Interactive shell channel fed from queues.

    ``recv`` blocks until data is fed or the shell is closed, like a paramiko
    channel. Writes are echoed back when ``echo`` is set.

    Attributes
    ----------
    events : list[tuple[Any, ...]]
        ``("send", bytes)`` and ``("resize", cols, rows)`` in call order
    """

    def __init__(self, echo: bool = False) -> None:
        self.echo = echo
        self.events: list[tuple[Any, ...]] = []
        self.closed = False
        self._stdout: queue.Queue[bytes] = queue.Queue()
        self._stderr: queue.Queue[bytes] = queue.Queue()

    def feed(self, data: bytes) -> None:
        self._stdout.put(data)

    def feed_stderr(self, data: bytes) -> None:
        self._stderr.put(data)

    def recv(self, nbytes: int) -> bytes:
        try:
            return self._stdout.get(timeout=RECV_TIMEOUT_SECONDS)
        except queue.Empty:
            return b""

    def recv_stderr_ready(self) -> bool:
        return not self._stderr.empty()

    def recv_stderr(self, nbytes: int) -> bytes:
        return self._stderr.get_nowait()

    def sendall(self, data: bytes) -> None:
        self.events.append(("send", data))
        if self.echo:
            self._stdout.put(data)

    def resize_pty(self, width: int, height: int) -> None:
        self.events.append(("resize", width, height))

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._stdout.put(b"")


class FakeSSHConnection:
    """Stand-in for ``SSHConnection``.

    Parameters
    ----------
    host : str
        Remote host
    key_file : str
        Private key path
    username : str
        SSH username
    port : int
        SSH port
    """

    def __init__(self, host: str, key_file: str, username: str = "ubuntu", port: int = 22) -> None:
        self.host = host
        self.key_file = key_file
        self.username = username
        self.port = port
        self.connected = False
        self.close_count = 0
        self.commands: list[str] = []
        self.connect_error: Exception | None = None
        self.shell_error: Exception | None = None
        self.results: dict[str, CommandResult] = {}
        self.connect_delay = 0.0
        self.run_delay = 0.0
        self.run_error: Exception | None = None
        self.shell = FakeShell()

    def connect(self, timeout: float = 30) -> None:
        if self.connect_delay:
            time.sleep(self.connect_delay)
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True

    def run(self, command: str) -> CommandResult:
        self.commands.append(command)
        if self.run_error is not None:
            raise self.run_error
        if self.run_delay:
            time.sleep(self.run_delay)
        return self.results.get(command, CommandResult(exit_code=0, stdout="", stderr=""))

    def open_shell(self, term: str = "xterm-256color", width: int = 80, height: int = 24) -> FakeShell:
        if self.shell_error is not None:
            raise self.shell_error
        return self.shell

    def close(self) -> None:
        self.close_count += 1
        self.connected = False


def connection_factory(
    configure: Callable[[FakeSSHConnection], None] | None = None,
) -> tuple[Callable[..., FakeSSHConnection], list[FakeSSHConnection]]:
    """Return a connection factory and the list it records connections in.

    Parameters
    ----------
    configure : Callable[[FakeSSHConnection], None] | None
        Called on every new connection before it is handed out
    """
    created: list[FakeSSHConnection] = []

    def factory(**kwargs: Any) -> FakeSSHConnection:
        conn = FakeSSHConnection(**kwargs)
        if configure is not None:
            configure(conn)
        created.append(conn)
        return conn

    return factory, created
