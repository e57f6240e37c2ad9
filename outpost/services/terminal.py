"""Interactive terminal proxy between client channels and SSH shells.

The proxy is transport agnostic: a client connection is any object
satisfying ``TerminalChannel``. Server to client events are ``connected``,
``output`` (text), ``error`` (``{"message": ...}``) and ``disconnected``;
clients send ``input`` (text) and ``resize`` (cols, rows).
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from dataclasses import dataclass
from typing import Any

import paramiko

from outpost.constants import (
    TERMINAL_DEFAULT_COLS,
    TERMINAL_DEFAULT_ROWS,
    TERMINAL_READ_SIZE,
    TERMINAL_TERM,
)
from outpost.core.exceptions import AuthenticationError, OutpostError
from outpost.core.interfaces import (
    OrganizationMembership,
    TerminalChannel,
    TokenVerifier,
    UserDirectory,
    WorkspaceDirectory,
)
from outpost.core.orchestrator import InstanceOrchestrator
from outpost.services.ssh import RemoteCommandExecutor

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


@dataclass
class TerminalSession:
    """Live SSH state of one client connection."""

    connection: Any
    shell: Any | None = None
    pump: asyncio.Task[None] | None = None


def extract_token(channel: TerminalChannel) -> str | None:
    """Return the bearer token from the handshake auth payload or headers."""
    raw = channel.auth.get("token") or channel.headers.get("authorization")
    if not isinstance(raw, str) or not raw:
        return None
    return raw.removeprefix(BEARER_PREFIX)


class InteractiveTerminalProxy:
    """Authorize client channels and bridge them to interactive SSH shells.

    Parameters
    ----------
    token_verifier : TokenVerifier
        Verifies bearer tokens
    users : UserDirectory
        Resolves the token subject to a user
    workspaces : WorkspaceDirectory
        Resolves the requested workspace
    memberships : OrganizationMembership
        Checks that the user belongs to the workspace's organization
    orchestrator : InstanceOrchestrator
        Instance lookup
    executor : RemoteCommandExecutor
        Builds SSH connections to instances

    Attributes
    ----------
    sessions : dict[str, TerminalSession]
        Live sessions keyed by connection id
    """

    def __init__(
        self,
        token_verifier: TokenVerifier,
        users: UserDirectory,
        workspaces: WorkspaceDirectory,
        memberships: OrganizationMembership,
        orchestrator: InstanceOrchestrator,
        executor: RemoteCommandExecutor,
    ) -> None:
        self.token_verifier = token_verifier
        self.users = users
        self.workspaces = workspaces
        self.memberships = memberships
        self.orchestrator = orchestrator
        self.executor = executor
        self.sessions: dict[str, TerminalSession] = {}

    async def _reject(self, channel: TerminalChannel, message: str) -> None:
        logger.warning("Connection rejected: %s (%s)", message, channel.connection_id)
        await channel.emit("error", {"message": message})
        await channel.close()

    async def _authorize(self, channel: TerminalChannel) -> tuple[str, str] | None:
        """Run the handshake checks.

        Returns
        -------
        tuple[str, str] | None
            Workspace id and instance id, or None after rejecting the channel
        """
        token = extract_token(channel)
        if not token:
            await self._reject(channel, "Authentication required")
            return None

        try:
            claims = self.token_verifier.verify(token)
        except AuthenticationError:
            await self._reject(channel, "Authentication failed")
            return None

        user_id = claims.get("sub")
        if not user_id or await self.users.get_user(user_id) is None:
            await self._reject(channel, "Invalid user")
            return None

        workspace_id = channel.query.get("workspaceId")
        instance_id = channel.query.get("instanceId")
        if not workspace_id or not instance_id:
            await self._reject(channel, "workspaceId and instanceId are required")
            return None

        workspace = await self.workspaces.get_workspace(workspace_id)
        if workspace is None:
            await self._reject(channel, "Workspace not found")
            return None

        if not await self.memberships.is_member(user_id, workspace.org_id):
            await self._reject(channel, "Access denied")
            return None

        logger.info(
            "Client connected: %s (user: %s, instance: %s)",
            channel.connection_id,
            user_id,
            instance_id,
        )
        return workspace_id, instance_id

    async def handle_connection(self, channel: TerminalChannel) -> bool:
        """Authorize a new client and open its SSH shell.

        Every failure is reported to the client as an ``error`` event
        followed by closing the channel.

        Returns
        -------
        bool
            True if a shell session was established
        """
        try:
            target = await self._authorize(channel)
        except Exception as e:
            logger.warning("Handshake failed for %s: %s", channel.connection_id, e)
            await self._reject(channel, "Authentication failed")
            return False

        if target is None:
            return False

        return await self._open_session(channel, *target)

    async def _fail_session(self, channel: TerminalChannel, message: str) -> None:
        await channel.emit("error", {"message": message})
        await self.cleanup_session(channel.connection_id)
        await channel.close()

    async def _open_session(
        self, channel: TerminalChannel, workspace_id: str, instance_id: str
    ) -> bool:
        connection_id = channel.connection_id

        try:
            instance = await self.orchestrator.get(workspace_id, instance_id)
            conn = self.executor.open_connection(instance)
        except OutpostError as e:
            await self._reject(channel, str(e))
            return False

        session = TerminalSession(connection=conn)
        self.sessions[connection_id] = session

        try:
            await asyncio.to_thread(conn.connect)
        except (paramiko.SSHException, OSError) as e:
            logger.error("SSH error for client %s: %s", connection_id, e)
            await self._fail_session(channel, f"SSH connection error: {e}")
            return False

        if self.sessions.get(connection_id) is not session:
            # Client went away while connecting.
            await asyncio.to_thread(conn.close)
            return False

        logger.info("SSH connection established for client %s to %s", connection_id, conn.host)
        await channel.emit("connected")

        try:
            shell = await asyncio.to_thread(
                conn.open_shell, TERMINAL_TERM, TERMINAL_DEFAULT_COLS, TERMINAL_DEFAULT_ROWS
            )
        except (paramiko.SSHException, OSError) as e:
            logger.error("Failed to open SSH shell for %s: %s", connection_id, e)
            await self._fail_session(channel, "Failed to open shell")
            return False

        session.shell = shell
        session.pump = asyncio.create_task(
            self._pump_output(channel, shell), name=f"terminal-{connection_id}"
        )
        return True

    async def _pump_output(self, channel: TerminalChannel, shell: Any) -> None:
        """Forward shell output to the client until the shell closes."""
        stdout = codecs.getincrementaldecoder("utf-8")(errors="replace")
        stderr = codecs.getincrementaldecoder("utf-8")(errors="replace")

        try:
            while True:
                data = await asyncio.to_thread(shell.recv, TERMINAL_READ_SIZE)
                if shell.recv_stderr_ready():
                    err = await asyncio.to_thread(shell.recv_stderr, TERMINAL_READ_SIZE)
                    await self._emit_output(channel, stderr.decode(err))
                if not data:
                    break
                await self._emit_output(channel, stdout.decode(data))

            logger.info("SSH stream closed for client %s", channel.connection_id)
            await channel.emit("disconnected")
        except (paramiko.SSHException, OSError) as e:
            logger.error("SSH error for client %s: %s", channel.connection_id, e)
            await channel.emit("error", {"message": f"SSH connection error: {e}"})

        await self.cleanup_session(channel.connection_id)
        await channel.close()

    async def _emit_output(self, channel: TerminalChannel, text: str) -> None:
        # Incomplete multibyte sequences decode to nothing until the rest arrives.
        if text:
            await channel.emit("output", text)

    async def handle_input(self, connection_id: str, data: str) -> None:
        session = self.sessions.get(connection_id)
        if session is None or session.shell is None:
            return
        await asyncio.to_thread(session.shell.sendall, data.encode("utf-8"))

    async def handle_resize(self, connection_id: str, cols: int, rows: int) -> None:
        session = self.sessions.get(connection_id)
        if session is None or session.shell is None:
            return
        await asyncio.to_thread(session.shell.resize_pty, width=cols, height=rows)

    async def handle_disconnect(self, connection_id: str) -> None:
        logger.info("Client disconnected: %s", connection_id)
        await self.cleanup_session(connection_id)

    async def cleanup_session(self, connection_id: str) -> None:
        """Tear down a session; later calls for the same id do nothing."""
        session = self.sessions.pop(connection_id, None)
        if session is None:
            return

        if session.pump is not None and session.pump is not asyncio.current_task():
            session.pump.cancel()

        if session.shell is not None:
            await asyncio.to_thread(session.shell.close)

        await asyncio.to_thread(session.connection.close)
        logger.info("Cleaned up session for client %s", connection_id)

    async def shutdown(self) -> None:
        for connection_id in list(self.sessions):
            await self.cleanup_session(connection_id)
