"""Unit tests for the WebSocket terminal transport."""

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from outpost.api.terminal import create_app, dispatch_frame
from outpost.core.auth import JWTTokenVerifier, StaticAccessDirectory
from outpost.core.models import ComputeInstance
from outpost.services.ssh import RemoteCommandExecutor
from outpost.services.terminal import InteractiveTerminalProxy

from tests.unit.fakes.constants import JWT_SECRET, WORKSPACE_ID
from tests.unit.fakes.ssh import FakeSSHConnection, connection_factory
from tests.unit.fakes.terminal import FakeWebSocket


@pytest.fixture
def mock_proxy() -> MagicMock:
    proxy = MagicMock()
    proxy.handle_input = AsyncMock()
    proxy.handle_resize = AsyncMock()
    return proxy


async def test_dispatch_input(mock_proxy: MagicMock) -> None:
    await dispatch_frame(mock_proxy, "c1", '{"event": "input", "data": "ls\\n"}')

    mock_proxy.handle_input.assert_awaited_once_with("c1", "ls\n")


async def test_dispatch_resize(mock_proxy: MagicMock) -> None:
    await dispatch_frame(mock_proxy, "c1", '{"event": "resize", "data": {"cols": 120, "rows": "40"}}')

    mock_proxy.handle_resize.assert_awaited_once_with("c1", 120, 40)


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"event": "input", "data": 5}',
        '{"event": "resize", "data": {"cols": 80}}',
        '{"event": "resize", "data": {"cols": "wide", "rows": 24}}',
        '{"event": "reboot", "data": null}',
    ],
)
async def test_dispatch_ignores_malformed_frames(mock_proxy: MagicMock, raw: str) -> None:
    await dispatch_frame(mock_proxy, "c1", raw)

    mock_proxy.handle_input.assert_not_awaited()
    mock_proxy.handle_resize.assert_not_awaited()


@pytest.fixture
def echo_connections() -> tuple:
    def echo(conn: FakeSSHConnection) -> None:
        conn.shell.echo = True

    return connection_factory(echo)


def build_proxy(private_key_file: Path, factory: Callable[..., Any]) -> InteractiveTerminalProxy:
    directory = StaticAccessDirectory(
        organizations={"org-1": ["user-1"]}, workspaces={WORKSPACE_ID: "org-1"}
    )
    orchestrator = MagicMock()
    orchestrator.get = AsyncMock(
        return_value=ComputeInstance(
            workspace_id=WORKSPACE_ID,
            credential_id="cred-1",
            instance_type="t3.small",
            region="us-east-1",
            repo_url="https://github.com/acme/app",
            deploy_token_encrypted="aa:bb:cc",
            public_ip="203.0.113.10",
        )
    )
    return InteractiveTerminalProxy(
        token_verifier=JWTTokenVerifier(JWT_SECRET),
        users=directory,
        workspaces=directory,
        memberships=directory,
        orchestrator=orchestrator,
        executor=RemoteCommandExecutor(str(private_key_file), connection_factory=factory),
    )


@pytest.fixture
def app_proxy(private_key_file: Path, echo_connections: tuple) -> InteractiveTerminalProxy:
    factory, _ = echo_connections
    return build_proxy(private_key_file, factory)


def test_health(app_proxy: InteractiveTerminalProxy) -> None:
    with TestClient(create_app(app_proxy)) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_websocket_without_token_is_rejected(app_proxy: InteractiveTerminalProxy) -> None:
    with TestClient(create_app(app_proxy)) as client:
        with client.websocket_connect(
            f"/terminal?workspaceId={WORKSPACE_ID}&instanceId=inst-1"
        ) as websocket:
            message = websocket.receive_json()

    assert message == {"event": "error", "data": {"message": "Authentication required"}}


def test_websocket_session_echoes_input(
    app_proxy: InteractiveTerminalProxy, echo_connections: tuple
) -> None:
    token = JWTTokenVerifier(JWT_SECRET).issue("user-1")
    _, created = echo_connections

    with TestClient(create_app(app_proxy)) as client:
        with client.websocket_connect(
            f"/terminal?token={token}&workspaceId={WORKSPACE_ID}&instanceId=inst-1"
        ) as websocket:
            assert websocket.receive_json() == {"event": "connected", "data": None}

            websocket.send_json({"event": "resize", "data": {"cols": 100, "rows": 30}})
            websocket.send_json({"event": "input", "data": "whoami\n"})

            assert websocket.receive_json() == {"event": "output", "data": "whoami\n"}

    assert created[0].shell.events == [("resize", 100, 30), ("send", b"whoami\n")]
    assert app_proxy.sessions == {}
    assert created[0].close_count == 1


def slow_echo(conn: FakeSSHConnection) -> None:
    conn.connect_delay = 0.3
    conn.shell.echo = True


def terminal_endpoint(proxy: InteractiveTerminalProxy) -> Callable[..., Any]:
    app = create_app(proxy)
    return next(r.endpoint for r in app.routes if getattr(r, "path", None) == "/terminal")


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Timed out waiting")
        await asyncio.sleep(0.01)


@pytest.fixture
def slow_websocket() -> FakeWebSocket:
    token = JWTTokenVerifier(JWT_SECRET).issue("user-1")
    return FakeWebSocket({"token": token, "workspaceId": WORKSPACE_ID, "instanceId": "inst-1"})


async def test_websocket_input_sent_while_connecting_is_delivered(
    private_key_file: Path, slow_websocket: FakeWebSocket
) -> None:
    factory, created = connection_factory(slow_echo)
    proxy = build_proxy(private_key_file, factory)

    task = asyncio.create_task(terminal_endpoint(proxy)(slow_websocket))
    slow_websocket.push({"event": "input", "data": "pwd\n"})
    await wait_until(lambda: "output" in slow_websocket.events())
    slow_websocket.disconnect()
    await task

    assert slow_websocket.sent[:2] == [
        {"event": "connected", "data": None},
        {"event": "output", "data": "pwd\n"},
    ]
    assert created[0].shell.events == [("send", b"pwd\n")]
    assert proxy.sessions == {}


async def test_websocket_disconnect_while_connecting_closes_ssh(
    private_key_file: Path, slow_websocket: FakeWebSocket
) -> None:
    factory, created = connection_factory(slow_echo)
    proxy = build_proxy(private_key_file, factory)

    task = asyncio.create_task(terminal_endpoint(proxy)(slow_websocket))
    await wait_until(lambda: bool(proxy.sessions))
    slow_websocket.disconnect()
    await task

    assert proxy.sessions == {}
    assert slow_websocket.sent == []
    assert created[0].connected is False
    assert created[0].close_count == 2
