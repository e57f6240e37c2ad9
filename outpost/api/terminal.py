"""WebSocket transport for the interactive terminal proxy.

Frames are JSON objects ``{"event": ..., "data": ...}`` in both directions.
Browsers cannot set an ``Authorization`` header on a WebSocket, so the
bearer token may also be passed as the ``token`` query parameter.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from collections.abc import AsyncGenerator, Mapping
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from outpost import __version__
from outpost.core.reconciler import ReconciliationScheduler
from outpost.services.terminal import InteractiveTerminalProxy

logger = logging.getLogger(__name__)


class WebSocketTerminalChannel:
    """Adapt a FastAPI WebSocket to ``TerminalChannel``."""

    def __init__(self, websocket: WebSocket) -> None:
        self.websocket = websocket
        self.connection_id = str(uuid.uuid4())
        self.headers: Mapping[str, str] = websocket.headers
        self.query: Mapping[str, str] = websocket.query_params
        token = websocket.query_params.get("token")
        self.auth: Mapping[str, Any] = {"token": token} if token else {}
        self.closed = False

    async def emit(self, event: str, data: Any = None) -> None:
        if self.closed:
            return
        try:
            await self.websocket.send_json({"event": event, "data": data})
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug("Dropping %s event for %s: %s", event, self.connection_id, e)
            self.closed = True

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.websocket.close()
        except RuntimeError as e:
            logger.debug("WebSocket %s already closed: %s", self.connection_id, e)


async def dispatch_frame(
    proxy: InteractiveTerminalProxy, connection_id: str, raw: str
) -> None:
    """Route one client frame to the proxy; malformed frames are dropped."""
    try:
        frame = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Ignoring non-JSON frame from %s", connection_id)
        return

    if not isinstance(frame, dict):
        return

    event = frame.get("event")
    data = frame.get("data")

    if event == "input" and isinstance(data, str):
        await proxy.handle_input(connection_id, data)
    elif event == "resize" and isinstance(data, dict):
        try:
            cols, rows = int(data["cols"]), int(data["rows"])
        except (KeyError, TypeError, ValueError):
            logger.debug("Ignoring malformed resize from %s: %r", connection_id, data)
            return
        await proxy.handle_resize(connection_id, cols, rows)
    else:
        logger.debug("Ignoring unknown event %r from %s", event, connection_id)


def create_app(
    proxy: InteractiveTerminalProxy,
    scheduler: ReconciliationScheduler | None = None,
) -> FastAPI:
    """Create the FastAPI application serving ``/terminal``.

    Parameters
    ----------
    proxy : InteractiveTerminalProxy
        Proxy handling authorization and SSH sessions
    scheduler : ReconciliationScheduler | None
        Reconciliation tasks to cancel on shutdown
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Starting outpost terminal server %s", __version__)
        yield
        await proxy.shutdown()
        if scheduler is not None:
            await scheduler.shutdown()
        logger.info("Outpost terminal server stopped")

    app = FastAPI(title="Outpost", version=__version__, lifespan=lifespan)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.websocket("/terminal")
    async def terminal(websocket: WebSocket) -> None:
        await websocket.accept()
        channel = WebSocketTerminalChannel(websocket)
        connection_id = channel.connection_id

        handshake = asyncio.create_task(proxy.handle_connection(channel))
        receive = asyncio.create_task(websocket.receive_text())
        early: list[str] = []

        try:
            # Keep reading while the SSH connection opens so a disconnect is seen.
            while not handshake.done():
                await asyncio.wait({handshake, receive}, return_when=asyncio.FIRST_COMPLETED)
                if receive.done():
                    early.append(receive.result())
                    receive = asyncio.create_task(websocket.receive_text())

            if not handshake.result():
                return

            for raw in early:
                await dispatch_frame(proxy, connection_id, raw)

            while not channel.closed:
                raw = await receive
                receive = asyncio.create_task(websocket.receive_text())
                await dispatch_frame(proxy, connection_id, raw)
        except WebSocketDisconnect:
            pass
        except RuntimeError as e:
            logger.debug("Receive loop for %s ended: %s", connection_id, e)
        finally:
            receive.cancel()
            await proxy.handle_disconnect(connection_id)
            if not handshake.done() and await handshake:
                # Opened after the disconnect was handled.
                await proxy.cleanup_session(connection_id)

    return app
