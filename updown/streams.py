"""Reconnecting WebSocket stream base.

Each feed subclasses ``ReconnectingStream`` and implements
``_on_connect`` (subscribe) and ``_handle_message``. The loop reconnects
forever: 5s after a dropped connection, 10s after a failed connect.
``stop()`` closes the socket and cancels the task for a graceful shutdown.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed

log = logging.getLogger(__name__)

RECONNECT_DELAY_S = 5.0        # after a connection that was up drops
CONNECT_FAIL_DELAY_S = 10.0    # after a connect attempt fails

WS_OPEN_TIMEOUT_S = 20
WS_PING_INTERVAL_S = 20
WS_PING_TIMEOUT_S = 20


class ReconnectingStream:
    """Long-lived stream task with uncapped reconnects."""

    name = "stream"

    def __init__(self, url: str):
        self.url = url
        self._ws = None
        self._running = False
        self._task: asyncio.Task | None = None
        self.connected = False
        self.reconnect_count = 0
        self.last_message_at = 0.0

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name=f"{self.name}-stream")
        log.info("%s feed started", self.name)

    async def stop(self) -> None:
        self._running = False
        if self._ws is not None:
            try:
                await self._ws.close()
            except Exception:
                log.debug("%s close failed", self.name, exc_info=True)
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self.connected = False
        log.info("%s feed stopped", self.name)

    async def _run_loop(self) -> None:
        while self._running:
            opened = False
            try:
                async with websockets.connect(
                    self.url,
                    open_timeout=WS_OPEN_TIMEOUT_S,
                    ping_interval=WS_PING_INTERVAL_S,
                    ping_timeout=WS_PING_TIMEOUT_S,
                ) as ws:
                    opened = True
                    self._ws = ws
                    self.connected = True
                    log.info("%s WS connected", self.name)
                    await self._on_connect(ws)
                    async for raw in ws:
                        self.last_message_at = time.time()
                        self._dispatch(raw)
                log.warning("%s WS closed, reconnecting in %.0fs", self.name, RECONNECT_DELAY_S)
            except asyncio.CancelledError:
                raise
            except ConnectionClosed:
                log.warning("%s WS disconnected, reconnecting in %.0fs", self.name, RECONNECT_DELAY_S)
            except Exception as exc:
                if opened:
                    log.warning("%s WS error: %s, reconnecting in %.0fs", self.name, exc, RECONNECT_DELAY_S)
                else:
                    log.warning("%s WS connect failed: %s, retrying in %.0fs", self.name, exc, CONNECT_FAIL_DELAY_S)
            finally:
                self._ws = None
                self.connected = False
            if not self._running:
                break
            self.reconnect_count += 1
            await asyncio.sleep(RECONNECT_DELAY_S if opened else CONNECT_FAIL_DELAY_S)

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            msg = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            return
        if not isinstance(msg, dict):
            return
        try:
            self._handle_message(msg)
        except (KeyError, ValueError, TypeError):
            log.debug("%s dropped malformed message: %s", self.name, str(msg)[:200])

    async def _on_connect(self, ws) -> None:
        """Send subscriptions after the socket opens."""

    def _handle_message(self, msg: dict[str, Any]) -> None:
        raise NotImplementedError

    def status(self) -> dict[str, Any]:
        now = time.time()
        return {
            "connected": self.connected,
            "reconnect_count": self.reconnect_count,
            "silence_s": round(now - self.last_message_at, 1) if self.last_message_at else None,
        }
