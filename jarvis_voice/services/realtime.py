"""Realtime push channel to the assistant server."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import uuid
from typing import Any, Awaitable, Callable, Optional, Union

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from ..core.errors import ChannelNotConnectedError, DispatchError
from ..core.logger import get_logger
from .schemas import PushEvent


logger = get_logger("realtime")

EventHandler = Callable[[dict[str, Any]], Union[None, Awaitable[None]]]
StatusCallback = Callable[[str], None]


class RealtimeChannel:
    """Duplex JSON event channel over a WebSocket.

    The channel keeps reconnecting in the background after a fixed delay.
    Handler failures are logged and never stop the reader.
    """

    def __init__(self, url: str, *, reconnect_delay: float = 2.0, ack_timeout: float = 10.0) -> None:
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.ack_timeout = ack_timeout
        self._handlers: dict[str, list[EventHandler]] = {}
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._ws: Optional[ClientConnection] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._closing = False
        self._status_callback: Optional[StatusCallback] = None
        self._connected_event = asyncio.Event()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def connected(self) -> bool:
        return self._ws is not None

    def on(self, event: str, handler: EventHandler) -> None:
        self._handlers.setdefault(event, []).append(handler)

    def off(self, event: str, handler: EventHandler) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def on_status(self, callback: StatusCallback) -> None:
        """Register a callback receiving ``online``/``reconnecting``/``offline``."""
        self._status_callback = callback

    def start(self) -> None:
        """Start the background connect/read loop."""
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def wait_connected(self, timeout: float) -> bool:
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def emit_command(self, command: dict[str, Any], timeout: float | None = None) -> dict[str, Any]:
        """Send a ``command`` request and wait for its ``command_response``."""
        ws = self._ws
        if ws is None:
            raise ChannelNotConnectedError("Realtime channel is not connected.")
        request_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        text = str(command.get("payload", {}).get("message", "")) if isinstance(command.get("payload"), dict) else ""
        try:
            await ws.send(PushEvent("command", command, request_id).to_json())
            return await asyncio.wait_for(future, timeout or self.ack_timeout)
        except asyncio.TimeoutError as exc:
            raise DispatchError("No acknowledgement from the server.", text=text) from exc
        except ConnectionClosed as exc:
            raise ChannelNotConnectedError("Realtime channel closed while sending.") from exc
        finally:
            self._pending.pop(request_id, None)

    async def dispatch(self, raw: str | bytes) -> None:
        """Route one incoming frame to its handlers."""
        event = PushEvent.from_raw(raw)
        if event is None:
            logger.debug("ignored malformed frame")
            return
        if event.event == "command_response" and event.id is not None:
            future = self._pending.get(event.id)
            if future is not None and not future.done():
                future.set_result(event.data)
        for handler in list(self._handlers.get(event.event, [])):
            try:
                result = handler(event.data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("handler for %s failed", event.event)

    async def close(self) -> None:
        """Stop reconnecting and close the socket."""
        self._closing = True
        ws = self._ws
        if ws is not None:
            with contextlib.suppress(ConnectionClosed, OSError):
                await ws.close()
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ChannelNotConnectedError("Realtime channel closed."))
        self._pending.clear()
        self._set_disconnected("offline")

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    async def _run(self) -> None:
        while not self._closing:
            try:
                async with connect(self.url) as ws:
                    self._ws = ws
                    self._connected_event.set()
                    self._notify_status("online")
                    logger.info("realtime channel connected to %s", self.url)
                    async for raw in ws:
                        await self.dispatch(raw)
            except (OSError, ConnectionClosed, InvalidHandshake, InvalidURI, asyncio.TimeoutError) as exc:
                logger.warning("realtime channel error: %s", exc)
            finally:
                self._set_disconnected("offline" if self._closing else "reconnecting")
            if self._closing:
                break
            await asyncio.sleep(self.reconnect_delay)

    def _set_disconnected(self, status: str) -> None:
        was_connected = self._ws is not None
        self._ws = None
        self._connected_event.clear()
        if was_connected or status == "offline":
            self._notify_status(status)

    def _notify_status(self, status: str) -> None:
        if self._status_callback is None:
            return
        try:
            self._status_callback(status)
        except Exception:
            logger.exception("status callback failed")
