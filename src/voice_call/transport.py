"""Duplex JSON channel to the agent backend with an outbound backlog."""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from typing import Any, AsyncIterator, Awaitable, Callable, Protocol

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from voice_call.protocol import OutboundType, outbound_message

MessageCallback = Callable[[dict[str, Any]], None]


class Connection(Protocol):
    """The subset of a websockets client connection the adapter relies on."""

    async def send(self, message: str) -> None:
        """Send one text frame."""

    async def close(self) -> None:
        """Close the connection."""

    def __aiter__(self) -> AsyncIterator[str | bytes]:
        """Iterate inbound frames until the connection closes."""


Connector = Callable[[str], Awaitable[Connection]]


async def websocket_connector(url: str) -> Connection:
    return await websockets.connect(url, max_size=None)


class TransportAdapter:
    """Single logical channel to the backend.

    Anything sent before the channel is open, or while it is down, is kept in
    an unbounded FIFO backlog and flushed in order once it opens. Inbound
    messages go to every subscriber.
    """

    def __init__(
        self,
        url: str,
        *,
        connector: Connector | None = None,
        on_open: Callable[[], None] | None = None,
        on_close: Callable[[], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._url = url
        self._connector = connector or websocket_connector
        self._on_open = on_open
        self._on_close = on_close
        self._on_error = on_error
        self._logger = logger or logging.getLogger("voice_call.transport")

        self._connection: Connection | None = None
        self._outbox: deque[dict[str, Any]] = deque()
        self._subscribers: list[MessageCallback] = []
        self._flush_lock = asyncio.Lock()
        self._wakeup = asyncio.Event()
        self._reader_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def connected(self) -> bool:
        return self._connection is not None

    @property
    def backlog_size(self) -> int:
        return len(self._outbox)

    def subscribe(self, callback: MessageCallback) -> Callable[[], None]:
        """Register an inbound-message callback; returns its unsubscribe function."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    def send(self, message_type: OutboundType | str, data: Any) -> bool:
        """Queue one outbound message; returns whether the channel is currently open."""
        message = outbound_message(message_type, data)
        self._outbox.append(message)
        if self._connection is None:
            self._logger.info(
                "message_queued",
                extra={"message_type": message["type"], "backlog": len(self._outbox)},
            )
            return False
        self._wakeup.set()
        return True

    async def open(self) -> None:
        """Connect, flush the backlog, then start the reader and writer loops."""
        if self._connection is not None:
            return

        try:
            connection = await self._connector(self._url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            self._logger.error("transport_connect_failed", extra={"url": self._url, "error": str(exc)})
            if self._on_error is not None:
                self._on_error(exc)
            raise

        self._connection = connection
        self._logger.info("transport_open", extra={"url": self._url, "backlog": len(self._outbox)})
        await self.flush()
        self._writer_task = asyncio.create_task(self._writer_loop(connection), name="transport-writer")
        self._reader_task = asyncio.create_task(self._reader_loop(connection), name="transport-reader")
        if self._on_open is not None:
            self._on_open()

    async def flush(self) -> None:
        """Send every queued message in order while the channel stays open."""
        async with self._flush_lock:
            while self._outbox and self._connection is not None:
                message = self._outbox[0]
                try:
                    await self._connection.send(json.dumps(message))
                except ConnectionClosed as exc:
                    self._logger.warning(
                        "transport_send_failed",
                        extra={"message_type": message["type"], "error": str(exc)},
                    )
                    return
                self._outbox.popleft()

    async def close(self) -> None:
        connection = self._connection
        if connection is None:
            return
        await self.flush()
        await connection.close()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        """Wait until the reader loop has observed the end of the connection."""
        if self._reader_task is not None:
            await asyncio.gather(self._reader_task, return_exceptions=True)

    async def _writer_loop(self, connection: Connection) -> None:
        while self._connection is connection:
            await self._wakeup.wait()
            self._wakeup.clear()
            await self.flush()

    async def _reader_loop(self, connection: Connection) -> None:
        try:
            async for raw in connection:
                self._dispatch(raw)
        except ConnectionClosed as exc:
            self._logger.warning("transport_connection_lost", extra={"error": str(exc)})
            if self._on_error is not None:
                self._on_error(exc)
        finally:
            self._handle_closed(connection)

    def _handle_closed(self, connection: Connection) -> None:
        if self._connection is not connection:
            return
        self._connection = None
        if self._writer_task is not None:
            self._writer_task.cancel()
            self._writer_task = None
        self._logger.info("transport_closed", extra={"backlog": len(self._outbox)})
        if self._on_close is not None:
            self._on_close()

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError):
            self._logger.warning("inbound_frame_undecodable", extra={"size": len(raw)})
            return

        message_type = payload.get("type") if isinstance(payload, dict) else None
        self._logger.debug("message_received", extra={"message_type": message_type})
        for callback in list(self._subscribers):
            try:
                callback(payload)
            except Exception:  # noqa: BLE001 - one subscriber must not starve the others.
                self._logger.exception("subscriber_failed")
