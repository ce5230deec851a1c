"""Base WebSocket client with automatic reconnection logic."""

import asyncio
import time
import weakref
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Protocol

import websockets

from ..logger import get_logger

logger = get_logger(__name__)


class ConnectionState(Enum):
    """WebSocket link states."""

    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    ERRORED = "errored"
    DISPOSED = "disposed"


class ConnectionEvent:
    """Connection state change event."""

    def __init__(self, old_state: ConnectionState, new_state: ConnectionState, error: Exception | None = None):
        self.old_state = old_state
        self.new_state = new_state
        self.error = error
        self.timestamp = time.time()


class Transport(Protocol):
    """The part of a websockets connection the clients use."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...

    def __aiter__(self) -> Any: ...


Connector = Callable[[str], Awaitable[Transport]]


class ReconnectBackoff:
    """Doubling reconnect delay between a floor and ``floor * cap_factor``.

    ``advance()`` returns the delay to wait now and doubles the next one.
    ``reset()`` goes back to the floor; call it whenever a connection opens.
    """

    def __init__(self, floor: float = 1.0, cap_factor: int = 30):
        if floor <= 0:
            raise ValueError("floor must be positive")
        if cap_factor < 1:
            raise ValueError("cap_factor must be at least 1")
        self.floor = floor
        self.cap = floor * cap_factor
        self.current = floor

    def advance(self) -> float:
        delay = self.current
        self.current = min(self.current * 2, self.cap)
        return delay

    def reset(self) -> None:
        self.current = self.floor


class ReconnectingWebSocketClient(ABC):
    """Base class for WebSocket clients that reconnect forever until disposed.

    State machine: CONNECTING -> OPEN -> (CLOSED | ERRORED) -> CONNECTING ...
    and DISPOSED only after ``dispose()``. Every failure waits the current
    backoff delay before the next attempt; opening resets it.

    Subclasses implement ``_handle_frame`` and may override ``_on_open`` for a
    protocol handshake.
    """

    def __init__(
        self,
        url: str,
        reconnect_floor: float = 1.0,
        reconnect_cap_factor: int = 30,
        connector: Connector | None = None,
        name: str = "websocket",
    ):
        self.url = url
        self.name = name
        self._connector = connector or websockets.connect
        self._backoff = ReconnectBackoff(reconnect_floor, reconnect_cap_factor)

        self._state = ConnectionState.CLOSED
        self._transport: Transport | None = None
        self._disposed = False
        self._run_task: asyncio.Task | None = None
        self._connection_callbacks: list[Callable[[ConnectionEvent], None]] = []

        self._background_tasks: weakref.WeakSet[asyncio.Task] = weakref.WeakSet()

        self.successful_connects = 0
        self.total_reconnects = 0
        self.failed_connects = 0
        self.last_error: str | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is ConnectionState.OPEN

    @property
    def disposed(self) -> bool:
        return self._disposed

    @property
    def backoff(self) -> ReconnectBackoff:
        return self._backoff

    @abstractmethod
    async def _handle_frame(self, raw: str | bytes) -> None:
        """Process one inbound frame."""

    async def _on_open(self, transport: Transport) -> None:
        """Hook run after the socket opens and before frames are dispatched."""

    def on_connection_change(self, callback: Callable[[ConnectionEvent], None]):
        """Register a callback for connection state changes."""
        self._connection_callbacks.append(callback)

    def _emit_connection_event(self, new_state: ConnectionState, error: Exception | None = None):
        if new_state == self._state or self._state is ConnectionState.DISPOSED:
            return
        event = ConnectionEvent(self._state, new_state, error)
        self._state = new_state

        for callback in list(self._connection_callbacks):
            try:
                callback(event)
            except Exception as e:
                logger.error("Error in connection callback", client=self.name, error=str(e))

    async def _do_connect(self) -> Transport:
        transport = await self._connector(self.url)
        self._transport = transport
        await self._on_open(transport)
        return transport

    async def _do_listen(self, transport: Transport) -> None:
        """Dispatch frames until the transport closes.

        A clean close ends the iteration; an abnormal one raises ConnectionClosedError.
        """
        async for raw in transport:
            await self._handle_frame(raw)

    async def _close_transport(self) -> None:
        transport, self._transport = self._transport, None
        if transport is None:
            return
        try:
            await transport.close()
        except Exception as e:
            logger.debug("Error closing transport", client=self.name, error=str(e))

    async def _connect_and_listen(self) -> None:
        """One connection lifetime. Ends in CLOSED or ERRORED."""
        self._emit_connection_event(ConnectionState.CONNECTING)
        logger.info("Attempting connection", client=self.name, url=self.url)

        try:
            transport = await self._do_connect()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed_connects += 1
            self.last_error = str(e)
            logger.warning("Connection attempt failed", client=self.name, url=self.url, error=str(e))
            await self._close_transport()
            self._emit_connection_event(ConnectionState.ERRORED, e)
            return

        self.successful_connects += 1
        self.last_error = None
        self._backoff.reset()
        self._emit_connection_event(ConnectionState.OPEN)
        logger.info("Connection established", client=self.name, url=self.url)

        try:
            await self._do_listen(transport)
        except asyncio.CancelledError:
            raise
        except websockets.exceptions.ConnectionClosedError as e:
            self.last_error = str(e)
            logger.warning("Connection lost", client=self.name, url=self.url, error=str(e))
            await self._close_transport()
            self._emit_connection_event(ConnectionState.ERRORED, e)
        except Exception as e:
            self.last_error = str(e)
            logger.error("Unexpected error in listen loop", client=self.name, error=str(e), exc_info=True)
            await self._close_transport()
            self._emit_connection_event(ConnectionState.ERRORED, e)
        else:
            logger.info("Connection closed", client=self.name, url=self.url)
            await self._close_transport()
            self._emit_connection_event(ConnectionState.CLOSED)

    async def run(self) -> None:
        """Connect, listen and reconnect until disposed."""
        try:
            while not self._disposed:
                await self._connect_and_listen()
                if self._disposed:
                    break

                delay = self._backoff.advance()
                self.total_reconnects += 1
                logger.info("Reconnecting", client=self.name, delay=delay, attempt=self.total_reconnects)
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug("Run loop cancelled", client=self.name)
            if not self._disposed:
                raise

    def start(self) -> asyncio.Task:
        """Start the run loop in the background without waiting for a connection."""
        if self._disposed:
            raise RuntimeError(f"{self.name} client is disposed")
        if self._run_task is None or self._run_task.done():
            self._run_task = self.create_task(self.run())
        return self._run_task

    async def send(self, message: str) -> bool:
        """Send one frame if the link is open. Returns False otherwise."""
        transport = self._transport
        if transport is None or not self.is_open:
            return False
        try:
            await transport.send(message)
            return True
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning("Send failed, connection closed", client=self.name, error=str(e))
            return False

    async def dispose(self) -> None:
        """Stop for good: cancel any pending wait, close the transport once, never reconnect."""
        if self._disposed:
            return
        self._disposed = True
        logger.info("Disposing", client=self.name, url=self.url)

        current = asyncio.current_task()
        tasks = [task for task in list(self._background_tasks) if task is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks, timeout=5.0)

        await self._close_transport()
        self._emit_connection_event(ConnectionState.DISPOSED)

    def create_task(self, coro) -> asyncio.Task:
        """Create and track a background task."""
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def health_check(self) -> bool:
        return self.is_open

    def get_status(self) -> dict:
        """Get connection status and metrics."""
        return {
            "connected": self.is_open,
            "connection_state": self._state.value,
            "url": self.url,
            "next_delay": self._backoff.current,
            "total_reconnects": self.total_reconnects,
            "successful_connects": self.successful_connects,
            "failed_connects": self.failed_connects,
            "last_error": self.last_error,
            "background_tasks": len(self._background_tasks),
        }
