"""Fanout of canonical events to every connected overlay.

Each overlay connection gets a ConnectionHandle with a bounded outbox drained by
its own writer task, so ``publish`` never blocks and a slow or broken client
only ever loses its own frames.
"""

import asyncio
import json
import time
import uuid
from collections.abc import Callable, Iterable

import websockets
from websockets.protocol import State

from . import SERVICE_NAME, __version__
from .events import Pong, SystemWelcome, WireEvent
from .logger import bind_connection_context, clear_context, get_logger

logger = get_logger(__name__)

SnapshotProvider = Callable[[], Iterable[WireEvent]]


class ConnectionHandle:
    """One downstream client: its transport, outbox and writer task.

    ``preamble`` frames are queued on top of the ``outbox_size`` budget, so the
    registration frames always go out first, however small the outbox.
    """

    def __init__(
        self,
        transport,
        outbox_size: int = 256,
        on_closed: Callable[["ConnectionHandle"], None] | None = None,
        preamble: Iterable[str] = (),
    ):
        self.id = uuid.uuid4().hex[:12]
        self.transport = transport
        preamble = list(preamble)
        self.outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=outbox_size + len(preamble))
        for message in preamble:
            self.outbox.put_nowait(message)
        self.connected_at = time.time()
        self.sent = 0
        self.dropped = 0
        self._closed = False
        self._on_closed = on_closed
        self._writer: asyncio.Task | None = None

    @property
    def is_open(self) -> bool:
        return not self._closed and getattr(self.transport, "state", None) is State.OPEN

    @property
    def remote_address(self):
        return getattr(self.transport, "remote_address", None)

    def start(self) -> asyncio.Task:
        if self._writer is None:
            self._writer = asyncio.create_task(self.pump(), name=f"outbox-{self.id}")
        return self._writer

    def offer(self, message: str) -> bool:
        """Queue a frame without blocking. False if the handle is closed or its outbox is full."""
        if not self.is_open:
            return False
        try:
            self.outbox.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Client outbox full, dropping frame", connection_id=self.id, dropped=self.dropped)
            return False
        return True

    async def pump(self) -> None:
        """Write queued frames in order until the transport fails or the handle closes."""
        try:
            while True:
                message = await self.outbox.get()
                try:
                    await self.transport.send(message)
                    self.sent += 1
                finally:
                    self.outbox.task_done()
        except websockets.exceptions.ConnectionClosed:
            logger.debug("Client closed while writing", connection_id=self.id)
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.warning("Client writer failed", connection_id=self.id, error=str(e))
        finally:
            self._drain()
            self.close()

    def _drain(self) -> None:
        while not self.outbox.empty():
            self.outbox.get_nowait()
            self.outbox.task_done()

    async def flush(self) -> None:
        """Wait until every queued frame has been written or discarded."""
        await self.outbox.join()

    def close(self) -> None:
        """Mark closed and stop the writer. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._writer is not None and self._writer is not asyncio.current_task() and not self._writer.done():
            self._writer.cancel()
        self._drain()
        if self._on_closed is not None:
            self._on_closed(self)


class BroadcastChannel:
    """Owns the set of overlay connections and fans events out to them."""

    def __init__(self, snapshot_provider: SnapshotProvider | None = None, outbox_size: int = 256):
        self.snapshot_provider = snapshot_provider or (lambda: [])
        self.outbox_size = outbox_size
        self.started_at = time.monotonic()

        self._handles: set[ConnectionHandle] = set()
        self._server = None

        self.total_published = 0
        self.total_connections = 0

    @property
    def uptime(self) -> float:
        return round(time.monotonic() - self.started_at, 3)

    @property
    def handles(self) -> frozenset[ConnectionHandle]:
        return frozenset(self._handles)

    def client_count(self) -> int:
        return len(self._handles)

    def welcome_event(self) -> SystemWelcome:
        return SystemWelcome(name=SERVICE_NAME, version=__version__, uptime=self.uptime)

    def publish(self, event: WireEvent) -> int:
        """Serialize once and offer to every open client. Returns how many accepted it."""
        message = event.to_json()
        self.total_published += 1

        delivered = 0
        for handle in list(self._handles):
            try:
                if handle.offer(message):
                    delivered += 1
            except Exception as e:
                logger.warning("Failed to offer frame to client", connection_id=handle.id, error=str(e))

        logger.debug("Published", type=event.type_tag, delivered=delivered, clients=len(self._handles))
        return delivered

    def register_client(self, transport) -> ConnectionHandle:
        """Add a client. Its outbox starts with the welcome record and the goals snapshot."""
        preamble = [self.welcome_event().to_json()]
        preamble.extend(event.to_json() for event in self.snapshot_provider())
        handle = ConnectionHandle(transport, self.outbox_size, on_closed=self.unregister_client, preamble=preamble)

        self._handles.add(handle)
        self.total_connections += 1
        handle.start()
        logger.info(
            "Client connected", connection_id=handle.id, remote=str(handle.remote_address), clients=len(self._handles)
        )
        return handle

    def unregister_client(self, handle: ConnectionHandle) -> None:
        if handle not in self._handles:
            return
        self._handles.discard(handle)
        handle.close()
        logger.info("Client disconnected", connection_id=handle.id, clients=len(self._handles))

    async def _handle_inbound(self, handle: ConnectionHandle, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            logger.debug("Ignoring non-JSON frame from client", connection_id=handle.id)
            return

        if isinstance(data, dict) and data.get("type") == "ping":
            handle.offer(Pong(timestamp=int(time.time() * 1000)).to_json())

    async def serve_connection(self, websocket) -> None:
        """Per-connection coroutine handed to ``websockets.serve``."""
        handle = self.register_client(websocket)
        bind_connection_context(connection_id=handle.id, source="overlay")
        try:
            async for raw in websocket:
                await self._handle_inbound(handle, raw)
        except websockets.exceptions.ConnectionClosed:
            pass
        except Exception as e:
            logger.error("Error handling overlay connection", connection_id=handle.id, error=str(e))
        finally:
            self.unregister_client(handle)
            clear_context()

    async def start(self, host: str, port: int) -> None:
        """Start the WebSocket server."""
        self._server = await websockets.serve(self.serve_connection, host, port)
        logger.info("Broadcast server started", host=host, port=port)

    async def stop(self) -> None:
        """Stop the WebSocket server and drop every client."""
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        for handle in list(self._handles):
            self.unregister_client(handle)

        logger.info("Broadcast server stopped", published=self.total_published)

    def get_status(self) -> dict:
        return {
            "clients": len(self._handles),
            "total_connections": self.total_connections,
            "total_published": self.total_published,
            "uptime": self.uptime,
        }
