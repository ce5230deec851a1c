"""Overlay-side link to the Castellan broadcast channel."""

from collections.abc import Callable
from typing import Any

from ..error_boundary import call_handler
from ..events import WireEvent, decode_wire
from ..exceptions import WireDecodeError
from ..logger import get_logger
from ..websockets import ReconnectingWebSocketClient
from ..websockets.client import Connector

logger = get_logger(__name__)

EventHandler = Callable[[WireEvent], Any]


class HandlerCell:
    """Mutable slot read at dispatch time, so a replaced handler takes effect on the next frame."""

    def __init__(self, handler: EventHandler | None = None):
        self.handler = handler

    def set(self, handler: EventHandler | None) -> None:
        self.handler = handler

    def get(self) -> EventHandler | None:
        return self.handler


class OverlayLink(ReconnectingWebSocketClient):
    """Receives wire records from Castellan and hands each to the current handler."""

    def __init__(
        self,
        url: str,
        handler: EventHandler | None = None,
        reconnect_floor: float = 1.0,
        reconnect_cap_factor: int = 30,
        connector: Connector | None = None,
    ):
        super().__init__(
            url,
            reconnect_floor=reconnect_floor,
            reconnect_cap_factor=reconnect_cap_factor,
            connector=connector,
            name="overlay",
        )
        self.handler_cell = HandlerCell(handler)
        self.frames_received = 0
        self.frames_discarded = 0

    def set_handler(self, handler: EventHandler | None) -> None:
        self.handler_cell.set(handler)

    async def _handle_frame(self, raw: str | bytes) -> None:
        try:
            event = decode_wire(raw)
        except WireDecodeError as e:
            self.frames_discarded += 1
            logger.warning("Discarding malformed frame", error=str(e), preview=e.preview)
            return

        self.frames_received += 1
        handler = self.handler_cell.get()
        if handler is None:
            return
        await call_handler(handler, event)

    def get_status(self) -> dict:
        status = super().get_status()
        status["frames_received"] = self.frames_received
        status["frames_discarded"] = self.frames_discarded
        return status
