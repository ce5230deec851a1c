"""Streamer.bot WebSocket client.

Connects to the Streamer.bot WebSocket server, performs the Hello /
Authenticate / Subscribe handshake and turns event frames into canonical
events. Twitch.* frames take the live path, Raw.Action frames the test-trigger
path, and General.Custom frames carry Castellan's own custom events.
"""

import asyncio
import base64
import hashlib
import json
import uuid
from collections.abc import Callable, Mapping
from typing import Any

from .config import StreamerbotConfig
from .error_boundary import call_handler
from .events import CanonicalEvent
from .logger import get_logger
from .normalizer import SourceTag, normalize
from .websockets import ReconnectingWebSocketClient, Transport
from .websockets.client import Connector

logger = get_logger(__name__)

SUBSCRIPTIONS: dict[str, list[str]] = {
    "Twitch": [
        "ChatMessage",
        "ChatCleared",
        "Follow",
        "Sub",
        "ReSub",
        "GiftSub",
        "Raid",
        "Cheer",
        "RewardRedemption",
    ],
    "Raw": ["Action"],
    "General": ["Custom"],
}

GOALS_INIT_EVENT = "CastellanGoalsInit"
DICE_ROLL_EVENT = "CastellanDiceRoll"


class HandshakeError(Exception):
    """Streamer.bot did not greet us with a usable Hello frame."""


def authentication_response(password: str, salt: str, challenge: str) -> str:
    """``base64(sha256(base64(sha256(password + salt)) + challenge))``"""
    secret = base64.b64encode(hashlib.sha256((password + salt).encode("utf-8")).digest()).decode("ascii")
    return base64.b64encode(hashlib.sha256((secret + challenge).encode("utf-8")).digest()).decode("ascii")


class StreamerbotClient(ReconnectingWebSocketClient):
    """Upstream link that reconnects forever and hands canonical events to ``on_event``."""

    def __init__(
        self,
        config: StreamerbotConfig,
        on_event: Callable[[CanonicalEvent], Any],
        on_goals_init: Callable[[Mapping[str, Any]], Any] | None = None,
        connector: Connector | None = None,
    ):
        super().__init__(
            config.url,
            reconnect_floor=config.reconnect_floor,
            reconnect_cap_factor=config.reconnect_cap_factor,
            connector=connector,
            name="streamerbot",
        )
        self.config = config
        self.on_event = on_event
        self.on_goals_init = on_goals_init

        self.events_received = 0
        self.events_dropped = 0
        self._pending_requests: dict[str, str] = {}

    async def _request(self, transport: Transport, request: str, **fields: Any) -> str:
        request_id = uuid.uuid4().hex
        self._pending_requests[request_id] = request
        await transport.send(json.dumps({"request": request, "id": request_id, **fields}))
        return request_id

    async def _on_open(self, transport: Transport) -> None:
        """Hello, then Authenticate if required, then Subscribe."""
        self._pending_requests.clear()
        try:
            raw = await asyncio.wait_for(transport.recv(), timeout=self.config.hello_timeout)
        except TimeoutError as e:
            raise HandshakeError(f"No Hello within {self.config.hello_timeout}s") from e

        try:
            hello = json.loads(raw)
        except ValueError as e:
            raise HandshakeError("Hello frame is not JSON") from e
        if not isinstance(hello, dict) or hello.get("request") != "Hello":
            raise HandshakeError(f"Expected Hello, got {str(raw)[:100]!r}")

        info = hello.get("info") or {}
        logger.info(
            "Streamer.bot hello",
            instance=info.get("instanceId"),
            version=info.get("version"),
            auth_required=bool(hello.get("authentication")),
        )

        auth = hello.get("authentication")
        if isinstance(auth, Mapping):
            if self.config.password:
                await self._request(
                    transport,
                    "Authenticate",
                    authentication=authentication_response(
                        self.config.password, str(auth.get("salt", "")), str(auth.get("challenge", ""))
                    ),
                )
            else:
                logger.warning("Streamer.bot requires authentication but no password is configured")

        await self._request(transport, "Subscribe", events=SUBSCRIPTIONS)

    async def _handle_frame(self, raw: str | bytes) -> None:
        try:
            frame = json.loads(raw)
        except (ValueError, UnicodeDecodeError):
            logger.warning("Discarding non-JSON Streamer.bot frame", preview=str(raw)[:100])
            return
        if not isinstance(frame, dict):
            return

        if "event" not in frame and "id" in frame:
            self._handle_response(frame)
            return

        event = frame.get("event")
        if not isinstance(event, Mapping):
            return
        self.events_received += 1
        await self.dispatch(str(event.get("source", "")), str(event.get("type", "")), frame)

    def _handle_response(self, frame: Mapping[str, Any]) -> None:
        request = self._pending_requests.pop(str(frame.get("id")), None)
        if frame.get("status") == "ok":
            logger.info("Streamer.bot request accepted", request=request)
        else:
            logger.warning(
                "Streamer.bot request failed", request=request, status=frame.get("status"), error=frame.get("error")
            )

    async def dispatch(self, source: str, kind: str, frame: Mapping[str, Any]) -> None:
        """Route one event frame by its ``event.source`` and ``event.type``."""
        if source == "Twitch":
            await self._emit(normalize(frame, SourceTag.LIVE))
        elif source == "Raw" and kind == "Action":
            await self._emit(normalize(frame, SourceTag.TEST_TRIGGER))
        elif kind == "Custom" or source == "Custom":
            await self._handle_custom(frame.get("data"))
        else:
            logger.debug("Ignoring Streamer.bot event", source=source, type=kind)

    async def _handle_custom(self, data: Any) -> None:
        if not isinstance(data, Mapping):
            return
        name = data.get("eventName")
        args = data.get("args") if isinstance(data.get("args"), Mapping) else {}

        if name == GOALS_INIT_EVENT:
            logger.info("Goals init received", args=dict(args))
            if self.on_goals_init is not None:
                await call_handler(self.on_goals_init, args)
        elif name == DICE_ROLL_EVENT:
            record = {"event": {"source": "Custom", "type": "DiceRoll"}, "data": args}
            await self._emit(normalize(record, SourceTag.LIVE))
        else:
            logger.debug("Ignoring custom event", event_name=name)

    async def _emit(self, event: CanonicalEvent | None) -> None:
        if event is None:
            self.events_dropped += 1
            return
        await call_handler(self.on_event, event)

    def get_status(self) -> dict:
        status = super().get_status()
        status["events_received"] = self.events_received
        status["events_dropped"] = self.events_dropped
        return status
