"""Alert queue: one alert on screen at a time, in arrival order."""

import asyncio
import uuid
from collections import deque
from collections.abc import Callable
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..events import Cheer, DiceRoll, Follow, GiftSub, Raid, RewardRedemption, Sub, ViewerRef, WireEvent
from ..logger import get_logger

logger = get_logger(__name__)

DEFAULT_ALERT_DURATION = 5.0


class AlertQueueItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: str
    icon: str
    title: str
    message: str
    sound_key: str


def _name(viewer: ViewerRef) -> str:
    return viewer.display_name or viewer.username or "Someone"


def alert_from_event(event: WireEvent) -> AlertQueueItem | None:
    """Build the alert shown for an event, or None if the event is not an alert.

    Replayed snapshot records only carry names for the goals panel and never pop.
    """
    if getattr(event, "replay", False):
        return None

    if isinstance(event, Follow):
        return AlertQueueItem(
            kind="follow", icon="❤️", title="New Follower!", message=_name(event.viewer), sound_key="follow"
        )

    if isinstance(event, Sub):
        unit = "month" if event.months == 1 else "months"
        return AlertQueueItem(
            kind="sub",
            icon="⭐",
            title=f"Tier {event.tier} Sub!",
            message=f"{_name(event.viewer)} ({event.months} {unit})",
            sound_key="sub",
        )

    if isinstance(event, GiftSub):
        gifter = "Anonymous" if event.anonymous else _name(event.gifter)
        return AlertQueueItem(
            kind="gift_sub",
            icon="🎁",
            title=f"{gifter} gifted a Tier {event.tier} sub!",
            message=f"to {event.recipient_name}",
            sound_key="sub",
        )

    if isinstance(event, Raid):
        return AlertQueueItem(
            kind="raid",
            icon="🏰",
            title=f"Raid from {event.from_channel}!",
            message=f"{event.viewer_count} knights arrive!",
            sound_key="raid",
        )

    if isinstance(event, Cheer):
        return AlertQueueItem(
            kind="bits", icon="💎", title=f"{event.bits} Bits!", message=_name(event.viewer), sound_key="bits"
        )

    if isinstance(event, DiceRoll):
        return AlertQueueItem(
            kind="dice",
            icon="🎲",
            title=f"d{event.faces} roll",
            message=f"{_name(event.viewer)} rolled {event.result}!",
            sound_key="dice",
        )

    if isinstance(event, RewardRedemption):
        # Channel point rewards share the bits cue
        return AlertQueueItem(
            kind="reward",
            icon="✨",
            title=event.reward_name,
            message=f"{_name(event.viewer)} ({event.cost} points)",
            sound_key="bits",
        )

    return None


class SequencerState(Enum):
    IDLE = "idle"
    SHOWING = "showing"


class AlertSequencer:
    """Shows queued alerts one at a time for a fixed duration each.

    IDLE -> SHOWING on enqueue; when the display timer fires the next item is
    shown, or the sequencer goes back to IDLE. A new item never cuts the current
    one short, and each shown item plays its sound exactly once.
    """

    def __init__(
        self,
        play_sound: Callable[[str], Any],
        on_display: Callable[[AlertQueueItem | None], Any] | None = None,
        duration: float = DEFAULT_ALERT_DURATION,
    ):
        self.play_sound = play_sound
        self.on_display = on_display
        self.duration = duration

        self.state = SequencerState.IDLE
        self.current: AlertQueueItem | None = None
        self.backlog: deque[AlertQueueItem] = deque()
        self.shown = 0
        self._timer: asyncio.TimerHandle | None = None
        self._closed = False

    def __len__(self) -> int:
        return len(self.backlog)

    def enqueue(self, item: AlertQueueItem) -> None:
        if self._closed:
            logger.debug("Sequencer closed, ignoring alert", kind=item.kind)
            return
        self.backlog.append(item)
        if self.state is SequencerState.IDLE:
            self._show_next()

    def _show_next(self) -> None:
        self._timer = None
        if self._closed:
            return

        if not self.backlog:
            self.state = SequencerState.IDLE
            self.current = None
            self._display(None)
            return

        item = self.backlog.popleft()
        self.state = SequencerState.SHOWING
        self.current = item
        self.shown += 1
        logger.info("Showing alert", kind=item.kind, title=item.title, pending=len(self.backlog))

        try:
            self.play_sound(item.sound_key)
        except Exception as e:
            logger.warning("Failed to play alert sound", sound=item.sound_key, error=str(e))
        self._display(item)

        self._timer = asyncio.get_running_loop().call_later(self.duration, self._show_next)

    def _display(self, item: AlertQueueItem | None) -> None:
        if self.on_display is None:
            return
        try:
            self.on_display(item)
        except Exception as e:
            logger.warning("Alert display callback failed", error=str(e))

    def close(self) -> None:
        """Cancel the display timer and drop the backlog."""
        self._closed = True
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.backlog.clear()
        self.current = None
        self.state = SequencerState.IDLE
