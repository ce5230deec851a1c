"""Headless overlay pages.

Each page is an event handler for an OverlayLink plus the little bit of state
its browser counterpart would render.
"""

from collections import deque
from collections.abc import Callable
from typing import Any

from ..events import ChatClear, ChatMessage, Follow, GoalKind, GoalUpdate, Sub, WireEvent
from ..logger import get_logger
from .alerts import DEFAULT_ALERT_DURATION, AlertQueueItem, AlertSequencer, alert_from_event
from .sound import SoundPlayer

logger = get_logger(__name__)


class OverlayPage:
    name = "page"

    def handle(self, event: WireEvent) -> None:
        raise NotImplementedError

    def render(self) -> str:
        return ""

    def close(self) -> None:
        pass


class AlertsPage(OverlayPage):
    name = "alerts"

    def __init__(
        self,
        sound_player: SoundPlayer | None = None,
        duration: float = DEFAULT_ALERT_DURATION,
        on_display: Callable[[AlertQueueItem | None], Any] | None = None,
    ):
        self.sound_player = sound_player or SoundPlayer()
        self.sequencer = AlertSequencer(self.sound_player.play, on_display=on_display, duration=duration)

    def handle(self, event: WireEvent) -> None:
        item = alert_from_event(event)
        if item is not None:
            self.sequencer.enqueue(item)

    def render(self) -> str:
        current = self.sequencer.current
        if current is None:
            return ""
        return f"{current.icon} {current.title} {current.message}"

    def close(self) -> None:
        self.sequencer.close()


class GoalsPage(OverlayPage):
    """Goal progress bars plus the last follower and subscriber names."""

    name = "goals"

    def __init__(self):
        self.goals: dict[GoalKind, GoalUpdate] = {}
        self.last_follower: str | None = None
        self.last_subscriber: str | None = None

    def handle(self, event: WireEvent) -> None:
        if isinstance(event, GoalUpdate):
            self.goals[event.kind] = event
        elif isinstance(event, Follow):
            self.last_follower = event.viewer.display_name or event.viewer.username
        elif isinstance(event, Sub):
            self.last_subscriber = event.viewer.display_name or event.viewer.username

    def progress(self, kind: GoalKind) -> float:
        goal = self.goals.get(kind)
        if goal is None or goal.target <= 0:
            return 0.0
        return min(goal.current / goal.target, 1.0)

    def render(self) -> str:
        parts = []
        for kind in GoalKind:
            goal = self.goals.get(kind)
            if goal is not None:
                parts.append(f"{kind.value} {goal.current}/{goal.target}")
        if self.last_follower:
            parts.append(f"last follow: {self.last_follower}")
        if self.last_subscriber:
            parts.append(f"last sub: {self.last_subscriber}")
        return " | ".join(parts)


class ChatPage(OverlayPage):
    name = "chat"

    def __init__(self, history: int = 50):
        self.messages: deque[ChatMessage] = deque(maxlen=history)

    def handle(self, event: WireEvent) -> None:
        if isinstance(event, ChatMessage):
            self.messages.append(event)
        elif isinstance(event, ChatClear):
            self.messages.clear()

    def render(self) -> str:
        if not self.messages:
            return ""
        latest = self.messages[-1]
        return f"{latest.viewer.display_name or latest.viewer.username}: {latest.content}"


PAGES: dict[str, Callable[..., OverlayPage]] = {
    AlertsPage.name: AlertsPage,
    GoalsPage.name: GoalsPage,
    ChatPage.name: ChatPage,
}
