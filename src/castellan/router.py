"""Apply canonical events to the broadcast channel and goal counters."""

from collections.abc import Callable

from .events import CanonicalEvent, Follow, Sub, WireEvent
from .goals import GoalsState
from .logger import get_logger

logger = get_logger(__name__)


class EventRouter:
    """Publishes every event; follows and subs also bump the goal counters.

    Goal updates reach overlays through the GoalsState listener, so a Follow
    yields ``alert:follow`` followed by one ``goal:update``.
    """

    def __init__(self, publish: Callable[[WireEvent], int], goals: GoalsState):
        self.publish = publish
        self.goals = goals
        self.routed = 0

    def route(self, event: CanonicalEvent) -> int:
        delivered = self.publish(event)
        self.routed += 1

        if isinstance(event, Follow) and not event.replay:
            self.goals.record_follow(event.viewer)
        elif isinstance(event, Sub) and not event.replay:
            self.goals.record_sub(event.viewer)

        logger.debug("Routed event", type=event.type_tag, delivered=delivered)
        return delivered
