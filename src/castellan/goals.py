"""Follower and subscriber goal counters.

GoalsState owns the counters. Every mutation builds a new GoalCounters value,
flushes it through the store and then notifies listeners with the wire records
that changed. Persistence goes through the narrow GoalsStore port so tests can
swap the JSON file for memory.
"""

import json
import os
import tempfile
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .events import Follow, GoalKind, GoalUpdate, Sub, ViewerRef, WireEvent
from .logger import get_logger

logger = get_logger(__name__)

DEFAULT_FOLLOWERS_TARGET = 1000
DEFAULT_SUBSCRIBERS_TARGET = 50


class GoalState(BaseModel):
    model_config = ConfigDict(frozen=True)

    current: int = Field(default=0, ge=0)
    target: int = Field(default=0, ge=0)


class GoalCounters(BaseModel):
    """Immutable snapshot of both goals plus the last follower and subscriber names."""

    model_config = ConfigDict(frozen=True)

    followers: GoalState = GoalState(target=DEFAULT_FOLLOWERS_TARGET)
    subscribers: GoalState = GoalState(target=DEFAULT_SUBSCRIBERS_TARGET)
    last_follower_name: str | None = None
    last_subscriber_name: str | None = None

    @classmethod
    def defaults(
        cls, followers_target: int = DEFAULT_FOLLOWERS_TARGET, subscribers_target: int = DEFAULT_SUBSCRIBERS_TARGET
    ) -> "GoalCounters":
        return cls(followers=GoalState(target=followers_target), subscribers=GoalState(target=subscribers_target))

    def goal(self, kind: GoalKind) -> GoalState:
        return self.followers if kind is GoalKind.FOLLOWERS else self.subscribers

    def goal_update(self, kind: GoalKind) -> GoalUpdate:
        goal = self.goal(kind)
        return GoalUpdate(kind=kind, current=goal.current, target=goal.target)

    def to_file_dict(self) -> dict[str, Any]:
        return {
            "followers": self.followers.model_dump(),
            "subscribers": self.subscribers.model_dump(),
            "lastFollow": self.last_follower_name,
            "lastSub": self.last_subscriber_name,
        }


class GoalPatch(BaseModel):
    """Partial update for one goal. Omitted fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    current: int | None = Field(default=None, ge=0)
    target: int | None = Field(default=None, ge=0)

    def apply(self, goal: GoalState) -> GoalState:
        return goal.model_copy(update=self.model_dump(exclude_none=True))


class GoalsConfigUpdate(BaseModel):
    """Body of a goals configuration update: ``{"followers"?: {...}, "subscribers"?: {...}}``."""

    model_config = ConfigDict(extra="forbid")

    followers: GoalPatch | None = None
    subscribers: GoalPatch | None = None


class GoalsStore(Protocol):
    """Durable storage for GoalCounters."""

    def load(self) -> GoalCounters: ...

    def save(self, counters: GoalCounters) -> bool: ...


class MemoryGoalsStore:
    """Keeps the last saved counters in memory."""

    def __init__(self, initial: GoalCounters | None = None):
        self.saved: GoalCounters | None = initial
        self.save_count = 0

    def load(self) -> GoalCounters:
        return self.saved or GoalCounters()

    def save(self, counters: GoalCounters) -> bool:
        self.saved = counters
        self.save_count += 1
        return True


class JsonGoalsStore:
    """GoalsStore backed by a JSON file ``{followers, subscribers, lastFollow, lastSub}``."""

    def __init__(
        self,
        path: str | os.PathLike,
        followers_target: int = DEFAULT_FOLLOWERS_TARGET,
        subscribers_target: int = DEFAULT_SUBSCRIBERS_TARGET,
    ):
        self.path = Path(path)
        self.defaults = GoalCounters.defaults(followers_target, subscribers_target)

    def load(self) -> GoalCounters:
        if not self.path.exists():
            logger.info("No goals file, using defaults", path=str(self.path))
            self.save(self.defaults)
            return self.defaults

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("Failed to read goals file, using defaults", path=str(self.path), error=str(e))
            return self.defaults

        counters = self._merge(raw if isinstance(raw, Mapping) else {})
        logger.info(
            "Goals loaded",
            followers=f"{counters.followers.current}/{counters.followers.target}",
            subscribers=f"{counters.subscribers.current}/{counters.subscribers.target}",
        )
        return counters

    def _merge(self, raw: Mapping[str, Any]) -> GoalCounters:
        """Fall back to the default for each field that is missing or invalid."""

        def goal(key: str, default: GoalState) -> GoalState:
            section = raw.get(key)
            if not isinstance(section, Mapping):
                return default
            values = {}
            for field in ("current", "target"):
                try:
                    values[field] = GoalState.model_validate({field: section.get(field)}).model_dump()[field]
                except ValidationError:
                    values[field] = getattr(default, field)
            return GoalState(**values)

        def name(key: str) -> str | None:
            value = raw.get(key)
            return value if isinstance(value, str) and value else None

        return GoalCounters(
            followers=goal("followers", self.defaults.followers),
            subscribers=goal("subscribers", self.defaults.subscribers),
            last_follower_name=name("lastFollow"),
            last_subscriber_name=name("lastSub"),
        )

    def save(self, counters: GoalCounters) -> bool:
        """Write atomically. A failure is logged and reported, never raised."""
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(counters.to_file_dict(), f, indent=2)
            os.replace(tmp_name, self.path)
            return True
        except OSError as e:
            logger.error("Failed to save goals file", path=str(self.path), error=str(e))
            if tmp_name:
                Path(tmp_name).unlink(missing_ok=True)
            return False


GoalsListener = Callable[[WireEvent], Any]


def snapshot_events(counters: GoalCounters) -> list[WireEvent]:
    """Goal records plus synthetic last follow/sub alerts for the given counters.

    The synthetic alerts carry an empty twitch id and ``replay=True`` so overlays
    can pick up the names without popping a new alert.
    """
    events: list[WireEvent] = [
        counters.goal_update(GoalKind.FOLLOWERS),
        counters.goal_update(GoalKind.SUBSCRIBERS),
    ]
    if counters.last_follower_name:
        name = counters.last_follower_name
        events.append(Follow(viewer=ViewerRef(twitch_id="", username=name.lower(), display_name=name), replay=True))
    if counters.last_subscriber_name:
        name = counters.last_subscriber_name
        events.append(
            Sub(viewer=ViewerRef(twitch_id="", username=name.lower(), display_name=name), tier=1, months=1, replay=True)
        )
    return events


class GoalsState:
    """Owner of the goal counters."""

    def __init__(self, store: GoalsStore):
        self.store = store
        self._counters = store.load()
        self._listeners: list[GoalsListener] = []

    @property
    def counters(self) -> GoalCounters:
        return self._counters

    def subscribe(self, listener: GoalsListener) -> Callable[[], None]:
        """Register a listener for changed wire records. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot_events(self) -> list[WireEvent]:
        return snapshot_events(self._counters)

    def _commit(self, counters: GoalCounters, changed: list[WireEvent]) -> None:
        self._counters = counters
        self.store.save(counters)
        for event in changed:
            self._notify(event)

    def _notify(self, event: WireEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning("Goals listener failed", listener=repr(listener), error=str(e), exc_info=True)

    def apply_config(self, update: GoalsConfigUpdate) -> GoalCounters:
        """Apply a partial update, then re-broadcast every goal record and both names."""
        counters = self._counters
        changes: dict[str, GoalState] = {}
        if update.followers is not None:
            changes["followers"] = update.followers.apply(counters.followers)
        if update.subscribers is not None:
            changes["subscribers"] = update.subscribers.apply(counters.subscribers)

        counters = counters.model_copy(update=changes)
        logger.info(
            "Goals configuration updated",
            followers=f"{counters.followers.current}/{counters.followers.target}",
            subscribers=f"{counters.subscribers.current}/{counters.subscribers.target}",
        )
        self._commit(counters, snapshot_events(counters))
        return counters

    def set_last_names(self, follow: str | None = None, sub: str | None = None) -> GoalCounters:
        """Set last follower/subscriber names. ``None`` leaves a name unchanged. No broadcast."""
        changes: dict[str, str] = {}
        if follow:
            changes["last_follower_name"] = follow
        if sub:
            changes["last_subscriber_name"] = sub
        if changes:
            self._commit(self._counters.model_copy(update=changes), [])
        return self._counters

    def _record(self, kind: GoalKind, viewer: ViewerRef) -> GoalCounters:
        counters = self._counters
        goal = counters.goal(kind)
        name = viewer.display_name or viewer.username or None
        name_field = "last_follower_name" if kind is GoalKind.FOLLOWERS else "last_subscriber_name"

        changes: dict[str, Any] = {kind.value: goal.model_copy(update={"current": goal.current + 1})}
        if name:
            changes[name_field] = name
        counters = counters.model_copy(update=changes)
        self._commit(counters, [counters.goal_update(kind)])
        return counters

    def record_follow(self, viewer: ViewerRef) -> GoalCounters:
        return self._record(GoalKind.FOLLOWERS, viewer)

    def record_sub(self, viewer: ViewerRef) -> GoalCounters:
        return self._record(GoalKind.SUBSCRIBERS, viewer)


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None
    return number if number >= 0 else None


def goals_init_from_args(args: Mapping[str, Any]) -> tuple[str | None, str | None, GoalsConfigUpdate]:
    """Parse the arguments of a CastellanGoalsInit custom event.

    Returns ``(last_follow_name, last_sub_name, update)``. Missing or
    non-numeric counts leave the matching field unchanged.
    """

    def name(*keys: str) -> str | None:
        for key in keys:
            value = args.get(key)
            if value:
                return str(value)
        return None

    def patch(current_key: str, target_key: str) -> GoalPatch | None:
        current = _optional_int(args.get(current_key))
        target = _optional_int(args.get(target_key))
        if current is None and target is None:
            return None
        return GoalPatch(current=current, target=target)

    update = GoalsConfigUpdate(
        followers=patch("followerCount", "followersTarget"),
        subscribers=patch("subscriberCount", "subscribersTarget"),
    )
    return (
        name("latestFollower.user", "latestFollower.userName"),
        name("latestSubscriber.userName", "latestSubscriber.userLogin"),
        update,
    )
