"""Canonical event models and their wire encoding.

Every record sent to overlays is a JSON object ``{"type": <tag>, "payload": {...}}``.
Payload keys are camelCase; the Python side uses snake_case fields with aliases.
"""

import json
import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from .exceptions import WireDecodeError


class WireModel(BaseModel):
    """Immutable model serialized with camelCase keys."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)


class ViewerRef(WireModel):
    """What the upstream source knows about a viewer.

    Identity is the Twitch id; username and display name are whatever the
    latest event carried.
    """

    twitch_id: str
    username: str = ""
    display_name: str = ""

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ViewerRef):
            return NotImplemented
        return self.twitch_id == other.twitch_id

    def __hash__(self) -> int:
        return hash(self.twitch_id)


class ChatEmote(WireModel):
    """Substitution range inside chat text (end index inclusive)."""

    id: str = ""
    type: str = "Twitch"
    name: str
    start_index: int
    end_index: int
    image_url: str


class GoalKind(str, Enum):
    FOLLOWERS = "followers"
    SUBSCRIBERS = "subscribers"


class WireEvent(WireModel):
    """Base for everything that travels over the overlay socket."""

    type_tag: ClassVar[str]
    is_alert: ClassVar[bool] = False

    def to_wire(self) -> dict[str, Any]:
        return {"type": self.type_tag, "payload": self.model_dump(mode="json", by_alias=True)}

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), ensure_ascii=False)


# --- chat -----------------------------------------------------------------


class ChatMessage(WireEvent):
    type_tag: ClassVar[str] = "chat:message"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    viewer: ViewerRef
    content: str
    emotes: tuple[ChatEmote, ...] = ()
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ChatClear(WireEvent):
    type_tag: ClassVar[str] = "chat:clear"


# --- goals ----------------------------------------------------------------


class GoalUpdate(WireEvent):
    type_tag: ClassVar[str] = "goal:update"

    kind: GoalKind = Field(alias="type")
    current: int
    target: int


# --- alerts ---------------------------------------------------------------


class Follow(WireEvent):
    type_tag: ClassVar[str] = "alert:follow"
    is_alert: ClassVar[bool] = True

    viewer: ViewerRef
    # Set on the synthetic records replayed to a freshly connected client.
    replay: bool = False


class Sub(WireEvent):
    type_tag: ClassVar[str] = "alert:sub"
    is_alert: ClassVar[bool] = True

    viewer: ViewerRef
    tier: int = Field(default=1, ge=1, le=3)
    months: int = Field(default=1, ge=1)
    replay: bool = False


class GiftSub(WireEvent):
    type_tag: ClassVar[str] = "alert:gift_sub"
    is_alert: ClassVar[bool] = True

    gifter: ViewerRef = Field(alias="viewer")
    recipient_name: str
    tier: int = Field(default=1, ge=1, le=3)
    total_gifted: int = Field(default=1, ge=0)
    anonymous: bool = False


class Raid(WireEvent):
    type_tag: ClassVar[str] = "alert:raid"
    is_alert: ClassVar[bool] = True

    viewer: ViewerRef
    from_channel: str
    viewer_count: int = Field(default=0, ge=0, alias="viewers")


class Cheer(WireEvent):
    type_tag: ClassVar[str] = "alert:bits"
    is_alert: ClassVar[bool] = True

    viewer: ViewerRef
    bits: int = Field(default=0, ge=0, alias="amount")


class DiceRoll(WireEvent):
    type_tag: ClassVar[str] = "alert:dice"
    is_alert: ClassVar[bool] = True

    viewer: ViewerRef
    faces: int = Field(ge=1)
    result: int = Field(ge=1)


class RewardRedemption(WireEvent):
    type_tag: ClassVar[str] = "alert:channel_point_redemption"
    is_alert: ClassVar[bool] = True

    viewer: ViewerRef
    reward_name: str
    cost: int = Field(default=0, ge=0, alias="rewardCost")


# --- misc -----------------------------------------------------------------


class ClipsSynced(WireEvent):
    type_tag: ClassVar[str] = "clips:synced"

    count: int = Field(ge=0)
    synced_at: datetime


class SystemWelcome(WireEvent):
    type_tag: ClassVar[str] = "system:welcome"

    name: str
    version: str
    uptime: float


class Pong(WireEvent):
    type_tag: ClassVar[str] = "pong"

    timestamp: int


CanonicalEvent = (
    ChatMessage
    | ChatClear
    | GoalUpdate
    | Follow
    | Sub
    | GiftSub
    | Raid
    | Cheer
    | DiceRoll
    | RewardRedemption
    | ClipsSynced
)

WIRE_TYPES: dict[str, type[WireEvent]] = {
    model.type_tag: model
    for model in (
        ChatMessage,
        ChatClear,
        GoalUpdate,
        Follow,
        Sub,
        GiftSub,
        Raid,
        Cheer,
        DiceRoll,
        RewardRedemption,
        ClipsSynced,
        SystemWelcome,
        Pong,
    )
}


def decode_wire(raw: str | bytes) -> WireEvent:
    """Decode one overlay frame.

    Raises:
        WireDecodeError: the frame is not JSON, not an object, has an unknown
            type tag, or its payload does not validate.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise WireDecodeError(f"Invalid JSON: {e}", raw) from e

    if not isinstance(data, dict):
        raise WireDecodeError("Frame is not a JSON object", raw)

    tag = data.get("type")
    model = WIRE_TYPES.get(tag) if isinstance(tag, str) else None
    if model is None:
        raise WireDecodeError(f"Unknown frame type: {tag!r}", raw)

    payload = data.get("payload") or {}

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise WireDecodeError(f"Invalid {tag} payload: {e.error_count()} error(s)", raw) from e
