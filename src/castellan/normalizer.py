"""Normalize Streamer.bot records into canonical events.

Streamer.bot reports users in two shapes depending on where an event came from:

Twitch.* events (live):
    {"id": "12345", "login": "kavaliero", "name": "Kavaliero", "type": "twitch"}
    or, for follows/subs/cheers/raids, flat fields such as user_id/user_login/user_name.

Raw.Action events (test triggers):
    {"id": "12345", "name": "kavaliero", "display": "Kavaliero", "role": 1, "type": "twitch"}

Both are reduced to a ViewerRef by a pure extraction strategy chosen from the
source tag. Nothing in this module raises on bad input: a record that cannot be
turned into an event produces ``None`` and a logged reason.
"""

import re
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .events import (
    CanonicalEvent,
    ChatClear,
    ChatEmote,
    ChatMessage,
    Cheer,
    DiceRoll,
    Follow,
    GiftSub,
    Raid,
    RewardRedemption,
    Sub,
    ViewerRef,
)
from .logger import get_logger

logger = get_logger(__name__)

UNKNOWN_REWARD = "Unknown"
UNKNOWN_RECIPIENT = "Unknown"


class SourceTag(str, Enum):
    """Which upstream shape a record uses."""

    LIVE = "live"
    TEST_TRIGGER = "test-trigger"


# ---------------------------------------------------------------------------
# Viewer extraction
# ---------------------------------------------------------------------------

# Flat field prefixes tried after the nested user object, per live event kind.
_FLAT_PREFIXES: dict[str, tuple[str, ...]] = {
    "Raid": ("from_broadcaster_user", "user"),
}
_DEFAULT_FLAT_PREFIXES = ("user",)


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _first(*values: Any) -> str:
    for value in values:
        text = _text(value)
        if text:
            return text
    return ""


def viewer_from_live_user(user: Any) -> ViewerRef | None:
    """Live nested user object: id / login / name (display name)."""
    if not isinstance(user, Mapping):
        return None
    twitch_id = _text(user.get("id"))
    if not twitch_id:
        return None
    return ViewerRef(
        twitch_id=twitch_id,
        username=_first(user.get("login"), user.get("name")),
        display_name=_first(user.get("name"), user.get("login")),
    )


def viewer_from_flat_fields(data: Mapping[str, Any], prefix: str) -> ViewerRef | None:
    """Live flat fields: <prefix>_id / <prefix>_login / <prefix>_name."""
    twitch_id = _text(data.get(f"{prefix}_id"))
    if not twitch_id:
        return None
    login = data.get(f"{prefix}_login")
    name = data.get(f"{prefix}_name")
    return ViewerRef(twitch_id=twitch_id, username=_first(login, name), display_name=_first(name, login))


def viewer_from_test_user(user: Any) -> ViewerRef | None:
    """Test-trigger user object: id / name (login) / display."""
    if not isinstance(user, Mapping):
        return None
    twitch_id = _text(user.get("id"))
    if not twitch_id:
        return None
    return ViewerRef(
        twitch_id=twitch_id,
        username=_first(user.get("name"), user.get("login")),
        display_name=_first(user.get("display"), user.get("name")),
    )


def extract_live_viewer(kind: str, data: Mapping[str, Any]) -> ViewerRef | None:
    """Try the nested user object first, then the kind's flat field prefixes."""
    viewer = viewer_from_live_user(data.get("user"))
    if viewer:
        return viewer
    for prefix in _FLAT_PREFIXES.get(kind, _DEFAULT_FLAT_PREFIXES):
        viewer = viewer_from_flat_fields(data, prefix)
        if viewer:
            return viewer
    return None


def extract_test_viewer(data: Mapping[str, Any]) -> ViewerRef | None:
    return viewer_from_test_user(data.get("user"))


# ---------------------------------------------------------------------------
# Field parsing
# ---------------------------------------------------------------------------

_TIER_WORDS = {"prime": 1, "tier 1": 1, "tier 2": 2, "tier 3": 3, "1000": 1, "2000": 2, "3000": 3}
_LEADING_INT = re.compile(r"^\s*(-?\d+)")


def parse_tier(raw: Any) -> int:
    """Map any tier hint to 1, 2 or 3.

    Handles both upstream conventions ("prime"/"1000"/"2000"/"3000" and
    "prime"/"tier 1"/"tier 2"/"tier 3") plus bare numbers. Numbers of 1000 and
    above are divided by 1000. Anything unrecognized is tier 1.
    """
    if raw is None or isinstance(raw, bool):
        return 1

    if isinstance(raw, int | float):
        try:
            number = int(raw)
        except (ValueError, OverflowError):
            return 1
    else:
        text = str(raw).strip().lower()
        if text in _TIER_WORDS:
            return _TIER_WORDS[text]
        match = _LEADING_INT.match(text) or _LEADING_INT.match(text.removeprefix("tier"))
        if not match:
            return 1
        number = int(match.group(1))

    if number >= 1000:
        number //= 1000
    return min(max(number, 1), 3)


def _int(value: Any, default: int = 0, minimum: int = 0) -> int:
    """Coerce a count-like field; bad input falls back to ``default``."""
    if value is None or isinstance(value, bool):
        return max(default, minimum)
    try:
        number = int(float(value))
    except (TypeError, ValueError, OverflowError):
        return max(default, minimum)
    return max(number, minimum)


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def filter_emotes(raw_emotes: Any) -> tuple[ChatEmote, ...]:
    """Drop malformed spans and return the rest sorted by start index.

    A span is malformed when it has no name, no image, an end before its start,
    or when it overlaps a span already kept.
    """
    if not isinstance(raw_emotes, Iterable) or isinstance(raw_emotes, str | bytes | Mapping):
        return ()

    candidates = []
    for raw in raw_emotes:
        if not isinstance(raw, Mapping):
            continue
        name = _text(raw.get("name"))
        image_url = _text(raw.get("imageUrl"))
        if not name or not image_url:
            continue
        start = _int(raw.get("startIndex"), default=0)
        end = _int(raw.get("endIndex"), default=0)
        if end < start:
            continue
        candidates.append(
            ChatEmote(
                id=_text(raw.get("id")),
                type=_text(raw.get("type")) or "Twitch",
                name=name,
                start_index=start,
                end_index=end,
                image_url=image_url,
            )
        )

    kept: list[ChatEmote] = []
    for emote in sorted(candidates, key=lambda e: (e.start_index, e.end_index)):
        if kept and emote.start_index <= kept[-1].end_index:
            continue
        kept.append(emote)
    return tuple(kept)


# ---------------------------------------------------------------------------
# Live (Twitch.*) builders
# ---------------------------------------------------------------------------


def _live_chat(viewer: ViewerRef, data: Mapping[str, Any]) -> CanonicalEvent:
    message = data.get("message") if isinstance(data.get("message"), Mapping) else {}
    content = _first(data.get("text"), message.get("message"))
    raw_emotes = message.get("emotes") if message.get("emotes") is not None else data.get("emotes")
    return ChatMessage(
        viewer=viewer,
        content=content,
        emotes=filter_emotes(raw_emotes or []),
        timestamp=datetime.now(UTC),
    )


def _live_sub(viewer: ViewerRef, data: Mapping[str, Any]) -> CanonicalEvent:
    return Sub(viewer=viewer, tier=parse_tier(data.get("sub_tier") or data.get("subTier")), months=1)


def _live_resub(viewer: ViewerRef, data: Mapping[str, Any]) -> CanonicalEvent:
    months = data.get("cumulativeMonths") or data.get("cumulative_months")
    return Sub(
        viewer=viewer,
        tier=parse_tier(data.get("subTier") or data.get("sub_tier")),
        months=_int(months, default=1, minimum=1),
    )


def _live_gift_sub(viewer: ViewerRef, data: Mapping[str, Any]) -> CanonicalEvent:
    recipient = data.get("recipient") if isinstance(data.get("recipient"), Mapping) else {}
    return GiftSub(
        gifter=viewer,
        recipient_name=_first(
            recipient.get("name"),
            recipient.get("login"),
            data.get("recipientUser"),
            data.get("recipient_user_name"),
        )
        or UNKNOWN_RECIPIENT,
        tier=parse_tier(data.get("subTier") or data.get("sub_tier")),
        total_gifted=_int(data.get("totalSubsGifted") or data.get("cumulativeTotal"), default=1),
        anonymous=_flag(data.get("isAnonymous") or data.get("anonymous")),
    )


def _live_raid(viewer: ViewerRef, data: Mapping[str, Any]) -> CanonicalEvent:
    return Raid(
        viewer=viewer,
        from_channel=viewer.display_name or viewer.username,
        viewer_count=_int(data.get("viewerCount") if data.get("viewerCount") is not None else data.get("viewers")),
    )


def _live_cheer(viewer: ViewerRef, data: Mapping[str, Any]) -> CanonicalEvent:
    return Cheer(viewer=viewer, bits=_int(data.get("bits")))


def _live_reward(viewer: ViewerRef, data: Mapping[str, Any]) -> CanonicalEvent:
    reward = data.get("reward") if isinstance(data.get("reward"), Mapping) else {}
    return RewardRedemption(
        viewer=viewer,
        reward_name=_first(reward.get("title"), data.get("rewardName")) or UNKNOWN_REWARD,
        cost=_int(reward.get("cost") if reward.get("cost") is not None else data.get("rewardCost")),
    )


def _live_dice(viewer: ViewerRef, data: Mapping[str, Any]) -> CanonicalEvent | None:
    faces = _int(data.get("faces"))
    result = _int(data.get("result"))
    if faces < 1 or not (1 <= result <= faces):
        logger.warning("Dropping invalid dice roll", faces=data.get("faces"), result=data.get("result"))
        return None
    return DiceRoll(viewer=viewer, faces=faces, result=result)


_LIVE_BUILDERS: dict[str, Callable[[ViewerRef, Mapping[str, Any]], CanonicalEvent | None]] = {
    "ChatMessage": _live_chat,
    "Follow": lambda viewer, _data: Follow(viewer=viewer),
    "Sub": _live_sub,
    "ReSub": _live_resub,
    "GiftSub": _live_gift_sub,
    "Raid": _live_raid,
    "Cheer": _live_cheer,
    "RewardRedemption": _live_reward,
    "DiceRoll": _live_dice,
}

# Live kinds that carry no viewer at all.
_LIVE_VIEWERLESS: dict[str, Callable[[Mapping[str, Any]], CanonicalEvent]] = {
    "ChatCleared": lambda _data: ChatClear(),
}

LIVE_KINDS = tuple(_LIVE_BUILDERS) + tuple(_LIVE_VIEWERLESS)


# ---------------------------------------------------------------------------
# Test-trigger (Raw.Action) builders
# ---------------------------------------------------------------------------


def _test_sub(viewer: ViewerRef, args: Mapping[str, Any]) -> CanonicalEvent:
    return Sub(viewer=viewer, tier=parse_tier(args.get("tier")), months=1)


def _test_resub(viewer: ViewerRef, args: Mapping[str, Any]) -> CanonicalEvent:
    months = args.get("cumulative") or args.get("cumulativeMonths")
    return Sub(viewer=viewer, tier=parse_tier(args.get("tier")), months=_int(months, default=1, minimum=1))


def _test_gift_sub(viewer: ViewerRef, args: Mapping[str, Any]) -> CanonicalEvent:
    return GiftSub(
        gifter=viewer,
        recipient_name=_first(args.get("recipientUser"), args.get("recipientUserName")) or UNKNOWN_RECIPIENT,
        tier=parse_tier(args.get("tier")),
        total_gifted=_int(args.get("totalSubsGifted"), default=1),
        anonymous=_flag(args.get("anonymous")),
    )


def _test_raid(viewer: ViewerRef, args: Mapping[str, Any]) -> CanonicalEvent:
    return Raid(
        viewer=viewer,
        from_channel=viewer.display_name or viewer.username,
        viewer_count=_int(args.get("viewers")),
    )


def _test_reward(viewer: ViewerRef, args: Mapping[str, Any]) -> CanonicalEvent:
    return RewardRedemption(
        viewer=viewer,
        reward_name=_text(args.get("rewardName")) or UNKNOWN_REWARD,
        cost=_int(args.get("rewardCost")),
    )


_TEST_BUILDERS: dict[str, Callable[[ViewerRef, Mapping[str, Any]], CanonicalEvent]] = {
    "Follow": lambda viewer, _args: Follow(viewer=viewer),
    "Cheer": lambda viewer, args: Cheer(viewer=viewer, bits=_int(args.get("bits"))),
    "Subscription": _test_sub,
    "Resubscription": _test_resub,
    "Gift Subscription": _test_gift_sub,
    "Raid": _test_raid,
    "Reward Redemption": _test_reward,
}

TEST_TRIGGERS = tuple(_TEST_BUILDERS)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def _drop(reason: str, **context: Any) -> None:
    logger.warning("Dropping upstream record", reason=reason, **context)
    return None


def normalize_live(kind: str, data: Mapping[str, Any]) -> CanonicalEvent | None:
    """Normalize one live record given its event type and data object."""
    if kind in _LIVE_VIEWERLESS:
        return _LIVE_VIEWERLESS[kind](data)

    builder = _LIVE_BUILDERS.get(kind)
    if builder is None:
        logger.debug("Ignoring unsupported live event", kind=kind)
        return None

    viewer = extract_live_viewer(kind, data)
    if viewer is None:
        return _drop("no viewer identity", source=SourceTag.LIVE.value, kind=kind)

    return builder(viewer, data)


def normalize_test_trigger(data: Mapping[str, Any]) -> CanonicalEvent | None:
    """Normalize one Raw.Action data object produced by a Streamer.bot test trigger."""
    args = data.get("arguments")
    if not isinstance(args, Mapping):
        return None

    # Live events go through normalize_live; only explicit tests are accepted here.
    if not _flag(args.get("isTest")):
        return None

    trigger = _text(args.get("triggerName"))
    builder = _TEST_BUILDERS.get(trigger)
    if builder is None:
        logger.debug("Ignoring unsupported test trigger", trigger=trigger or None)
        return None

    viewer = extract_test_viewer(data)
    if viewer is None:
        return _drop("no viewer identity", source=SourceTag.TEST_TRIGGER.value, kind=trigger)

    return builder(viewer, args)


def normalize(record: Mapping[str, Any], source: SourceTag) -> CanonicalEvent | None:
    """Normalize one upstream frame ``{"event": {"source", "type"}, "data": {...}}``.

    Returns ``None`` when the record is not an event the pipeline handles or
    lacks a viewer identity. Never raises on malformed input.
    """
    if not isinstance(record, Mapping):
        return _drop("record is not an object", source=source.value)

    data = record.get("data")
    if not isinstance(data, Mapping):
        return _drop("record has no data object", source=source.value)

    try:
        if source is SourceTag.TEST_TRIGGER:
            return normalize_test_trigger(data)

        event = record.get("event") if isinstance(record.get("event"), Mapping) else {}
        return normalize_live(_text(event.get("type")), data)
    except (ValueError, OverflowError) as e:
        # pydantic.ValidationError is a ValueError: field values out of range
        return _drop("invalid field values", source=source.value, error=str(e))
