"""
Tests for upstream record normalization.

Covers both viewer shapes (live Twitch.* and Raw.Action test triggers),
tier parsing, emote span filtering and the guarantee that malformed input
yields None instead of raising.
"""

import pytest

from castellan.events import ChatClear, ChatMessage, Cheer, DiceRoll, Follow, GiftSub, Raid, RewardRedemption, Sub
from castellan.normalizer import (
    SourceTag,
    extract_live_viewer,
    extract_test_viewer,
    filter_emotes,
    normalize,
    parse_tier,
)


def live(kind: str, data: dict) -> dict:
    return {"event": {"source": "Twitch", "type": kind}, "data": data}


def trigger_record(trigger: str, user: dict | None = None, **args) -> dict:
    data = {"arguments": {"isTest": True, "triggerName": trigger, **args}}
    if user is not None:
        data["user"] = user
    return {"event": {"source": "Raw", "type": "Action"}, "data": data}


LIVE_USER = {"id": "42", "login": "kavaliero", "name": "Kavaliero", "type": "twitch"}
TEST_USER = {"id": "42", "name": "kavaliero", "display": "Kavaliero", "role": 1, "type": "twitch"}


class TestViewerExtraction:
    """Both upstream shapes resolve to the same viewer identity."""

    def test_live_nested_user(self):
        viewer = extract_live_viewer("Follow", {"user": LIVE_USER})
        assert viewer.twitch_id == "42"
        assert viewer.username == "kavaliero"
        assert viewer.display_name == "Kavaliero"

    def test_test_trigger_user(self):
        viewer = extract_test_viewer({"user": TEST_USER})
        assert viewer.twitch_id == "42"
        assert viewer.username == "kavaliero"
        assert viewer.display_name == "Kavaliero"

    def test_live_flat_fields_fallback(self):
        viewer = extract_live_viewer("Cheer", {"user_id": 7, "user_login": "lurker", "user_name": "Lurker"})
        assert viewer.twitch_id == "7"
        assert viewer.username == "lurker"
        assert viewer.display_name == "Lurker"

    def test_raid_prefers_from_broadcaster_fields(self):
        data = {
            "from_broadcaster_user_id": "99",
            "from_broadcaster_user_login": "raider",
            "from_broadcaster_user_name": "Raider",
            "user_id": "1",
        }
        viewer = extract_live_viewer("Raid", data)
        assert viewer.twitch_id == "99"
        assert viewer.display_name == "Raider"

    def test_nested_user_wins_over_flat_fields(self):
        viewer = extract_live_viewer("Follow", {"user": LIVE_USER, "user_id": "1"})
        assert viewer.twitch_id == "42"

    def test_missing_id_yields_none(self):
        assert extract_live_viewer("Follow", {"user": {"login": "ghost"}}) is None
        assert extract_test_viewer({"user": {"name": "ghost"}}) is None
        assert extract_test_viewer({}) is None

    def test_display_falls_back_to_login(self):
        viewer = extract_live_viewer("Follow", {"user": {"id": "5", "login": "solo"}})
        assert viewer.display_name == "solo"


class TestParseTier:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("prime", 1),
            ("Prime", 1),
            ("1000", 1),
            ("2000", 2),
            ("3000", 3),
            ("tier 1", 1),
            ("Tier 2", 2),
            ("tier 3", 3),
            (2, 2),
            (3000, 3),
            (2.0, 2),
            ("", 1),
            (None, 1),
            ("gold", 1),
            (0, 1),
            (-5, 1),
            (9, 3),
            (9000, 3),
            (True, 1),
            ([], 1),
            (float("inf"), 1),
            (float("-inf"), 1),
            (float("nan"), 1),
        ],
    )
    def test_always_one_to_three(self, raw, expected):
        assert parse_tier(raw) == expected


class TestEmoteFiltering:
    def span(self, name="Kappa", start=0, end=4, image="https://cdn/kappa.png", **extra):
        return {"name": name, "startIndex": start, "endIndex": end, "imageUrl": image, **extra}

    def test_sorted_by_start(self):
        emotes = filter_emotes([self.span(start=10, end=14), self.span(start=0, end=4)])
        assert [e.start_index for e in emotes] == [0, 10]

    def test_drops_malformed_spans(self):
        emotes = filter_emotes(
            [
                self.span(name=""),
                self.span(image=""),
                self.span(start=5, end=3),
                "not a span",
                self.span(start=20, end=24, id="25", type="Twitch"),
            ]
        )
        assert len(emotes) == 1
        assert emotes[0].start_index == 20
        assert emotes[0].id == "25"

    def test_drops_overlapping_spans(self):
        emotes = filter_emotes([self.span(start=0, end=4), self.span(start=4, end=8), self.span(start=6, end=9)])
        assert [(e.start_index, e.end_index) for e in emotes] == [(0, 4), (6, 9)]

    def test_result_is_well_formed(self):
        emotes = filter_emotes(
            [self.span(start=s, end=s + w) for s, w in [(30, 2), (0, 5), (3, 1), (8, 0), (8, 3), (29, 10)]]
        )
        for first, second in zip(emotes, emotes[1:]):
            assert first.end_index < second.start_index
        assert all(e.start_index <= e.end_index for e in emotes)

    def test_non_list_input(self):
        assert filter_emotes(None) == ()
        assert filter_emotes({"name": "Kappa"}) == ()


class TestLiveRecords:
    def test_follow(self):
        event = normalize(live("Follow", {"user": LIVE_USER}), SourceTag.LIVE)
        assert isinstance(event, Follow)
        assert event.viewer.twitch_id == "42"
        assert event.replay is False

    def test_chat_message_with_emotes(self):
        data = {
            "user": LIVE_USER,
            "message": {
                "message": "hello Kappa",
                "emotes": [{"name": "Kappa", "startIndex": 6, "endIndex": 10, "imageUrl": "https://cdn/k.png"}],
            },
        }
        event = normalize(live("ChatMessage", data), SourceTag.LIVE)
        assert isinstance(event, ChatMessage)
        assert event.content == "hello Kappa"
        assert event.emotes[0].name == "Kappa"

    def test_chat_cleared_needs_no_viewer(self):
        assert isinstance(normalize(live("ChatCleared", {}), SourceTag.LIVE), ChatClear)

    def test_sub_and_resub(self):
        sub = normalize(live("Sub", {"user": LIVE_USER, "sub_tier": "2000"}), SourceTag.LIVE)
        assert isinstance(sub, Sub)
        assert (sub.tier, sub.months) == (2, 1)

        resub = normalize(live("ReSub", {"user": LIVE_USER, "subTier": "3000", "cumulativeMonths": 14}), SourceTag.LIVE)
        assert (resub.tier, resub.months) == (3, 14)

    def test_resub_months_at_least_one(self):
        resub = normalize(live("ReSub", {"user": LIVE_USER, "cumulativeMonths": 0}), SourceTag.LIVE)
        assert resub.months == 1

    def test_gift_sub(self):
        data = {"user": LIVE_USER, "recipient": {"name": "Lucky"}, "subTier": "1000", "totalSubsGifted": 5}
        event = normalize(live("GiftSub", data), SourceTag.LIVE)
        assert isinstance(event, GiftSub)
        assert event.recipient_name == "Lucky"
        assert event.total_gifted == 5

    def test_raid(self):
        data = {"from_broadcaster_user_id": "9", "from_broadcaster_user_name": "Raider", "viewers": 120}
        event = normalize(live("Raid", data), SourceTag.LIVE)
        assert isinstance(event, Raid)
        assert event.from_channel == "Raider"
        assert event.viewer_count == 120

    def test_cheer(self):
        event = normalize(live("Cheer", {"user": LIVE_USER, "bits": "500"}), SourceTag.LIVE)
        assert isinstance(event, Cheer)
        assert event.bits == 500

    @pytest.mark.parametrize("bits", ["inf", "-inf", "1e999", "nan", float("inf"), float("nan")])
    def test_cheer_with_unbounded_bits_is_a_zero_cheer(self, bits):
        event = normalize(live("Cheer", {"user": LIVE_USER, "bits": bits}), SourceTag.LIVE)
        assert isinstance(event, Cheer)
        assert event.bits == 0

    def test_unbounded_counts_in_test_triggers(self):
        record = trigger_record("Resubscription", TEST_USER, tier=float("inf"), cumulative="1e999")
        event = normalize(record, SourceTag.TEST_TRIGGER)
        assert isinstance(event, Sub)
        assert event.tier == 1
        assert event.months == 1

    def test_reward_redemption(self):
        data = {"user": LIVE_USER, "reward": {"title": "Hydrate", "cost": 300}}
        event = normalize(live("RewardRedemption", data), SourceTag.LIVE)
        assert isinstance(event, RewardRedemption)
        assert (event.reward_name, event.cost) == ("Hydrate", 300)

    def test_dice_roll(self):
        event = normalize(live("DiceRoll", {"user": LIVE_USER, "faces": 20, "result": 17}), SourceTag.LIVE)
        assert isinstance(event, DiceRoll)
        assert (event.faces, event.result) == (20, 17)

    def test_dice_roll_out_of_range_dropped(self):
        assert normalize(live("DiceRoll", {"user": LIVE_USER, "faces": 6, "result": 7}), SourceTag.LIVE) is None

    def test_missing_identity_dropped(self):
        assert normalize(live("Follow", {"user": {"login": "ghost"}}), SourceTag.LIVE) is None

    def test_unsupported_kind_ignored(self):
        assert normalize(live("HypeTrainStart", {"user": LIVE_USER}), SourceTag.LIVE) is None


class TestTestTriggerRecords:
    def test_follow(self):
        event = normalize(trigger_record("Follow", TEST_USER), SourceTag.TEST_TRIGGER)
        assert isinstance(event, Follow)
        assert event.viewer.display_name == "Kavaliero"

    def test_same_identity_as_live(self):
        from_test = normalize(trigger_record("Follow", TEST_USER), SourceTag.TEST_TRIGGER)
        from_live = normalize(live("Follow", {"user": LIVE_USER}), SourceTag.LIVE)
        assert from_test.viewer == from_live.viewer

    @pytest.mark.parametrize(
        "trigger,args,expected_type",
        [
            ("Cheer", {"bits": 100}, Cheer),
            ("Subscription", {"tier": "tier 2"}, Sub),
            ("Resubscription", {"tier": "prime", "cumulative": 6}, Sub),
            ("Gift Subscription", {"recipientUser": "Lucky", "tier": "1000"}, GiftSub),
            ("Raid", {"viewers": 12}, Raid),
            ("Reward Redemption", {"rewardName": "Hydrate", "rewardCost": 50}, RewardRedemption),
        ],
    )
    def test_each_trigger(self, trigger, args, expected_type):
        event = normalize(trigger_record(trigger, TEST_USER, **args), SourceTag.TEST_TRIGGER)
        assert isinstance(event, expected_type)

    def test_resub_months(self):
        event = normalize(trigger_record("Resubscription", TEST_USER, cumulative=6), SourceTag.TEST_TRIGGER)
        assert event.months == 6

    def test_requires_is_test_flag(self):
        record = trigger_record("Follow", TEST_USER)
        record["data"]["arguments"]["isTest"] = False
        assert normalize(record, SourceTag.TEST_TRIGGER) is None

        del record["data"]["arguments"]["isTest"]
        assert normalize(record, SourceTag.TEST_TRIGGER) is None

    def test_missing_user_dropped(self):
        assert normalize(trigger_record("Follow"), SourceTag.TEST_TRIGGER) is None

    def test_unknown_trigger_ignored(self):
        assert normalize(trigger_record("Hype Train", TEST_USER), SourceTag.TEST_TRIGGER) is None


class TestTotality:
    """Malformed input never raises."""

    @pytest.mark.parametrize(
        "record",
        [
            None,
            42,
            "Follow",
            [],
            {},
            {"event": None, "data": None},
            {"event": {"type": "Follow"}},
            {"event": {"type": "Follow"}, "data": []},
            {"event": "Follow", "data": {"user": LIVE_USER}},
            {"event": {"type": None}, "data": {"user": None}},
            {"event": {"type": "Cheer"}, "data": {"user": LIVE_USER, "bits": "lots"}},
            {"event": {"type": "Sub"}, "data": {"user": LIVE_USER, "sub_tier": {"nested": True}}},
            {"event": {"type": "Raid"}, "data": {"user_id": "", "viewers": -3}},
            {"event": {"type": "ChatMessage"}, "data": {"user": LIVE_USER, "message": "plain", "emotes": "x"}},
            {"event": {"type": "RewardRedemption"}, "data": {"user": LIVE_USER, "reward": "Hydrate"}},
            {"data": {"arguments": "nope"}},
            {"data": {"arguments": {"isTest": True, "triggerName": None}}},
            {"event": {"type": "Raid"}, "data": {"user": LIVE_USER, "viewers": float("inf")}},
            {"event": {"type": "DiceRoll"}, "data": {"user": LIVE_USER, "faces": "inf", "result": "1e999"}},
        ],
    )
    @pytest.mark.parametrize("source", list(SourceTag))
    def test_never_raises(self, record, source):
        result = normalize(record, source)
        assert result is None or result.type_tag
