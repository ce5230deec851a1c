"""Tests for the overlay wire format."""

import json
from datetime import UTC, datetime

import pytest

from castellan.events import (
    ChatEmote,
    ChatMessage,
    Cheer,
    ClipsSynced,
    Follow,
    GiftSub,
    GoalKind,
    GoalUpdate,
    Pong,
    Raid,
    RewardRedemption,
    Sub,
    ViewerRef,
    decode_wire,
)
from castellan.exceptions import WireDecodeError


class TestEncoding:
    def test_envelope_and_camel_case(self, viewer):
        wire = Follow(viewer=viewer).to_wire()
        assert wire == {
            "type": "alert:follow",
            "payload": {
                "viewer": {"twitchId": "42", "username": "kavaliero", "displayName": "Kavaliero"},
                "replay": False,
            },
        }

    def test_goal_update_uses_type_key(self):
        payload = GoalUpdate(kind=GoalKind.SUBSCRIBERS, current=3, target=50).to_wire()["payload"]
        assert payload == {"type": "subscribers", "current": 3, "target": 50}

    def test_cheer_amount(self, viewer):
        payload = Cheer(viewer=viewer, bits=100).to_wire()["payload"]
        assert payload["amount"] == 100
        assert "bits" not in payload

    def test_raid_fields(self, viewer):
        payload = Raid(viewer=viewer, from_channel="Kavaliero", viewer_count=12).to_wire()["payload"]
        assert payload["fromChannel"] == "Kavaliero"
        assert payload["viewers"] == 12

    def test_reward_and_gift_fields(self, viewer):
        reward = RewardRedemption(viewer=viewer, reward_name="Hydrate", cost=300).to_wire()["payload"]
        assert (reward["rewardName"], reward["rewardCost"]) == ("Hydrate", 300)

        gift = GiftSub(gifter=viewer, recipient_name="Lucky", tier=2, total_gifted=5).to_wire()["payload"]
        assert gift["viewer"]["twitchId"] == "42"
        assert gift["recipientName"] == "Lucky"
        assert gift["totalGifted"] == 5

    def test_chat_message_emotes(self, viewer):
        emote = ChatEmote(id="25", name="Kappa", start_index=6, end_index=10, image_url="https://cdn/k.png")
        payload = ChatMessage(viewer=viewer, content="hello Kappa", emotes=(emote,)).to_wire()["payload"]
        assert payload["emotes"][0] == {
            "id": "25",
            "type": "Twitch",
            "name": "Kappa",
            "startIndex": 6,
            "endIndex": 10,
            "imageUrl": "https://cdn/k.png",
        }
        assert payload["id"]
        assert payload["timestamp"].endswith(("Z", "+00:00"))

    def test_to_json_keeps_unicode(self, viewer):
        text = ChatMessage(viewer=viewer, content="héllo ❤️").to_json()
        assert "héllo ❤️" in text
        assert json.loads(text)["payload"]["content"] == "héllo ❤️"


class TestValidation:
    def test_sub_tier_range(self, viewer):
        with pytest.raises(ValueError):
            Sub(viewer=viewer, tier=4)
        with pytest.raises(ValueError):
            Sub(viewer=viewer, months=0)

    def test_events_are_immutable(self, viewer):
        event = Follow(viewer=viewer)
        with pytest.raises(ValueError):
            event.viewer = viewer

    def test_viewer_identity_is_twitch_id(self):
        assert ViewerRef(twitch_id="42", username="a") == ViewerRef(twitch_id="42", username="b")
        assert ViewerRef(twitch_id="42") != ViewerRef(twitch_id="43")
        assert len({ViewerRef(twitch_id="42", display_name="A"), ViewerRef(twitch_id="42")}) == 1


class TestDecoding:
    def test_decodes_known_frame(self):
        event = decode_wire('{"type": "alert:bits", "payload": {"viewer": {"twitchId": "7"}, "amount": 50}}')
        assert isinstance(event, Cheer)
        assert event.bits == 50
        assert event.viewer.twitch_id == "7"

    def test_decodes_payloadless_frame(self):
        event = decode_wire('{"type": "pong", "payload": {"timestamp": 1700000000000}}')
        assert isinstance(event, Pong)

    def test_clips_synced(self):
        synced_at = datetime(2026, 1, 15, 20, 0, tzinfo=UTC)
        event = decode_wire(ClipsSynced(count=3, synced_at=synced_at).to_json())
        assert event == ClipsSynced(count=3, synced_at=synced_at)

    @pytest.mark.parametrize(
        "raw,reason",
        [
            ("not json", "Invalid JSON"),
            (b"\xff\xfe", "Invalid JSON"),
            ("[1, 2]", "not a JSON object"),
            ('{"type": "alert:unknown", "payload": {}}', "Unknown frame type"),
            ('{"payload": {}}', "Unknown frame type"),
            ('{"type": "alert:follow", "payload": {}}', "Invalid alert:follow payload"),
            ('{"type": "goal:update", "payload": {"type": "viewers", "current": 1, "target": 2}}', "Invalid"),
        ],
    )
    def test_malformed_frames_raise_decode_error(self, raw, reason):
        with pytest.raises(WireDecodeError) as exc_info:
            decode_wire(raw)
        assert reason in str(exc_info.value)

    def test_decode_error_preview_is_truncated(self):
        with pytest.raises(WireDecodeError) as exc_info:
            decode_wire("x" * 500)
        assert exc_info.value.preview == "x" * 100
