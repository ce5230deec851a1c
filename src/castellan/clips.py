"""In-memory cache of Twitch clips for the pause scene."""

import random
from datetime import UTC, datetime

from pydantic import Field

from .events import ClipsSynced, WireModel
from .logger import get_logger

logger = get_logger(__name__)


class TwitchClip(WireModel):
    id: str
    url: str = ""
    embed_url: str = ""
    creator_name: str = ""
    title: str = ""
    view_count: int = Field(default=0, ge=0)
    created_at: str = ""
    thumbnail_url: str = ""
    duration: float = Field(default=0, ge=0)
    game_name: str = ""
    # Local file served to the overlay, when the clip was downloaded
    video_url: str | None = None


def shuffled(items: list, rng: random.Random | None = None) -> list:
    """Fisher-Yates shuffle into a new list."""
    rng = rng or random
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result


class ClipsCache:
    """Replaced wholesale on every sync, served shuffled."""

    def __init__(self, rng: random.Random | None = None):
        self._clips: list[TwitchClip] = []
        self.synced_at: datetime | None = None
        self._rng = rng

    def __len__(self) -> int:
        return len(self._clips)

    def sync(self, clips: list[TwitchClip]) -> ClipsSynced:
        self._clips = list(clips)
        self.synced_at = datetime.now(UTC)
        logger.info("Clips synced", count=len(self._clips))
        return ClipsSynced(count=len(self._clips), synced_at=self.synced_at)

    def get(self, limit: int | None = None) -> list[TwitchClip]:
        result = shuffled(self._clips, self._rng)
        if limit and limit > 0:
            result = result[:limit]
        return result
