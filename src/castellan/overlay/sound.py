"""Sound cue catalog and playback."""

from collections.abc import Callable

from ..logger import get_logger

logger = get_logger(__name__)

SOUND_CATALOG: dict[str, str] = {
    "follow": "/sounds/follow.mp3",
    "sub": "/sounds/sub.mp3",
    "raid": "/sounds/raid.mp3",
    "bits": "/sounds/bits.mp3",
    "dice": "/sounds/dice.mp3",
}

SoundBackend = Callable[[str, str], None]


def log_backend(key: str, resource: str) -> None:
    """Headless playback: record the cue instead of making noise."""
    logger.info("Playing sound", sound=key, resource=resource)


class SoundPlayer:
    """Resolves sound keys through the catalog and hands the resource to a backend."""

    def __init__(self, backend: SoundBackend | None = None, catalog: dict[str, str] | None = None):
        self.backend = backend or log_backend
        self.catalog = dict(SOUND_CATALOG if catalog is None else catalog)

    def play(self, key: str) -> bool:
        resource = self.catalog.get(key)
        if resource is None:
            logger.warning("Unknown sound", sound=key)
            return False
        try:
            self.backend(key, resource)
        except Exception as e:
            logger.warning("Sound backend failed", sound=key, error=str(e))
            return False
        return True

    __call__ = play
