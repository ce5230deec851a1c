"""Headless overlay runtime: link, alert sequencing, sound cues and pages."""

from .alerts import AlertQueueItem, AlertSequencer, SequencerState, alert_from_event
from .link import HandlerCell, OverlayLink
from .pages import AlertsPage, ChatPage, GoalsPage
from .sound import SOUND_CATALOG, SoundPlayer

__all__ = [
    "AlertQueueItem",
    "AlertSequencer",
    "AlertsPage",
    "ChatPage",
    "GoalsPage",
    "HandlerCell",
    "OverlayLink",
    "SOUND_CATALOG",
    "SequencerState",
    "SoundPlayer",
    "alert_from_event",
]
