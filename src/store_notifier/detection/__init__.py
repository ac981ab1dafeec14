"""
Change detection for the Store Notifier.

One detector per platform, selected by the platform tag.
"""

from ..models import Platform
from ..state.manager import StateStore
from .app_store import AppStoreDetector
from .detector import ChangeDetector, Clock
from .play_store import PlayStoreDetector

DETECTORS: dict[Platform, type[ChangeDetector]] = {
    Platform.APP_STORE: AppStoreDetector,
    Platform.PLAY_STORE: PlayStoreDetector,
}


def create_detector(
    platform: Platform, state_store: StateStore, clock: Clock | None = None
) -> ChangeDetector:
    """Create the detector registered for ``platform``."""
    try:
        detector_class = DETECTORS[platform]
    except KeyError:
        raise ValueError(f"Unsupported platform: {platform}") from None
    return detector_class(state_store, clock=clock)


__all__ = [
    "ChangeDetector",
    "Clock",
    "AppStoreDetector",
    "PlayStoreDetector",
    "DETECTORS",
    "create_detector",
]
