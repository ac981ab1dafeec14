"""
Play Store change detection.

One entity per package and track; the release with the highest version code
on a track is the one compared.
"""

from typing import Any

from ..models import ChangeEvent, EntitySnapshot, Platform
from ..text import title_case
from .detector import ChangeDetector


class PlayStoreDetector(ChangeDetector):
    """Detects release status and version code changes on each track."""

    platform = Platform.PLAY_STORE
    tracks_version_code = True

    def is_comparable(self, candidate: EntitySnapshot) -> bool:
        return bool(candidate.status) and candidate.version_code is not None

    def version_order(self, candidate: EntitySnapshot) -> tuple[Any, ...]:
        """Highest version code wins."""
        return (candidate.version_code,)

    def generate_message(self, event: ChangeEvent) -> str:
        snapshot = event.snapshot
        track = title_case(snapshot.entity.context)
        status = title_case(snapshot.status or "")
        code = snapshot.version_code

        if event.is_new:
            return f"New version {code} for {snapshot.app_name} is now {status} in {track}"

        if event.version_changed:
            verb = "went back" if event.version_regressed else "changed"
            message = (
                f"Version code for {snapshot.app_name} in {track} {verb} "
                f"from {event.previous_version_code} to {code}"
            )
            if event.status_changed:
                message += f" and is now {status}"
            return message

        if event.status_changed:
            previous = title_case(event.previous_status or "")
            return (
                f"Version {code} for {snapshot.app_name} in {track} "
                f"changed from {previous} to {status}"
            )

        return f"Version {code} for {snapshot.app_name} in {track} status: {status}"
