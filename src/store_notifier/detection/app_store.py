"""
App Store change detection.

Tracks the latest App Store version of each app and every recent build as
separate entities.
"""

from typing import Any

from ..models import ChangeEvent, EntityKind, EntitySnapshot, Platform
from ..text import title_case
from .detector import ChangeDetector


class AppStoreDetector(ChangeDetector):
    """Detects app version and build status changes."""

    platform = Platform.APP_STORE

    def version_order(self, candidate: EntitySnapshot) -> tuple[Any, ...]:
        """Most recently uploaded candidate wins."""
        uploaded = candidate.uploaded_at.timestamp() if candidate.uploaded_at else 0.0
        return (uploaded,)

    def generate_message(self, event: ChangeEvent) -> str:
        snapshot = event.snapshot
        status = title_case(snapshot.status or "")
        previous = title_case(event.previous_status or "")

        if snapshot.kind == EntityKind.APP:
            subject = f"{snapshot.app_name} version {snapshot.version_label}"
            if event.is_new:
                return f"{subject} is now {status}"
            if event.status_changed:
                return f"{subject} changed from {previous} to {status}"
            return f"{subject} status: {status}"

        build = f"{snapshot.version_label} for {snapshot.app_name}"
        if event.is_new:
            return f"New build {build} is now {status}"
        if event.status_changed:
            return f"Build {build} changed from {previous} to {status}"
        return f"Build {build} status: {status}"
