"""
Change detection for the Store Notifier.

A detector compares each freshly fetched entity against the last observation
persisted in the state store, decides whether the transition deserves a
notification, and refreshes the stored observation for everything it
inspects.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

import structlog

from ..models import (
    ChangeEvent,
    EntitySnapshot,
    NotificationPayload,
    ObservedState,
    Platform,
)
from ..state.manager import StateStore

logger = structlog.get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class ChangeDetector(ABC):
    """
    Per-platform change detector.

    Subclasses define how candidates for the same entity are ordered and how
    a change event is worded; the comparison and persistence rules are shared.
    """

    platform: Platform
    # Version-sequenced entities notify on a version code change even when
    # the status is identical.
    tracks_version_code = False

    def __init__(self, state_store: StateStore, clock: Clock | None = None) -> None:
        """
        Initialize the detector.

        Args:
            state_store: Store holding the last observation per entity
            clock: Source of ``last_checked_at`` timestamps
        """
        self.state_store = state_store
        self.clock = clock or utc_now

    @property
    def namespace(self) -> str:
        return self.platform.value

    def is_comparable(self, candidate: EntitySnapshot) -> bool:
        """Whether a candidate carries enough data to diff against."""
        return bool(candidate.status)

    @abstractmethod
    def version_order(self, candidate: EntitySnapshot) -> tuple[Any, ...]:
        """Sort key placing the canonical latest candidate last."""
        pass

    @abstractmethod
    def generate_message(self, event: ChangeEvent) -> str:
        """Human-readable one-line description of the change."""
        pass

    def build_metadata(self, event: ChangeEvent) -> dict[str, Any]:
        """Metadata handed to the composer along with the message."""
        snapshot = event.snapshot
        return {
            "kind": snapshot.kind.value,
            "app_identifier": snapshot.entity.app_identifier,
            "version": snapshot.version_label,
            "version_code": snapshot.version_code,
            "is_new": event.is_new,
            "status_changed": event.status_changed,
            "previous_status": event.previous_status,
            "version_changed": event.version_changed,
            "previous_version_code": event.previous_version_code,
            "version_regressed": event.version_regressed,
            "uploaded_at": (
                snapshot.uploaded_at.isoformat() if snapshot.uploaded_at else None
            ),
            **snapshot.attributes,
        }

    def select_latest(
        self, candidates: Iterable[EntitySnapshot]
    ) -> EntitySnapshot | None:
        """
        Pick the canonical latest candidate for one entity key.

        Returns:
            Highest candidate by ``version_order`` or None if nothing is comparable
        """
        comparable = [c for c in candidates if self.is_comparable(c)]
        if not comparable:
            return None
        return max(comparable, key=self.version_order)

    async def inspect(self, current: EntitySnapshot) -> ChangeEvent:
        """
        Compare one entity against its stored observation and refresh it.

        Args:
            current: Canonical latest snapshot for the entity

        Returns:
            Change event; ``requires_notification`` tells whether to notify
        """
        key = current.entity.key
        stored_record = await self.state_store.get(self.namespace, key)
        stored = ObservedState.from_dict(stored_record) if stored_record else None

        if not self.is_comparable(current):
            raise ValueError(f"Snapshot for {key} has nothing comparable")

        status = current.status or ""
        is_new = stored is None
        previous_status = stored.status if stored else None
        status_changed = stored is not None and stored.status != status

        version_changed = False
        version_regressed = False
        previous_version_code = stored.version_code if stored else None
        if (
            self.tracks_version_code
            and stored is not None
            and stored.version_code is not None
            and current.version_code is not None
            and stored.version_code != current.version_code
        ):
            version_changed = True
            if current.version_code < stored.version_code:
                version_regressed = True
                logger.warning(
                    "Version code regression detected",
                    platform=self.namespace,
                    key=key,
                    previous_version_code=stored.version_code,
                    version_code=current.version_code,
                )

        observed = ObservedState(
            status=status,
            version_label=current.version_label,
            version_code=current.version_code,
            uploaded_at=current.uploaded_at,
            last_checked_at=self.clock(),
        )
        await self.state_store.set(self.namespace, key, observed.to_dict())

        return ChangeEvent(
            snapshot=current,
            is_new=is_new,
            status_changed=status_changed,
            previous_status=previous_status,
            version_changed=version_changed,
            previous_version_code=previous_version_code,
            version_regressed=version_regressed,
        )

    async def detect(self, snapshot: Iterable[EntitySnapshot]) -> list[ChangeEvent]:
        """
        Run detection over a full platform snapshot.

        Args:
            snapshot: Records from one fetch

        Returns:
            Change events that require a notification
        """
        groups: dict[str, list[EntitySnapshot]] = {}
        for record in snapshot:
            groups.setdefault(record.entity.key, []).append(record)

        events = []
        skipped = 0
        unchanged = 0
        for key, candidates in groups.items():
            latest = self.select_latest(candidates)
            if latest is None:
                skipped += 1
                logger.debug(
                    "No comparable candidates, leaving stored state untouched",
                    platform=self.namespace,
                    key=key,
                )
                continue

            event = await self.inspect(latest)
            if event.requires_notification:
                events.append(event)
                logger.debug(
                    "Change detected",
                    platform=self.namespace,
                    key=key,
                    is_new=event.is_new,
                    status_changed=event.status_changed,
                    version_changed=event.version_changed,
                    previous_status=event.previous_status,
                    status=latest.status,
                )
            else:
                unchanged += 1

        logger.debug(
            "Change detection completed",
            platform=self.namespace,
            entities=len(groups),
            changed=len(events),
            unchanged=unchanged,
            skipped=skipped,
        )
        return events

    def build_payload(self, event: ChangeEvent) -> NotificationPayload:
        """Turn a change event into a notification payload."""
        snapshot = event.snapshot
        return NotificationPayload(
            platform=self.platform,
            app_name=snapshot.app_name,
            status=snapshot.status or "",
            message=self.generate_message(event),
            timestamp=self.clock(),
            metadata=self.build_metadata(event),
        )

    async def process(
        self, snapshot: Iterable[EntitySnapshot]
    ) -> list[NotificationPayload]:
        """Detect changes in a snapshot and return one payload per change."""
        events = await self.detect(snapshot)
        notifications = [self.build_payload(event) for event in events]

        logger.info(
            "Data processing completed",
            platform=self.namespace,
            notifications_generated=len(notifications),
        )
        return notifications
