"""
Domain models for the Store Notifier.

Snapshots returned by platform sources, the persisted observation of a tracked
entity, change events produced by detectors, notification payloads, and the
Slack message shapes rendered by the composer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .state.keys import make_key


class Platform(str, Enum):
    """Release-management backends that can be polled."""

    APP_STORE = "app-store"
    PLAY_STORE = "play-store"

    @property
    def display_name(self) -> str:
        """Upper-case label used in footers and batch titles."""
        return self.value.replace("-", " ").upper()


class EntityKind(str, Enum):
    """What a tracked entity represents."""

    APP = "app"
    BUILD = "build"
    RELEASE = "release"


@dataclass(frozen=True)
class TrackedEntity:
    """Natural key of one watched thing."""

    platform: Platform
    app_identifier: str
    version_discriminator: str
    context: str

    @property
    def key(self) -> str:
        """Stable composite key used in the state store."""
        return make_key(
            self.platform.value,
            self.app_identifier,
            self.version_discriminator,
            self.context,
        )


@dataclass(frozen=True)
class EntitySnapshot:
    """One normalized record returned by a platform fetch."""

    entity: TrackedEntity
    kind: EntityKind
    app_name: str
    status: str | None
    version_label: str
    version_code: int | None = None
    uploaded_at: datetime | None = None
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class ObservedState:
    """Last observed values of a tracked entity, as persisted."""

    status: str
    version_label: str
    last_checked_at: datetime
    version_code: int | None = None
    uploaded_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "status": self.status,
            "version_label": self.version_label,
            "version_code": self.version_code,
            "last_checked_at": self.last_checked_at.isoformat(),
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ObservedState":
        """Create ObservedState from a stored dictionary."""
        uploaded_at = data.get("uploaded_at")
        return cls(
            status=data["status"],
            version_label=data.get("version_label", ""),
            version_code=data.get("version_code"),
            last_checked_at=datetime.fromisoformat(data["last_checked_at"]),
            uploaded_at=datetime.fromisoformat(uploaded_at) if uploaded_at else None,
        )


@dataclass(frozen=True)
class ChangeEvent:
    """Result of comparing a fresh snapshot against the stored observation."""

    snapshot: EntitySnapshot
    is_new: bool
    status_changed: bool
    previous_status: str | None = None
    version_changed: bool = False
    previous_version_code: int | None = None
    version_regressed: bool = False

    @property
    def entity(self) -> TrackedEntity:
        return self.snapshot.entity

    @property
    def requires_notification(self) -> bool:
        """Whether the transition is worth telling someone about."""
        return self.is_new or self.status_changed or self.version_changed


@dataclass
class NotificationPayload:
    """A detected change ready to be rendered."""

    platform: Platform
    app_name: str
    status: str
    message: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


class SlackField(BaseModel):
    """A field row inside a Slack attachment."""

    title: str
    value: str
    short: bool = True


class SlackAttachment(BaseModel):
    """A Slack legacy attachment."""

    fallback: str | None = None
    color: str | None = None
    title: str | None = None
    title_link: str | None = None
    author_name: str | None = None
    author_icon: str | None = None
    text: str | None = None
    fields: list[SlackField] = Field(default_factory=list)
    footer: str | None = None
    footer_icon: str | None = None
    ts: str | None = None


class SlackMessage(BaseModel):
    """A rendered message: summary text plus structured attachments."""

    text: str
    attachments: list[SlackAttachment] = Field(default_factory=list)
    channel: str | None = None

    def to_payload(self, default_channel: str | None = None) -> dict[str, Any]:
        """Serialize for the incoming-webhook API."""
        payload = self.model_dump(exclude_none=True)
        channel = self.channel or default_channel
        if channel:
            payload["channel"] = channel
        return payload
