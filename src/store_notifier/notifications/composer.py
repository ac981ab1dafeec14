"""
Notification composer for the Store Notifier.

Renders single notifications through the platform templates and folds
several notifications from one cycle into a bounded summary message.
"""

from collections.abc import Sequence

import structlog

from ..exceptions import ComposeError
from ..models import (
    NotificationPayload,
    Platform,
    SlackAttachment,
    SlackField,
    SlackMessage,
)
from ..text import status_emoji, title_case
from .formatters import (
    FAILURE_COLOR,
    PROGRESS_COLOR,
    SUCCESS_COLOR,
    AppStoreFormatter,
    BaseFormatter,
    PlayStoreFormatter,
)

logger = structlog.get_logger(__name__)

BATCH_DISPLAY_LIMIT = 5

PLATFORM_COLORS: dict[Platform, str] = {
    Platform.APP_STORE: "#007AFF",
    Platform.PLAY_STORE: "#34A853",
}
NEUTRAL_COLOR = "#439FE0"


def footer_for(platform: Platform) -> str:
    return f"Store Notifier • {platform.display_name}"


def generic_status_color(status: str) -> str:
    """Coarse color for statuses outside any template's table."""
    lower = status.lower()
    if any(word in lower for word in ("ready", "completed", "approved")):
        return SUCCESS_COLOR
    if any(word in lower for word in ("rejected", "failed", "invalid")):
        return FAILURE_COLOR
    if any(word in lower for word in ("review", "progress", "processing")):
        return PROGRESS_COLOR
    return NEUTRAL_COLOR


class MessageComposer:
    """Builds outgoing messages from notification payloads."""

    def __init__(
        self,
        formatters: dict[Platform, BaseFormatter] | None = None,
        display_limit: int = BATCH_DISPLAY_LIMIT,
    ) -> None:
        self.formatters = formatters or {
            Platform.APP_STORE: AppStoreFormatter(),
            Platform.PLAY_STORE: PlayStoreFormatter(),
        }
        self.display_limit = display_limit

    def compose(self, notification: NotificationPayload) -> SlackMessage:
        """
        Render one notification.

        Template failures never drop the notification: a generic fallback
        message is rendered instead.
        """
        logger.debug(
            "Building message",
            platform=notification.platform.value,
            app_name=notification.app_name,
            status=notification.status,
        )

        try:
            formatter = self.formatters.get(notification.platform)
            if formatter is None:
                raise ComposeError(
                    f"Unsupported platform: {notification.platform.value}"
                )
            message = formatter.format_message(notification)
        except (ComposeError, KeyError, TypeError, ValueError) as e:
            logger.error(
                "Failed to build message, using fallback",
                platform=notification.platform.value,
                error=str(e),
            )
            message = self._fallback_message(notification)

        return self._stamp_defaults(message, notification)

    def compose_batch(self, notifications: Sequence[NotificationPayload]) -> SlackMessage:
        """
        Render several notifications as one grouped summary.

        Raises:
            ComposeError: If ``notifications`` is empty
        """
        if not notifications:
            raise ComposeError("Cannot build message for empty notifications list")

        if len(notifications) == 1:
            return self.compose(notifications[0])

        grouped: dict[Platform, list[NotificationPayload]] = {}
        for notification in notifications:
            grouped.setdefault(notification.platform, []).append(notification)

        attachments = [
            self._platform_summary(platform, items) for platform, items in grouped.items()
        ]
        message = SlackMessage(
            text=(
                f"📱 {len(notifications)} app updates across "
                f"{len(grouped)} platform(s)"
            ),
            attachments=attachments,
        )

        latest = max(notifications, key=lambda n: n.timestamp)
        return self._stamp_defaults(message, latest)

    def _platform_summary(
        self, platform: Platform, notifications: list[NotificationPayload]
    ) -> SlackAttachment:
        app_count = len({n.app_name for n in notifications})

        fields = [
            SlackField(title=n.app_name, value=n.message, short=False)
            for n in notifications[: self.display_limit]
        ]
        overflow = len(notifications) - self.display_limit
        if overflow > 0:
            fields.append(
                SlackField(
                    title="Additional Updates",
                    value=f"+{overflow} more updates",
                    short=False,
                )
            )

        latest = max(notifications, key=lambda n: n.timestamp)
        return SlackAttachment(
            color=PLATFORM_COLORS.get(platform, NEUTRAL_COLOR),
            title=f"{platform.display_name} Updates",
            text=f"{len(notifications)} update(s) for {app_count} app(s)",
            fields=fields,
            footer=footer_for(platform),
            ts=str(int(latest.timestamp.timestamp())),
        )

    def _fallback_message(self, notification: NotificationPayload) -> SlackMessage:
        emoji = status_emoji(notification.platform.value, notification.status)
        return SlackMessage(
            text=f"{emoji} {notification.app_name} - {title_case(notification.status)}",
            attachments=[
                SlackAttachment(
                    color=generic_status_color(notification.status),
                    text=notification.message,
                )
            ],
        )

    def _stamp_defaults(
        self, message: SlackMessage, notification: NotificationPayload
    ) -> SlackMessage:
        """Give every attachment a footer and timestamp if its template did not."""
        ts = str(int(notification.timestamp.timestamp()))
        for attachment in message.attachments:
            if not attachment.footer:
                attachment.footer = footer_for(notification.platform)
            if not attachment.ts:
                attachment.ts = ts
        return message
