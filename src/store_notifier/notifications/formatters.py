"""
Per-platform message templates.

Each formatter renders a notification payload into a Slack message with a
summary line and one attachment. Templates raise ComposeError when the
payload lacks data they need; the composer falls back to a generic message.
"""

from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import ComposeError
from ..models import NotificationPayload, SlackAttachment, SlackField, SlackMessage
from ..text import status_emoji, title_case

INFO_COLOR = "#8e8e8e"
WARNING_COLOR = "#f4f124"
PROGRESS_COLOR = "#1eb6fc"
SUCCESS_COLOR = "#14ba40"
FAILURE_COLOR = "#e0143d"

APP_STORE_ICON = (
    "https://upload.wikimedia.org/wikipedia/commons/thumb/c/cf/"
    "Mac_App_Store_logo.png/500px-Mac_App_Store_logo.png"
)
PLAY_STORE_ICON = (
    "https://upload.wikimedia.org/wikipedia/commons/thumb/2/2f/"
    "Google_Play_2022_icon.svg/1200px-Google_Play_2022_icon.svg.png"
)

APP_STORE_STATUS_COLORS: dict[str, str] = {
    # App
    "PREPARE_FOR_SUBMISSION": INFO_COLOR,
    "WAITING_FOR_REVIEW": PROGRESS_COLOR,
    "IN_REVIEW": PROGRESS_COLOR,
    "PENDING_CONTRACT": WARNING_COLOR,
    "WAITING_FOR_EXPORT_COMPLIANCE": WARNING_COLOR,
    "PENDING_DEVELOPER_RELEASE": SUCCESS_COLOR,
    "PROCESSING_FOR_APP_STORE": SUCCESS_COLOR,
    "PENDING_APPLE_RELEASE": SUCCESS_COLOR,
    "READY_FOR_SALE": SUCCESS_COLOR,
    "REJECTED": FAILURE_COLOR,
    "METADATA_REJECTED": FAILURE_COLOR,
    "REMOVED_FROM_SALE": FAILURE_COLOR,
    "DEVELOPER_REJECTED": FAILURE_COLOR,
    "DEVELOPER_REMOVED_FROM_SALE": FAILURE_COLOR,
    "INVALID_BINARY": FAILURE_COLOR,
    # Build
    "PROCESSING": INFO_COLOR,
    "FAILED": FAILURE_COLOR,
    "INVALID": FAILURE_COLOR,
    "VALID": SUCCESS_COLOR,
}

PLAY_STORE_STATUS_COLORS: dict[str, str] = {
    "draft": INFO_COLOR,
    "inProgress": PROGRESS_COLOR,
    "halted": FAILURE_COLOR,
    "completed": SUCCESS_COLOR,
    "statusUnspecified": INFO_COLOR,
}


class BaseFormatter(ABC):
    """Renders payloads of one platform."""

    status_colors: dict[str, str] = {}

    @abstractmethod
    def format_message(self, notification: NotificationPayload) -> SlackMessage:
        """Render a single notification."""
        pass

    def color_for_status(self, status: str) -> str:
        """Fixed status lookup; unmapped statuses get the neutral color."""
        return self.status_colors.get(status, INFO_COLOR)

    @staticmethod
    def _require(notification: NotificationPayload, name: str) -> Any:
        value = notification.metadata.get(name)
        if value is None or value == "":
            raise ComposeError(
                f"Notification metadata is missing '{name}'",
                context={"platform": notification.platform.value, "field": name},
            )
        return value

    @staticmethod
    def _ts(notification: NotificationPayload) -> str:
        return str(int(notification.timestamp.timestamp()))


class AppStoreFormatter(BaseFormatter):
    """App and build templates for App Store Connect."""

    status_colors = APP_STORE_STATUS_COLORS

    def format_message(self, notification: NotificationPayload) -> SlackMessage:
        if notification.metadata.get("kind") == "build":
            return self._format_build_message(notification)
        return self._format_app_message(notification)

    def _format_app_message(self, notification: NotificationPayload) -> SlackMessage:
        version = self._require(notification, "version")
        status = title_case(notification.status)
        emoji = status_emoji(notification.platform.value, notification.status)
        summary = (
            f"The status of your app {notification.app_name} version {version} "
            f"has been changed to {status}"
        )

        return SlackMessage(
            text=(
                f"{emoji} The status of your app *{notification.app_name}* "
                f"has been changed to *{status}*"
            ),
            attachments=[
                self._attachment(
                    notification,
                    fallback=summary,
                    fields=[
                        SlackField(title="Version", value=str(version)),
                        SlackField(title="Status", value=status),
                    ],
                )
            ],
        )

    def _format_build_message(self, notification: NotificationPayload) -> SlackMessage:
        build_version = self._require(notification, "version")
        status = title_case(notification.status)
        emoji = status_emoji(notification.platform.value, notification.status)
        app_version = notification.metadata.get("app_version") or "N/A"
        app_status = notification.metadata.get("app_status")

        if notification.metadata.get("is_new"):
            text = (
                f"{emoji} New build *{build_version}* for your app "
                f"*{notification.app_name}* is now *{status}*"
            )
        else:
            text = (
                f"{emoji} The status of build version *{build_version}* for your app "
                f"*{notification.app_name}* has been changed to *{status}*"
            )

        return SlackMessage(
            text=text,
            attachments=[
                self._attachment(
                    notification,
                    fallback=notification.message,
                    fields=[
                        SlackField(title="Build Version", value=str(build_version)),
                        SlackField(title="Build Status", value=status),
                        SlackField(title="Version", value=str(app_version)),
                        SlackField(
                            title="App Status",
                            value=title_case(app_status) if app_status else "N/A",
                        ),
                    ],
                )
            ],
        )

    def _attachment(
        self,
        notification: NotificationPayload,
        fallback: str,
        fields: list[SlackField],
    ) -> SlackAttachment:
        app_id = notification.metadata.get("app_id")
        return SlackAttachment(
            fallback=fallback,
            color=self.color_for_status(notification.status),
            title="App Store Connect",
            title_link=(
                f"https://appstoreconnect.apple.com/apps/{app_id}/appstore"
                if app_id
                else None
            ),
            author_name=notification.app_name,
            author_icon=notification.metadata.get("icon_url"),
            fields=fields,
            footer="App Store Connect",
            footer_icon=APP_STORE_ICON,
            ts=self._ts(notification),
        )


class PlayStoreFormatter(BaseFormatter):
    """Release template for the Google Play Console."""

    status_colors = PLAY_STORE_STATUS_COLORS

    def format_message(self, notification: NotificationPayload) -> SlackMessage:
        metadata = notification.metadata
        package_name = self._require(notification, "app_identifier")
        version_code = self._require(notification, "version_code")
        track = metadata.get("track") or "production"
        status = title_case(notification.status)
        emoji = status_emoji(notification.platform.value, notification.status)

        if metadata.get("is_new"):
            text = (
                f"{emoji} New release detected for *{notification.app_name}* "
                f"with version code *{version_code}* on *{title_case(track)}*"
            )
        elif metadata.get("version_changed"):
            text = (
                f"{emoji} Version code updated for *{notification.app_name}*: "
                f"*{metadata.get('previous_version_code')}* → *{version_code}*"
            )
            if metadata.get("version_regressed"):
                text += " (lower than previously seen)"
        else:
            text = (
                f"{emoji} The status of your app *{notification.app_name}* "
                f"has been changed to *{status}*"
            )

        fields = [
            SlackField(title="Version Code", value=str(version_code)),
            SlackField(title="Status", value=status),
            SlackField(title="Track", value=title_case(track)),
        ]
        user_fraction = metadata.get("user_fraction")
        if user_fraction is not None:
            fields.append(
                SlackField(title="Rollout", value=f"{float(user_fraction) * 100:g}%")
            )

        return SlackMessage(
            text=text,
            attachments=[
                SlackAttachment(
                    fallback=(
                        f"Google Play Console update for {notification.app_name} "
                        f"on {track} track"
                    ),
                    color=self.color_for_status(notification.status),
                    title="Google Play Console",
                    title_link=(
                        "https://play.google.com/console/developers/app/"
                        f"{package_name}/tracks/{track}"
                    ),
                    author_name=notification.app_name,
                    author_icon=PLAY_STORE_ICON,
                    text=notification.message,
                    fields=fields,
                    footer="Google Play Console",
                    footer_icon=PLAY_STORE_ICON,
                    ts=self._ts(notification),
                )
            ],
        )
