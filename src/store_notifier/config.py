"""
Configuration management for the Store Notifier.

This module handles environment variables, credential validation, and
per-platform configuration using Pydantic Settings for type safety.
"""

import base64
import binascii
import json
import re
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError
from .models import Platform

logger = structlog.get_logger(__name__)

PACKAGE_NAME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9_]*(\.[a-zA-Z][a-zA-Z0-9_]*)+$")


def _parse_csv(value: Any, field_name: str) -> list[str]:
    if isinstance(value, str):
        if not value.strip():
            return []
        return [item.strip() for item in value.split(",") if item.strip()]
    elif isinstance(value, list):
        return value
    else:
        raise ValueError(f"{field_name} must be a string or list, got {type(value)}")


class CredentialCheck(BaseModel):
    """Outcome of validating one platform's credentials."""

    auth_type: str
    is_valid: bool
    details: dict[str, bool] = Field(default_factory=dict)


class AppStoreConfig(BaseModel):
    """App Store Connect configuration settings."""

    api_key: str = Field(default="", description="API private key (PEM)")
    api_key_id: str = Field(default="", description="API key ID")
    issuer_id: str = Field(default="", description="API issuer ID")
    username: str = Field(default="", description="Legacy username")
    bundle_identifiers: list[str] = Field(default_factory=list)
    number_of_builds: int = Field(default=2, description="Builds inspected per app")


class PlayStoreConfig(BaseModel):
    """Google Play Console configuration settings."""

    service_account: dict[str, Any] | None = Field(
        default=None, description="Decoded service account JSON"
    )
    package_names: list[str] = Field(default_factory=list)
    tracks: list[str] = Field(default_factory=list)
    app_name: str = Field(default="", description="Display name override")


class SlackConfig(BaseModel):
    """Delivery sink configuration settings."""

    webhook_url: str
    channel_name: str = "#notifications"


class PollingConfig(BaseModel):
    """Polling configuration settings."""

    interval_seconds: float = Field(default=90, description="Per-platform interval")
    initial_delay_seconds: float = Field(
        default=1, description="Delay before the first poll"
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Slack configuration
    slack_webhook_url: str = Field(default="", description="Slack webhook URL")
    slack_channel_name: str = Field(
        default="#notifications", description="Slack channel name"
    )

    # Polling configuration
    poll_time_in_seconds: float = Field(default=90, description="Polling interval")
    initial_poll_delay_seconds: float = Field(
        default=1, description="Delay before each platform's first poll"
    )

    # App Store Connect configuration
    spaceship_connect_api_key: str = Field(default="", description="API private key")
    spaceship_connect_api_key_id: str = Field(default="", description="API key ID")
    spaceship_connect_api_issuer_id: str = Field(
        default="", description="API issuer ID"
    )
    itc_username: str = Field(default="", description="iTunes Connect username")
    itc_password: str = Field(default="", description="iTunes Connect password")
    itc_team_ids: str = Field(default="", description="iTunes Connect team IDs")
    bundle_identifiers: str | list[str] = Field(
        default="", description="Bundle IDs to monitor (comma-separated)"
    )
    number_of_builds: int = Field(default=2, description="Builds checked per app")

    # Google Play Console configuration
    google_play_json_key_data: str = Field(
        default="", description="Base64 encoded service account JSON"
    )
    google_play_package_names: str | list[str] = Field(
        default="", description="Package names to monitor (comma-separated)"
    )
    google_play_tracks: str | list[str] = Field(
        default="internal,alpha,beta,production",
        description="Release tracks to monitor (comma-separated)",
    )
    app_name: str = Field(default="", description="Display name for notifications")

    # State configuration
    state_db_path: str = Field(
        default="kvstore.db", description="SQLite state database path (empty for in-memory)"
    )

    # Health endpoint
    health_port: int = Field(default=0, description="Health server port (0 disables)")

    # Logging configuration
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="console", description="Log format")

    @field_validator("bundle_identifiers", mode="before")
    @classmethod
    def parse_bundle_identifiers(cls, v: Any) -> list[str]:
        """Parse bundle identifiers from comma-separated string or list."""
        return _parse_csv(v, "bundle_identifiers")

    @field_validator("google_play_package_names", mode="before")
    @classmethod
    def parse_package_names(cls, v: Any) -> list[str]:
        """Parse package names from comma-separated string or list."""
        return _parse_csv(v, "google_play_package_names")

    @field_validator("google_play_tracks", mode="before")
    @classmethod
    def parse_tracks(cls, v: Any) -> list[str]:
        """Parse release tracks from comma-separated string or list."""
        return _parse_csv(v, "google_play_tracks")

    @field_validator("poll_time_in_seconds")
    @classmethod
    def validate_poll_time(cls, v: float) -> float:
        """Validate polling interval."""
        if v <= 0:
            raise ValueError(f"Polling interval must be positive: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        if v.lower() not in {"console", "json"}:
            raise ValueError(f"Invalid log format: {v}")
        return v.lower()

    @property
    def enabled_platforms(self) -> list[Platform]:
        """Platforms whose credentials are present."""
        platforms = []
        if self.spaceship_connect_api_key or self.itc_username:
            platforms.append(Platform.APP_STORE)
        if self.google_play_json_key_data and self.google_play_package_names:
            platforms.append(Platform.PLAY_STORE)
        return platforms

    @property
    def slack_config(self) -> SlackConfig:
        """Get delivery sink configuration."""
        return SlackConfig(
            webhook_url=self.slack_webhook_url,
            channel_name=self.slack_channel_name or "#notifications",
        )

    @property
    def polling_config(self) -> PollingConfig:
        """Get polling configuration."""
        return PollingConfig(
            interval_seconds=self.poll_time_in_seconds,
            initial_delay_seconds=self.initial_poll_delay_seconds,
        )

    @property
    def app_store_config(self) -> AppStoreConfig:
        """Get App Store Connect configuration."""
        return AppStoreConfig(
            api_key=self.spaceship_connect_api_key,
            api_key_id=self.spaceship_connect_api_key_id,
            issuer_id=self.spaceship_connect_api_issuer_id,
            username=self.itc_username,
            bundle_identifiers=list(self.bundle_identifiers),
            number_of_builds=self.number_of_builds,
        )

    @property
    def play_store_config(self) -> PlayStoreConfig:
        """Get Google Play Console configuration."""
        return PlayStoreConfig(
            service_account=self.play_store_service_account(),
            package_names=list(self.google_play_package_names),
            tracks=list(self.google_play_tracks),
            app_name=self.app_name,
        )

    def play_store_service_account(self) -> dict[str, Any] | None:
        """Decode the base64 service account JSON, or None if unusable."""
        if not self.google_play_json_key_data:
            return None
        try:
            decoded = base64.b64decode(self.google_play_json_key_data).decode("utf-8")
            data = json.loads(decoded)
        except (binascii.Error, UnicodeDecodeError, ValueError) as e:
            logger.error("Failed to decode GOOGLE_PLAY_JSON_KEY_DATA", error=str(e))
            return None
        if not isinstance(data, dict):
            return None
        return data

    def validate_app_store_credentials(self) -> CredentialCheck:
        """Check which App Store Connect auth method is configured."""
        has_api_key_auth = bool(
            self.spaceship_connect_api_key
            and self.spaceship_connect_api_key_id
            and self.spaceship_connect_api_issuer_id
        )
        has_username_auth = bool(self.itc_username and self.itc_password)

        details = {
            "api_key": bool(self.spaceship_connect_api_key),
            "api_key_id": bool(self.spaceship_connect_api_key_id),
            "issuer_id": bool(self.spaceship_connect_api_issuer_id),
            "username": bool(self.itc_username),
            "password": bool(self.itc_password),
            "team_ids": bool(self.itc_team_ids),
        }

        if has_api_key_auth:
            return CredentialCheck(auth_type="api_key", is_valid=True, details=details)
        if has_username_auth:
            return CredentialCheck(
                auth_type="username_password", is_valid=True, details=details
            )
        return CredentialCheck(auth_type="api_key", is_valid=False, details=details)

    def validate_play_store_credentials(self) -> CredentialCheck:
        """Check the Google Play service account JSON."""
        service_account = self.play_store_service_account()
        if service_account is None:
            return CredentialCheck(
                auth_type="service_account",
                is_valid=False,
                details={
                    "has_valid_json": False,
                    "has_required_fields": False,
                    "email_valid": False,
                    "private_key_valid": False,
                },
            )

        client_email = str(service_account.get("client_email") or "")
        private_key = str(service_account.get("private_key") or "")
        has_required_fields = bool(
            service_account.get("type") == "service_account"
            and client_email
            and private_key
            and service_account.get("private_key_id")
        )
        email_valid = "@" in client_email
        private_key_valid = "BEGIN PRIVATE KEY" in private_key

        return CredentialCheck(
            auth_type="service_account",
            is_valid=has_required_fields and email_valid and private_key_valid,
            details={
                "has_valid_json": True,
                "has_required_fields": has_required_fields,
                "email_valid": email_valid,
                "private_key_valid": private_key_valid,
            },
        )

    @staticmethod
    def validate_package_name(package_name: str) -> bool:
        """Check an Android application id."""
        return bool(PACKAGE_NAME_PATTERN.match(package_name))

    def validate_all_package_names(self) -> bool:
        """Check every configured package name."""
        return all(
            self.validate_package_name(name) for name in self.google_play_package_names
        )

    @staticmethod
    def is_valid_webhook_url(url: str) -> bool:
        """Check that ``url`` parses as an absolute http(s) URL."""
        try:
            parsed = httpx.URL(url)
        except httpx.InvalidURL:
            return False
        return parsed.scheme in ("http", "https") and bool(parsed.host)

    def validate_config(self) -> None:
        """
        Validate the configuration as a whole.

        Raises:
            ConfigurationError: If anything required is missing or invalid
        """
        platforms = self.enabled_platforms
        if not platforms:
            raise ConfigurationError(
                "No platform credentials found. Please configure at least one platform."
            )

        if not self.slack_webhook_url:
            raise ConfigurationError("SLACK_WEBHOOK_URL is required")
        if not self.is_valid_webhook_url(self.slack_webhook_url):
            raise ConfigurationError(
                "SLACK_WEBHOOK_URL must be an absolute http(s) URL",
                context={"slack_webhook_url": self.slack_webhook_url},
            )

        if Platform.APP_STORE in platforms:
            check = self.validate_app_store_credentials()
            if not check.is_valid:
                raise ConfigurationError(
                    "App Store authentication credentials are invalid",
                    context={"details": check.details},
                )
            if not self.bundle_identifiers:
                raise ConfigurationError(
                    "BUNDLE_IDENTIFIERS is required for App Store monitoring"
                )

        if Platform.PLAY_STORE in platforms:
            check = self.validate_play_store_credentials()
            if not check.is_valid:
                raise ConfigurationError(
                    "Play Store service account credentials are invalid",
                    context={"details": check.details},
                )
            if not self.google_play_package_names:
                raise ConfigurationError(
                    "GOOGLE_PLAY_PACKAGE_NAMES is required for Play Store monitoring"
                )
            if not self.validate_all_package_names():
                raise ConfigurationError(
                    "Invalid package names detected",
                    context={"package_names": self.google_play_package_names},
                )

        logger.info(
            "Configuration validation passed",
            platforms=[platform.value for platform in platforms],
        )
