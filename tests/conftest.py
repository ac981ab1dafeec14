"""
Pytest configuration and fixtures for Store Notifier tests.
"""

import base64
import json
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa

from store_notifier.config import Settings
from store_notifier.exceptions import ConfigurationError
from store_notifier.models import (
    EntityKind,
    EntitySnapshot,
    Platform,
    SlackMessage,
    TrackedEntity,
)
from store_notifier.notifications.sink import DeliverySink
from store_notifier.sources.base import PlatformSource
from store_notifier.state.manager import InMemoryStateStore


def _pem(private_key: Any) -> str:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 15, 10, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeSource(PlatformSource):
    """Source returning canned snapshots, or raising a canned error."""

    def __init__(
        self,
        platform: Platform,
        snapshots: list[EntitySnapshot] | None = None,
        error: Exception | None = None,
        config_error: str | None = None,
    ) -> None:
        super().__init__()
        self.platform = platform
        self.snapshots = snapshots or []
        self.error = error
        self.config_error = config_error
        self.fetch_count = 0

    def validate_config(self) -> None:
        if self.config_error:
            raise ConfigurationError(self.config_error)

    async def fetch_snapshot(self) -> list[EntitySnapshot]:
        self.fetch_count += 1
        if self.error is not None:
            raise self.error
        return list(self.snapshots)


@pytest.fixture(scope="session")
def ec_private_key() -> ec.EllipticCurvePrivateKey:
    """P-256 key as used for App Store Connect API keys."""
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture(scope="session")
def rsa_private_key() -> rsa.RSAPrivateKey:
    """RSA key as used in Google service accounts."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def ec_private_key_pem(ec_private_key: ec.EllipticCurvePrivateKey) -> str:
    return _pem(ec_private_key)


@pytest.fixture
def service_account(rsa_private_key: rsa.RSAPrivateKey) -> dict[str, Any]:
    """Sample Google service account JSON."""
    return {
        "type": "service_account",
        "project_id": "store-notifier-test",
        "private_key_id": "key-123",
        "private_key": _pem(rsa_private_key),
        "client_email": "notifier@store-notifier-test.iam.gserviceaccount.com",
        "token_uri": "https://oauth2.googleapis.com/token",
    }


@pytest.fixture
def encoded_service_account(service_account: dict[str, Any]) -> str:
    return base64.b64encode(json.dumps(service_account).encode("utf-8")).decode("ascii")


@pytest.fixture
def app_store_settings(ec_private_key_pem: str) -> Settings:
    """Settings with only App Store Connect enabled."""
    return Settings(
        _env_file=None,
        slack_webhook_url="https://hooks.slack.com/services/T000/B000/XXXX",
        slack_channel_name="#releases",
        spaceship_connect_api_key=ec_private_key_pem,
        spaceship_connect_api_key_id="ABC123DEFG",
        spaceship_connect_api_issuer_id="69a6de70-0000-47e3-e053-5b8c7c11a4d1",
        bundle_identifiers="com.example.app,com.example.other",
        state_db_path="",
        log_level="DEBUG",
    )


@pytest.fixture
def play_store_settings(encoded_service_account: str) -> Settings:
    """Settings with only Google Play enabled."""
    return Settings(
        _env_file=None,
        slack_webhook_url="https://hooks.slack.com/services/T000/B000/XXXX",
        google_play_json_key_data=encoded_service_account,
        google_play_package_names="com.example.app",
        app_name="Example App",
        state_db_path="",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def mock_sink() -> AsyncMock:
    """Delivery sink that accepts everything."""
    sink = AsyncMock(spec=DeliverySink)
    sink.deliver.return_value = True
    sink.test_connection.return_value = True
    return sink


@pytest.fixture
def fake_source() -> Callable[..., FakeSource]:
    """Factory for canned platform sources."""
    return FakeSource


@pytest.fixture
def app_build() -> Callable[..., EntitySnapshot]:
    """Factory for App Store build snapshots."""

    def _build(
        version: str = "1.0 (34)",
        status: str | None = "PROCESSING",
        bundle_id: str = "com.example.app",
        app_name: str = "Example App",
        uploaded_at: datetime | None = None,
    ) -> EntitySnapshot:
        return EntitySnapshot(
            entity=TrackedEntity(Platform.APP_STORE, bundle_id, version, "build"),
            kind=EntityKind.BUILD,
            app_name=app_name,
            status=status,
            version_label=version,
            uploaded_at=uploaded_at or datetime(2024, 1, 14, 9, 0, tzinfo=UTC),
            attributes={"app_id": "1234567890", "app_version": "1.0"},
        )

    return _build


@pytest.fixture
def app_version() -> Callable[..., EntitySnapshot]:
    """Factory for App Store version snapshots."""

    def _version(
        version: str = "1.0",
        status: str | None = "WAITING_FOR_REVIEW",
        bundle_id: str = "com.example.app",
        app_name: str = "Example App",
    ) -> EntitySnapshot:
        return EntitySnapshot(
            entity=TrackedEntity(Platform.APP_STORE, bundle_id, version, "app"),
            kind=EntityKind.APP,
            app_name=app_name,
            status=status,
            version_label=version,
            attributes={"app_id": "1234567890"},
        )

    return _version


@pytest.fixture
def play_release() -> Callable[..., EntitySnapshot]:
    """Factory for Play Store release snapshots."""

    def _release(
        version_code: int | None = 12,
        status: str | None = "completed",
        track: str = "production",
        package_name: str = "com.example.app",
        app_name: str = "Example App",
        user_fraction: float | None = None,
    ) -> EntitySnapshot:
        return EntitySnapshot(
            entity=TrackedEntity(Platform.PLAY_STORE, package_name, "", track),
            kind=EntityKind.RELEASE,
            app_name=app_name,
            status=status,
            version_label=str(version_code) if version_code is not None else "",
            version_code=version_code,
            attributes={
                "track": track,
                "version_codes": [version_code] if version_code is not None else [],
                "user_fraction": user_fraction,
            },
        )

    return _release


@pytest.fixture
def delivered_messages(mock_sink: AsyncMock) -> Callable[[], list[SlackMessage]]:
    """Messages handed to ``mock_sink.deliver`` so far."""

    def _messages() -> list[SlackMessage]:
        return [call.args[0] for call in mock_sink.deliver.await_args_list]

    return _messages
