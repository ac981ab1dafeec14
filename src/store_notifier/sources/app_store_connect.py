"""
App Store Connect source.

Authenticates with an API key (ES256 JWT) and reads the latest App Store
version and the newest builds of every configured bundle identifier.
"""

import time
from datetime import datetime
from typing import Any, Union, cast

import httpx
import jwt
import structlog

from ..config import AppStoreConfig
from ..exceptions import ConfigurationError, FetchError
from ..models import EntityKind, EntitySnapshot, Platform, TrackedEntity
from .base import PlatformSource, require

logger = structlog.get_logger(__name__)

API_BASE_URL = "https://api.appstoreconnect.apple.com/v1"
TOKEN_LIFETIME_SECONDS = 20 * 60  # Apple rejects tokens valid for longer


class AppStoreConnectSource(PlatformSource):
    """Fetches app and build states from App Store Connect."""

    platform = Platform.APP_STORE

    def __init__(
        self,
        config: AppStoreConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(transport)
        self.config = config
        self._token: str | None = None
        self._token_expires_at = 0.0

    def validate_config(self) -> None:
        """Validate API key credentials, bundle identifiers and the key itself."""
        uses_api_key = bool(
            self.config.api_key and self.config.api_key_id and self.config.issuer_id
        )
        if not uses_api_key and self.config.username:
            raise ConfigurationError(
                "Username/password authentication is not supported. "
                "Please use API key authentication."
            )
        require(
            uses_api_key,
            "App Store Connect API key, key ID and issuer ID are required",
        )
        require(
            len(self.config.bundle_identifiers) > 0,
            "At least one bundle identifier is required",
        )
        # An unreadable key must fail here, at startup
        self._get_token()

    async def _check_auth(self) -> None:
        self._get_token()

    def _get_token(self) -> str:
        """Create (or reuse) the JWT used as bearer token."""
        now = int(time.time())
        if self._token and now < self._token_expires_at - 60:
            return self._token

        payload = {
            "iss": self.config.issuer_id,
            "iat": now,
            "exp": now + TOKEN_LIFETIME_SECONDS,
            "aud": "appstoreconnect-v1",
        }
        try:
            token = cast(
                Union[str, bytes],
                jwt.encode(
                    payload,
                    self.config.api_key,
                    algorithm="ES256",
                    headers={"kid": self.config.api_key_id, "typ": "JWT"},
                ),
            )
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise ConfigurationError(
                f"Invalid App Store Connect API key: {e}"
            ) from e

        # Handle jwt.encode returning bytes in some versions
        if isinstance(token, bytes):
            token = token.decode("utf-8")

        self._token = token
        self._token_expires_at = now + TOKEN_LIFETIME_SECONDS
        return token

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._request_json(
            "GET",
            f"{API_BASE_URL}{path}",
            params=params,
            headers={"Authorization": f"Bearer {self._get_token()}"},
        )

    async def fetch_snapshot(self) -> list[EntitySnapshot]:
        """Fetch app version and build states for every configured app."""
        start = time.monotonic()
        logger.info("Starting App Store data fetch", platform=self.platform.value)

        body = await self._get(
            "/apps", {"filter[bundleId]": ",".join(self.config.bundle_identifiers)}
        )
        apps = (body or {}).get("data") or []

        snapshot: list[EntitySnapshot] = []
        for app in apps:
            app_id = app.get("id")
            attributes = app.get("attributes") or {}
            name = attributes.get("name")
            bundle_id = attributes.get("bundleId") or app_id
            if not app_id or not name:
                continue

            version = await self._fetch_latest_version(app_id)
            builds = await self._fetch_builds(app_id)

            app_version = ""
            app_status = None
            if version is not None:
                app_version = version.get("versionString") or ""
                app_status = version.get("appStoreState") or version.get(
                    "appVersionState"
                )
                snapshot.append(
                    EntitySnapshot(
                        entity=TrackedEntity(
                            self.platform, bundle_id, app_version, EntityKind.APP.value
                        ),
                        kind=EntityKind.APP,
                        app_name=name,
                        status=app_status,
                        version_label=app_version,
                        uploaded_at=_parse_datetime(version.get("createdDate")),
                        attributes={"app_id": app_id},
                    )
                )

            for build in builds:
                build_version = build.get("version") or ""
                snapshot.append(
                    EntitySnapshot(
                        entity=TrackedEntity(
                            self.platform,
                            bundle_id,
                            build_version,
                            EntityKind.BUILD.value,
                        ),
                        kind=EntityKind.BUILD,
                        app_name=name,
                        status=build.get("processingState"),
                        version_label=build_version,
                        uploaded_at=_parse_datetime(build.get("uploadedDate")),
                        attributes={
                            "app_id": app_id,
                            "app_version": app_version,
                            "app_status": app_status,
                            "icon_url": _icon_url(build.get("iconAssetToken")),
                        },
                    )
                )

        logger.info(
            "App Store data fetch completed",
            platform=self.platform.value,
            fetch_duration_seconds=round(time.monotonic() - start, 3),
            apps_count=len(apps),
            entities_count=len(snapshot),
        )
        return snapshot

    async def _fetch_latest_version(self, app_id: str) -> dict[str, Any] | None:
        body = await self._get(
            f"/apps/{app_id}/appStoreVersions",
            {"filter[platform]": "IOS", "limit": 1},
        )
        versions = (body or {}).get("data") or []
        if not versions:
            logger.warning("No versions found for app", app_id=app_id)
            return None
        return cast(dict[str, Any], versions[0].get("attributes") or {})

    async def _fetch_builds(self, app_id: str) -> list[dict[str, Any]]:
        body = await self._get(
            "/builds",
            {
                "filter[app]": app_id,
                "sort": "-uploadedDate",
                "limit": max(1, self.config.number_of_builds),
            },
        )
        data = (body or {}).get("data") or []
        if not isinstance(data, list):
            raise FetchError("Unexpected builds payload", platform=self.platform.value)
        return [item.get("attributes") or {} for item in data]


def _parse_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def _icon_url(asset_token: dict[str, Any] | None) -> str | None:
    if not asset_token or not asset_token.get("templateUrl"):
        return None
    return (
        asset_token["templateUrl"]
        .replace("{w}", "100")
        .replace("{h}", "100")
        .replace("{f}", "png")
    )
