"""
Google Play Console source.

Authenticates with a service account (RS256 assertion exchanged for an OAuth
access token) and reads the releases on each watched track through a
short-lived edit of the Android Publisher API.
"""

import time
from typing import Any, Union, cast

import httpx
import jwt
import structlog

from ..config import PACKAGE_NAME_PATTERN, PlayStoreConfig
from ..exceptions import ConfigurationError, FetchError
from ..models import EntityKind, EntitySnapshot, Platform, TrackedEntity
from .base import PlatformSource, require

logger = structlog.get_logger(__name__)

TOKEN_URL = "https://oauth2.googleapis.com/token"
PUBLISHER_URL = "https://androidpublisher.googleapis.com/androidpublisher/v3/applications"
SCOPE = "https://www.googleapis.com/auth/androidpublisher"


class GooglePlaySource(PlatformSource):
    """Fetches track releases from the Google Play Console."""

    platform = Platform.PLAY_STORE

    def __init__(
        self,
        config: PlayStoreConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(transport)
        self.config = config
        self._access_token: str | None = None
        self._access_token_expires_at = 0.0

    def validate_config(self) -> None:
        """Validate the service account, its private key and package names."""
        account = self.config.service_account or {}
        require(bool(account), "Google Play service account JSON is required")
        require(
            bool(account.get("client_email") and account.get("private_key")),
            "Service account JSON must contain client_email and private_key",
        )
        require(
            len(self.config.package_names) > 0,
            "At least one package name is required",
        )
        invalid = [
            name
            for name in self.config.package_names
            if not PACKAGE_NAME_PATTERN.match(name)
        ]
        require(not invalid, "Invalid package names detected", package_names=invalid)
        self._create_assertion()

    async def _check_auth(self) -> None:
        await self._get_access_token()

    def _create_assertion(self) -> str:
        account = self.config.service_account or {}
        now = int(time.time())
        payload = {
            "iss": account.get("client_email"),
            "scope": SCOPE,
            "aud": account.get("token_uri") or TOKEN_URL,
            "iat": now,
            "exp": now + 3600,
        }
        headers = {}
        if account.get("private_key_id"):
            headers["kid"] = account["private_key_id"]

        try:
            token = cast(
                Union[str, bytes],
                jwt.encode(
                    payload,
                    account.get("private_key", ""),
                    algorithm="RS256",
                    headers=headers or None,
                ),
            )
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise ConfigurationError(f"Invalid service account private key: {e}") from e

        if isinstance(token, bytes):
            return token.decode("utf-8")
        return token

    async def _get_access_token(self) -> str:
        """Exchange the signed assertion for an access token, cached until expiry."""
        if self._access_token and time.time() < self._access_token_expires_at - 60:
            return self._access_token

        account = self.config.service_account or {}
        body = await self._request_json(
            "POST",
            account.get("token_uri") or TOKEN_URL,
            data={
                "grant_type": "urn:ietf:params:oauth:grant-type:jwt-bearer",
                "assertion": self._create_assertion(),
            },
        )
        token = (body or {}).get("access_token")
        if not isinstance(token, str):
            raise FetchError(
                "Token endpoint did not return an access token",
                platform=self.platform.value,
            )

        self._access_token = token
        self._access_token_expires_at = time.time() + float(
            body.get("expires_in", 3600)
        )
        return token

    async def _publisher(
        self, method: str, path: str, expected: tuple[int, ...] = (200,)
    ) -> Any:
        token = await self._get_access_token()
        return await self._request_json(
            method,
            f"{PUBLISHER_URL}/{path}",
            expected=expected,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def fetch_snapshot(self) -> list[EntitySnapshot]:
        """Fetch release states for every configured package."""
        start = time.monotonic()
        logger.info("Starting Play Store data fetch", platform=self.platform.value)

        snapshot: list[EntitySnapshot] = []
        for package_name in self.config.package_names:
            tracks = await self._fetch_tracks(package_name)
            snapshot.extend(self._to_snapshots(package_name, tracks))

        logger.info(
            "Play Store data fetch completed",
            platform=self.platform.value,
            fetch_duration_seconds=round(time.monotonic() - start, 3),
            apps_count=len(self.config.package_names),
            entities_count=len(snapshot),
        )
        return snapshot

    async def _fetch_tracks(self, package_name: str) -> list[dict[str, Any]]:
        """Read all tracks inside a throwaway edit."""
        edit = await self._publisher("POST", f"{package_name}/edits")
        edit_id = (edit or {}).get("id")
        if not edit_id:
            raise FetchError(
                f"Failed to open edit for {package_name}", platform=self.platform.value
            )

        try:
            body = await self._publisher("GET", f"{package_name}/edits/{edit_id}/tracks")
            return cast(list[dict[str, Any]], (body or {}).get("tracks") or [])
        finally:
            try:
                await self._publisher(
                    "DELETE",
                    f"{package_name}/edits/{edit_id}",
                    expected=(200, 204),
                )
            except FetchError as e:
                logger.warning(
                    "Failed to delete edit",
                    package_name=package_name,
                    edit_id=edit_id,
                    error=str(e),
                )

    def _to_snapshots(
        self, package_name: str, tracks: list[dict[str, Any]]
    ) -> list[EntitySnapshot]:
        watched = set(self.config.tracks)
        app_name = self.config.app_name or package_name

        snapshots = []
        for track in tracks:
            track_name = track.get("track") or ""
            if watched and track_name not in watched:
                continue

            for release in track.get("releases") or []:
                codes = [int(code) for code in release.get("versionCodes") or []]
                version_code = max(codes) if codes else None
                snapshots.append(
                    EntitySnapshot(
                        entity=TrackedEntity(
                            self.platform, package_name, "", track_name
                        ),
                        kind=EntityKind.RELEASE,
                        app_name=app_name,
                        status=release.get("status"),
                        version_label=release.get("name")
                        or (str(version_code) if version_code is not None else ""),
                        version_code=version_code,
                        attributes={
                            "track": track_name,
                            "version_codes": codes,
                            "user_fraction": release.get("userFraction"),
                            "release_notes": release.get("releaseNotes") or [],
                        },
                    )
                )
        return snapshots
