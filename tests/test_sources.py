"""
Tests for the platform sources.

HTTP traffic is served by ``httpx.MockTransport`` handlers that emulate the
App Store Connect, Google OAuth and Android Publisher endpoints.
"""

from urllib.parse import parse_qs

import httpx
import jwt
import pytest

from store_notifier.config import AppStoreConfig, PlayStoreConfig
from store_notifier.exceptions import ConfigurationError, FetchError
from store_notifier.models import EntityKind, Platform
from store_notifier.polling import PollingOrchestrator
from store_notifier.sources import AppStoreConnectSource, GooglePlaySource

APPS_RESPONSE = {
    "data": [
        {
            "id": "1234567890",
            "attributes": {"name": "Example App", "bundleId": "com.example.app"},
        }
    ]
}

VERSIONS_RESPONSE = {
    "data": [
        {
            "attributes": {
                "versionString": "2.1.0",
                "appStoreState": "WAITING_FOR_REVIEW",
                "createdDate": "2024-01-10T08:00:00.000+00:00",
            }
        }
    ]
}

BUILDS_RESPONSE = {
    "data": [
        {
            "attributes": {
                "version": "57",
                "processingState": "PROCESSING",
                "uploadedDate": "2024-01-14T09:30:00.000+00:00",
                "iconAssetToken": {
                    "templateUrl": "https://is1-ssl.mzstatic.com/image/{w}x{h}bb.{f}"
                },
            }
        },
        {
            "attributes": {
                "version": "56",
                "processingState": "VALID",
                "uploadedDate": "2024-01-12T09:30:00Z",
            }
        },
    ]
}


class TestAppStoreConnectSource:
    """Test the App Store Connect source."""

    @pytest.fixture(autouse=True)
    def setup(self, ec_private_key, ec_private_key_pem):
        self.public_key = ec_private_key.public_key()
        self.config = AppStoreConfig(
            api_key=ec_private_key_pem,
            api_key_id="ABC123DEFG",
            issuer_id="issuer-1",
            bundle_identifiers=["com.example.app"],
            number_of_builds=2,
        )
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/v1/apps":
            return httpx.Response(200, json=APPS_RESPONSE)
        if path == "/v1/apps/1234567890/appStoreVersions":
            return httpx.Response(200, json=VERSIONS_RESPONSE)
        if path == "/v1/builds":
            return httpx.Response(200, json=BUILDS_RESPONSE)
        return httpx.Response(404, json={"errors": []})

    def source(self, handler=None) -> AppStoreConnectSource:
        return AppStoreConnectSource(
            self.config, transport=httpx.MockTransport(handler or self.handler)
        )

    @pytest.mark.asyncio
    async def test_fetch_snapshot(self):
        source = self.source()

        snapshot = await source.fetch_snapshot()
        await source.aclose()

        assert [s.kind for s in snapshot] == [
            EntityKind.APP,
            EntityKind.BUILD,
            EntityKind.BUILD,
        ]

        app = snapshot[0]
        assert app.status == "WAITING_FOR_REVIEW"
        assert app.version_label == "2.1.0"
        assert app.entity.key == "app-store|com.example.app|2.1.0|app"
        assert app.attributes["app_id"] == "1234567890"

        build = snapshot[1]
        assert build.entity.platform == Platform.APP_STORE
        assert build.entity.key == "app-store|com.example.app|57|build"
        assert build.status == "PROCESSING"
        assert build.uploaded_at.isoformat() == "2024-01-14T09:30:00+00:00"
        assert build.attributes["app_version"] == "2.1.0"
        assert build.attributes["app_status"] == "WAITING_FOR_REVIEW"
        assert build.attributes["icon_url"] == (
            "https://is1-ssl.mzstatic.com/image/100x100bb.png"
        )
        assert snapshot[2].uploaded_at is not None

    @pytest.mark.asyncio
    async def test_requests_are_signed(self):
        source = self.source()

        await source.fetch_snapshot()

        token = self.requests[0].headers["Authorization"].removeprefix("Bearer ")
        claims = jwt.decode(
            token, self.public_key, algorithms=["ES256"], audience="appstoreconnect-v1"
        )
        assert claims["iss"] == "issuer-1"
        assert claims["exp"] - claims["iat"] == 20 * 60
        assert jwt.get_unverified_header(token)["kid"] == "ABC123DEFG"

    @pytest.mark.asyncio
    async def test_query_parameters(self):
        source = self.source()

        await source.fetch_snapshot()

        apps_query = parse_qs(self.requests[0].url.query.decode())
        assert apps_query["filter[bundleId]"] == ["com.example.app"]

        builds_request = next(r for r in self.requests if r.url.path == "/v1/builds")
        builds_query = parse_qs(builds_request.url.query.decode())
        assert builds_query["filter[app]"] == ["1234567890"]
        assert builds_query["sort"] == ["-uploadedDate"]
        assert builds_query["limit"] == ["2"]

    @pytest.mark.asyncio
    async def test_app_without_versions_still_reports_builds(self):
        def handler(request):
            if request.url.path.endswith("/appStoreVersions"):
                return httpx.Response(200, json={"data": []})
            return self.handler(request)

        snapshot = await self.source(handler).fetch_snapshot()

        assert [s.kind for s in snapshot] == [EntityKind.BUILD, EntityKind.BUILD]
        assert snapshot[0].attributes["app_version"] == ""

    @pytest.mark.asyncio
    async def test_server_error_raises_fetch_error(self):
        def handler(request):
            return httpx.Response(500, text="internal error")

        with pytest.raises(FetchError) as exc_info:
            await self.source(handler).fetch_snapshot()

        assert exc_info.value.status_code == 500
        assert exc_info.value.platform == "app-store"

    @pytest.mark.asyncio
    async def test_network_error_raises_fetch_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(FetchError):
            await self.source(handler).fetch_snapshot()

    def test_validate_config(self):
        self.source().validate_config()

    def test_username_auth_is_rejected(self):
        source = AppStoreConnectSource(
            AppStoreConfig(username="dev@example.com", bundle_identifiers=["a.b"])
        )

        with pytest.raises(ConfigurationError, match="not supported"):
            source.validate_config()

    def test_missing_bundle_identifiers(self):
        config = self.config.model_copy(update={"bundle_identifiers": []})

        with pytest.raises(ConfigurationError):
            AppStoreConnectSource(config).validate_config()

    def test_unreadable_key_fails_validation(self):
        config = self.config.model_copy(update={"api_key": "not a pem key"})

        with pytest.raises(ConfigurationError, match="Invalid App Store"):
            AppStoreConnectSource(config).validate_config()

    @pytest.mark.asyncio
    async def test_unreadable_key_stops_startup(self, state_store, mock_sink):
        config = self.config.model_copy(update={"api_key": "not a pem key"})
        source = AppStoreConnectSource(
            config, transport=httpx.MockTransport(self.handler)
        )
        orchestrator = PollingOrchestrator(state_store, [source], mock_sink)

        with pytest.raises(ConfigurationError):
            await orchestrator.start()

        assert not orchestrator.is_running()
        assert self.requests == []

    @pytest.mark.asyncio
    async def test_health_check_with_invalid_key(self):
        config = self.config.model_copy(update={"api_key": "not a pem key"})

        assert await AppStoreConnectSource(config).health_check() is False

    @pytest.mark.asyncio
    async def test_health_check(self):
        assert await self.source().health_check() is True


TRACKS_RESPONSE = {
    "tracks": [
        {
            "track": "production",
            "releases": [
                {
                    "name": "2.1.0",
                    "versionCodes": ["41", "42"],
                    "status": "inProgress",
                    "userFraction": 0.2,
                },
                {"name": "2.0.0", "versionCodes": ["40"], "status": "completed"},
            ],
        },
        {
            "track": "beta",
            "releases": [{"status": "draft"}],
        },
        {
            "track": "qa",
            "releases": [{"versionCodes": ["43"], "status": "completed"}],
        },
    ]
}

PUBLISHER_PREFIX = "/androidpublisher/v3/applications/com.example.app"


class TestGooglePlaySource:
    """Test the Google Play Console source."""

    @pytest.fixture(autouse=True)
    def setup(self, rsa_private_key, service_account):
        self.public_key = rsa_private_key.public_key()
        self.config = PlayStoreConfig(
            service_account=service_account,
            package_names=["com.example.app"],
            tracks=["internal", "alpha", "beta", "production"],
            app_name="Example App",
        )
        self.requests: list[httpx.Request] = []
        self.tracks_status = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.url.host == "oauth2.googleapis.com":
            return httpx.Response(
                200, json={"access_token": "ya29.token", "expires_in": 3600}
            )
        if request.method == "POST" and path == f"{PUBLISHER_PREFIX}/edits":
            return httpx.Response(200, json={"id": "edit-1"})
        if request.method == "GET" and path == f"{PUBLISHER_PREFIX}/edits/edit-1/tracks":
            if self.tracks_status != 200:
                return httpx.Response(self.tracks_status, text="error")
            return httpx.Response(200, json=TRACKS_RESPONSE)
        if request.method == "DELETE" and path == f"{PUBLISHER_PREFIX}/edits/edit-1":
            return httpx.Response(204)
        return httpx.Response(404)

    def source(self) -> GooglePlaySource:
        return GooglePlaySource(self.config, transport=httpx.MockTransport(self.handler))

    @pytest.mark.asyncio
    async def test_fetch_snapshot(self):
        snapshot = await self.source().fetch_snapshot()

        assert len(snapshot) == 3
        assert {s.entity.context for s in snapshot} == {"production", "beta"}

        rollout = snapshot[0]
        assert rollout.kind == EntityKind.RELEASE
        assert rollout.entity.key == "play-store|com.example.app||production"
        assert rollout.version_code == 42
        assert rollout.version_label == "2.1.0"
        assert rollout.status == "inProgress"
        assert rollout.app_name == "Example App"
        assert rollout.attributes["version_codes"] == [41, 42]
        assert rollout.attributes["user_fraction"] == 0.2

        draft = snapshot[2]
        assert draft.version_code is None
        assert draft.version_label == ""

    @pytest.mark.asyncio
    async def test_edit_lifecycle(self):
        source = self.source()

        await source.fetch_snapshot()

        calls = [(r.method, r.url.path) for r in self.requests]
        assert calls == [
            ("POST", "/token"),
            ("POST", f"{PUBLISHER_PREFIX}/edits"),
            ("GET", f"{PUBLISHER_PREFIX}/edits/edit-1/tracks"),
            ("DELETE", f"{PUBLISHER_PREFIX}/edits/edit-1"),
        ]
        assert self.requests[1].headers["Authorization"] == "Bearer ya29.token"

    @pytest.mark.asyncio
    async def test_edit_is_deleted_when_tracks_fail(self):
        self.tracks_status = 500
        source = self.source()

        with pytest.raises(FetchError):
            await source.fetch_snapshot()

        assert self.requests[-1].method == "DELETE"

    @pytest.mark.asyncio
    async def test_access_token_is_cached(self):
        source = self.source()

        await source.fetch_snapshot()
        await source.fetch_snapshot()

        token_requests = [r for r in self.requests if r.url.path == "/token"]
        assert len(token_requests) == 1

    @pytest.mark.asyncio
    async def test_assertion_is_signed(self, service_account):
        await self.source().fetch_snapshot()

        form = parse_qs(self.requests[0].content.decode())
        assert form["grant_type"] == ["urn:ietf:params:oauth:grant-type:jwt-bearer"]

        assertion = form["assertion"][0]
        claims = jwt.decode(
            assertion,
            self.public_key,
            algorithms=["RS256"],
            audience="https://oauth2.googleapis.com/token",
        )
        assert claims["iss"] == service_account["client_email"]
        assert claims["scope"] == "https://www.googleapis.com/auth/androidpublisher"
        assert jwt.get_unverified_header(assertion)["kid"] == "key-123"

    @pytest.mark.asyncio
    async def test_missing_access_token(self):
        def handler(request):
            return httpx.Response(200, json={"error": "invalid_grant"})

        source = GooglePlaySource(self.config, transport=httpx.MockTransport(handler))

        with pytest.raises(FetchError, match="access token"):
            await source.fetch_snapshot()

    def test_validate_config(self):
        self.source().validate_config()

    def test_missing_service_account(self):
        config = self.config.model_copy(update={"service_account": None})

        with pytest.raises(ConfigurationError):
            GooglePlaySource(config).validate_config()

    def test_unreadable_private_key_fails_validation(self, service_account):
        account = {**service_account, "private_key": "not a pem key"}
        config = self.config.model_copy(update={"service_account": account})

        with pytest.raises(ConfigurationError, match="Invalid service account"):
            GooglePlaySource(config).validate_config()

    def test_invalid_package_name(self):
        config = self.config.model_copy(update={"package_names": ["not a package"]})

        with pytest.raises(ConfigurationError) as exc_info:
            GooglePlaySource(config).validate_config()

        assert exc_info.value.context == {"package_names": ["not a package"]}
