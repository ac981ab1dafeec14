"""
Platform source interface.

A platform source fetches the current state of apps, builds and releases from
one backend and returns it as a list of normalized entity snapshots.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx
import structlog

from ..exceptions import ConfigurationError, FetchError
from ..models import EntitySnapshot, Platform

logger = structlog.get_logger(__name__)


class PlatformSource(ABC):
    """Abstract base class for release-management backends."""

    platform: Platform

    def __init__(self, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @abstractmethod
    def validate_config(self) -> None:
        """
        Validate this source's configuration.

        Raises:
            ConfigurationError: If credentials or identifiers are missing or invalid
        """
        pass

    @abstractmethod
    async def fetch_snapshot(self) -> list[EntitySnapshot]:
        """
        Fetch the current state of every watched entity.

        Returns:
            Normalized snapshot records

        Raises:
            FetchError: If the backend call fails
        """
        pass

    async def health_check(self) -> bool:
        """Check that the source is configured and can authenticate."""
        try:
            self.validate_config()
            await self._check_auth()
        except Exception as e:
            logger.error(
                "Platform health check failed",
                platform=self.platform.value,
                error=str(e),
            )
            return False

        logger.debug("Platform health check passed", platform=self.platform.value)
        return True

    async def _check_auth(self) -> None:
        """Hook for sources that can verify credentials cheaply."""

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(transport=self._transport)
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        expected: tuple[int, ...] = (200,),
        **kwargs: Any,
    ) -> Any:
        """Perform a request and decode the JSON body, mapping failures to FetchError."""
        try:
            response = await self._get_client().request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise FetchError(
                f"{method} {url} failed: {e}", platform=self.platform.value
            ) from e

        if response.status_code not in expected:
            raise FetchError(
                f"{method} {url} returned {response.status_code}: {response.text[:200]}",
                platform=self.platform.value,
                status_code=response.status_code,
            )

        if not response.content:
            return None

        try:
            return response.json()
        except ValueError as e:
            raise FetchError(
                f"{method} {url} returned invalid JSON",
                platform=self.platform.value,
                status_code=response.status_code,
            ) from e


def require(condition: bool, message: str, **context: Any) -> None:
    """Raise ConfigurationError unless ``condition`` holds."""
    if not condition:
        raise ConfigurationError(message, context=context or None)
