"""
Slack incoming-webhook delivery sink.
"""

import httpx
import structlog

from ..config import SlackConfig
from ..exceptions import DeliveryError
from ..models import SlackMessage
from .sink import DeliverySink

logger = structlog.get_logger(__name__)


class SlackClient(DeliverySink):
    """Posts messages to a Slack incoming webhook."""

    def __init__(
        self,
        config: SlackConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = config.webhook_url
        self.channel_name = config.channel_name
        self._client = httpx.AsyncClient(transport=transport)
        logger.info("Slack client initialized", channel=self.channel_name)

    async def _post(self, payload: dict) -> httpx.Response:
        try:
            response = await self._client.post(self.webhook_url, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise DeliveryError(f"Slack webhook unreachable: {e}") from e
        return response

    async def deliver(self, message: SlackMessage) -> bool:
        """Send a message; returns False instead of raising on failure."""
        payload = message.to_payload(default_channel=self.channel_name)
        try:
            response = await self._post(payload)
            if response.status_code != 200:
                raise DeliveryError(
                    f"Slack rejected message: {response.text[:200]}",
                    status_code=response.status_code,
                )
        except DeliveryError as e:
            logger.error(
                "Failed to send Slack message",
                error=str(e),
                status_code=e.status_code,
                channel=payload.get("channel"),
            )
            return False

        logger.info(
            "Slack message sent successfully",
            channel=payload.get("channel"),
            attachment_count=len(message.attachments),
        )
        return True

    async def test_connection(self) -> bool:
        """
        Check that the webhook endpoint answers.

        An empty payload is rejected by Slack without posting anything, so any
        HTTP answer below 500 proves the endpoint is reachable.
        """
        try:
            response = await self._post({})
        except DeliveryError as e:
            logger.error("Slack connection test failed", error=str(e))
            return False

        if response.status_code >= 500:
            logger.error(
                "Slack connection test failed", status_code=response.status_code
            )
            return False

        logger.info("Slack connection test passed")
        return True

    async def aclose(self) -> None:
        await self._client.aclose()
