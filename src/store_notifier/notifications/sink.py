"""
Delivery sink interface.
"""

from abc import ABC, abstractmethod

from ..models import SlackMessage


class DeliverySink(ABC):
    """Destination for rendered messages."""

    @abstractmethod
    async def deliver(self, message: SlackMessage) -> bool:
        """
        Deliver a rendered message.

        Returns:
            True if the sink accepted the message; failures are reported as
            False rather than raised
        """
        pass

    @abstractmethod
    async def test_connection(self) -> bool:
        """Check that the sink is reachable."""
        pass

    async def aclose(self) -> None:
        """Release any held resources."""
