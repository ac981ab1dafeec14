"""
Notification rendering and delivery for the Store Notifier.
"""

from .composer import BATCH_DISPLAY_LIMIT, MessageComposer
from .formatters import AppStoreFormatter, BaseFormatter, PlayStoreFormatter
from .sink import DeliverySink
from .slack_client import SlackClient

__all__ = [
    "MessageComposer",
    "BATCH_DISPLAY_LIMIT",
    "BaseFormatter",
    "AppStoreFormatter",
    "PlayStoreFormatter",
    "DeliverySink",
    "SlackClient",
]
