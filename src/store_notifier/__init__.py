"""
Store Notifier

Watches App Store Connect and the Google Play Console for release status
changes and posts them to Slack.
"""

__version__ = "0.1.0"
__author__ = "Store Notifier"
__email__ = "support@example.com"

from .config import Settings
from .exceptions import StoreNotifierError
from .notifications import MessageComposer, SlackClient
from .polling import PollingOrchestrator
from .state import StateStoreFactory

__all__ = [
    "Settings",
    "StoreNotifierError",
    "MessageComposer",
    "SlackClient",
    "PollingOrchestrator",
    "StateStoreFactory",
]
