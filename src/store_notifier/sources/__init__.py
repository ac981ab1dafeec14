"""
Platform sources for the Store Notifier.

Each source fetches the current state of one release-management backend and
normalizes it into entity snapshots.
"""

from .app_store_connect import AppStoreConnectSource
from .base import PlatformSource
from .google_play import GooglePlaySource

__all__ = ["PlatformSource", "AppStoreConnectSource", "GooglePlaySource"]
