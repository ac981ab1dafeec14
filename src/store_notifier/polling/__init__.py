"""
Polling system for the Store Notifier.

Runs one polling loop per platform and routes detected changes to the
delivery sink.
"""

from .orchestrator import PlatformStatus, PollingOrchestrator, PollState

__all__ = ["PollingOrchestrator", "PlatformStatus", "PollState"]
