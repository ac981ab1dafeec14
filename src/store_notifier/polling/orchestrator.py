"""
Polling orchestrator for the Store Notifier.

This module owns one polling loop per platform: fetch a snapshot, detect
changes against the state store, compose a message and deliver it. Platforms
never block each other, and a failed cycle never stops its platform's timer.
"""

import asyncio
import time
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

import structlog

from ..detection import ChangeDetector, Clock, create_detector
from ..exceptions import ConfigurationError, DeliveryError
from ..models import NotificationPayload, Platform
from ..notifications.composer import MessageComposer
from ..notifications.sink import DeliverySink
from ..sources.base import PlatformSource
from ..state.manager import StateStore

logger = structlog.get_logger(__name__)


class PollState(str, Enum):
    """Per-platform polling state."""

    IDLE = "idle"
    POLLING = "polling"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class PlatformStatus:
    """Tracks polling outcomes for one platform."""

    platform: str
    state: PollState = PollState.IDLE
    last_result: PollState | None = None
    total_polls: int = 0
    failed_polls: int = 0
    consecutive_failures: int = 0
    notifications_generated: int = 0
    deliveries_failed: int = 0
    last_poll_started: datetime | None = None
    last_poll_duration: float | None = None
    last_error: str | None = None
    next_poll_at: datetime | None = None
    last_health: bool | None = None

    def record_success(self, notifications: int) -> None:
        self.last_result = PollState.SUCCESS
        self.consecutive_failures = 0
        self.last_error = None
        self.notifications_generated += notifications

    def record_failure(self, error: Exception) -> None:
        self.last_result = PollState.FAILED
        self.failed_polls += 1
        self.consecutive_failures += 1
        self.last_error = str(error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "last_result": self.last_result.value if self.last_result else None,
            "total_polls": self.total_polls,
            "failed_polls": self.failed_polls,
            "consecutive_failures": self.consecutive_failures,
            "notifications_generated": self.notifications_generated,
            "deliveries_failed": self.deliveries_failed,
            "last_poll_started": (
                self.last_poll_started.isoformat() if self.last_poll_started else None
            ),
            "last_poll_duration_seconds": self.last_poll_duration,
            "last_error": self.last_error,
            "next_poll_at": self.next_poll_at.isoformat() if self.next_poll_at else None,
            "last_health": self.last_health,
        }


class PollingOrchestrator:
    """
    Orchestrates polling across release-management platforms.

    Each registered platform gets its own timer loop. Cycles for different
    platforms run concurrently; each has its own detector so no detected
    change is shared between them, while the state store is shared and
    partitioned by namespace.
    """

    def __init__(
        self,
        state_store: StateStore,
        sources: Iterable[PlatformSource],
        sink: DeliverySink,
        composer: MessageComposer | None = None,
        interval_seconds: float = 90.0,
        initial_delay_seconds: float = 1.0,
        clock: Clock | None = None,
    ):
        """
        Initialize the polling orchestrator.

        Args:
            state_store: Shared store of last observed states
            sources: One source per platform to poll
            sink: Destination of rendered messages
            composer: Message composer (default templates if omitted)
            interval_seconds: Delay between the starts of two polls of a platform
            initial_delay_seconds: Delay before each platform's first poll
            clock: Timestamp source for detectors
        """
        self.state_store = state_store
        self.sink = sink
        self.composer = composer or MessageComposer()
        self.interval_seconds = interval_seconds
        self.initial_delay_seconds = initial_delay_seconds

        self.sources: dict[Platform, PlatformSource] = {}
        self.detectors: dict[Platform, ChangeDetector] = {}
        self.statuses: dict[Platform, PlatformStatus] = {}
        for source in sources:
            self.sources[source.platform] = source
            self.detectors[source.platform] = create_detector(
                source.platform, state_store, clock=clock
            )
            self.statuses[source.platform] = PlatformStatus(source.platform.value)

        # Polling state
        self.is_running_flag = False
        self._stop_event: asyncio.Event | None = None
        self._tasks: dict[Platform, asyncio.Task[None]] = {}
        self._draining: set[asyncio.Task[None]] = set()

        logger.info(
            "Polling orchestrator initialized",
            enabled_platforms=[platform.value for platform in self.sources],
            interval_seconds=interval_seconds,
        )

    def is_running(self) -> bool:
        """Check if polling is currently active."""
        return self.is_running_flag

    async def start(self) -> None:
        """
        Validate configuration and the delivery sink, then start polling.

        Raises:
            ConfigurationError: If no platform is registered or one is misconfigured
            DeliveryError: If the delivery sink is unreachable
        """
        if self.is_running_flag:
            logger.warning("Poller is already running")
            return

        logger.info("Starting polling orchestrator")
        await self._validate_configuration()
        await self._test_sink_connection()

        self.is_running_flag = True
        self._stop_event = asyncio.Event()

        for platform in self.sources:
            self._tasks[platform] = asyncio.create_task(
                self._platform_loop(platform, self._stop_event),
                name=f"poll-{platform.value}",
            )
            logger.info(
                "Started polling for platform",
                platform=platform.value,
                interval_seconds=self.interval_seconds,
            )

        logger.info("Polling orchestrator started successfully")

    async def stop(self) -> None:
        """
        Stop scheduling new polls.

        A poll already in flight runs to completion; use ``wait_closed`` to
        wait for it. Calling this while not running is a no-op.
        """
        if not self.is_running_flag:
            logger.debug("Poller is not running")
            return

        logger.info("Stopping polling orchestrator")
        self.is_running_flag = False
        if self._stop_event is not None:
            self._stop_event.set()

        for platform, task in self._tasks.items():
            if not task.done():
                self._draining.add(task)
            self.statuses[platform].next_poll_at = None
            logger.info("Stopped polling for platform", platform=platform.value)

        self._tasks.clear()
        logger.info("Polling orchestrator stopped successfully")

    async def wait_closed(self) -> None:
        """Wait for loops that were still finishing a poll when stopped."""
        draining = list(self._draining)
        if draining:
            await asyncio.gather(*draining, return_exceptions=True)
            self._draining.difference_update(draining)

    async def _platform_loop(
        self, platform: Platform, stop_event: asyncio.Event
    ) -> None:
        """
        Timer loop for one platform.

        The loop only listens to the stop event it was started with, so a
        loop still draining after ``stop`` never resumes on a later ``start``.
        """
        status = self.statuses[platform]
        delay = self.initial_delay_seconds
        try:
            while True:
                status.next_poll_at = datetime.now(UTC) + timedelta(seconds=delay)
                if await self._wait_for_stop(stop_event, delay):
                    break

                cycle_start = time.monotonic()
                await self.poll_platform(platform)

                if stop_event.is_set():
                    break

                # Fixed cadence: a slow poll shortens the wait rather than shifting it
                delay = max(
                    0.0, self.interval_seconds - (time.monotonic() - cycle_start)
                )
        finally:
            # A newer loop owns the schedule after a restart
            if self._stop_event is stop_event:
                status.next_poll_at = None

    async def _wait_for_stop(self, stop_event: asyncio.Event, delay: float) -> bool:
        """Sleep for ``delay`` seconds; True if stop was requested meanwhile."""
        if stop_event.is_set():
            return True
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def poll_platform(self, platform: Platform) -> list[NotificationPayload]:
        """
        Run one poll cycle for a platform.

        Any failure is logged and recorded on the platform status; it never
        propagates to the caller.

        Returns:
            Notifications generated by the cycle (empty on failure)
        """
        status = self.statuses[platform]
        source = self.sources[platform]
        detector = self.detectors[platform]

        status.state = PollState.POLLING
        status.last_poll_started = datetime.now(UTC)
        start = time.monotonic()
        notifications: list[NotificationPayload] = []

        try:
            logger.debug("Starting platform poll", platform=platform.value)

            snapshot = await source.fetch_snapshot()
            notifications = await detector.process(snapshot)

            if notifications:
                await self._send_notifications(platform, notifications)
                logger.info(
                    "Platform poll completed with notifications",
                    platform=platform.value,
                    notification_count=len(notifications),
                    duration_seconds=round(time.monotonic() - start, 3),
                )
            else:
                logger.debug(
                    "Platform poll completed with no notifications",
                    platform=platform.value,
                    duration_seconds=round(time.monotonic() - start, 3),
                )

            status.record_success(len(notifications))

        except Exception as e:
            status.record_failure(e)
            logger.error(
                "Platform poll failed",
                platform=platform.value,
                error=str(e),
                error_type=type(e).__name__,
                duration_seconds=round(time.monotonic() - start, 3),
                consecutive_failures=status.consecutive_failures,
            )
            notifications = []

        finally:
            status.total_polls += 1
            status.last_poll_duration = round(time.monotonic() - start, 3)
            status.state = PollState.IDLE

        return notifications

    async def _send_notifications(
        self, platform: Platform, notifications: list[NotificationPayload]
    ) -> None:
        """Compose and deliver the notifications of one cycle."""
        if len(notifications) == 1:
            message = self.composer.compose(notifications[0])
        else:
            message = self.composer.compose_batch(notifications)

        if not await self.sink.deliver(message):
            self.statuses[platform].deliveries_failed += 1
            # State was already persisted; the notification is not retried
            raise DeliveryError(
                "Failed to deliver notifications",
                context={
                    "platform": platform.value,
                    "notification_count": len(notifications),
                },
            )

    async def _validate_configuration(self) -> None:
        logger.info("Validating configuration")

        if not self.sources:
            raise ConfigurationError("No platforms configured")

        for platform, source in self.sources.items():
            try:
                source.validate_config()
            except ConfigurationError as e:
                logger.error(
                    "Platform configuration validation failed",
                    platform=platform.value,
                    error=str(e),
                )
                raise

    async def _test_sink_connection(self) -> None:
        logger.info("Testing delivery sink connection")
        if not await self.sink.test_connection():
            raise DeliveryError("Delivery sink connection test failed")

    async def health_check(self) -> dict[str, Any]:
        """
        Check every platform, the state store and the delivery sink.

        Returns:
            Per-component results and an overall ``healthy`` flag
        """
        platform_health: dict[str, bool] = {}
        for platform, source in self.sources.items():
            try:
                healthy = await source.health_check()
            except Exception as e:
                logger.error(
                    "Platform health check failed",
                    platform=platform.value,
                    error=str(e),
                )
                healthy = False
            platform_health[platform.value] = healthy
            self.statuses[platform].last_health = healthy

        state_store_health = self.state_store.is_ready()

        try:
            sink_health = await self.sink.test_connection()
        except Exception as e:
            logger.error("Delivery sink health check failed", error=str(e))
            sink_health = False

        healthy = all(platform_health.values()) and state_store_health and sink_health

        return {
            "status": "healthy" if healthy else "unhealthy",
            "healthy": healthy,
            "platforms": platform_health,
            "state_store": state_store_health,
            "delivery": sink_health,
        }

    def get_status(self) -> dict[str, Any]:
        """Get scheduling state for monitoring."""
        return {
            "is_running": self.is_running_flag,
            "enabled_platforms": [platform.value for platform in self.sources],
            "poll_interval_seconds": self.interval_seconds,
            "platforms": {
                platform.value: status.to_dict()
                for platform, status in self.statuses.items()
            },
            "state_store": self.state_store.get_stats(),
        }
