#!/usr/bin/env python3
"""
Main application entry point for the Store Notifier.

This module configures logging, wires the state store, platform sources,
Slack sink and polling orchestrator together, and runs them until a
shutdown signal arrives.
"""

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from typing import Any

import structlog
from aiohttp import web
from pydantic import ValidationError

from .config import Settings
from .exceptions import StoreNotifierError
from .models import Platform
from .notifications.sink import DeliverySink
from .notifications.slack_client import SlackClient
from .polling.orchestrator import PollingOrchestrator
from .sources.app_store_connect import AppStoreConnectSource
from .sources.base import PlatformSource
from .sources.google_play import GooglePlaySource
from .state.manager import StateStore, StateStoreFactory

logger = structlog.get_logger(__name__)

ENVIRONMENT_HELP = """
environment variables:
  SLACK_WEBHOOK_URL                 Slack incoming webhook URL (required)
  SLACK_CHANNEL_NAME                Default channel (default: #notifications)
  POLL_TIME_IN_SECONDS              Polling interval per platform (default: 90)
  INITIAL_POLL_DELAY_SECONDS        Delay before the first poll (default: 1)
  SPACESHIP_CONNECT_API_KEY         App Store Connect API private key
  SPACESHIP_CONNECT_API_KEY_ID      App Store Connect API key ID
  SPACESHIP_CONNECT_API_ISSUER_ID   App Store Connect API issuer ID
  BUNDLE_IDENTIFIERS                Comma-separated bundle identifiers
  NUMBER_OF_BUILDS                  Builds checked per app (default: 2)
  GOOGLE_PLAY_JSON_KEY_DATA         Base64 service account JSON
  GOOGLE_PLAY_PACKAGE_NAMES         Comma-separated package names
  GOOGLE_PLAY_TRACKS                Watched tracks (default: internal,alpha,beta,production)
  APP_NAME                          Display name used in Play notifications
  STATE_DB_PATH                     State file; empty keeps state in memory
  HEALTH_PORT                       Port for /health and /status (0 disables)
  LOG_LEVEL                         DEBUG, INFO, WARNING, ERROR or CRITICAL
  LOG_FORMAT                        console or json
"""


def setup_logging(log_level: str = "INFO", log_format: str = "console") -> None:
    """Configure structured logging."""
    logging.basicConfig(level=getattr(logging, log_level), format="%(message)s")
    logging.getLogger().setLevel(getattr(logging, log_level))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            (
                structlog.processors.JSONRenderer()
                if log_format == "json"
                else structlog.dev.ConsoleRenderer()
            ),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_sources(settings: Settings) -> list[PlatformSource]:
    """Create one source per platform enabled by the settings."""
    sources: list[PlatformSource] = []
    for platform in settings.enabled_platforms:
        if platform == Platform.APP_STORE:
            sources.append(AppStoreConnectSource(settings.app_store_config))
        elif platform == Platform.PLAY_STORE:
            sources.append(GooglePlaySource(settings.play_store_config))
    return sources


class StoreNotifierApp:
    """Main application class."""

    def __init__(
        self,
        settings: Settings,
        state_store: StateStore | None = None,
        sources: list[PlatformSource] | None = None,
        sink: DeliverySink | None = None,
    ) -> None:
        """
        Initialize the application.

        Components not passed in are built from ``settings`` during
        ``initialize``.
        """
        self.settings = settings
        self.state_store = state_store
        self.sources = sources
        self.sink = sink
        self.polling_orchestrator: PollingOrchestrator | None = None
        self._shutdown_event = asyncio.Event()
        self._stopped = False
        self._web_runner: web.AppRunner | None = None
        self._background_tasks: set[asyncio.Task[Any]] = set()

    async def initialize(self) -> None:
        """
        Validate configuration and build all components.

        Raises:
            ConfigurationError: If the configuration is unusable
            StateStoreError: If the state store cannot be opened
        """
        logger.info("Initializing Store Notifier")

        self.settings.validate_config()

        if self.state_store is None:
            self.state_store = StateStoreFactory.create_state_store(
                self.settings.state_db_path or None
            )
        await self.state_store.open()
        logger.info(
            "State store initialized", store_type=type(self.state_store).__name__
        )

        if self.sources is None:
            self.sources = build_sources(self.settings)

        if self.sink is None:
            self.sink = SlackClient(self.settings.slack_config)

        polling = self.settings.polling_config
        self.polling_orchestrator = PollingOrchestrator(
            state_store=self.state_store,
            sources=self.sources,
            sink=self.sink,
            interval_seconds=polling.interval_seconds,
            initial_delay_seconds=polling.initial_delay_seconds,
        )

        logger.info(
            "Store Notifier initialization complete",
            platforms=[source.platform.value for source in self.sources],
        )

    async def start(self) -> None:
        """
        Start polling and, if configured, the health server.

        Raises:
            ConfigurationError: If a platform is misconfigured
            DeliveryError: If the delivery sink is unreachable
        """
        if self.polling_orchestrator is None:
            raise RuntimeError("Application not initialized")

        await self.polling_orchestrator.start()

        if self.settings.health_port > 0:
            await self._start_web_server(self.settings.health_port)

    async def stop(self) -> None:
        """Stop polling and release resources. Safe to call more than once."""
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping Store Notifier")

        if self.polling_orchestrator:
            await self.polling_orchestrator.stop()
            await self.polling_orchestrator.wait_closed()

        await self._stop_web_server()

        for source in self.sources or []:
            await source.aclose()
        if self.sink:
            await self.sink.aclose()
        if self.state_store:
            await self.state_store.close()

        self._shutdown_event.set()
        logger.info("Store Notifier stopped")

    def request_shutdown(self, signum: int | None = None) -> None:
        """Ask the run loop to shut down."""
        logger.info("Received shutdown signal, initiating shutdown", signal=signum)
        self._shutdown_event.set()

    def setup_signal_handlers(self) -> None:
        """Set up signal handlers for graceful shutdown and health logging."""
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, self.request_shutdown, signum)
        if hasattr(signal, "SIGUSR2"):
            loop.add_signal_handler(signal.SIGUSR2, self._schedule_health_log)

    def _schedule_health_log(self) -> None:
        task = asyncio.create_task(self.log_health())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def log_health(self) -> dict[str, Any]:
        """Run a health check and log the result."""
        health = await self.health_check()
        if health["healthy"]:
            logger.info("Health check passed", **health)
        else:
            logger.warning("Health check failed", **health)
        return health

    async def health_check(self) -> dict[str, Any]:
        """Aggregate health of every component."""
        if self.polling_orchestrator is None:
            return {"status": "unhealthy", "healthy": False, "error": "not_initialized"}
        return await self.polling_orchestrator.health_check()

    async def run(self) -> int:
        """
        Run until a shutdown signal arrives.

        Returns:
            Process exit code
        """
        try:
            await self.initialize()
            await self.start()
        except StoreNotifierError as e:
            logger.error(
                "Failed to start Store Notifier",
                error=str(e),
                error_type=type(e).__name__,
                **e.context,
            )
            await self.stop()
            return 1

        self.setup_signal_handlers()
        logger.info("Store Notifier running")

        await self._shutdown_event.wait()
        await self.stop()
        return 0

    async def _create_web_app(self) -> web.Application:
        """Create the web application for health checks."""
        app = web.Application()

        async def health_handler(request: web.Request) -> web.Response:
            try:
                health_data = await self.health_check()
                status_code = 200 if health_data["healthy"] else 503
                return web.json_response(health_data, status=status_code)
            except Exception as e:
                logger.error("Health check failed", error=str(e))
                return web.json_response(
                    {"status": "unhealthy", "healthy": False, "error": str(e)},
                    status=503,
                )

        async def status_handler(request: web.Request) -> web.Response:
            if self.polling_orchestrator is None:
                return web.json_response({"is_running": False}, status=503)
            return web.json_response(self.polling_orchestrator.get_status())

        app.router.add_get("/health", health_handler)
        app.router.add_get("/status", status_handler)
        return app

    async def _start_web_server(self, port: int) -> None:
        """Start the web server for health checks."""
        web_app = await self._create_web_app()
        self._web_runner = web.AppRunner(web_app)
        await self._web_runner.setup()

        site = web.TCPSite(self._web_runner, "0.0.0.0", port)
        await site.start()
        logger.info("Health check server started", port=port)

    async def _stop_web_server(self) -> None:
        """Stop the web server."""
        if self._web_runner:
            await self._web_runner.cleanup()
            self._web_runner = None
            logger.info("Health check server stopped")


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="store-notifier",
        description="Post App Store Connect and Google Play release updates to Slack.",
        epilog=ENVIRONMENT_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--debug", action="store_true", help="Enable debug logging"
    )
    return parser


def main(argv: Sequence[str] | None = None) -> None:
    """Console script entry point."""
    args = create_parser().parse_args(argv)

    try:
        settings = Settings()
    except ValidationError as e:
        setup_logging()
        logger.error("Invalid configuration", error=str(e))
        sys.exit(1)

    setup_logging("DEBUG" if args.debug else settings.log_level, settings.log_format)

    app = StoreNotifierApp(settings)
    sys.exit(asyncio.run(app.run()))


if __name__ == "__main__":
    main()
