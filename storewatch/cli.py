"""Command line entry point for the store monitoring worker.

Usage:
    storewatch run                       # visual + ping cycles until SIGTERM
    storewatch run --once visual         # one visual cycle, then exit
    storewatch run --once all            # one cycle of each, then exit
    storewatch add-store shop.example.com --owner-chat-id 12345
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sqlite3
from typing import Optional

import httpx
import structlog

from storewatch.capture.renderer import PlaywrightRenderService
from storewatch.checks.failures import FailureTracker
from storewatch.checks.pipeline import VisualCheckPipeline
from storewatch.checks.prober import AvailabilityProber
from storewatch.config import WatchConfig, load_config
from storewatch.diffing.image_diff import ImageDiffEngine
from storewatch.errors import StoreListingError
from storewatch.notifications.telegram_bot import AlertNotifier
from storewatch.scheduler.coordinator import MonitorCoordinator
from storewatch.storage.artifacts import build_artifact_store
from storewatch.storage.database import StoreRepository


logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1


def configure_logging(level: str = "INFO") -> None:
    """Configure structured console logging."""
    numeric = getattr(logging, str(level).upper(), logging.INFO)
    logging.basicConfig(level=numeric, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Avoid leaking secrets (the Telegram token is embedded in the API URL).
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_coordinator(
    config: WatchConfig,
    repository: StoreRepository,
    http_client: httpx.AsyncClient,
) -> MonitorCoordinator:
    """Wire the collaborators together."""
    artifacts = build_artifact_store(config)
    renderer = PlaywrightRenderService(ws_endpoint=config.browser_ws_endpoint, headless=config.browser_headless)
    notifier = AlertNotifier(
        bot_token=config.telegram_bot_token,
        fallback_chat_id=config.telegram_chat_id,
        dashboard_url=config.dashboard_url,
    )
    failures = FailureTracker(repository, max_failures=config.max_failures_before_inactive)
    diff_engine = ImageDiffEngine(
        diff_threshold_percent=config.diff_threshold_percent,
        pixel_threshold=config.pixel_threshold,
        artifacts=artifacts,
    )
    pipeline = VisualCheckPipeline(config, repository, artifacts, renderer, diff_engine, failures, notifier)
    prober = AvailabilityProber(
        repository,
        notifier,
        http_client,
        timeout_seconds=config.probe_timeout_seconds,
        alert_cooldown_seconds=config.ping_alert_cooldown_seconds,
    )
    return MonitorCoordinator(config, repository, pipeline, prober, renderer)


async def _wait_for_shutdown() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, stop.set)
    await stop.wait()


def _log_status(coordinator: MonitorCoordinator) -> None:
    status = coordinator.get_status()
    logger.info(
        "Coordinator status",
        visual_running=status["visual_running"],
        ping_running=status["ping_running"],
        jobs=status["jobs"],
        recent_cycles=status["recent_cycles"],
    )


async def run_service(config: WatchConfig, once: Optional[str] = None) -> int:
    """Run the worker; returns the process exit code."""
    try:
        repository = StoreRepository(config.database_path)
    except (sqlite3.Error, OSError, ValueError) as e:
        logger.error("Cannot open database", error=str(e))
        return EXIT_STARTUP_FAILURE

    try:
        async with httpx.AsyncClient(headers={"User-Agent": config.user_agent}) as http_client:
            coordinator = build_coordinator(config, repository, http_client)
            try:
                coordinator.preflight()
            except StoreListingError as e:
                logger.error("Cannot read active stores, aborting", error=str(e))
                return EXIT_STARTUP_FAILURE

            if once:
                if once in ("visual", "all"):
                    await coordinator.run_visual_cycle()
                if once in ("ping", "all"):
                    await coordinator.run_ping_cycle()
                _log_status(coordinator)
                await coordinator.stop()
                return EXIT_OK

            coordinator.start()
            logger.info(
                "Worker started",
                visual_every_seconds=config.visual_interval_seconds,
                ping_every_seconds=config.ping_interval_seconds,
            )
            await _wait_for_shutdown()
            logger.info("Termination signal received, shutting down")
            _log_status(coordinator)
            await coordinator.stop()
            return EXIT_OK
    finally:
        repository.close()


def add_store(config: WatchConfig, url: str, owner_chat_id: Optional[str]) -> int:
    repository = StoreRepository(config.database_path)
    try:
        store = repository.add_store(url, owner_chat_id=owner_chat_id)
    finally:
        repository.close()
    print(f"Added store {store.id}: {store.full_url}")
    return EXIT_OK


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="storewatch", description="Visual and availability monitoring for stores")
    parser.add_argument("--config", default=None, help="Path to YAML config (default: $STOREWATCH_CONFIG)")
    parser.add_argument("--log-level", default=None, help="Logging level (INFO, WARNING, ...)")
    sub = parser.add_subparsers(dest="command")

    run_parser = sub.add_parser("run", help="Run the monitoring worker")
    run_parser.add_argument("--once", choices=("visual", "ping", "all"), help="Run the given cycle(s) once and exit")

    add_parser = sub.add_parser("add-store", help="Register a store to monitor")
    add_parser.add_argument("url")
    add_parser.add_argument("--owner-chat-id", default=None, help="Telegram chat that receives this store's alerts")

    args = parser.parse_args(argv)
    config = load_config(args.config)
    configure_logging(args.log_level or config.log_level)

    if args.command == "add-store":
        return add_store(config, args.url, args.owner_chat_id)
    return asyncio.run(run_service(config, once=getattr(args, "once", None)))


if __name__ == "__main__":
    raise SystemExit(main())
