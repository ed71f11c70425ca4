"""
cfdns/app.py

Responsibility: Process entry point — parses flags, performs the startup
sequence, installs signal handlers and hands control to the Supervisor.
Does NOT: contain reconciliation, resolution, or scheduling logic.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from pathlib import Path

import httpx

from cfdns import __version__
from cfdns.cloudflare.cloudflare_client import CloudflareClient
from cfdns.config import DEFAULT_CONFIG_FILE, Configuration, load_config
from cfdns.exceptions import (
    ConfigLoadError,
    ConfigReplaceError,
    DnsProviderError,
    TaskCancelledError,
)
from cfdns.logger import configure_logging, set_verbose
from cfdns.scheduler import Supervisor
from cfdns.services.config_store import ConfigStore
from cfdns.services.dns_service import DnsService
from cfdns.services.ip_service import IpService
from cfdns.watcher import ConfigWatcher

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STARTUP_FAILURE = 1


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="cfdns",
        description="Keep Cloudflare DNS records pointed at this host's public IP addresses.",
    )
    p.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path(DEFAULT_CONFIG_FILE),
        help=f"Configuration file, .yaml/.yml or .json (default: {DEFAULT_CONFIG_FILE})",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p.parse_args(argv)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # NOTE: Windows event loops lack add_signal_handler; Ctrl+C there
        # surfaces as KeyboardInterrupt from asyncio.run instead.
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)


async def serve(config_path: Path, stop: asyncio.Event | None = None) -> int:
    """
    Runs the full service until stopped.

    Args:
        config_path: The configuration file to load and watch.
        stop: Event ending the run; a fresh one wired to SIGINT/SIGTERM
              is created when omitted.

    Returns:
        The process exit code.
    """
    # NOTE: the baseline snapshot is taken before the first read, so an edit
    # made during startup still triggers a reload.
    watcher = ConfigWatcher(config_path)
    try:
        watcher.start()
    except OSError as exc:
        logger.critical("Cannot watch config directory %s: %s", watcher.path.parent, exc)
        return EXIT_STARTUP_FAILURE
    try:
        return await _serve(config_path, watcher, stop)
    finally:
        watcher.stop()


async def _serve(config_path: Path, watcher: ConfigWatcher, stop: asyncio.Event | None) -> int:
    try:
        config = load_config(config_path)
    except ConfigLoadError as exc:
        logger.critical("Failed to load config file: %s", exc)
        return EXIT_STARTUP_FAILURE
    set_verbose(config.verbose)

    if stop is None:
        stop = asyncio.Event()
        _install_signal_handlers(stop)

    async with httpx.AsyncClient(timeout=config.timeout) as http_client:

        def build_provider(cfg: Configuration) -> CloudflareClient:
            return CloudflareClient(http_client=http_client, api_token=cfg.token.get_secret_value())

        store = ConfigStore(build_provider)
        try:
            await store.replace(config)
        except ConfigReplaceError as exc:
            logger.critical("Failed to create cfdns instance: %s", exc)
            return EXIT_STARTUP_FAILURE

        engine = DnsService(store, IpService(http_client))

        try:
            zone_ok = await engine.validate_zone()
        except (DnsProviderError, asyncio.TimeoutError, TaskCancelledError) as exc:
            logger.critical("Could not validate zone %s: %s", config.zone_id, exc or type(exc).__name__)
            zone_ok = False
        if not zone_ok:
            logger.critical("Zone %s is not accessible with the configured token.", config.zone_id)
            await store.aclose()
            return EXIT_STARTUP_FAILURE

        supervisor = Supervisor(config_path, store, engine, watcher)
        await supervisor.run(stop)

    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    configure_logging()
    logger.info("Starting cfdns %s...", __version__)
    try:
        return asyncio.run(serve(args.config))
    except KeyboardInterrupt:
        logger.warning("Interrupted.")
        return EXIT_OK
