"""
cfdns/scheduler.py

Responsibility: Sets up the APScheduler AsyncIOScheduler that drives
reconciliation cycles, reacts to configuration file changes, and runs the
shutdown sequence.
Does NOT: contain DNS business logic, config parsing, or HTTP calls directly
— those are delegated entirely to DnsService, load_config and ConfigStore.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from pathlib import Path

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from cfdns.config import Configuration, load_config
from cfdns.exceptions import ConfigLoadError, ConfigReplaceError, PoolClosedError
from cfdns.logger import format_duration, set_verbose
from cfdns.services.config_store import ConfigStore
from cfdns.services.dns_service import CycleReport, DnsService
from cfdns.watcher import ChangeSignal, ConfigWatcher

logger = logging.getLogger(__name__)

# Job ID used to identify the reconciliation job in APScheduler
_JOB_ID = "cfdns_cycle"


# ---------------------------------------------------------------------------
# Scheduler helpers
# ---------------------------------------------------------------------------


def create_scheduler(
    job: Callable[[], Awaitable[object]],
    interval_seconds: float,
) -> AsyncIOScheduler:
    """
    Creates and returns a configured AsyncIOScheduler with the cycle job.

    The job runs immediately on start (next_run_time=now) and then at the
    configured interval.

    Args:
        job: Coroutine function running one reconciliation cycle.
        interval_seconds: Seconds between cycles.

    Returns:
        A configured but not yet started AsyncIOScheduler.
    """
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        job,
        trigger="interval",
        seconds=interval_seconds,
        id=_JOB_ID,
        # NOTE: next_run_time=now triggers the first cycle immediately on
        # startup rather than waiting a full interval.
        next_run_time=datetime.now(timezone.utc),
        max_instances=1,  # Never overlap cycles if one runs long
        coalesce=True,
    )
    logger.info("Reconciliation job scheduled — interval: %s.", format_duration(interval_seconds))
    return scheduler


def reschedule(scheduler: AsyncIOScheduler, interval_seconds: float, run_now: bool = True) -> None:
    """
    Changes the cycle job's interval without restarting the scheduler.

    Args:
        scheduler: The running AsyncIOScheduler.
        interval_seconds: New interval in seconds.
        run_now: Also run the job right away instead of after the interval.
    """
    scheduler.reschedule_job(_JOB_ID, trigger="interval", seconds=interval_seconds)
    if run_now:
        scheduler.modify_job(_JOB_ID, next_run_time=datetime.now(timezone.utc))
    logger.info("Reconciliation job rescheduled — interval: %s.", format_duration(interval_seconds))


# ---------------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------------


class Supervisor:
    """
    Ties the engine, config store and file watcher into a run-forever loop.

    A cycle starts when the interval elapses or right after a successful
    reload; a stop event ends everything.

    Collaborators:
        - ConfigStore: swapped on reload, aborted and closed on shutdown
        - DnsService: runs each reconciliation cycle
        - ConfigWatcher: reports edits to the configuration file
    """

    def __init__(
        self,
        config_path: str | Path,
        store: ConfigStore,
        engine: DnsService,
        watcher: ConfigWatcher,
        loader: Callable[[str | Path], Configuration] = load_config,
    ) -> None:
        self._config_path = config_path
        self._store = store
        self._engine = engine
        self._watcher = watcher
        self._loader = loader
        self._scheduler: AsyncIOScheduler | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._stopping = False
        self.cycles = 0

    async def run_cycle(self) -> CycleReport | None:
        """
        APScheduler job: runs one reconciliation cycle and waits for it to settle.

        Returns:
            The cycle's report, or None if the cycle did not run to completion.
        """
        if self._stopping:
            return None

        self._idle.clear()
        started = time.monotonic()
        logger.debug("Starting processing cycle.")
        try:
            report = await self._engine.process()
            await self._engine.wait_idle()
        except PoolClosedError as exc:
            logger.warning("Processing cycle interrupted: %s", exc)
            return None
        finally:
            self._idle.set()

        self.cycles += 1
        logger.info("Completed processing cycle in %s.", format_duration(time.monotonic() - started))
        return report

    async def reload(self) -> bool:
        """
        Loads the configuration file and activates it.

        Any failure keeps the previous configuration active.

        Returns:
            True if the new configuration was activated.
        """
        logger.info("Configuration file changed, reloading...")
        try:
            config = self._loader(self._config_path)
            await self._store.replace(config)
        except (ConfigLoadError, ConfigReplaceError) as exc:
            logger.error("Failed to reload configuration, keeping existing configuration: %s", exc)
            return False

        set_verbose(config.verbose)

        # Let a running cycle finish so the immediate re-run is not skipped
        # by max_instances.
        await self._idle.wait()
        if self._scheduler is not None and not self._stopping:
            reschedule(self._scheduler, config.frequency)
        logger.info("Configuration reloaded successfully.")
        return True

    async def run(self, stop: asyncio.Event) -> None:
        """
        Runs cycles until `stop` is set, then shuts everything down.

        Shutdown order: refuse new cycles, stop watching, abort in-flight
        tasks, wait for the running cycle to return, stop the scheduler,
        close the store.

        Args:
            stop: Set by the signal handlers to request shutdown.
        """
        # NOTE: watch before the first cycle so an edit made while it runs is
        # not folded into the baseline. No-op when serve() already started it.
        self._watcher.start()

        config = self._store.get()
        self._scheduler = create_scheduler(self.run_cycle, config.frequency)
        self._scheduler.start()

        watch_task = asyncio.create_task(self._watcher.run(), name="config-watcher")
        reload_task = asyncio.create_task(self._follow(self._watcher.signal), name="config-reload")

        try:
            await stop.wait()
        finally:
            logger.warning("Shutting down cfdns...")
            self._stopping = True

            watch_task.cancel()
            reload_task.cancel()
            await asyncio.gather(watch_task, reload_task, return_exceptions=True)
            self._watcher.stop()

            self._store.abort()
            await self._idle.wait()
            # NOTE: the asyncio executor cancels still-running jobs on
            # shutdown, so the scheduler only stops once the cycle returned.
            self._scheduler.shutdown(wait=False)
            await self._store.aclose()
            logger.info("cfdns stopped.")

    async def _follow(self, signal: ChangeSignal) -> None:
        while await signal.wait():
            await self.reload()
