"""
cfdns/watcher.py

Responsibility: Sets up a watchdog polling observer on the configuration
file's directory and raises a change signal when the file is edited,
created or atomically replaced out-of-band.
Does NOT: parse the configuration or apply it — the scheduler reloads the
current file contents when it sees the signal.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers.polling import PollingObserver

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0


class ChangeSignal:
    """
    Single-slot "something changed" cell.

    Repeated notifications before the consumer wakes collapse into one:
    only whether the file changed since the last reload matters, not how
    many times.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def notify(self) -> None:
        if not self._closed:
            self._event.set()

    def close(self) -> None:
        self._closed = True
        self._event.set()

    def pending(self) -> bool:
        return self._event.is_set() and not self._closed

    async def wait(self) -> bool:
        """
        Waits for the next notification and consumes it.

        Returns:
            True for a change, False once the signal has been closed.
        """
        await self._event.wait()
        if self._closed:
            return False
        self._event.clear()
        return True


# ---------------------------------------------------------------------------
# Event handler
# ---------------------------------------------------------------------------


class _ConfigFileHandler(FileSystemEventHandler):
    """
    Watchdog event handler for the directory holding the config file.

    Only events whose path is the config file itself count; every other
    file in the directory is ignored. Runs on watchdog's dispatcher thread.
    """

    def __init__(self, path: Path, on_change: Callable[[], None]) -> None:
        super().__init__()
        self._path = str(path)
        self._on_change = on_change

    def _is_config(self, raw_path: str | bytes) -> bool:
        return bool(raw_path) and os.path.abspath(os.fsdecode(raw_path)) == self._path

    def on_modified(self, event: FileSystemEvent) -> None:
        """
        Called by watchdog when a file in the watched directory is modified.

        Args:
            event: The file system event describing what changed.
        """
        if event.is_directory or not self._is_config(event.src_path):
            return
        logger.info("Config file change detected: %s", event.src_path)
        self._on_change()

    def on_created(self, event: FileSystemEvent) -> None:
        # Editors and ConfigMap updates replace the file under a new inode.
        if event.is_directory or not self._is_config(event.src_path):
            return
        logger.info("Config file replaced: %s", event.src_path)
        self._on_change()

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory or not self._is_config(getattr(event, "dest_path", "")):
            return
        logger.info("Config file moved into place: %s", event.dest_path)
        self._on_change()

    def on_deleted(self, event: FileSystemEvent) -> None:
        if event.is_directory or not self._is_config(event.src_path):
            return
        logger.debug("Config file %s removed; keeping the active configuration.", event.src_path)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def create_observer(
    path: str | Path,
    on_change: Callable[[], None],
    interval: float = DEFAULT_POLL_INTERVAL,
) -> PollingObserver:
    """
    Creates and returns a configured (but not yet started) watchdog observer.

    A polling observer compares directory snapshots (mtime, size and
    inode), so it also works on network mounts and bind-mounted volumes
    where inotify events never arrive.

    Args:
        path: The configuration file to monitor.
        on_change: Called from watchdog's thread for every change to the file.
        interval: Seconds between directory snapshots.

    Returns:
        A configured PollingObserver ready to be started.
    """
    config_file = Path(os.path.abspath(path))
    observer = PollingObserver(timeout=interval)
    handler = _ConfigFileHandler(config_file, on_change)
    observer.schedule(handler, path=str(config_file.parent), recursive=False)
    logger.info("File watcher configured for: %s", config_file)
    return observer


class ConfigWatcher:
    """
    Owns the observer for one configuration file and its ChangeSignal.

    The directory snapshot taken by start() is the baseline: only edits
    made after it are reported. A snapshot that cannot read the file is
    reported as a deletion, which neither notifies nor stops the watcher.
    """

    def __init__(self, path: str | Path, interval: float = DEFAULT_POLL_INTERVAL) -> None:
        """
        Args:
            path: The configuration file to watch.
            interval: Seconds between directory snapshots.
        """
        self.path = Path(os.path.abspath(path))
        self.interval = interval
        self.signal = ChangeSignal()
        self._observer: PollingObserver | None = None

    @property
    def watching(self) -> bool:
        return self._observer is not None

    def start(self) -> None:
        """
        Starts the observer on the running event loop; no-op if already started.

        The baseline snapshot is taken synchronously, so any edit after
        this call returns is reported.

        Raises:
            OSError: If the config file's directory cannot be read.
        """
        if self._observer is not None:
            return
        loop = asyncio.get_running_loop()
        signal = self.signal

        def on_change() -> None:
            loop.call_soon_threadsafe(signal.notify)

        observer = create_observer(self.path, on_change, self.interval)
        observer.start()
        self._observer = observer
        logger.info("Watching %s for changes every %.1fs.", self.path, self.interval)

    def stop(self) -> None:
        """Stops the observer and closes the signal. Safe to call repeatedly."""
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join()
            logger.debug("Stopped watching %s.", self.path)
        self.signal.close()

    async def run(self) -> None:
        """
        Watches until cancelled; the signal is closed when the watcher stops.
        """
        self.start()
        try:
            # Events arrive from watchdog's threads; just hold the observer open.
            await asyncio.Event().wait()
        finally:
            self.stop()
