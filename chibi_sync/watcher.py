"""File system watcher for Chibisafe Uploader.

Monitors a single folder for newly created files and hands each one,
as an :class:`UploadCandidate`, to a callback.  The notification
transport is pluggable: :class:`WatchdogEventSource` uses the watchdog
library (native OS facility), :class:`FswatchEventSource` streams the
output of the ``fswatch`` command line helper.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from watchdog.events import (
    FileCreatedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

# Filesystem bookkeeping files that are never uploaded
METADATA_ARTIFACTS = frozenset({".DS_Store", "Thumbs.db", "desktop.ini"})

_BATCH_SEPARATORS = re.compile(r"[\0\n]")
_READ_CHUNK = 64 * 1024
_IDLE_PARK_SECONDS = 0.5


class WatcherError(RuntimeError):
    """The watcher could not be started."""


@dataclass(frozen=True)
class UploadCandidate:
    """A file path seen by the watcher and not yet uploaded."""
    path: str


def is_metadata_artifact(path: str) -> bool:
    name = os.path.basename(path)
    # AppleDouble resource forks, e.g. "._photo.png"
    return name in METADATA_ARTIFACTS or name.startswith("._")


def split_batch(raw: str) -> list[str]:
    """Split a raw notification batch into trimmed, non-empty paths."""
    paths = []
    for entry in _BATCH_SEPARATORS.split(raw):
        trimmed = entry.strip(" \t")
        if trimmed:
            paths.append(trimmed)
    return paths


class EventSource(Protocol):
    """Transport delivering raw file-event batches for one directory."""

    def start(self, directory: str, on_batch: Callable[[str], None]) -> None:
        """Begin delivering batches; raise :class:`WatcherError` on failure."""
        ...

    def stop(self) -> None:
        """Release the OS watch handle."""
        ...

    @property
    def is_running(self) -> bool:
        ...


class _CreatedFileHandler(FileSystemEventHandler):
    """Watchdog handler that forwards created and moved-in paths."""

    def __init__(self, on_batch: Callable[[str], None]):
        super().__init__()
        self._on_batch = on_batch

    def on_created(self, event: FileCreatedEvent) -> None:  # type: ignore[override]
        if event.is_directory:
            return
        self._on_batch(os.fsdecode(event.src_path))

    def on_moved(self, event: FileMovedEvent) -> None:  # type: ignore[override]
        """A rename into the folder counts as a new file."""
        if event.is_directory:
            return
        self._on_batch(os.fsdecode(event.dest_path))


class WatchdogEventSource:
    """Event source backed by a watchdog :class:`Observer` (non-recursive)."""

    def __init__(self) -> None:
        self._observer: Any | None = None

    def start(self, directory: str, on_batch: Callable[[str], None]) -> None:
        observer = Observer()
        try:
            observer.schedule(_CreatedFileHandler(on_batch), directory, recursive=False)
            observer.start()
        except OSError as exc:
            raise WatcherError(f"Could not watch {directory}: {exc}") from exc
        self._observer = observer

    def stop(self) -> None:
        if self._observer:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()


class FswatchEventSource:
    """Event source streaming ``fswatch -0 <dir>`` on a reader thread.

    fswatch writes NUL-terminated paths; a read may end mid-path, so the
    tail after the last separator is carried over to the next read.
    """

    def __init__(self, executable: str = "fswatch"):
        self._executable = executable
        self._process: subprocess.Popen[bytes] | None = None
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    def start(self, directory: str, on_batch: Callable[[str], None]) -> None:
        binary = shutil.which(self._executable)
        if binary is None:
            raise WatcherError(f"fswatch helper not found: {self._executable}")
        try:
            self._process = subprocess.Popen(
                [binary, "-0", directory],
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
            )
        except OSError as exc:
            raise WatcherError(f"Could not start fswatch: {exc}") from exc

        self._stop.clear()
        self._thread = threading.Thread(
            target=self._read_loop,
            args=(self._process, on_batch),
            daemon=True,
            name="FswatchReader",
        )
        self._thread.start()
        logger.info("fswatch started (pid %d)", self._process.pid)

    def _read_loop(
        self, process: subprocess.Popen[bytes], on_batch: Callable[[str], None]
    ) -> None:
        stream = process.stdout
        if stream is None:
            return
        pending = b""
        while not self._stop.is_set() and process.poll() is None:
            try:
                data = stream.read1(_READ_CHUNK)
            except (OSError, ValueError):
                # Pipe closed by stop()
                break
            if not data:
                self._stop.wait(_IDLE_PARK_SECONDS)
                continue
            pending += data
            complete, sep, pending = pending.rpartition(b"\0")
            if not sep:
                continue
            on_batch(os.fsdecode(complete))
        logger.info("fswatch stopped")

    def stop(self) -> None:
        self._stop.set()
        process = self._process
        if process is not None:
            if process.poll() is None:
                process.terminate()
                try:
                    process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    process.kill()
                    process.wait(timeout=5)
        # The reader sees EOF once the child is gone
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        if process is not None and process.stdout is not None:
            process.stdout.close()
        self._process = None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.poll() is None


BACKEND_WATCHDOG = "watchdog"
BACKEND_FSWATCH = "fswatch"
WATCH_BACKENDS = (BACKEND_WATCHDOG, BACKEND_FSWATCH)


def create_event_source(backend: str = BACKEND_WATCHDOG) -> EventSource:
    """Return the event source for *backend* (``watchdog`` or ``fswatch``)."""
    if backend == BACKEND_FSWATCH:
        return FswatchEventSource()
    if backend != BACKEND_WATCHDOG:
        logger.warning("Unknown watch backend %r; using watchdog.", backend)
    return WatchdogEventSource()


class DirectoryWatcher:
    """Filters raw file events and emits one candidate per surviving path.

    Usage:
        watcher = DirectoryWatcher(folder, on_candidate)
        watcher.start()
        ...
        watcher.stop()
    """

    def __init__(
        self,
        directory: str,
        on_candidate: Callable[[UploadCandidate], None],
        source: EventSource | None = None,
    ):
        """Create a new watcher; *source* defaults to watchdog."""
        self.directory = directory
        self._on_candidate = on_candidate
        self._source: EventSource = source or WatchdogEventSource()

    # ---- lifecycle ----

    def start(self) -> None:
        """Start watching the folder."""
        if not os.path.isdir(self.directory):
            logger.error("Watch folder does not exist: %s", self.directory)
            raise WatcherError(f"Watch folder does not exist: {self.directory}")

        self._source.start(self.directory, self.handle_batch)
        logger.info("Watching '%s' for new files", self.directory)

    def stop(self) -> None:
        """Stop watching and release resources."""
        self._source.stop()
        logger.info("Watcher stopped.")

    @property
    def is_running(self) -> bool:
        """Return whether the watcher is currently active."""
        return self._source.is_running

    # ---- event handling ----

    def handle_batch(self, raw: str) -> int:
        """Handle one raw notification batch; return the number emitted."""
        emitted = 0
        for path in split_batch(raw):
            if self._handle_path(path):
                emitted += 1
        return emitted

    def _handle_path(self, raw_path: str) -> bool:
        path = os.path.abspath(raw_path)
        if is_metadata_artifact(path):
            logger.debug("Ignoring metadata file %s", path)
            return False
        if os.path.isdir(path):
            logger.debug("Ignoring directory %s", path)
            return False
        if not os.path.exists(path):
            # Removed again before we got to it
            logger.debug("Skipping vanished path %s", path)
            return False

        logger.info("New file detected: %s", path)
        try:
            self._on_candidate(UploadCandidate(path))
        except Exception:
            logger.exception("Error in on_candidate callback for %s", path)
        return True
