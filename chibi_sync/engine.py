"""
Core engine for Chibisafe Uploader.

Wires the directory watcher, the upload dispatcher, the recent-uploads
history and the cleanup scheduler together for one :class:`Config`.
Both the tray application and the headless service drive the upload
pipeline through :class:`SyncEngine`.
"""

import logging
import os
import threading
from dataclasses import dataclass

import requests

from chibi_sync.cleanup import (
    DEFAULT_INITIAL_DELAY,
    CleanupResult,
    CleanupScheduler,
    CleanupWorker,
)
from chibi_sync.config import Config
from chibi_sync.history import RecentUploads
from chibi_sync.notify import NotificationSink
from chibi_sync.uploader import UploadDispatcher, UploadOutcome, UploadSuccess
from chibi_sync.watcher import (
    DirectoryWatcher,
    EventSource,
    UploadCandidate,
    WatcherError,
    create_event_source,
)

logger = logging.getLogger(__name__)


@dataclass
class EngineStats:
    """Running totals shown in the tray status line."""
    total_uploaded: int = 0
    total_failed: int = 0
    last_url: str = ""
    last_cleanup: CleanupResult | None = None


class SyncEngine:
    """
    Owns the watch -> upload pipeline and the cleanup schedule.

    An invalid configuration leaves the engine inert: :meth:`start`
    logs the problem and returns False without touching the file
    system or the network.
    """

    def __init__(
        self,
        config: Config,
        sink: NotificationSink,
        history: RecentUploads | None = None,
        source: EventSource | None = None,
        session: requests.Session | None = None,
        cleanup_initial_delay: float = DEFAULT_INITIAL_DELAY,
    ):
        self.config = config
        self._sink = sink
        self._history = history
        self._source = source
        self._session = session
        self._cleanup_initial_delay = cleanup_initial_delay
        self.stats = EngineStats()
        self._lock = threading.Lock()

        self.watcher: DirectoryWatcher | None = None
        self.dispatcher: UploadDispatcher | None = None
        self.cleanup_worker: CleanupWorker | None = None
        self.scheduler: CleanupScheduler | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """Start watching (and cleanup if enabled).  Return True when watching."""
        cfg = self.config
        if not cfg.is_valid:
            logger.error(
                "Configuration invalid (API key, album UUID and watch folder "
                "are required); uploader stays idle."
            )
            return False

        session = self._session or requests.Session()
        self.dispatcher = UploadDispatcher(cfg, self._on_outcome, session=session)
        self.cleanup_worker = CleanupWorker(cfg, session=session)
        self.scheduler = CleanupScheduler(
            self.cleanup_worker,
            self._on_cleanup_complete,
            initial_delay=self._cleanup_initial_delay,
        )

        logger.info(
            "Uploading to %s (album %s, key %s)",
            cfg.upload_url, cfg.album_id, cfg.masked_api_key,
        )

        watching = False
        self.watcher = DirectoryWatcher(
            cfg.watch_directory,
            self._on_candidate,
            source=self._source or create_event_source(cfg.watch_backend),
        )
        try:
            self.watcher.start()
            watching = True
        except WatcherError as exc:
            logger.error("Cannot start watcher: %s", exc)
            self.watcher = None
        except Exception:
            logger.exception("Failed to start watcher.")
            self.watcher = None

        if cfg.cleanup_enabled:
            self.scheduler.start()
        else:
            logger.info("Automatic cleanup disabled.")
        return watching

    def stop(self) -> None:
        """Stop the watcher and the cleanup schedule."""
        if self.watcher:
            self.watcher.stop()
            self.watcher = None
        if self.scheduler:
            self.scheduler.stop()
        logger.info("Engine stopped.")

    @property
    def is_watching(self) -> bool:
        return self.watcher is not None and self.watcher.is_running

    # ------------------------------------------------------------------
    # Manual actions
    # ------------------------------------------------------------------

    def run_cleanup_now(self) -> bool:
        """Trigger a cleanup pass in the background.  False when inert."""
        if self.scheduler is None:
            logger.warning("Cleanup unavailable: configuration invalid.")
            return False
        self.scheduler.run_now()
        return True

    def status_summary(self) -> str:
        """Return a short human-readable status string for the tray menu."""
        if not self.config.is_valid:
            return "Not configured"
        if not self.is_watching:
            return "Watcher stopped"
        with self._lock:
            return (
                f"Watching — {self.stats.total_uploaded} uploaded, "
                f"{self.stats.total_failed} failed"
            )

    # ------------------------------------------------------------------
    # Pipeline callbacks
    # ------------------------------------------------------------------

    def _on_candidate(self, candidate: UploadCandidate) -> None:
        """Called on the watcher thread for every new file."""
        self._notify("file_detected", candidate.path)
        if self.dispatcher:
            self.dispatcher.dispatch(candidate)

    def _on_outcome(self, outcome: UploadOutcome) -> None:
        """Called on the upload thread once per candidate."""
        if isinstance(outcome, UploadSuccess):
            with self._lock:
                self.stats.total_uploaded += 1
                self.stats.last_url = outcome.public_url
            if self._history is not None:
                try:
                    self._history.add(os.path.basename(outcome.path), outcome.public_url)
                except Exception:
                    logger.exception("Could not record upload history")
            self._notify("upload_succeeded", outcome.path, outcome.public_url)
        else:
            with self._lock:
                self.stats.total_failed += 1
            self._notify("upload_failed", outcome.path, outcome.reason)

    def _on_cleanup_complete(self, result: CleanupResult) -> None:
        with self._lock:
            self.stats.last_cleanup = result
        if result.ok:
            logger.info("Cleanup finished: %d files deleted", result.deleted)
        else:
            logger.warning("Cleanup failed: %s", result.error)

    def _notify(self, event: str, *args: str) -> None:
        try:
            getattr(self._sink, event)(*args)
        except Exception:
            logger.exception("Error in notification sink (%s)", event)
