"""
Retention cleanup for Chibisafe Uploader.

Lists the configured album on the chibisafe server, picks every file
created before ``now - cleanup_age_days`` and removes them with one
batch delete request.  :class:`CleanupScheduler` runs the worker once
shortly after startup and then once a day.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import requests

from chibi_sync.config import Config

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds
DEFAULT_INITIAL_DELAY = 10.0  # seconds after startup
DEFAULT_INTERVAL = 24 * 60 * 60.0  # seconds


class CleanupError(Exception):
    """The chibisafe server answered a cleanup request with an error."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


@dataclass(frozen=True)
class RemoteFileRecord:
    """A file stored in the album, as listed by the server."""
    id: str
    name: str
    created_at: datetime


@dataclass(frozen=True)
class CleanupResult:
    """Outcome of one cleanup pass."""
    deleted: int = 0
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def parse_timestamp(raw: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(raw, str) or not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def extract_files(payload: Any) -> list[Any]:
    """Return the file list from ``{"files": [...]}`` or ``{"data": {"files": [...]}}``."""
    if not isinstance(payload, dict):
        return []
    files = payload.get("files")
    if isinstance(files, list):
        return files
    data = payload.get("data")
    if isinstance(data, dict) and isinstance(data.get("files"), list):
        return data["files"]
    return []


def parse_records(entries: list[Any]) -> list[RemoteFileRecord]:
    """Convert raw listing entries, skipping any without id or valid timestamp."""
    records = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        file_id = entry.get("uuid") or entry.get("id")
        created = parse_timestamp(entry.get("createdAt"))
        if not file_id or created is None:
            logger.debug("Skipping unusable listing entry: %r", entry)
            continue
        records.append(
            RemoteFileRecord(
                id=str(file_id),
                name=str(entry.get("name", "")),
                created_at=created,
            )
        )
    return records


def select_expired(
    records: list[RemoteFileRecord], cutoff: datetime
) -> list[RemoteFileRecord]:
    """Return the records created strictly before *cutoff*."""
    return [r for r in records if r.created_at < cutoff]


class CleanupWorker:
    """
    Deletes album files older than the configured age.

    Parameters
    ----------
    config : Config
        Supplies the server base, API key, album and age in days.
    session : requests.Session, optional
        HTTP session to use; a private one is created when omitted.
    clock : callable, optional
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        config: Config,
        session: requests.Session | None = None,
        clock: Callable[[], datetime] | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self._config = config
        self._session = session or requests.Session()
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._timeout = timeout

    @property
    def listing_url(self) -> str:
        return f"{self._config.server_base}/api/album/{self._config.album_id}"

    @property
    def delete_url(self) -> str:
        return f"{self._config.server_base}/api/admin/files/delete"

    def cutoff(self) -> datetime:
        return self._clock() - timedelta(days=self._config.cleanup_age_days)

    def perform_cleanup(self) -> CleanupResult:
        """Run one cleanup pass.  Errors are returned, never raised."""
        try:
            records = self.fetch_records()
        except (requests.RequestException, CleanupError, ValueError) as exc:
            logger.error("Cleanup: could not list album %s: %s", self._config.album_id, exc)
            return CleanupResult(0, exc)

        cutoff = self.cutoff()
        expired = select_expired(records, cutoff)
        logger.info(
            "Cleanup: %d of %d files older than %s",
            len(expired), len(records), cutoff.isoformat(timespec="seconds"),
        )
        if not expired:
            return CleanupResult(0, None)

        uuids = [r.id for r in expired]
        try:
            self.delete_files(uuids)
        except (requests.RequestException, CleanupError) as exc:
            logger.error("Cleanup: batch delete of %d files failed: %s", len(uuids), exc)
            return CleanupResult(0, exc)

        logger.info("Cleanup: deleted %d files", len(uuids))
        return CleanupResult(len(uuids), None)

    def fetch_records(self) -> list[RemoteFileRecord]:
        """GET the album listing and return its usable records."""
        response = self._session.get(
            self.listing_url,
            headers={"x-api-key": self._config.api_key},
            timeout=self._timeout,
        )
        if not 200 <= response.status_code < 300:
            raise CleanupError(
                f"HTTP {response.status_code}", status=response.status_code
            )
        return parse_records(extract_files(response.json()))

    def delete_files(self, uuids: list[str]) -> None:
        """POST one batch delete for *uuids*."""
        response = self._session.post(
            self.delete_url,
            json={"uuids": uuids},
            headers={"x-api-key": self._config.api_key},
            timeout=self._timeout,
        )
        if response.status_code not in (200, 204):
            raise CleanupError(
                f"HTTP {response.status_code}", status=response.status_code
            )


class CleanupScheduler:
    """Runs a :class:`CleanupWorker` shortly after start, then on an interval.

    Manual runs via :meth:`run_now` execute on their own thread and are
    not serialised against scheduled runs.
    """

    def __init__(
        self,
        worker: CleanupWorker,
        on_complete: Callable[[CleanupResult], None] | None = None,
        initial_delay: float = DEFAULT_INITIAL_DELAY,
        interval: float = DEFAULT_INTERVAL,
    ):
        self._worker = worker
        self._on_complete = on_complete
        self._initial_delay = initial_delay
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop, daemon=True, name="CleanupScheduler"
        )
        self._thread.start()
        logger.info(
            "Cleanup scheduled in %.0fs, then every %.0fh",
            self._initial_delay, self._interval / 3600,
        )

    def stop(self) -> None:
        self._stop.set()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_now(self) -> threading.Thread:
        """Trigger a cleanup pass immediately on a background thread."""
        thread = threading.Thread(target=self._run_once, daemon=True, name="CleanupNow")
        thread.start()
        return thread

    def _loop(self) -> None:
        if self._stop.wait(timeout=self._initial_delay):
            return
        while not self._stop.is_set():
            self._run_once()
            self._stop.wait(timeout=self._interval)

    def _run_once(self) -> CleanupResult:
        try:
            result = self._worker.perform_cleanup()
        except Exception as exc:
            logger.exception("Unexpected error during cleanup")
            result = CleanupResult(0, exc)
        if self._on_complete:
            try:
                self._on_complete(result)
            except Exception:
                logger.exception("Error in cleanup on_complete callback")
        return result
