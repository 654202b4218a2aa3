"""Upload notifications for Chibisafe Uploader.

The engine reports what happens to each file through a
:class:`NotificationSink`.  The tray application implements it to drive
the clipboard and icon; :class:`LoggingSink` serves headless runs.
"""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    """Receiver of per-file pipeline events."""

    def file_detected(self, path: str) -> None:
        """A new file was seen in the watch folder."""
        ...

    def upload_succeeded(self, path: str, url: str) -> None:
        """*path* is now reachable at *url*."""
        ...

    def upload_failed(self, path: str, reason: str) -> None:
        """The upload of *path* failed for *reason*."""
        ...


class LoggingSink:
    """Sink that writes every event to the log."""

    def file_detected(self, path: str) -> None:
        logger.info("File detected: %s", path)

    def upload_succeeded(self, path: str, url: str) -> None:
        logger.info("✓ Uploaded: %s", url)

    def upload_failed(self, path: str, reason: str) -> None:
        logger.warning("✗ Upload failed for %s: %s", path, reason)
