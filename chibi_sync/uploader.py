"""
Upload engine for Chibisafe Uploader.

Sends each detected file to the chibisafe upload endpoint as a single
``file[]`` multipart part and turns the reply into exactly one
:class:`UploadSuccess` or :class:`UploadFailure`.  Uploads run in
background threads, one per file, without retries.
"""

import logging
import os
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Union

import requests
from requests_toolbelt.multipart.encoder import MultipartEncoder

from chibi_sync.config import Config
from chibi_sync.watcher import UploadCandidate

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"
UPLOAD_TIMEOUT = 120  # seconds
FILE_FIELD = "file[]"

REASON_UNREADABLE = "could not read file"
REASON_NO_URL = "URL not found in response"
REASON_BAD_JSON = "invalid JSON response"

MIME_TYPES = {
    # images
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
    "bmp": "image/bmp",
    "tif": "image/tiff",
    "tiff": "image/tiff",
    "heic": "image/heic",
    "avif": "image/avif",
    "ico": "image/x-icon",
    # video
    "mp4": "video/mp4",
    "m4v": "video/x-m4v",
    "mov": "video/quicktime",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
    # audio
    "mp3": "audio/mpeg",
    "wav": "audio/wav",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
    "m4a": "audio/mp4",
    "aac": "audio/aac",
    # documents
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "ppt": "application/vnd.ms-powerpoint",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    # archives
    "zip": "application/zip",
    "tar": "application/x-tar",
    "gz": "application/gzip",
    "7z": "application/x-7z-compressed",
    "rar": "application/vnd.rar",
    # text
    "txt": "text/plain",
    "md": "text/markdown",
    "csv": "text/csv",
    "html": "text/html",
    "css": "text/css",
    "js": "application/javascript",
    "json": "application/json",
    "xml": "application/xml",
}


def mime_type_for(path: str) -> str:
    """Return the MIME type for *path* based on its extension."""
    ext = os.path.splitext(path)[1].lower().lstrip(".")
    return MIME_TYPES.get(ext, DEFAULT_MIME_TYPE)


def _new_boundary() -> str:
    return f"----ChibiSyncBoundary{uuid.uuid4().hex}"


def extract_url(payload: Any) -> str | None:
    """Find the uploaded file URL in a chibisafe response body.

    Accepted shapes, first match wins:
      ``{"file": {"url": ...}}``, ``{"url": ...}``, ``{"data": {"url": ...}}``
    """
    if not isinstance(payload, dict):
        return None
    candidates = (
        payload.get("file"),
        payload,
        payload.get("data"),
    )
    for holder in candidates:
        if isinstance(holder, dict):
            url = holder.get("url")
            if isinstance(url, str) and url:
                return url
    return None


def to_public_url(url: str, server_base: str) -> str:
    """Prefix relative URLs with the server base."""
    if url.startswith("http"):
        return url
    return server_base + url


@dataclass(frozen=True)
class UploadSuccess:
    """The file was stored; *public_url* is where it can be fetched."""
    path: str
    public_url: str

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class UploadFailure:
    """The upload did not produce a URL; *reason* says why."""
    path: str
    reason: str

    @property
    def ok(self) -> bool:
        return False


UploadOutcome = Union[UploadSuccess, UploadFailure]


class UploadDispatcher:
    """
    Uploads candidate files to chibisafe in background threads.

    Parameters
    ----------
    config : Config
        Supplies the upload URL, server base, API key and album.
    on_outcome : callable, optional
        Callback invoked once per candidate with the resulting outcome.
    session : requests.Session, optional
        HTTP session to use; a private one is created when omitted.
    timeout : float
        Seconds before a request is abandoned.
    """

    def __init__(
        self,
        config: Config,
        on_outcome: Callable[[UploadOutcome], None] | None = None,
        session: requests.Session | None = None,
        timeout: float = UPLOAD_TIMEOUT,
    ):
        self._config = config
        self._on_outcome = on_outcome
        self._session = session or requests.Session()
        self._timeout = timeout
        self._active_uploads: int = 0
        self._lock = threading.Lock()

    @property
    def active_uploads(self) -> int:
        with self._lock:
            return self._active_uploads

    def dispatch(self, candidate: UploadCandidate) -> threading.Thread:
        """Start a background upload of *candidate*."""
        thread = threading.Thread(
            target=self._run,
            args=(candidate,),
            daemon=True,
            name=f"Upload-{os.path.basename(candidate.path)}",
        )
        thread.start()
        return thread

    def _run(self, candidate: UploadCandidate) -> None:
        with self._lock:
            self._active_uploads += 1
        try:
            outcome = self.upload(candidate)
        finally:
            with self._lock:
                self._active_uploads -= 1
        if self._on_outcome:
            try:
                self._on_outcome(outcome)
            except Exception:
                logger.exception("Error in on_outcome callback")

    def upload(self, candidate: UploadCandidate) -> UploadOutcome:
        """Upload *candidate* once and return its outcome.  Never raises."""
        path = candidate.path
        try:
            return self._attempt(path)
        except Exception as exc:
            logger.exception("Unexpected error uploading %s", path)
            return UploadFailure(path, str(exc) or exc.__class__.__name__)

    def _attempt(self, path: str) -> UploadOutcome:
        cfg = self._config

        # ---- read ----
        try:
            if not os.path.isfile(path):
                raise OSError("not a regular file")
            with open(path, "rb") as fh:
                data = fh.read()
        except OSError as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            return UploadFailure(path, REASON_UNREADABLE)

        filename = os.path.basename(path)
        mime_type = mime_type_for(path)
        encoder = MultipartEncoder(
            fields={FILE_FIELD: (filename, data, mime_type)},
            boundary=_new_boundary(),
        )
        headers = {
            "x-api-key": cfg.api_key,
            "albumuuid": cfg.album_id,
            "Content-Type": encoder.content_type,
        }

        # ---- send ----
        logger.info(
            "Uploading %s (%d bytes, %s) to %s",
            filename, len(data), mime_type, cfg.upload_url,
        )
        try:
            response = self._session.post(
                cfg.upload_url,
                data=encoder,
                headers=headers,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            logger.error("Upload failed for %s: %s", path, exc)
            return UploadFailure(path, str(exc))

        # ---- interpret ----
        if response.status_code not in (200, 201):
            logger.error("Upload of %s rejected: HTTP %d", path, response.status_code)
            return UploadFailure(path, f"HTTP {response.status_code}")

        try:
            payload = response.json()
        except ValueError:
            logger.error("Upload of %s returned invalid JSON: %.200r", path, response.text)
            return UploadFailure(path, REASON_BAD_JSON)
        if not isinstance(payload, dict):
            logger.error("Upload of %s returned non-object JSON: %.200r", path, payload)
            return UploadFailure(path, REASON_BAD_JSON)

        url = extract_url(payload)
        if url is None:
            logger.error("No URL in upload response for %s: %.200r", path, payload)
            return UploadFailure(path, REASON_NO_URL)

        public_url = to_public_url(url, cfg.server_base)
        logger.info("Uploaded %s -> %s", filename, public_url)
        return UploadSuccess(path, public_url)
