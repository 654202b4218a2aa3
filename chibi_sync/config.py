"""Configuration for Chibisafe Uploader.

Reads ``KEY=value`` settings from ``chibisafe_watcher.env`` in the
platform-appropriate application data directory and freezes them into
a :class:`Config` value that is handed to every component at
construction time.
"""

import logging
import logging.handlers
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values

from chibi_sync.platform_utils import (
    get_config_dir as _platform_config_dir,
)
from chibi_sync.platform_utils import (
    get_log_path as _platform_log_path,
)

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "chibisafe_watcher.env"
CONFIG_PATH_ENV = "CHIBISAFE_WATCHER_ENV"

DEFAULT_REQUEST_URL = "http://localhost:8000/api/upload"
DEFAULT_CLEANUP_AGE_DAYS = 180
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_MAX_LOG_SIZE_MB = 10
DEFAULT_LOG_BACKUP_COUNT = 3
DEFAULT_WATCH_BACKEND = "watchdog"

_UPLOAD_SUFFIX = "/api/upload"
_TRUE_VALUES = {"1", "true", "yes", "on"}

# File keys
KEY_REQUEST_URL = "CHIBISAFE_REQUEST_URL"
KEY_API_KEY = "CHIBISAFE_API_KEY"
KEY_ALBUM_UUID = "CHIBISAFE_ALBUM_UUID"
KEY_WATCH_DIR = "CHIBISAFE_WATCH_DIR"
KEY_CLEANUP_ENABLED = "CHIBISAFE_CLEANUP_ENABLED"
KEY_CLEANUP_DAYS = "CHIBISAFE_CLEANUP_DAYS"
KEY_LOG_LEVEL = "CHIBISAFE_LOG_LEVEL"
KEY_MAX_LOG_SIZE_MB = "CHIBISAFE_MAX_LOG_SIZE_MB"
KEY_LOG_BACKUP_COUNT = "CHIBISAFE_LOG_BACKUP_COUNT"
KEY_WATCH_BACKEND = "CHIBISAFE_WATCH_BACKEND"


def get_config_dir() -> Path:
    """Return the platform-appropriate application config directory."""
    return _platform_config_dir()


def get_config_path() -> Path:
    """Return the path to the configuration file.

    ``$CHIBISAFE_WATCHER_ENV`` takes precedence over the platform default.
    """
    override = os.environ.get(CONFIG_PATH_ENV)
    if override:
        return Path(override).expanduser()
    return get_config_dir() / CONFIG_FILENAME


def get_log_path() -> Path:
    """Return the path to the log file."""
    return _platform_log_path()


def server_base_from(upload_url: str) -> str:
    """Derive the server base URL by dropping the ``/api/upload`` endpoint."""
    return upload_url.replace(_UPLOAD_SUFFIX, "").rstrip("/")


@dataclass(frozen=True)
class Config:
    """Immutable runtime configuration."""

    upload_url: str = DEFAULT_REQUEST_URL
    server_base: str = server_base_from(DEFAULT_REQUEST_URL)
    api_key: str = ""
    album_id: str = ""
    watch_directory: str = ""
    cleanup_enabled: bool = False
    cleanup_age_days: int = DEFAULT_CLEANUP_AGE_DAYS
    log_level: str = DEFAULT_LOG_LEVEL
    max_log_size_mb: int = DEFAULT_MAX_LOG_SIZE_MB
    log_backup_count: int = DEFAULT_LOG_BACKUP_COUNT
    watch_backend: str = DEFAULT_WATCH_BACKEND

    @property
    def is_valid(self) -> bool:
        """Return True when API key, album and watch directory are all set."""
        return bool(self.api_key) and bool(self.album_id) and bool(self.watch_directory)

    @property
    def dashboard_url(self) -> str:
        return f"{self.server_base}/dashboard"

    @property
    def masked_api_key(self) -> str:
        """API key trimmed for log output."""
        if not self.api_key:
            return "<unset>"
        return f"{self.api_key[:6]}..."


def _parse_bool(raw: str | None) -> bool:
    if raw is None:
        return False
    return raw.strip().lower() in _TRUE_VALUES


def _parse_int(raw: str | None, default: int, minimum: int = 0) -> int:
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning("Ignoring non-numeric value %r; using %d.", raw, default)
        return default
    return max(minimum, value)


def parse_config(values: dict[str, str | None]) -> Config:
    """Build a :class:`Config` from already-parsed ``KEY=value`` pairs."""
    upload_url = (values.get(KEY_REQUEST_URL) or "").strip() or DEFAULT_REQUEST_URL
    watch_dir = (values.get(KEY_WATCH_DIR) or "").strip()
    if watch_dir:
        watch_dir = os.path.expanduser(watch_dir)

    return Config(
        upload_url=upload_url,
        server_base=server_base_from(upload_url),
        api_key=(values.get(KEY_API_KEY) or "").strip(),
        album_id=(values.get(KEY_ALBUM_UUID) or "").strip(),
        watch_directory=watch_dir,
        cleanup_enabled=_parse_bool(values.get(KEY_CLEANUP_ENABLED)),
        cleanup_age_days=_parse_int(
            values.get(KEY_CLEANUP_DAYS), DEFAULT_CLEANUP_AGE_DAYS
        ),
        log_level=(values.get(KEY_LOG_LEVEL) or DEFAULT_LOG_LEVEL).strip().upper(),
        max_log_size_mb=_parse_int(
            values.get(KEY_MAX_LOG_SIZE_MB), DEFAULT_MAX_LOG_SIZE_MB, minimum=1
        ),
        log_backup_count=_parse_int(
            values.get(KEY_LOG_BACKUP_COUNT), DEFAULT_LOG_BACKUP_COUNT
        ),
        watch_backend=(
            values.get(KEY_WATCH_BACKEND) or DEFAULT_WATCH_BACKEND
        ).strip().lower(),
    )


def load_config(path: Path | None = None) -> Config:
    """Load configuration from *path*, falling back to the platform default.

    A missing or unreadable file yields the defaults, which do not form
    a valid configuration.
    """
    path = path or get_config_path()
    if not path.exists():
        logger.warning("Configuration file not found: %s", path)
        return Config()
    try:
        values = dotenv_values(path, interpolate=False, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read config (%s); using defaults.", exc)
        return Config()

    config = parse_config(values)
    logger.info(
        "Configuration loaded from %s (album=%s, key=%s, cleanup=%s/%dd)",
        path,
        config.album_id or "<unset>",
        config.masked_api_key,
        config.cleanup_enabled,
        config.cleanup_age_days,
    )
    return config


def configure_logging(config: Config, log_path: Path | None = None) -> None:
    """Configure rotating file log and stderr handler."""
    log_path = log_path or get_log_path()
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    # Rotating file handler
    fh = logging.handlers.RotatingFileHandler(
        str(log_path),
        maxBytes=config.max_log_size_mb * 1024 * 1024,
        backupCount=config.log_backup_count,
        encoding="utf-8",
    )
    fh.setLevel(level)
    fh.setFormatter(fmt)
    root_logger.addHandler(fh)

    sh = logging.StreamHandler(sys.stderr)
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root_logger.addHandler(sh)
