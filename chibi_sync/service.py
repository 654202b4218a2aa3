"""
Headless mode for Chibisafe Uploader.

Runs the upload engine without tray icon or windows, logging every
event, until SIGINT/SIGTERM:

    python -m chibi_sync --headless [--config PATH]
"""

import logging
import signal
import threading
from pathlib import Path

from chibi_sync.config import configure_logging, load_config
from chibi_sync.engine import SyncEngine
from chibi_sync.history import JsonHistoryStore, RecentUploads
from chibi_sync.notify import LoggingSink
from chibi_sync.platform_utils import get_history_path

logger = logging.getLogger(__name__)


def run_foreground(config_path: Path | None = None) -> int:
    """Run the engine in the foreground until SIGINT/SIGTERM."""
    config = load_config(config_path)
    configure_logging(config)

    history = RecentUploads(JsonHistoryStore(get_history_path()))
    engine = SyncEngine(config, LoggingSink(), history=history)
    if not config.is_valid:
        # Stay inert rather than exit so a supervisor does not restart-loop
        logger.error("Not configured; running idle. Edit the config file and restart.")
    else:
        engine.start()

    stop = threading.Event()

    def _handler(sig, frame):
        stop.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)

    print("Chibisafe Uploader running (press Ctrl-C to stop)…")
    while not stop.wait(timeout=1):
        pass
    engine.stop()
    print("Chibisafe Uploader stopped.")
    return 0
