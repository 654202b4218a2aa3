"""
Main application controller for Chibisafe Uploader.

Ties together configuration, the upload engine, recent-upload history
and the system tray.  A hidden tkinter root drives the event loop and
owns the clipboard.

Cross-platform: Windows, macOS, and Linux.
"""

import logging
from pathlib import Path

from chibi_sync import __app_name__, __version__
from chibi_sync.config import Config, configure_logging, get_log_path, load_config
from chibi_sync.engine import SyncEngine
from chibi_sync.history import JsonHistoryStore, RecentUploadEntry, RecentUploads
from chibi_sync.platform_utils import (
    get_history_path,
    open_file_in_default_app,
    open_url,
    play_error_sound,
)
from chibi_sync.tray import COLOR_ERROR, COLOR_IDLE, SysTray

logger = logging.getLogger(__name__)


class App:
    """
    Central orchestrator.

    Implements both the NotificationSink protocol expected by SyncEngine
    and the TrayCallbacks protocol expected by SysTray.
    """

    def __init__(self, config_path: Path | None = None) -> None:
        self.config: Config = load_config(config_path)
        self.history = RecentUploads(JsonHistoryStore(get_history_path()))
        self.engine = SyncEngine(self.config, self, history=self.history)

        # tkinter root — hidden, used only to drive the event loop
        import tkinter as tk

        self._root = tk.Tk()
        self._root.title(__app_name__)
        self._root.withdraw()

        self._tray = SysTray(self)

        # Ensure clean shutdown on WM_DELETE_WINDOW of root
        self._root.protocol("WM_DELETE_WINDOW", self.on_quit)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> None:
        """Start the tray and the engine, then enter the tk mainloop."""
        configure_logging(self.config)
        logger.info("%s %s starting.", __app_name__, __version__)

        self._tray.start()

        if not self.config.is_valid:
            self._root.after(300, self._show_config_error)
        elif not self.engine.start():
            logger.error("Watcher is not running; check %s", self.config.watch_directory)

        self._update_tray_state()
        self._root.mainloop()

    def _show_config_error(self) -> None:
        from tkinter import messagebox

        messagebox.showerror(
            "Configuration Error",
            "Invalid or missing chibisafe_watcher.env\n\n"
            "CHIBISAFE_API_KEY, CHIBISAFE_ALBUM_UUID and CHIBISAFE_WATCH_DIR "
            "must all be set.",
        )

    # ------------------------------------------------------------------
    # NotificationSink implementation (called from worker threads)
    # ------------------------------------------------------------------

    def file_detected(self, path: str) -> None:
        logger.info("File detected: %s", path)
        self._tray.update_tooltip(f"Uploading: {Path(path).name}")

    def upload_succeeded(self, path: str, url: str) -> None:
        self.on_copy_url(url)
        self._tray.blink()
        self._tray.update_tooltip(f"Uploaded: {Path(path).name}")
        self._tray.refresh_menu()
        logger.info("✓ Uploaded: %s", url)

    def upload_failed(self, path: str, reason: str) -> None:
        short_err = (reason or "unknown error")[:60]
        self._tray.update_tooltip(f"Upload failed: {short_err}")
        self._tray.refresh_menu()
        play_error_sound()
        logger.warning("✗ Upload failed: %s", reason)

    # ------------------------------------------------------------------
    # TrayCallbacks implementation
    # ------------------------------------------------------------------

    def on_open_dashboard(self) -> None:
        open_url(self.config.dashboard_url)

    def on_copy_url(self, url: str) -> None:
        """Copy *url* to the clipboard (thread-safe)."""
        self._root.after(0, self._set_clipboard, url)

    def on_clear_history(self) -> None:
        self.history.clear()
        self._tray.refresh_menu()

    def on_cleanup_now(self) -> None:
        if self.engine.run_cleanup_now():
            self._tray.update_tooltip("Cleanup running…")

    def on_open_log(self) -> None:
        open_file_in_default_app(get_log_path())

    def on_quit(self) -> None:
        """Cleanly shut down the application."""
        logger.info("Shutting down…")
        self.engine.stop()
        self._tray.stop()
        self._root.quit()
        self._root.destroy()

    def is_configured(self) -> bool:
        return self.config.is_valid

    def get_status_summary(self) -> str:
        return self.engine.status_summary()

    def get_recent_uploads(self) -> list[RecentUploadEntry]:
        return self.history.entries()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set_clipboard(self, text: str) -> None:
        self._root.clipboard_clear()
        self._root.clipboard_append(text)
        # Keep the clipboard content after the root loses ownership
        self._root.update()

    def _update_tray_state(self) -> None:
        """Update tray icon colour and tooltip to reflect current state."""
        color = COLOR_IDLE if self.engine.is_watching else COLOR_ERROR
        self._tray.update_icon_color(color)
        self._tray.update_tooltip(f"{__app_name__} — {self.get_status_summary()}")
        self._tray.refresh_menu()
