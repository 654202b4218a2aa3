"""System tray icon for Chibisafe Uploader.

Provides a persistent system-tray presence with a context menu to open
the dashboard, re-copy recent upload links, run a cleanup pass and quit.
The icon briefly changes colour whenever a link lands on the clipboard.
"""

import contextlib
import logging
import threading
from typing import Any, Protocol

import pystray
from PIL import Image, ImageDraw
from PIL.Image import Image as PILImage

from chibi_sync.history import RecentUploadEntry

logger = logging.getLogger(__name__)

COLOR_IDLE = "#0078D4"    # blue  — watching
COLOR_LINK = "#0A6E0A"    # green — link copied
COLOR_ERROR = "#C4001A"   # red   — error / not configured

BLINK_DELAY = 0.1  # seconds
BLINK_DURATION = 0.6  # seconds


class TrayCallbacks(Protocol):
    """Expected callback interface for the tray icon owner."""

    def on_open_dashboard(self) -> None:
        """Open the chibisafe dashboard in the browser."""
        ...

    def on_copy_url(self, url: str) -> None:
        """Put *url* on the clipboard."""
        ...

    def on_clear_history(self) -> None:
        """Forget the recent uploads."""
        ...

    def on_cleanup_now(self) -> None:
        """Trigger an immediate cleanup pass."""
        ...

    def on_open_log(self) -> None:
        """Open the log file."""
        ...

    def on_quit(self) -> None:
        """Quit the application."""
        ...

    def is_configured(self) -> bool:
        """Return whether the configuration is valid."""
        ...

    def get_status_summary(self) -> str:
        """Return a human-readable status string."""
        ...

    def get_recent_uploads(self) -> list[RecentUploadEntry]:
        """Return the recent uploads, most recent first."""
        ...


def _create_icon_image(color: str = COLOR_IDLE, size: int = 64) -> PILImage:
    """Create a cloud-like icon: rounded square with a white inner circle."""
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    draw.rounded_rectangle(
        [(2, 2), (size - 2, size - 2)],
        radius=10,
        fill=color,
    )
    margin = size // 4
    draw.ellipse(
        [(margin, margin), (size - margin, size - margin)],
        fill="white",
    )
    return img


class SysTray:
    """Manages the system-tray icon and its context menu.

    The tray runs on its own thread so it does not block the tkinter main loop.
    """

    def __init__(self, callbacks: TrayCallbacks):
        """Create the tray icon bound to *callbacks*."""
        self._callbacks = callbacks
        self._icon: Any | None = None
        self._thread: threading.Thread | None = None
        self._base_color = COLOR_IDLE

    def _recent_menu(self) -> pystray.Menu:
        entries = self._callbacks.get_recent_uploads()
        if not entries:
            return pystray.Menu(pystray.MenuItem("No uploads yet", None, enabled=False))

        def _copy(url: str):
            return lambda: self._callbacks.on_copy_url(url)

        return pystray.Menu(
            *(
                pystray.MenuItem(f"{e.filename}  ({e.timestamp_str})", _copy(e.url))
                for e in entries
            )
        )

    def _build_menu(self) -> pystray.Menu:
        """Build the context menu with current status."""
        status_text = self._callbacks.get_status_summary()
        configured = self._callbacks.is_configured()
        return pystray.Menu(
            pystray.MenuItem(f"Status: {status_text}", None, enabled=False),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem(
                "Open Dashboard",
                lambda: self._callbacks.on_open_dashboard(),
                enabled=configured,
            ),
            pystray.MenuItem("Recent Uploads", self._recent_menu()),
            pystray.MenuItem(
                "Clear Recent Uploads", lambda: self._callbacks.on_clear_history()
            ),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem(
                "Run Cleanup Now",
                lambda: self._callbacks.on_cleanup_now(),
                enabled=configured,
            ),
            pystray.MenuItem("Open Log File", lambda: self._callbacks.on_open_log()),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Quit", lambda: self._callbacks.on_quit()),
        )

    def start(self) -> None:
        """Start the tray icon on a daemon thread."""
        self._icon = pystray.Icon(
            name="ChibisafeUploader",
            icon=_create_icon_image(self._base_color),
            title="Chibisafe Uploader",
            menu=self._build_menu(),
        )

        # Capture local reference so type-checker knows it's not None
        icon = self._icon
        if icon is None:
            return
        self._thread = threading.Thread(target=icon.run, daemon=True, name="SysTray")
        self._thread.start()
        logger.info("System tray icon started.")

    def stop(self) -> None:
        """Remove the tray icon and stop its thread."""
        if self._icon:
            with contextlib.suppress(Exception):
                self._icon.stop()
            self._icon = None
        logger.info("System tray icon stopped.")

    def update_tooltip(self, text: str) -> None:
        """Update the hover tooltip text."""
        if self._icon:
            self._icon.title = text

    def update_icon_color(self, color: str) -> None:
        """Change the resting icon colour (e.g. blue=watching, red=error)."""
        self._base_color = color
        if self._icon:
            self._icon.icon = _create_icon_image(color)

    def blink(self, color: str = COLOR_LINK) -> None:
        """Flash *color* briefly, then restore the resting colour."""

        def _flash() -> None:
            if self._icon:
                self._icon.icon = _create_icon_image(color)
            restore = threading.Timer(BLINK_DURATION, self._restore)
            restore.daemon = True
            restore.start()

        timer = threading.Timer(BLINK_DELAY, _flash)
        timer.daemon = True
        timer.start()

    def _restore(self) -> None:
        if self._icon:
            self._icon.icon = _create_icon_image(self._base_color)

    def refresh_menu(self) -> None:
        """Rebuild the context menu (e.g. after a new upload)."""
        if self._icon:
            self._icon.menu = self._build_menu()
            self._icon.update_menu()
