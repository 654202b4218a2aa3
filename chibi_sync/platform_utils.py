"""
Cross-platform utilities for Chibisafe Uploader.

Centralises all OS-detection logic so every other module can import
a single canonical set of helpers rather than scattering ``sys.platform``
checks throughout the codebase.
"""

from __future__ import annotations

import logging
import os
import subprocess
import sys
import webbrowser
from pathlib import Path

logger = logging.getLogger(__name__)

# ---- platform flags ----------------------------------------------------

IS_WINDOWS: bool = sys.platform == "win32"
IS_MACOS: bool = sys.platform == "darwin"
IS_LINUX: bool = sys.platform.startswith("linux")

_APP_DIR_NAME = "ChibisafeUploader"

# ---- directories -------------------------------------------------------


def get_config_dir() -> Path:
    """
    Return the application config directory, created if needed.

    - Windows : ``%APPDATA%\\ChibisafeUploader``
    - macOS   : ``~/Library/Application Support/ChibisafeUploader``
    - Linux   : ``$XDG_CONFIG_HOME/ChibisafeUploader`` (default ``~/.config``)
    """
    if IS_WINDOWS:
        base = os.environ.get("APPDATA", str(Path.home()))
    elif IS_MACOS:
        base = str(Path.home() / "Library" / "Application Support")
    else:
        base = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))

    config_dir = Path(base) / _APP_DIR_NAME
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def get_log_path() -> Path:
    """Return the path to the log file (inside the config directory)."""
    return get_config_dir() / "chibisafe_uploader.log"


def get_history_path() -> Path:
    """Return the path of the persisted recent-uploads list."""
    return get_config_dir() / "recent_uploads.json"


# ---- desktop integration -----------------------------------------------


def open_url(url: str) -> None:
    """Open *url* in the default browser."""
    try:
        webbrowser.open(url)
    except Exception:
        logger.warning("Could not open URL: %s", url, exc_info=True)


def open_file_in_default_app(filepath: str | Path) -> None:
    """Open a file with the OS default application."""
    fp = str(filepath)
    try:
        if IS_WINDOWS:
            os.startfile(fp)  # type: ignore[attr-defined]
        elif IS_MACOS:
            subprocess.Popen(["open", fp])
        else:
            subprocess.Popen(["xdg-open", fp])
    except Exception:
        logger.warning("Could not open file: %s", fp, exc_info=True)


def play_error_sound() -> None:
    """Play the OS error/alert sound.  Silent on unsupported platforms."""
    try:
        if IS_WINDOWS:
            import winsound  # type: ignore[import-untyped]
            winsound.MessageBeep(winsound.MB_ICONHAND)
        elif IS_MACOS:
            # Basso is the standard macOS alert sound
            subprocess.Popen(
                ["afplay", "/System/Library/Sounds/Basso.aiff"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        # Linux: no universal system sound — skip
    except Exception:
        logger.debug("Could not play error sound.", exc_info=True)
