"""Entry point for Chibisafe Uploader.

Usage:
    python -m chibi_sync                 Launch the tray application
    python -m chibi_sync --headless      Run without UI (Ctrl-C to stop)
    python -m chibi_sync --config PATH   Use a specific chibisafe_watcher.env
"""

import argparse
import sys
from pathlib import Path


def main(argv: list[str] | None = None) -> None:
    """Launch the tray app or the headless runner."""
    parser = argparse.ArgumentParser(prog="chibisafe-uploader")
    parser.add_argument("--headless", action="store_true", help="run without UI")
    parser.add_argument("--config", type=Path, default=None, help="config file path")
    args = parser.parse_args(argv)

    if args.headless:
        from chibi_sync.service import run_foreground

        sys.exit(run_foreground(args.config))
    else:
        from chibi_sync.app import App

        app = App(args.config)
        app.run()


if __name__ == "__main__":
    main()
