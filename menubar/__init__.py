"""
Menu bar package for Focusd.

Provides the launcher for the rumps-based native macOS menu bar.
"""

import sys
import logging

logger = logging.getLogger(__name__)


def run_menubar_app() -> None:
    """Launch the menu bar app (macOS only)."""
    if sys.platform != "darwin":
        logger.error("The Focusd menu bar is only supported on macOS. Use --cli instead.")
        sys.exit(1)
    from menubar.macos_app import FocusdMenuBar
    app = FocusdMenuBar()
    app.run()
