"""
Foreground application and browser tab detection.

The engine only sees the ForegroundObserver interface. The macOS
implementation talks to System Events, Safari and Chrome through
AppleScript via subprocess; every failure degrades to None.
"""

import logging
import subprocess
import sys
from dataclasses import dataclass
from typing import Optional, Set

import config
from core.errors import ForegroundUnavailable
from screen.domains import host_from_url

logger = logging.getLogger(__name__)

_SEPARATOR = "|||"


@dataclass
class WindowInfo:
    """The frontmost application and its focused window title."""
    bundle_id: str
    window_title: str = ""

    @property
    def is_browser(self) -> bool:
        return is_browser(self.bundle_id)


def is_browser(bundle_id: Optional[str]) -> bool:
    """True for browsers whose active tab can be checked against website rules."""
    return bundle_id in config.BROWSER_BUNDLE_IDS


class ForegroundObserver:
    """
    Capability interface for "what is the user looking at right now".

    Implementations must never raise: unavailable information is
    reported as None.
    """

    def current_window(self) -> Optional[WindowInfo]:
        """Frontmost app and window title, or None if undeterminable."""
        raise NotImplementedError

    def current_browser_tab_url(self, bundle_id: str) -> Optional[str]:
        """URL of the active tab of the given browser, or None."""
        raise NotImplementedError

    def browser_permission_denied(self, bundle_id: str) -> bool:
        """True if the last tab query for this browser was refused by macOS."""
        return False

    def require_window(self) -> WindowInfo:
        """
        Like current_window(), but raises when nothing is in front.

        Raises:
            ForegroundUnavailable: No frontmost app could be determined.
        """
        info = self.current_window()
        if info is None:
            raise ForegroundUnavailable("No frontmost application")
        return info

    def current_foreground_application(self) -> Optional[str]:
        info = self.current_window()
        return info.bundle_id if info else None

    def current_browser_tab_host(self, bundle_id: str) -> Optional[str]:
        """Normalised host of the active tab, or None (new tab page, error)."""
        return host_from_url(self.current_browser_tab_url(bundle_id))


class MacForegroundObserver(ForegroundObserver):
    """
    macOS observer built on osascript.

    Requires Accessibility permission for System Events and Automation
    permission for each browser.
    """

    FRONT_WINDOW_SCRIPT = '''
    tell application "System Events"
        set frontApp to first application process whose frontmost is true
        set bundleId to bundle identifier of frontApp
        if bundleId is missing value then set bundleId to name of frontApp
        try
            set windowTitle to name of front window of frontApp
        on error
            set windowTitle to ""
        end try
        return bundleId & "|||" & windowTitle
    end tell
    '''

    TAB_SCRIPTS = {
        config.SAFARI_BUNDLE_ID: '''
        if application "Safari" is running then
            tell application "Safari"
                if (count of windows) > 0 then
                    return URL of front document
                end if
            end tell
        end if
        return ""
        ''',
        config.CHROME_BUNDLE_ID: '''
        if application "Google Chrome" is running then
            tell application "Google Chrome"
                try
                    if (count of windows) > 0 then
                        return URL of active tab of front window
                    end if
                end try
            end tell
        end if
        return ""
        ''',
    }

    def __init__(self, timeout: float = config.FOREGROUND_QUERY_TIMEOUT):
        """
        Initialize the observer.

        Args:
            timeout: Seconds before a single osascript call is abandoned.
        """
        self.timeout = timeout
        self.has_permission: Optional[bool] = None
        self._denied_browsers: Set[str] = set()

    def current_window(self) -> Optional[WindowInfo]:
        """
        Get the frontmost application via System Events.

        Returns:
            WindowInfo, or None if detection fails.
        """
        output = self._run_script(self.FRONT_WINDOW_SCRIPT, "front window")
        if output is None:
            return None

        if _SEPARATOR in output:
            bundle_id, window_title = output.split(_SEPARATOR, 1)
        else:
            bundle_id, window_title = output, ""

        bundle_id = bundle_id.strip()
        if not bundle_id or bundle_id == "missing value":
            return None
        return WindowInfo(bundle_id=bundle_id, window_title=window_title.strip())

    def current_browser_tab_url(self, bundle_id: str) -> Optional[str]:
        """
        Get the active tab URL from Safari or Chrome.

        Returns:
            The URL, or None for unsupported browsers, empty windows and errors.
        """
        script = self.TAB_SCRIPTS.get(bundle_id)
        if script is None:
            return None
        output = self._run_script(script, f"{bundle_id} tab URL", permission_key=bundle_id)
        return output or None

    def browser_permission_denied(self, bundle_id: str) -> bool:
        return bundle_id in self._denied_browsers

    def _run_script(self, script: str, what: str,
                    permission_key: Optional[str] = None) -> Optional[str]:
        """
        Run an AppleScript and return its trimmed stdout, or None on failure.

        With a permission_key (a browser bundle id), a refused Automation
        request marks that browser as denied until a later call succeeds.
        """
        if sys.platform != "darwin":
            logger.debug(f"AppleScript unavailable on {sys.platform}")
            return None
        try:
            result = subprocess.run(
                ["osascript", "-e", script],
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except subprocess.TimeoutExpired:
            logger.warning(f"AppleScript timed out getting {what}")
            return None
        except OSError as e:
            logger.error(f"OS error running osascript for {what}: {e}")
            return None

        if result.returncode != 0:
            stderr_lower = result.stderr.lower()
            if "not allowed" in stderr_lower or "assistive" in stderr_lower or "-1743" in stderr_lower:
                logger.warning(f"Permission required to read {what}: {result.stderr.strip()}")
                self.has_permission = False
                if permission_key is not None:
                    self._denied_browsers.add(permission_key)
            else:
                logger.warning(f"AppleScript failed getting {what} (code {result.returncode}): {result.stderr.strip()}")
            return None

        self.has_permission = True
        if permission_key is not None:
            self._denied_browsers.discard(permission_key)
        return result.stdout.strip()
