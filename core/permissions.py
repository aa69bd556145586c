"""
macOS permission checks for Focusd.

Reading the frontmost app needs Accessibility (System Events);
reading browser tabs additionally needs Automation permission per
browser. No UI dependencies: callers decide how to prompt.
"""

import sys
import subprocess
import logging

import config

logger = logging.getLogger(__name__)

PERMISSION_INDICATORS = (
    "not allowed", "assistive", "-10827", "-1743", "-1728",
    "not permitted", "permission denied", "not authorized",
)


def check_macos_accessibility_permission() -> bool:
    """
    Check if the app may query System Events for the frontmost app.

    Returns:
        True if permission is granted (always True off macOS), False otherwise.
    """
    if sys.platform != "darwin":
        return True
    script = '''
    tell application "System Events"
        set frontApp to first application process whose frontmost is true
        return bundle identifier of frontApp
    end tell
    '''
    return _test_applescript(script, "System Events")


def check_macos_browser_permission(bundle_id: str) -> bool:
    """
    Check Automation permission for a supported browser.

    A browser that is not running counts as granted; macOS asks
    the first time its tab is actually read.
    """
    if sys.platform != "darwin":
        return True
    app_name = config.BROWSER_BUNDLE_IDS.get(bundle_id)
    if app_name is None:
        return True
    script = f'''
    if application "{app_name}" is running then
        tell application "{app_name}" to return count of windows
    end if
    return 0
    '''
    return _test_applescript(script, app_name)


def _test_applescript(script: str, target: str) -> bool:
    """
    Run a probe AppleScript.

    Returns:
        True if the AppleScript succeeds, False otherwise.
    """
    try:
        result = subprocess.run(
            ["osascript", "-e", script],
            capture_output=True, text=True, timeout=5,
        )
    except subprocess.TimeoutExpired:
        logger.warning(f"AppleScript probe for {target} timed out; a permission dialog may be waiting")
        return False
    except OSError as e:
        logger.warning(f"AppleScript probe for {target} failed: {e}")
        return False

    if result.returncode == 0:
        logger.debug(f"AppleScript probe for {target} succeeded: {result.stdout.strip()}")
        return True

    stderr = result.stderr.lower()
    if any(ind in stderr for ind in PERMISSION_INDICATORS):
        logger.warning(f"Permission denied for {target}: {result.stderr.strip()}")
    else:
        logger.warning(f"AppleScript probe for {target} failed: {result.stderr.strip()}")
    return False


def open_macos_accessibility_settings() -> None:
    """Open macOS System Settings to Privacy & Security > Accessibility."""
    _open_privacy_pane("Privacy_Accessibility")


def open_macos_automation_settings() -> None:
    """Open macOS System Settings to Privacy & Security > Automation."""
    _open_privacy_pane("Privacy_Automation")


def _open_privacy_pane(anchor: str) -> None:
    if sys.platform != "darwin":
        return
    try:
        subprocess.run(
            ["open", f"x-apple.systempreferences:com.apple.preference.security?{anchor}"],
            check=True, timeout=10,
        )
    except (subprocess.SubprocessError, OSError) as e:
        logger.error(f"Failed to open System Settings: {e}")
        for app_name in ("System Settings", "System Preferences"):
            try:
                subprocess.run(["open", "-a", app_name], check=True, timeout=10)
                return
            except (subprocess.SubprocessError, OSError) as e:
                logger.warning(f"Could not open {app_name}: {e}")
