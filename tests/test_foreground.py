"""
Tests for screen/foreground.py and core/permissions.py with osascript mocked out.
"""

import subprocess
import sys
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

# Ensure project root is on the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core import permissions
from core.errors import ForegroundUnavailable
from screen.foreground import MacForegroundObserver, WindowInfo, is_browser


def completed(stdout="", returncode=0, stderr=""):
    result = MagicMock()
    result.stdout = stdout
    result.returncode = returncode
    result.stderr = stderr
    return result


@patch("screen.foreground.sys.platform", "darwin")
class TestMacForegroundObserver(unittest.TestCase):

    def setUp(self):
        self.observer = MacForegroundObserver(timeout=1.0)

    @patch("screen.foreground.subprocess.run")
    def test_front_window(self, mock_run):
        mock_run.return_value = completed("com.apple.Safari|||GitHub - Pull requests\n")
        info = self.observer.current_window()
        self.assertEqual(info, WindowInfo("com.apple.Safari", "GitHub - Pull requests"))
        self.assertTrue(info.is_browser)
        self.assertTrue(self.observer.has_permission)
        self.assertEqual(mock_run.call_args[1]["timeout"], 1.0)

    @patch("screen.foreground.subprocess.run")
    def test_front_window_without_title(self, mock_run):
        mock_run.return_value = completed("com.apple.finder|||")
        self.assertEqual(self.observer.current_foreground_application(), "com.apple.finder")

    @patch("screen.foreground.subprocess.run")
    def test_permission_denied(self, mock_run):
        mock_run.return_value = completed(returncode=1, stderr="System Events got an error: osascript is not allowed assistive access. (-1719)")
        self.assertIsNone(self.observer.current_window())
        self.assertFalse(self.observer.has_permission)
        with self.assertRaises(ForegroundUnavailable):
            self.observer.require_window()

    @patch("screen.foreground.subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="osascript", timeout=1.0)
        self.assertIsNone(self.observer.current_window())

    @patch("screen.foreground.subprocess.run")
    def test_missing_value(self, mock_run):
        mock_run.return_value = completed("missing value|||")
        self.assertIsNone(self.observer.current_window())

    @patch("screen.foreground.subprocess.run")
    def test_tab_host(self, mock_run):
        mock_run.return_value = completed("https://www.github.com/anthropics\n")
        self.assertEqual(self.observer.current_browser_tab_host("com.google.Chrome"), "github.com")

    @patch("screen.foreground.subprocess.run")
    def test_empty_tab(self, mock_run):
        mock_run.return_value = completed("")
        self.assertIsNone(self.observer.current_browser_tab_host("com.apple.Safari"))

    @patch("screen.foreground.subprocess.run")
    def test_refused_tab_access_marks_browser(self, mock_run):
        mock_run.return_value = completed(returncode=1, stderr="Not authorized to send Apple events to Safari. (-1743)")
        self.assertIsNone(self.observer.current_browser_tab_host("com.apple.Safari"))
        self.assertTrue(self.observer.browser_permission_denied("com.apple.Safari"))
        self.assertFalse(self.observer.browser_permission_denied("com.google.Chrome"))

        mock_run.return_value = completed("https://example.com/")
        self.assertEqual(self.observer.current_browser_tab_host("com.apple.Safari"), "example.com")
        self.assertFalse(self.observer.browser_permission_denied("com.apple.Safari"))

    @patch("screen.foreground.subprocess.run")
    def test_other_tab_errors_are_not_permission_problems(self, mock_run):
        mock_run.return_value = completed(returncode=1, stderr="Safari got an error: Can't get document 1. (-1728)")
        self.assertIsNone(self.observer.current_browser_tab_host("com.apple.Safari"))
        self.assertFalse(self.observer.browser_permission_denied("com.apple.Safari"))

    @patch("screen.foreground.subprocess.run")
    def test_front_window_denial_does_not_mark_browsers(self, mock_run):
        mock_run.return_value = completed(returncode=1, stderr="osascript is not allowed assistive access. (-1719)")
        self.observer.current_window()
        self.assertFalse(self.observer.browser_permission_denied("com.apple.Safari"))

    @patch("screen.foreground.subprocess.run")
    def test_unsupported_browser(self, mock_run):
        self.assertIsNone(self.observer.current_browser_tab_url("org.mozilla.firefox"))
        mock_run.assert_not_called()


class TestOtherPlatforms(unittest.TestCase):

    @patch("screen.foreground.sys.platform", "linux")
    @patch("screen.foreground.subprocess.run")
    def test_no_osascript_off_macos(self, mock_run):
        self.assertIsNone(MacForegroundObserver().current_window())
        mock_run.assert_not_called()

    def test_is_browser(self):
        self.assertTrue(is_browser("com.apple.Safari"))
        self.assertTrue(is_browser("com.google.Chrome"))
        self.assertFalse(is_browser("com.microsoft.VSCode"))
        self.assertFalse(is_browser(None))


@patch("core.permissions.sys.platform", "darwin")
class TestPermissions(unittest.TestCase):

    @patch("core.permissions.subprocess.run")
    def test_accessibility_granted(self, mock_run):
        mock_run.return_value = completed("com.apple.Terminal")
        self.assertTrue(permissions.check_macos_accessibility_permission())

    @patch("core.permissions.subprocess.run")
    def test_accessibility_denied(self, mock_run):
        mock_run.return_value = completed(returncode=1, stderr="Not authorized to send Apple events (-1743)")
        self.assertFalse(permissions.check_macos_accessibility_permission())

    @patch("core.permissions.subprocess.run")
    def test_browser_check_uses_app_name(self, mock_run):
        mock_run.return_value = completed("1")
        self.assertTrue(permissions.check_macos_browser_permission("com.google.Chrome"))
        self.assertIn('application "Google Chrome"', mock_run.call_args[0][0][2])

    @patch("core.permissions.subprocess.run")
    def test_unknown_browser_needs_nothing(self, mock_run):
        self.assertTrue(permissions.check_macos_browser_permission("org.mozilla.firefox"))
        mock_run.assert_not_called()

    @patch("core.permissions.subprocess.run")
    def test_settings_fallbacks_never_raise(self, mock_run):
        mock_run.side_effect = [
            subprocess.CalledProcessError(1, "open"),
            OSError("no System Settings"),
            subprocess.CalledProcessError(1, "open"),
        ]
        permissions.open_macos_automation_settings()
        self.assertEqual(mock_run.call_count, 3)
        self.assertEqual(mock_run.call_args[0][0], ["open", "-a", "System Preferences"])

    @patch("core.permissions.subprocess.run")
    def test_settings_fallback_stops_at_first_success(self, mock_run):
        mock_run.side_effect = [subprocess.CalledProcessError(1, "open"), completed()]
        permissions.open_macos_accessibility_settings()
        self.assertEqual(mock_run.call_count, 2)
        self.assertEqual(mock_run.call_args[0][0], ["open", "-a", "System Settings"])


if __name__ == "__main__":
    unittest.main()
