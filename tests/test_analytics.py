"""
Unit tests for analytics helpers and the per-session tracking models.
"""

import sys
import unittest
from datetime import datetime, timedelta
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from tracking.analytics import format_clock, format_duration, friendly_app_name, stats_lines, usage_slices
from tracking.session import ActivityLog, AppUsage, Session, SessionContext


class TestFormatting(unittest.TestCase):
    """Test duration formatting."""

    def test_format_duration(self):
        self.assertEqual(format_duration(0), "0 sec")
        self.assertEqual(format_duration(45), "45 secs")
        self.assertEqual(format_duration(90), "1 min 30 secs")
        self.assertEqual(format_duration(3725), "1 hr 2 mins")
        self.assertEqual(format_duration(3725, full_precision=True), "1 hr 2 mins 5 secs")
        self.assertEqual(format_duration(-5), "0 sec")

    def test_format_clock(self):
        self.assertEqual(format_clock(1500), "25:00")
        self.assertEqual(format_clock(61), "01:01")
        self.assertEqual(format_clock(-3), "00:00")


class TestFriendlyNames(unittest.TestCase):

    def test_known_app(self):
        self.assertEqual(friendly_app_name("com.microsoft.VSCode"), "VS Code")

    def test_own_app(self):
        self.assertEqual(friendly_app_name("com.focusd.bot", self_bundle_id="com.focusd.bot"), "Focusd")

    def test_unknown_app_uses_last_component(self):
        self.assertEqual(friendly_app_name("org.mozilla.firefox"), "firefox")
        self.assertEqual(friendly_app_name("Preview"), "Preview")


class TestUsageSlices(unittest.TestCase):

    def test_sorted_and_truncated(self):
        usage = [("a.one", 60), ("b.two", 600), ("c.three", 300), ("d.four", 40)]
        slices = usage_slices(usage, top_n=2)
        self.assertEqual([s["bundle_id"] for s in slices], ["b.two", "c.three"])
        self.assertEqual(slices[0]["minutes"], 10)
        self.assertAlmostEqual(slices[0]["share"], 600 / 1000)

    def test_ties_broken_by_bundle_id(self):
        slices = usage_slices([("z.app", 5), ("a.app", 5)], top_n=None)
        self.assertEqual([s["bundle_id"] for s in slices], ["a.app", "z.app"])

    def test_empty(self):
        self.assertEqual(usage_slices([]), [])


class TestStatsLines(unittest.TestCase):

    def test_days_and_top_apps(self):
        lines = stats_lines(
            [("2025-03-10", 75), ("2025-03-08", 25)],
            [("com.microsoft.VSCode", 90, 45), ("com.apple.Safari", 5, 5)],
        )
        self.assertEqual(lines, [
            "Last 7 days: 1 hr 40 mins focused",
            "2025-03-10: 1 hr 15 mins",
            "2025-03-08: 25 mins",
            "Top apps:",
            "VS Code: 1 hr 30 mins (45 min/session)",
            "Safari: 5 mins (5 min/session)",
        ])

    def test_empty_history(self):
        self.assertEqual(stats_lines([], [], period_days=30), ["Last 30 days: 0 sec focused"])


class TestSessionModels(unittest.TestCase):
    """Test Session, SessionContext, AppUsage and ActivityLog."""

    def test_finalize_is_idempotent(self):
        start = datetime(2025, 3, 10, 9, 0, 0)
        session = Session(start=start, planned_minutes=25)
        self.assertFalse(session.is_finalized)

        session.finalize(start + timedelta(minutes=25))
        session.finalize(start + timedelta(minutes=30), completed=False)
        self.assertTrue(session.completed)
        self.assertEqual(session.get_duration(), 1500)

    def test_context_seeding(self):
        self.assertEqual(SessionContext.seeded_with("com.apple.Notes").allowed_apps, {"com.apple.Notes"})
        self.assertEqual(SessionContext.seeded_with(None).allowed_apps, set())

    def test_app_usage(self):
        usage = AppUsage()
        usage.credit("com.apple.Safari")
        usage.credit("com.apple.Safari")
        usage.credit("com.apple.Notes", 5)
        self.assertEqual(len(usage), 2)
        self.assertEqual(usage.seconds_for("com.apple.Safari"), 2)
        self.assertEqual(usage.sorted_desc(), [("com.apple.Notes", 5), ("com.apple.Safari", 2)])
        self.assertEqual(usage.sorted_desc(limit=1), [("com.apple.Notes", 5)])
        self.assertEqual(usage.total_seconds(), 7)
        with self.assertRaises(ValueError):
            usage.credit("com.apple.Notes", -1)
        usage.clear()
        self.assertEqual(usage.as_dict(), {})

    def test_activity_log_records_changes_only(self):
        log = ActivityLog()
        t = datetime(2025, 3, 10, 9, 0, 0)
        self.assertTrue(log.observe(t, "com.apple.Safari", "GitHub"))
        self.assertFalse(log.observe(t + timedelta(seconds=1), "com.apple.Safari", "GitHub"))
        self.assertTrue(log.observe(t + timedelta(seconds=2), "com.apple.Safari", "Docs"))
        self.assertTrue(log.observe(t + timedelta(seconds=3), "com.apple.Notes"))

        events = log.events
        self.assertEqual(len(events), 3)
        self.assertEqual(events[0].to_payload(), {
            "t": "2025-03-10T09:00:00",
            "kind": "app",
            "title": "com.apple.Safari",
            "detail": "GitHub",
        })
        self.assertIsNone(events[2].detail)

        log.clear()
        self.assertEqual(log.events, [])
        self.assertTrue(log.observe(t, "com.apple.Safari", "GitHub"))


if __name__ == "__main__":
    unittest.main()
