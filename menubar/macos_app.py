"""
Focusd macOS menu bar application using rumps.

The title shows the current state and countdown. The menu holds the
session controls, today's counters, the allow-list editors and the
post-session note/summary items.
"""

import logging
from collections import deque
from typing import Any, Deque, Dict, Optional, Tuple

import rumps

import config
from core.engine import FocusEngine, PomodoroState, create_engine
from core.permissions import (
    check_macos_accessibility_permission,
    check_macos_browser_permission,
    open_macos_accessibility_settings,
    open_macos_automation_settings,
)
from tracking.analytics import format_clock, format_duration, friendly_app_name, stats_lines

logger = logging.getLogger(__name__)

STATE_LABELS = {
    PomodoroState.IDLE: "Ready to focus",
    PomodoroState.RUNNING: "Focusing",
    PomodoroState.DISTRACTED: "Distracted",
    PomodoroState.SUCCESS: "Session complete!",
    PomodoroState.BREAK: "On a break",
}

STATE_ICONS = {
    PomodoroState.IDLE: "◯",
    PomodoroState.RUNNING: "●",
    PomodoroState.DISTRACTED: "✕",
    PomodoroState.SUCCESS: "★",
    PomodoroState.BREAK: "☕",
}

DURATION_CHOICES = (15, 25, 45, 60)


class FocusdMenuBar(rumps.App):
    """macOS menu bar application for Focusd."""

    def __init__(self, engine: Optional[FocusEngine] = None) -> None:
        """Initialise the menu bar app and its engine."""
        super().__init__(
            name=config.APP_NAME,
            title=STATE_ICONS[PomodoroState.IDLE],
            quit_button=None,
        )

        self.engine = engine or create_engine()
        self.engine.on_success = self._on_success
        self.engine.on_permission_needed = self._on_permission_needed
        if self.engine.reflection is not None:
            self.engine.reflection.on_summary = self._on_summary

        # Filled from engine and summary threads, drained by the timer
        self._pending_summaries: Deque[Tuple[int, str]] = deque()
        self._pending_permissions: Deque[str] = deque()

        # Status display (non-clickable)
        self.status_item = rumps.MenuItem(STATE_LABELS[PomodoroState.IDLE])
        self.status_item.set_callback(None)
        self.today_item = rumps.MenuItem("")
        self.today_item.set_callback(None)

        # Session controls
        self.start_item = rumps.MenuItem("Start Focus", callback=self._start)
        self.pause_item = rumps.MenuItem("Pause", callback=None)
        self.finish_item = rumps.MenuItem("Finish", callback=None)

        # Duration submenu
        self.duration_items = {
            minutes: rumps.MenuItem(f"{minutes} min", callback=self._set_duration)
            for minutes in DURATION_CHOICES
        }
        self.duration_menu = rumps.MenuItem("Duration")
        self.duration_menu.update(list(self.duration_items.values()))
        self._refresh_duration_checkmarks()

        # Allow-list
        self.allow_app_item = rumps.MenuItem("Allow Current App", callback=self._toggle_current_app)
        self.websites_menu = rumps.MenuItem("Allowed Websites")
        self.add_site_item = rumps.MenuItem("Add Website…", callback=self._add_website)
        self.remove_site_item = rumps.MenuItem("Remove Website…", callback=self._remove_website)

        # Reflection
        self.note_item = rumps.MenuItem("Add Note…", callback=self._add_note)
        self.summaries_item = rumps.MenuItem("Recent Summaries", callback=self._show_summaries)
        self.stats_menu = rumps.MenuItem("Stats")

        self.quit_item = rumps.MenuItem(f"Quit {config.APP_NAME}", callback=self._quit_app)

        self._last_state: Optional[PomodoroState] = None
        self._build_menu()
        self._rebuild_websites_menu()
        self._rebuild_stats_menu()

        if not check_macos_accessibility_permission():
            response = rumps.alert(
                title="Accessibility Permission Needed",
                message=f"{config.APP_NAME} needs Accessibility access to see which app is in front.",
                ok="Open Settings",
                cancel="Later",
            )
            if response == 1:
                open_macos_accessibility_settings()

        self.engine.start_ticking()

    # ------------------------------------------------------------------
    # Menu building
    # ------------------------------------------------------------------

    def _build_menu(self) -> None:
        self.menu.clear()
        self.menu.add(self.status_item)
        self.menu.add(self.today_item)
        self.menu.add(rumps.separator)
        self.menu.add(self.start_item)
        self.menu.add(self.pause_item)
        self.menu.add(self.finish_item)
        self.menu.add(self.duration_menu)
        self.menu.add(rumps.separator)
        self.menu.add(self.allow_app_item)
        self.menu.add(self.websites_menu)
        self.menu.add(rumps.separator)
        self.menu.add(self.note_item)
        self.menu.add(self.summaries_item)
        self.menu.add(self.stats_menu)
        self.menu.add(rumps.separator)
        self.menu.add(self.quit_item)

    def _rebuild_websites_menu(self) -> None:
        """One checkable item per website rule, then add/remove actions."""
        if len(self.websites_menu):
            self.websites_menu.clear()
        items = []
        for rule in self.engine.allowlist.web_rules:
            item = rumps.MenuItem(rule.domain, callback=self._toggle_rule)
            item.state = 1 if rule.enabled else 0
            item.rule_id = rule.id
            items.append(item)
        if items:
            items.append(rumps.separator)
        items += [self.add_site_item, self.remove_site_item]
        self.websites_menu.update(items)

    def _rebuild_stats_menu(self) -> None:
        """Recent focus minutes per day and top apps (read-only items)."""
        recorder = self.engine.recorder
        if recorder is None:
            lines = ["Session history unavailable"]
        else:
            lines = stats_lines(
                recorder.focus_stats_last(config.STATS_PERIOD_DAYS),
                recorder.top_apps(config.STATS_PERIOD_DAYS, limit=config.STATS_TOP_APPS),
            )
        if len(self.stats_menu):
            self.stats_menu.clear()
        items = []
        for line in lines:
            item = rumps.MenuItem(line)
            item.set_callback(None)
            items.append(item)
        self.stats_menu.update(items)

    def _refresh_duration_checkmarks(self) -> None:
        for minutes, item in self.duration_items.items():
            item.state = 1 if minutes == self.engine.duration_minutes else 0

    # ------------------------------------------------------------------
    # Timer (polls engine every second)
    # ------------------------------------------------------------------

    @rumps.timer(1)
    def _refresh(self, timer) -> None:
        """Poll engine status and update the title and menu."""
        status = self.engine.get_status()
        state = PomodoroState(status["state"])

        if state == PomodoroState.IDLE:
            self.title = STATE_ICONS[state]
        else:
            self.title = f"{STATE_ICONS[state]} {format_clock(status['remaining_seconds'])}"

        label = STATE_LABELS[state]
        if state == PomodoroState.DISTRACTED and status["current_app"]:
            label = f"Distracted by {friendly_app_name(status['current_app'])}"
        self.status_item.title = label
        self.today_item.title = self._today_text(status)

        if state != self._last_state:
            self._apply_state(state)
            if state in (PomodoroState.SUCCESS, PomodoroState.IDLE):
                self._rebuild_stats_menu()
            self._last_state = state

        self._drain_pending()

    @staticmethod
    def _today_text(status: Dict[str, Any]) -> str:
        focused = format_duration(status["focused_seconds_today"])
        return (f"Today: {status['completed_today']} done, {focused} focused "
                f"({status['focus_rate']:.0f}%)")

    def _apply_state(self, state: PomodoroState) -> None:
        """Enable only the controls that make sense in this state."""
        active = state in (PomodoroState.RUNNING, PomodoroState.DISTRACTED, PomodoroState.BREAK)
        self.start_item.set_callback(self._start if state == PomodoroState.IDLE else None)
        self.pause_item.set_callback(self._pause if active else None)
        self.finish_item.set_callback(self._finish if active else None)

    # ------------------------------------------------------------------
    # Session controls
    # ------------------------------------------------------------------

    def _start(self, sender) -> None:
        if not self.engine.start():
            rumps.alert(title="Already Running", message="Finish or pause the current session first.")

    def _pause(self, sender) -> None:
        self.engine.pause()

    def _finish(self, sender) -> None:
        self.engine.finish()

    def _set_duration(self, sender) -> None:
        minutes = int(sender.title.split()[0])
        self.engine.set_duration(minutes)
        self._refresh_duration_checkmarks()

    # ------------------------------------------------------------------
    # Allow-list
    # ------------------------------------------------------------------

    def _toggle_current_app(self, sender) -> None:
        app = self.engine.current_app
        allowed = self.engine.toggle_current_application()
        if allowed is None:
            rumps.alert(title="No App Detected", message="Could not tell which app is in front.")
            return
        name = friendly_app_name(app) if app else "App"
        rumps.notification(
            title=config.APP_NAME,
            subtitle="",
            message=f"{name} {'is now always allowed' if allowed else 'is no longer always allowed'}",
        )

    def _add_website(self, sender) -> None:
        window = rumps.Window(
            message="Enter a domain or paste a URL (e.g. github.com)",
            title="Allow Website",
            default_text="",
            ok="Add",
            cancel="Cancel",
            dimensions=(280, 24),
        )
        response = window.run()
        if not response.clicked:
            return
        rule = self.engine.allowlist.add_domain_rule(response.text)
        if rule is not None:
            self._rebuild_websites_menu()

    def _remove_website(self, sender) -> None:
        window = rumps.Window(
            message="Domain to remove",
            title="Remove Website",
            default_text="",
            ok="Remove",
            cancel="Cancel",
            dimensions=(280, 24),
        )
        response = window.run()
        if not response.clicked:
            return
        rule = self.engine.allowlist.find_rule(response.text)
        if rule is None:
            rumps.alert(title="Not Found", message=f"No rule for {response.text.strip()}")
            return
        self.engine.allowlist.remove_rule(rule.id)
        self._rebuild_websites_menu()

    def _toggle_rule(self, sender) -> None:
        if self.engine.allowlist.toggle_rule(sender.rule_id):
            sender.state = 0 if sender.state else 1

    # ------------------------------------------------------------------
    # Reflection
    # ------------------------------------------------------------------

    def _add_note(self, sender) -> None:
        reflection = self.engine.reflection
        if reflection is None:
            return
        response = rumps.Window(
            message="What did you get done?",
            title="Session Note",
            default_text="",
            ok="Save",
            cancel="Cancel",
            dimensions=(320, 80),
        ).run()
        if response.clicked:
            reflection.add_note(response.text)

    def _show_summaries(self, sender) -> None:
        lines = []
        reflection = self.engine.reflection
        if reflection is not None:
            lines += [f"• {note}" for note in reflection.notes[:3]]
        if self.engine.recorder is not None:
            for session_id, started_at, summary in self.engine.recorder.recent_summaries(limit=3):
                lines.append(f"{started_at[:16].replace('T', ' ')}: {summary}")
        rumps.alert(
            title="Recent Sessions",
            message="\n\n".join(lines) if lines else "No notes or summaries yet.",
        )

    # ------------------------------------------------------------------
    # Engine callbacks
    # ------------------------------------------------------------------

    def _on_success(self, session_id: Optional[int], reflection: Optional[Dict[str, Any]]) -> None:
        """Show the top apps of the completed session."""
        message = "Time for a break."
        if reflection and reflection["slices"]:
            top = ", ".join(f"{s['name']} {s['minutes']}m" for s in reflection["slices"][:3])
            message = f"Top apps: {top}"
        rumps.notification(
            title=config.APP_NAME,
            subtitle="Session Complete",
            message=message,
        )

    def _on_summary(self, session_id: int, text: str) -> None:
        self._pending_summaries.append((session_id, text))

    def _on_permission_needed(self, bundle_id: str) -> None:
        self._pending_permissions.append(bundle_id)

    def _drain_pending(self) -> None:
        """Show queued summaries and permission prompts on the main thread."""
        while self._pending_summaries:
            session_id, text = self._pending_summaries.popleft()
            rumps.notification(
                title=config.APP_NAME,
                subtitle="Session Summary",
                message=text,
            )
        while self._pending_permissions:
            bundle_id = self._pending_permissions.popleft()
            if check_macos_browser_permission(bundle_id):
                continue
            browser = config.BROWSER_BUNDLE_IDS.get(bundle_id, friendly_app_name(bundle_id))
            response = rumps.alert(
                title="Automation Permission Needed",
                message=(f"{config.APP_NAME} cannot read the current tab in {browser}, so every "
                         f"website counts as a distraction. Allow {config.APP_NAME} to control "
                         f"{browser} under Privacy & Security > Automation."),
                ok="Open Settings",
                cancel="Later",
            )
            if response == 1:
                open_macos_automation_settings()

    # ------------------------------------------------------------------
    # Quit
    # ------------------------------------------------------------------

    def _quit_app(self, sender) -> None:
        """Clean up and quit. An unfinished session is left unfinalized."""
        self.engine.cleanup()
        if self.engine.recorder is not None:
            self.engine.recorder.close()
        rumps.quit_application()
