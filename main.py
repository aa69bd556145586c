#!/usr/bin/env python3
"""
Focusd - Main Entry Point

A Pomodoro focus timer that watches the frontmost app and browser tab,
counts focused and distracted time, and keeps a local session history.

Usage:
    python main.py          # Launch menu bar app (default)
    python main.py --cli    # Launch CLI mode
"""

# =============================================================================
# PyInstaller bundled app path fix - MUST BE BEFORE ANY OTHER IMPORTS
# =============================================================================
import os
import sys

if getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS'):
    _bundle_dir = sys._MEIPASS
    os.chdir(_bundle_dir)
    if _bundle_dir not in sys.path:
        sys.path.insert(0, _bundle_dir)

import logging
import argparse
from typing import Optional

import config
from core.engine import FocusEngine, PomodoroState, create_engine
from tracking.analytics import format_clock, format_duration, friendly_app_name, stats_lines

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format=config.LOG_FORMAT
)
logger = logging.getLogger(__name__)

# Suppress noisy third-party library logs (HTTP requests, etc.)
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("openai").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)

CLI_HELP = """
Commands:
  s            start a focus session
  p            pause (abandon) the session
  f            finish the session and keep it
  a            toggle the current app on the allow-list
  w <domain>   allow a website (e.g. w github.com)
  n <text>     add a note about the last session
  d <minutes>  set the focus duration
  t            show today's totals and the last 7 days
  q            quit
"""


class FocusdCLI:
    """Terminal front end: the engine ticks in the background, stdin drives it."""

    def __init__(self, engine: Optional[FocusEngine] = None):
        self.engine = engine or create_engine()
        self.engine.on_state_change = self._on_state_change
        self.engine.on_success = self._on_success
        self.engine.on_permission_needed = self._on_permission_needed
        if self.engine.reflection is not None:
            self.engine.reflection.on_summary = self._on_summary

    def display_welcome(self) -> None:
        print("\n" + "=" * 60)
        print(f"🍅 {config.APP_NAME} - Focus Timer")
        print("=" * 60)
        print(f"\nFocus length: {self.engine.duration_minutes} min, break: "
              f"{format_duration(self.engine.break_seconds)}")
        allowed = sorted(self.engine.allowlist.allowed_apps)
        print(f"Always allowed apps: {', '.join(allowed) if allowed else 'none'}")
        sites = [r.domain for r in self.engine.allowlist.web_rules if r.enabled]
        print(f"Allowed websites: {', '.join(sites) if sites else 'none'}")
        print(CLI_HELP)

    def run(self) -> None:
        self.display_welcome()
        self.engine.start_ticking()
        try:
            while True:
                try:
                    line = input("> ").strip()
                except EOFError:
                    break
                if not self.handle_command(line):
                    break
        finally:
            self.engine.cleanup()
            if self.engine.recorder is not None:
                self.engine.recorder.close()
        print("\n👋 Goodbye!")

    def handle_command(self, line: str) -> bool:
        """
        Execute one command line.

        Returns:
            False when the user asked to quit.
        """
        command, _, arg = line.partition(" ")
        command = command.lower()

        if command == "q":
            return False
        if command == "s":
            if not self.engine.start():
                print("A session is already in progress.")
        elif command == "p":
            if not self.engine.pause():
                print("Nothing to pause.")
        elif command == "f":
            if not self.engine.finish():
                print("Nothing to finish.")
        elif command == "a":
            app = self.engine.current_app
            allowed = self.engine.toggle_current_application()
            if allowed is None:
                print("Could not tell which app is in front.")
            else:
                name = friendly_app_name(app) if app else "App"
                print(f"{name} {'allowed' if allowed else 'no longer allowed'}.")
        elif command == "w":
            rule = self.engine.allowlist.add_domain_rule(arg)
            if rule is not None:
                print(f"Allowed {rule.domain}")
        elif command == "n":
            if self.engine.reflection is not None and self.engine.reflection.add_note(arg):
                print("Note saved.")
        elif command == "d":
            try:
                self.engine.set_duration(int(arg))
            except ValueError:
                print("Usage: d <minutes>")
        elif command == "t":
            self._print_status()
        elif command:
            print(CLI_HELP)
        return True

    def _print_status(self) -> None:
        status = self.engine.get_status()
        print(f"\nState: {status['state']}  remaining {format_clock(status['remaining_seconds'])}")
        print(f"Today: {status['completed_today']} sessions, "
              f"{format_duration(status['focused_seconds_today'])} focused, "
              f"{format_duration(status['distracted_seconds_today'])} distracted "
              f"({status['focus_rate']:.0f}% focus)")
        recorder = self.engine.recorder
        if recorder is not None:
            for line in stats_lines(
                recorder.focus_stats_last(config.STATS_PERIOD_DAYS),
                recorder.top_apps(config.STATS_PERIOD_DAYS, limit=config.STATS_TOP_APPS),
            ):
                print(f"  {line}")
        print()

    def _on_state_change(self, state: PomodoroState) -> None:
        if state == PomodoroState.DISTRACTED:
            app = self.engine.current_app
            print(f"\n⚠️  Distracted by {friendly_app_name(app) if app else 'something'}")
        elif state == PomodoroState.RUNNING:
            print(f"\n🎯 Focusing ({format_clock(self.engine.remaining_seconds)} left)")
        elif state == PomodoroState.BREAK:
            print(f"\n☕ Break for {format_duration(self.engine.break_seconds)}")
        elif state == PomodoroState.IDLE:
            print("\n⏹  Idle")

    def _on_success(self, session_id, reflection) -> None:
        print("\n" + "=" * 60)
        print("✨ Session complete! Keep up the great work!")
        if reflection:
            for item in reflection["slices"]:
                print(f"   {item['name']:<20} {format_duration(item['seconds'])} "
                      f"({item['share'] * 100:.0f}%)")
        print("=" * 60)

    def _on_summary(self, session_id: int, text: str) -> None:
        print(f"\n📝 Summary for session {session_id}: {text}")

    def _on_permission_needed(self, bundle_id: str) -> None:
        browser = config.BROWSER_BUNDLE_IDS.get(bundle_id, bundle_id)
        print(f"\n🔒 Cannot read {browser} tabs: allow {config.APP_NAME} under "
              f"System Settings > Privacy & Security > Automation")


def main_menubar():
    """Run the menu bar application."""
    from menubar import run_menubar_app
    run_menubar_app()


def main():
    """
    Main entry point: parses arguments and launches appropriate mode.

    Default mode is menu bar unless --cli is specified.
    """
    parser = argparse.ArgumentParser(
        description="Focusd - Pomodoro focus timer with distraction tracking",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py                      Launch menu bar app (default)
  python main.py --cli                Launch CLI mode
  python main.py --cli --minutes 50   50-minute sessions
        """
    )
    parser.add_argument(
        "--cli",
        action="store_true",
        help="Run in CLI mode (terminal-based)",
    )
    parser.add_argument(
        "--minutes",
        type=int,
        default=None,
        help="Focus duration in minutes (CLI mode)",
    )
    parser.add_argument(
        "--test-seconds",
        type=int,
        default=None,
        help="Debug: override the focus duration in seconds (CLI mode)",
    )

    args = parser.parse_args()

    if args.cli:
        try:
            cli = FocusdCLI()
            if args.minutes:
                cli.engine.set_duration(args.minutes)
            if args.test_seconds:
                cli.engine.set_test_duration(args.test_seconds)
            cli.run()
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            sys.exit(0)
        except Exception as e:
            logger.error(f"Fatal error: {e}", exc_info=True)
            print(f"\nFatal error: {e}")
            sys.exit(1)
    else:
        # Default to menu bar app
        try:
            main_menubar()
        except KeyboardInterrupt:
            sys.exit(0)
        except Exception as e:
            logger.error(f"Fatal error: {e}", exc_info=True)
            print(f"\nFatal error: {e}")
            sys.exit(1)


if __name__ == "__main__":
    main()
