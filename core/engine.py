"""
FocusEngine - the Pomodoro state machine behind Focusd.

One tick per second decides whether the foreground app (or, for
browsers, the active tab) is allowed, moves time between the focused
and distracted counters, and walks the session through
Idle -> Running <-> Distracted -> Success -> BreakTime -> Idle.

This module has ZERO UI dependencies. The menu bar app calls engine
methods and receives updates via callbacks.

Callbacks:
    on_state_change(state: PomodoroState)
    on_tick(status: dict)
    on_success(session_id: Optional[int], reflection: Optional[dict])
"""

import concurrent.futures
import logging
import math
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

import config
from core.errors import ForegroundUnavailable, PersistenceFailure, TabQueryFailed, TabQueryTimeout
from screen.allowlist import AllowListStore
from screen.foreground import ForegroundObserver, WindowInfo, is_browser
from tracking.daily_stats import DailyCounters
from tracking.recorder import SessionRecorder
from tracking.session import ActivityLog, AppUsage, Session, SessionContext

logger = logging.getLogger(__name__)

# scheduler(delay_seconds, callback) -> handle with cancel()
Scheduler = Callable[[float, Callable[[], None]], Any]


class PomodoroState(str, Enum):
    IDLE = config.STATE_IDLE
    RUNNING = config.STATE_RUNNING
    DISTRACTED = config.STATE_DISTRACTED
    SUCCESS = config.STATE_SUCCESS
    BREAK = config.STATE_BREAK


ACTIVE_STATES = (PomodoroState.RUNNING, PomodoroState.DISTRACTED)


def timer_scheduler(delay: float, callback: Callable[[], None]) -> threading.Timer:
    """Run callback once after delay seconds on a daemon timer thread."""
    timer = threading.Timer(delay, callback)
    timer.daemon = True
    timer.start()
    return timer


class FocusEngine:
    """
    Core session state machine.

    Handles:
    - Session lifecycle (start, pause, finish, natural completion)
    - Allowed/distracted evaluation against the AllowListStore
    - Per-app usage and activity events for the active session
    - Daily counters and their midnight rollover
    - Success -> break hand-over and the reflection hand-off

    All state changes (ticks, user commands, the break timer) are
    serialised through one re-entrant lock.
    """

    # ------------------------------------------------------------------
    # Initialisation
    # ------------------------------------------------------------------

    def __init__(self,
                 observer: ForegroundObserver,
                 allowlist: AllowListStore,
                 counters: DailyCounters,
                 recorder: Optional[SessionRecorder] = None,
                 reflection=None,
                 clock: Callable[[], datetime] = datetime.now,
                 scheduler: Scheduler = timer_scheduler,
                 duration_minutes: int = config.DEFAULT_DURATION_MINUTES,
                 break_seconds: int = config.BREAK_SECONDS,
                 success_delay: float = config.SUCCESS_TO_BREAK_DELAY,
                 tab_timeout: float = config.TAB_QUERY_TIMEOUT,
                 preferences=None) -> None:
        """
        Initialise the engine with its collaborators.

        Args:
            observer: Source of the foreground app and browser tab host.
            allowlist: Global allowed apps and website rules.
            counters: Today's completed/focused/distracted totals.
            recorder: Session archive, or None to keep nothing.
            reflection: ReflectionTrigger notified on completion, or None.
            clock: Returns local "now"; injected for tests.
            scheduler: Runs the delayed Success -> BreakTime step.
            duration_minutes: Planned focus length.
            break_seconds: Length of the break after a completed session.
            success_delay: Seconds spent in Success before the break.
            tab_timeout: Longest wait for a browser tab URL.
            preferences: PreferencesStore that remembers set_duration(), or None.
        """
        self.observer = observer
        self.allowlist = allowlist
        self.counters = counters
        self.recorder = recorder
        self.reflection = reflection
        self.preferences = preferences
        self._clock = clock
        self._scheduler = scheduler

        self.duration_minutes: int = max(1, int(duration_minutes))
        self.test_duration_seconds: Optional[int] = None
        self.break_seconds = break_seconds
        self.success_delay = success_delay
        self.tab_timeout = tab_timeout

        # Session state
        self.state: PomodoroState = PomodoroState.IDLE
        self.remaining_seconds: int = self.planned_seconds
        self.session: Optional[Session] = None
        self.context: SessionContext = SessionContext()
        self.usage: AppUsage = AppUsage()
        self.activity: ActivityLog = ActivityLog()
        self.current_app: Optional[str] = None
        self.is_allowed: Optional[bool] = None

        self._lock = threading.RLock()
        self._break_timer: Any = None
        self._permission_reported: Set[str] = set()
        self._tab_executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="tab-query")

        # Background tick loop
        self.should_stop: threading.Event = threading.Event()
        self.tick_thread: Optional[threading.Thread] = None

        # ---- Callbacks (set by the menu bar app) ----
        self.on_state_change: Optional[Callable[[PomodoroState], None]] = None
        self.on_tick: Optional[Callable[[Dict[str, Any]], None]] = None
        self.on_success: Optional[Callable[[Optional[int], Optional[Dict[str, Any]]], None]] = None
        self.on_permission_needed: Optional[Callable[[str], None]] = None

    # ------------------------------------------------------------------
    # Duration
    # ------------------------------------------------------------------

    @property
    def planned_seconds(self) -> int:
        if self.test_duration_seconds:
            return self.test_duration_seconds
        return self.duration_minutes * 60

    @property
    def planned_minutes(self) -> int:
        return max(1, math.ceil(self.planned_seconds / 60))

    def set_duration(self, minutes: int) -> None:
        """
        Change the planned focus length. Non-positive values are ignored.

        A running session is abandoned (returns to Idle); the next Start
        uses the new length.
        """
        if minutes <= 0:
            logger.warning(f"Ignoring invalid duration: {minutes}")
            return
        with self._lock:
            self.duration_minutes = int(minutes)
            logger.info(f"Focus duration set to {self.duration_minutes} min")
            if self.preferences is not None:
                self.preferences.set_duration_minutes(self.duration_minutes)
            self._apply_duration_change()

    def set_test_duration(self, seconds: Optional[int]) -> None:
        """Override the duration in seconds for debugging (None clears it)."""
        with self._lock:
            self.test_duration_seconds = int(seconds) if seconds and seconds > 0 else None
            logger.info(f"Test duration override: {self.test_duration_seconds}")
            self._apply_duration_change()

    def _apply_duration_change(self) -> None:
        if self.state == PomodoroState.RUNNING:
            self._reset_to_idle()
        elif self.state == PomodoroState.IDLE:
            self.remaining_seconds = self.planned_seconds

    # ------------------------------------------------------------------
    # User commands
    # ------------------------------------------------------------------

    def start(self) -> bool:
        """
        Start a focus session from Idle.

        The app in front right now is allowed for this session only.

        Returns:
            True if a session was started, False if one is already in progress.
        """
        with self._lock:
            if self.state != PomodoroState.IDLE:
                logger.info(f"Start ignored in state {self.state.value}")
                return False

            now = self._clock()
            window = self._observe()
            app = window.bundle_id if window else None

            self.session = Session(start=now, planned_minutes=self.planned_minutes)
            if self.recorder is not None:
                try:
                    self.session.id = self.recorder.create_session(now, self.planned_minutes)
                except PersistenceFailure as e:
                    logger.warning(f"Could not record session start: {e}")

            self.context = SessionContext.seeded_with(app)
            self.remaining_seconds = self.planned_seconds
            self.usage.clear()
            self.activity.clear()
            self.current_app = app
            self.is_allowed = True if app else None

            logger.info(f"Session {self.session.id} started: {self.planned_seconds}s, "
                        f"session-allowed app {app}")
            self._set_state(PomodoroState.RUNNING)
            return True

    def pause(self) -> bool:
        """
        Abandon the session without recording it as completed.

        Returns:
            True if there was a session to abandon.
        """
        with self._lock:
            if self.state not in (PomodoroState.RUNNING, PomodoroState.DISTRACTED, PomodoroState.BREAK):
                return False
            logger.info(f"Session {self.session.id if self.session else None} paused")
            self._cancel_break_timer()
            self._reset_to_idle()
            return True

    def finish(self) -> bool:
        """
        End the session early, keeping it: finalize, flush usage, go Idle.

        Returns:
            True if there was a session to finish.
        """
        with self._lock:
            if self.state not in (PomodoroState.RUNNING, PomodoroState.DISTRACTED, PomodoroState.BREAK):
                return False
            logger.info(f"Session {self.session.id if self.session else None} finished by user")
            self._cancel_break_timer()
            self._finalize(self._clock(), completed=True)
            self._reset_to_idle()
            return True

    def toggle_current_application(self) -> Optional[bool]:
        """
        Add or remove the last observed foreground app from the global allow-list.

        Returns:
            The app's new allowed state, or None if no app is known.
        """
        app = self.current_app
        if app is None:
            window = self._observe()
            app = window.bundle_id if window else None
        if app is None:
            return None
        return self.allowlist.toggle_application(app)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self) -> None:
        """
        Advance the state machine by one second.

        Order: daily rollover, allowed evaluation, counters and usage,
        then the state transition. Never raises.
        """
        with self._lock:
            now = self._clock()
            self.counters.check_rollover(now)

            if self.state == PomodoroState.BREAK:
                self._tick_break()
            elif self.state in ACTIVE_STATES:
                self._tick_session(now)
            else:
                return

            if self.on_tick:
                try:
                    self.on_tick(self.get_status())
                except Exception as e:
                    logger.debug(f"on_tick callback error: {e}")

    def _tick_session(self, now: datetime) -> None:
        window = self._observe()
        if window is None:
            logger.debug("No foreground app this tick")
            return

        app = window.bundle_id
        allowed = self._evaluate_allowed(app)
        self.current_app = app
        self.is_allowed = allowed

        self.usage.credit(app)
        self.activity.observe(now, app, window.window_title)

        if self.state == PomodoroState.RUNNING:
            if allowed:
                self.remaining_seconds -= 1
                self.counters.add_focused()
                if self.remaining_seconds <= 0:
                    self.remaining_seconds = 0
                    self._complete(now)
            else:
                logger.info(f"Distracted by {app}")
                self._set_state(PomodoroState.DISTRACTED)
        else:
            if allowed:
                logger.info(f"Back on track with {app}")
                self._set_state(PomodoroState.RUNNING)
            else:
                self.counters.add_distracted()

    def _tick_break(self) -> None:
        self.remaining_seconds -= 1
        if self.remaining_seconds <= 0:
            logger.info("Break over")
            self._reset_to_idle()

    # ------------------------------------------------------------------
    # Allowed evaluation
    # ------------------------------------------------------------------

    def _observe(self) -> Optional[WindowInfo]:
        try:
            return self.observer.require_window()
        except ForegroundUnavailable:
            return None
        except Exception as e:
            logger.warning(f"Foreground query failed: {e}")
            return None

    def _evaluate_allowed(self, app: str) -> bool:
        """
        App allow-list first; website rules only for browsers not already allowed.

        An unreadable tab (new tab page, error, timeout) is not allowed.
        """
        if self.allowlist.is_application_allowed(app, self.context.allowed_apps):
            return True
        if not is_browser(app):
            return False
        try:
            host = self._query_tab_host(app)
        except TabQueryFailed as e:
            logger.warning(f"{type(e).__name__}: {e}")
            return False
        if not host:
            self._check_browser_permission(app)
            return False
        self._permission_reported.discard(app)
        return self.allowlist.is_website_allowed(host)

    def _check_browser_permission(self, app: str) -> None:
        """Report a browser that refuses tab access, once until it answers again."""
        if not self.observer.browser_permission_denied(app):
            self._permission_reported.discard(app)
            return
        if app in self._permission_reported:
            return
        self._permission_reported.add(app)
        logger.warning(f"Automation permission missing for {app}; its tabs count as not allowed")
        if self.on_permission_needed:
            try:
                self.on_permission_needed(app)
            except Exception as e:
                logger.debug(f"on_permission_needed callback error: {e}")

    def _query_tab_host(self, app: str) -> Optional[str]:
        """
        Ask the observer for the active tab host, bounded by tab_timeout.

        Raises:
            TabQueryTimeout: The browser did not answer in time.
            TabQueryFailed: The observer raised.
        """
        future = self._tab_executor.submit(self.observer.current_browser_tab_host, app)
        try:
            return future.result(timeout=self.tab_timeout)
        except concurrent.futures.TimeoutError as e:
            future.cancel()
            raise TabQueryTimeout(f"{app} tab query exceeded {self.tab_timeout}s") from e
        except Exception as e:
            raise TabQueryFailed(f"{app} tab query failed: {e}") from e

    # ------------------------------------------------------------------
    # Completion, finalize and break
    # ------------------------------------------------------------------

    def _complete(self, now: datetime) -> None:
        """Natural end of a session: count it, archive it, celebrate, schedule the break."""
        session_id = self.session.id if self.session else None
        usage = self.usage.sorted_desc()

        self.counters.add_completed()
        self._finalize(now, completed=True)
        logger.info(f"Session {session_id} completed")
        self._set_state(PomodoroState.SUCCESS)

        reflection = None
        if self.reflection is not None:
            try:
                reflection = self.reflection.handoff(session_id, usage)
            except Exception as e:
                logger.warning(f"Reflection hand-off failed: {e}")

        if self.on_success:
            try:
                self.on_success(session_id, reflection)
            except Exception as e:
                logger.debug(f"on_success callback error: {e}")

        self._break_timer = self._scheduler(self.success_delay, self._enter_break)

    def _enter_break(self) -> None:
        with self._lock:
            self._break_timer = None
            if self.state != PomodoroState.SUCCESS:
                return
            self.remaining_seconds = self.break_seconds
            logger.info(f"Break started ({self.break_seconds}s)")
            self._set_state(PomodoroState.BREAK)

    def _finalize(self, end: datetime, completed: bool) -> None:
        """
        Stamp the session and flush usage and events to the recorder.

        Runs at most once per session. Persistence failures are logged;
        the in-memory state moves on regardless.
        """
        session = self.session
        if session is None or session.is_finalized:
            return
        session.finalize(end, completed)

        if self.recorder is not None and session.id is not None:
            try:
                self.recorder.finalize_session(session.id, end, completed)
                for app, seconds in self.usage.sorted_desc():
                    self.recorder.record_app_usage(session.id, app, seconds)
                events = self.activity.events
                for index, event in enumerate(events):
                    t_end = events[index + 1].timestamp if index + 1 < len(events) else end
                    self.recorder.record_event(session.id, event, t_end)
            except PersistenceFailure as e:
                logger.warning(f"Could not persist session {session.id}: {e}")

        self.usage.clear()
        self.activity.clear()
        self.counters.flush()

    def _cancel_break_timer(self) -> None:
        if self._break_timer is not None:
            try:
                self._break_timer.cancel()
            except Exception as e:
                logger.debug(f"Break timer cancel error: {e}")
            self._break_timer = None

    def _reset_to_idle(self) -> None:
        self.session = None
        self.context = SessionContext()
        self.usage.clear()
        self.activity.clear()
        self.remaining_seconds = self.planned_seconds
        self.is_allowed = None
        self._set_state(PomodoroState.IDLE)

    def _set_state(self, state: PomodoroState) -> None:
        if state == self.state:
            return
        self.state = state
        if self.on_state_change:
            try:
                self.on_state_change(state)
            except Exception as e:
                logger.debug(f"on_state_change callback error: {e}")

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> Dict[str, Any]:
        """
        Snapshot for the menu bar.

        Returns:
            dict with keys: state, remaining_seconds, progress, session_id,
            current_app, is_allowed, completed_today, focused_seconds_today,
            distracted_seconds_today, focus_rate.
        """
        with self._lock:
            if self.state == PomodoroState.BREAK:
                total = self.break_seconds
            else:
                total = self.planned_seconds
            progress = 0.0
            if self.state != PomodoroState.IDLE and total > 0:
                progress = min(1.0, max(0.0, 1 - self.remaining_seconds / total))

            return {
                "state": self.state.value,
                "remaining_seconds": self.remaining_seconds,
                "progress": progress,
                "session_id": self.session.id if self.session else None,
                "current_app": self.current_app,
                "is_allowed": self.is_allowed,
                "completed_today": self.counters.completed_today,
                "focused_seconds_today": self.counters.focused_seconds_today,
                "distracted_seconds_today": self.counters.distracted_seconds_today,
                "focus_rate": self.counters.get_focus_rate(),
            }

    # ------------------------------------------------------------------
    # Background tick loop
    # ------------------------------------------------------------------

    def start_ticking(self, interval: float = config.TICK_INTERVAL) -> None:
        """Drive tick() from a daemon thread until stop_ticking()."""
        if self.tick_thread and self.tick_thread.is_alive():
            return
        self.should_stop.clear()
        self.tick_thread = threading.Thread(
            target=self._tick_loop, args=(interval,), daemon=True, name="focus-tick")
        self.tick_thread.start()

    def _tick_loop(self, interval: float) -> None:
        logger.info("Tick loop starting...")
        while not self.should_stop.wait(interval):
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Tick error: {e}")
        logger.info("Tick loop stopped")

    def stop_ticking(self) -> None:
        self.should_stop.set()
        if self.tick_thread and self.tick_thread.is_alive():
            self.tick_thread.join(timeout=2.0)
            if self.tick_thread.is_alive():
                logger.warning("Tick thread did not stop within timeout")
        self.tick_thread = None

    def cleanup(self) -> None:
        """Stop everything on app quit. A finalized session stays as recorded."""
        self.stop_ticking()
        with self._lock:
            self._cancel_break_timer()
        self._tab_executor.shutdown(wait=False)
        if self.reflection is not None:
            self.reflection.shutdown()
        self.counters.flush()


def create_engine(observer: Optional[ForegroundObserver] = None) -> FocusEngine:
    """
    Wire a FocusEngine to the on-disk allow-list, counters and database.

    A database that cannot be opened leaves the engine without a
    recorder; sessions still run, nothing is archived.
    """
    from ai.summariser import SummaryWorker, create_summary_backend
    from core.preferences import PreferencesStore
    from core.reflection import ReflectionTrigger
    from screen.foreground import MacForegroundObserver

    try:
        recorder: Optional[SessionRecorder] = SessionRecorder(config.DATABASE_FILE)
    except PersistenceFailure as e:
        logger.error(f"Session history disabled: {e}")
        recorder = None

    summary_worker = None
    if recorder is not None:
        summary_worker = SummaryWorker(recorder, create_summary_backend())

    preferences = PreferencesStore()
    return FocusEngine(
        observer=observer or MacForegroundObserver(),
        allowlist=AllowListStore(),
        counters=DailyCounters(data_file=config.DAILY_STATS_FILE),
        recorder=recorder,
        reflection=ReflectionTrigger(summary_worker),
        duration_minutes=preferences.duration_minutes,
        preferences=preferences,
    )
