"""
Daily counters for Focusd.

Tracks completed sessions, focused seconds and distracted seconds for
the current local calendar day. The engine checks for a new day at the
start of every tick; on a mismatch all three counters go back to zero.

Counters are optionally persisted to JSON so a restart later the same
day keeps today's totals. Writes happen on rollover and on flush(),
never per tick.
"""

import json
import logging
import os
import tempfile
import threading
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class DailyCounters:
    """
    Completed/focused/distracted totals for one local day.

    All values are whole seconds: the engine credits exactly one second
    per tick.
    """

    def __init__(self, clock: Callable[[], datetime] = datetime.now,
                 data_file: Optional[Path] = None):
        """
        Initialize counters, restoring today's totals from data_file.

        Args:
            clock: Returns the current local time.
            data_file: JSON file to persist to, or None for memory only.
        """
        self._clock = clock
        self.data_file = data_file
        self._lock = threading.Lock()
        self._dirty = False
        self.data = self._load_data()
        self.check_rollover()

    def _create_empty_day_data(self, day: date) -> Dict[str, Any]:
        return {
            "date": day.isoformat(),
            "completed_count": 0,
            "focused_seconds": 0,
            "distracted_seconds": 0,
        }

    def _load_data(self) -> Dict[str, Any]:
        today = self._clock().date()
        if self.data_file is None or not self.data_file.exists():
            return self._create_empty_day_data(today)
        try:
            with open(self.data_file, 'r') as f:
                stored = json.load(f)
            data = self._create_empty_day_data(today)
            data["date"] = str(stored.get("date", data["date"]))
            for key in ("completed_count", "focused_seconds", "distracted_seconds"):
                data[key] = max(0, int(stored.get(key, 0)))
            logger.debug(f"Loaded daily counters: {data}")
            return data
        except (json.JSONDecodeError, IOError, OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load daily counters: {e}. Starting fresh.")
            return self._create_empty_day_data(today)

    def _save_data(self) -> None:
        """Write counters atomically (temp file, then rename)."""
        if self.data_file is None:
            return
        try:
            self.data_file.parent.mkdir(parents=True, exist_ok=True)
            temp_fd, temp_path = tempfile.mkstemp(
                suffix='.tmp',
                prefix='daily_stats_',
                dir=self.data_file.parent
            )
            try:
                with os.fdopen(temp_fd, 'w') as f:
                    json.dump(self.data, f, indent=2)
                os.replace(temp_path, self.data_file)
            except Exception:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass
                raise
            self._dirty = False
        except (IOError, OSError) as e:
            logger.error(f"Failed to save daily counters: {e}")

    # ------------------------------------------------------------------
    # Rollover
    # ------------------------------------------------------------------

    def check_rollover(self, now: Optional[datetime] = None) -> bool:
        """
        Reset all counters if the local calendar day changed.

        Args:
            now: Current time; defaults to the injected clock.

        Returns:
            True if a reset happened.
        """
        today = (now or self._clock()).date().isoformat()
        with self._lock:
            stored_date = self.data.get("date", "")
            if stored_date == today:
                return False
            logger.info(f"New day detected ({stored_date} -> {today}). Resetting daily counters.")
            self.data = self._create_empty_day_data(date.fromisoformat(today))
            self._save_data()
            return True

    # ------------------------------------------------------------------
    # Accumulation
    # ------------------------------------------------------------------

    def add_focused(self, seconds: int = 1) -> None:
        self._add("focused_seconds", seconds)

    def add_distracted(self, seconds: int = 1) -> None:
        self._add("distracted_seconds", seconds)

    def add_completed(self) -> None:
        self._add("completed_count", 1)
        self.flush()

    def _add(self, key: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("Daily counters only move forward")
        with self._lock:
            self.data[key] += amount
            self._dirty = True

    def flush(self) -> None:
        """Persist pending changes, if any."""
        with self._lock:
            if self._dirty:
                self._save_data()

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def completed_today(self) -> int:
        with self._lock:
            return self.data["completed_count"]

    @property
    def focused_seconds_today(self) -> int:
        with self._lock:
            return self.data["focused_seconds"]

    @property
    def distracted_seconds_today(self) -> int:
        with self._lock:
            return self.data["distracted_seconds"]

    def get_daily_stats(self) -> Dict[str, Any]:
        with self._lock:
            return self.data.copy()

    def get_focus_rate(self) -> float:
        """
        Today's focus rate: focused / (focused + distracted) * 100.

        Returns:
            Percentage 0-100, or 0 if nothing has been tracked yet.
        """
        with self._lock:
            focused = self.data["focused_seconds"]
            total = focused + self.data["distracted_seconds"]
        if total <= 0:
            return 0.0
        return focused / total * 100.0
