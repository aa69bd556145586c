"""
User preferences that outlive a run (currently the focus length).

Stored through the same JSON settings backend as the allow-list, in
config.PREFERENCES_FILE.
"""

import logging
import threading
from typing import Any, Dict, Optional

import config
from screen.allowlist import JsonSettingsBackend

logger = logging.getLogger(__name__)


class PreferencesStore:
    """Loads preferences once and saves on every change."""

    def __init__(self, backend=None):
        """
        Args:
            backend: Object with load() -> dict and save(dict) -> bool.
                Defaults to the JSON file at config.PREFERENCES_FILE.
        """
        self._backend = backend if backend is not None else JsonSettingsBackend(config.PREFERENCES_FILE)
        self._lock = threading.Lock()
        self._data: Dict[str, Any] = self._backend.load()

    @property
    def duration_minutes(self) -> int:
        """Saved focus length, or config.DEFAULT_DURATION_MINUTES if unset or invalid."""
        with self._lock:
            value = self._data.get("duration_minutes")
        try:
            minutes = int(value)
        except (TypeError, ValueError):
            return config.DEFAULT_DURATION_MINUTES
        return minutes if minutes > 0 else config.DEFAULT_DURATION_MINUTES

    def set_duration_minutes(self, minutes: int) -> Optional[bool]:
        """
        Remember the focus length.

        Returns:
            The backend's save result, or None if minutes was not positive.
        """
        if minutes <= 0:
            return None
        with self._lock:
            self._data["duration_minutes"] = int(minutes)
            data = dict(self._data)
        saved = self._backend.save(data)
        if not saved:
            logger.warning("Focus length will not survive a restart")
        return saved
