"""Session model, per-app usage accounting and activity logging."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

import config

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """
    One focus attempt, from Start to Finish or natural completion.

    The id is assigned by the recorder; it stays None if the database
    write failed, in which case nothing is persisted for the session.
    """

    start: datetime
    planned_minutes: int
    id: Optional[int] = None
    end: Optional[datetime] = None
    completed: bool = False
    summary: Optional[str] = None

    @property
    def is_finalized(self) -> bool:
        return self.end is not None

    def finalize(self, end: datetime, completed: bool = True) -> None:
        """Stamp the end time. Calling it again is a no-op."""
        if self.end is not None:
            return
        self.end = end
        self.completed = completed

    def get_duration(self) -> float:
        """Seconds between start and end (or now if still open)."""
        end = self.end or datetime.now()
        return (end - self.start).total_seconds()


@dataclass
class SessionContext:
    """Applications allowed for the current session only."""

    allowed_apps: Set[str] = field(default_factory=set)

    @classmethod
    def seeded_with(cls, application_id: Optional[str]) -> "SessionContext":
        """Context allowing whatever was in front when the session started."""
        if not application_id:
            return cls()
        return cls(allowed_apps={application_id})


class AppUsage:
    """
    Seconds of foreground time per application for the active session.

    Holds at most one entry per bundle id; entries only leave memory
    when the session is finalized.
    """

    def __init__(self):
        self._seconds: Dict[str, int] = {}
        self._lock = threading.Lock()

    def credit(self, application_id: str, seconds: int = 1) -> None:
        if seconds < 0:
            raise ValueError("Usage seconds must be non-negative")
        with self._lock:
            self._seconds[application_id] = self._seconds.get(application_id, 0) + seconds

    def seconds_for(self, application_id: str) -> int:
        with self._lock:
            return self._seconds.get(application_id, 0)

    def as_dict(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._seconds)

    def sorted_desc(self, limit: Optional[int] = None) -> List[Tuple[str, int]]:
        """Entries by descending seconds, ties broken by bundle id."""
        with self._lock:
            items = sorted(self._seconds.items(), key=lambda kv: (-kv[1], kv[0]))
        return items[:limit] if limit is not None else items

    def total_seconds(self) -> int:
        with self._lock:
            return sum(self._seconds.values())

    def clear(self) -> None:
        with self._lock:
            self._seconds.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._seconds)


@dataclass
class ActivityEvent:
    """An app switch observed during a session."""
    timestamp: datetime
    kind: str
    title: str
    detail: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "t": self.timestamp.isoformat(),
            "kind": self.kind,
            "title": self.title,
            "detail": self.detail,
        }


class ActivityLog:
    """Buffers app-switch events; only changes of (app, title) are recorded."""

    def __init__(self):
        self._events: List[ActivityEvent] = []
        self._last: Optional[Tuple[str, str]] = None

    def observe(self, timestamp: datetime, bundle_id: str, window_title: str = "") -> bool:
        """
        Record an app event if the foreground changed.

        Returns:
            True if a new event was appended.
        """
        key = (bundle_id, window_title)
        if key == self._last:
            return False
        self._last = key
        self._events.append(ActivityEvent(
            timestamp=timestamp,
            kind=config.EVENT_APP,
            title=bundle_id,
            detail=window_title or None,
        ))
        return True

    @property
    def events(self) -> List[ActivityEvent]:
        return list(self._events)

    def clear(self) -> None:
        self._events.clear()
        self._last = None
