"""
Post-session reflection.

When a session completes, the engine hands its app usage to the
ReflectionTrigger. The trigger builds the top-N breakdown shown to the
user, keeps the user's own short notes, and (if configured) asks the
SummaryWorker for an AI summary in the background.
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import config
from tracking.analytics import usage_slices

logger = logging.getLogger(__name__)


class ReflectionTrigger:
    """Collects what the user sees (and writes) after a completed session."""

    def __init__(self, summary_worker=None,
                 top_n: int = config.REFLECTION_TOP_APPS,
                 max_notes: int = config.MAX_SESSION_NOTES):
        """
        Args:
            summary_worker: SummaryWorker used for AI summaries, or None.
            top_n: Number of apps in the usage breakdown.
            max_notes: Notes kept before the oldest are dropped.
        """
        self.summary_worker = summary_worker
        self.top_n = top_n
        self.max_notes = max_notes
        self._notes: List[str] = []
        self._last: Optional[Dict[str, Any]] = None
        self._summaries: Dict[int, Optional[str]] = {}
        self._lock = threading.Lock()

        # Called with (session_id, text) once a summary arrives or fails
        self.on_summary: Optional[Callable[[int, str], None]] = None
        if summary_worker is not None:
            summary_worker.on_summary = self._summary_ready

    def handoff(self, session_id: Optional[int],
                usage: Iterable[Tuple[str, int]]) -> Dict[str, Any]:
        """
        Accept a finished session's usage.

        Never blocks on the network: the AI summary, if any, is
        requested on a background thread.

        Returns:
            {"session_id", "slices", "total_seconds", "summary_requested"}
        """
        usage = list(usage)
        reflection = {
            "session_id": session_id,
            "slices": usage_slices(usage, self.top_n),
            "total_seconds": sum(seconds for _, seconds in usage),
            "summary_requested": False,
        }
        if self.summary_worker is not None and session_id is not None:
            reflection["summary_requested"] = self.summary_worker.request(session_id) is not None

        with self._lock:
            self._last = reflection
        logger.info(f"Reflection ready for session {session_id} ({len(usage)} apps)")
        return reflection

    def _summary_ready(self, session_id: int, summary: Optional[str]) -> None:
        """SummaryWorker callback (background thread)."""
        with self._lock:
            self._summaries[session_id] = summary
        text = summary or config.NO_SUMMARY_TEXT
        if self.on_summary:
            try:
                self.on_summary(session_id, text)
            except Exception as e:
                logger.debug(f"on_summary callback error: {e}")

    def summary_text(self, session_id: int) -> Optional[str]:
        """
        Summary for a session handed off in this run.

        Returns:
            The summary, config.NO_SUMMARY_TEXT if it failed, or None while
            it is still pending (or was never requested).
        """
        with self._lock:
            if session_id not in self._summaries:
                return None
            return self._summaries[session_id] or config.NO_SUMMARY_TEXT

    @property
    def last(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            return dict(self._last) if self._last else None

    def add_note(self, text: str) -> bool:
        """Store a note (newest first). Blank notes are ignored."""
        note = (text or "").strip()
        if not note:
            return False
        with self._lock:
            self._notes.insert(0, note)
            del self._notes[self.max_notes:]
        return True

    @property
    def notes(self) -> List[str]:
        with self._lock:
            return list(self._notes)

    def clear_notes(self) -> None:
        with self._lock:
            self._notes.clear()

    def shutdown(self) -> None:
        if self.summary_worker is not None:
            self.summary_worker.shutdown()
