"""Formatting helpers and per-app usage breakdowns."""

from typing import Any, Dict, Iterable, List, Optional, Tuple

import config

# Friendly names for common bundle identifiers
KNOWN_APPS = {
    "com.apple.Safari": "Safari",
    "com.google.Chrome": "Chrome",
    "com.microsoft.VSCode": "VS Code",
    "com.apple.dt.Xcode": "Xcode",
    "com.apple.TextEdit": "TextEdit",
    "com.apple.Terminal": "Terminal",
    "com.apple.Music": "Music",
    "com.spotify.client": "Spotify",
    "com.apple.mail": "Mail",
    "com.apple.iCal": "Calendar",
    "com.notion.id": "Notion",
    "com.figma.Desktop": "Figma",
    "com.adobe.photoshop": "Photoshop",
    "com.tinyspeck.slackmacgap": "Slack",
    "us.zoom.xos": "Zoom",
    "com.microsoft.teams": "Teams",
}


def format_duration(seconds: float, full_precision: bool = False) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds
        full_precision: If True, always show all non-zero time components
                       including seconds even when hours > 0.

    Returns:
        Formatted string like "1 min 30 secs", "45 secs", "2 hrs 15 mins"

    Examples:
        >>> format_duration(90)
        '1 min 30 secs'
        >>> format_duration(3725)
        '1 hr 2 mins'
        >>> format_duration(0)
        '0 sec'
    """
    total_seconds = int(seconds) if seconds >= 0 else 0

    hours = total_seconds // 3600
    mins = (total_seconds % 3600) // 60
    secs = total_seconds % 60

    parts = []
    if hours > 0:
        parts.append(f"{hours} {'hr' if hours == 1 else 'hrs'}")
    if mins > 0 or (full_precision and hours > 0):
        parts.append(f"{mins} {'min' if mins == 1 else 'mins'}")
    if (secs > 0 or full_precision) and (hours == 0 or full_precision):
        parts.append(f"{secs} {'sec' if secs == 1 else 'secs'}")

    return " ".join(parts) if parts else "0 sec"


def format_clock(seconds: int) -> str:
    """Countdown display, e.g. 1500 -> "25:00"."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


def friendly_app_name(bundle_id: str, self_bundle_id: str = config.SELF_BUNDLE_ID) -> str:
    """Readable name for a bundle id; falls back to its last component."""
    if bundle_id == self_bundle_id:
        return config.APP_NAME
    if bundle_id in KNOWN_APPS:
        return KNOWN_APPS[bundle_id]
    return bundle_id.rsplit(".", 1)[-1] or bundle_id


def usage_slices(usage: Iterable[Tuple[str, int]],
                 top_n: Optional[int] = config.REFLECTION_TOP_APPS) -> List[Dict[str, Any]]:
    """
    Turn (bundle_id, seconds) pairs into display slices.

    Sorted by seconds descending and truncated to top_n. Shares are
    relative to the whole session, not just the shown slices.

    Returns:
        List of dicts with bundle_id, name, seconds, minutes and share (0-1).
    """
    ordered = sorted(usage, key=lambda kv: (-kv[1], kv[0]))
    total = sum(seconds for _, seconds in ordered)
    shown = ordered[:top_n] if top_n is not None else ordered
    return [
        {
            "bundle_id": bundle_id,
            "name": friendly_app_name(bundle_id),
            "seconds": seconds,
            "minutes": seconds // 60,
            "share": (seconds / total) if total > 0 else 0.0,
        }
        for bundle_id, seconds in shown
    ]


def stats_lines(focus_days: Iterable[Tuple[str, int]],
                top_apps: Iterable[Tuple[str, int, int]],
                period_days: int = config.STATS_PERIOD_DAYS) -> List[str]:
    """
    Text lines for the stats view.

    Args:
        focus_days: (YYYY-MM-DD, minutes) pairs, as from SessionRecorder.focus_stats_last
        top_apps: (bundle_id, total_min, avg_min) tuples, as from SessionRecorder.top_apps
        period_days: Window length shown in the heading

    Returns:
        Heading with the total, one line per focused day, then the top apps.
    """
    focus_days = list(focus_days)
    top_apps = list(top_apps)
    total_minutes = sum(minutes for _, minutes in focus_days)

    lines = [f"Last {period_days} days: {format_duration(total_minutes * 60)} focused"]
    lines += [f"{day}: {format_duration(minutes * 60)}" for day, minutes in focus_days]
    if top_apps:
        lines.append("Top apps:")
        lines += [
            f"{friendly_app_name(bundle_id)}: {format_duration(total_min * 60)} ({avg_min} min/session)"
            for bundle_id, total_min, avg_min in top_apps
        ]
    return lines
