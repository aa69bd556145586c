"""Configuration settings for Focusd."""

import os
import sys
from pathlib import Path
from dotenv import load_dotenv


def is_bundled() -> bool:
    """
    Check if the application is running from a PyInstaller bundle.

    Returns:
        True if running from a bundled executable, False otherwise.
    """
    return getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS')


def get_base_dir() -> Path:
    """
    Get the base directory for the application.

    For development: Returns the directory containing this file.
    For bundled apps: Returns _MEIPASS (for bundled resources).

    Returns:
        Path to the base directory.
    """
    if is_bundled():
        meipass = getattr(sys, '_MEIPASS', None)
        if meipass:
            return Path(meipass)
        return Path(__file__).parent
    return Path(__file__).parent


def get_user_data_dir() -> Path:
    """
    Get the directory for user-writable data (database, settings, daily stats).

    FOCUSD_DATA_DIR always wins. Otherwise development builds use
    BASE_DIR/data and bundled builds use a per-user folder that
    persists across updates.

    Returns:
        Path to the user data directory.
    """
    override = os.environ.get("FOCUSD_DATA_DIR")
    if override:
        return Path(override).expanduser()

    if not is_bundled():
        return Path(__file__).parent / "data"

    if sys.platform == 'darwin':
        # macOS: ~/Library/Application Support/Focusd
        return Path.home() / "Library" / "Application Support" / "Focusd"
    # Linux and anything else: ~/.local/share/Focusd
    return Path.home() / ".local" / "share" / "Focusd"


# Load environment variables from .env file (only in development)
if not is_bundled():
    _env_path = Path(__file__).parent / ".env"
    load_dotenv(_env_path)


def _get_int(env_var: str, default: int) -> int:
    """Read a positive integer from the environment, falling back to default."""
    raw = os.getenv(env_var, "")
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


BASE_DIR = get_base_dir()
USER_DATA_DIR = get_user_data_dir()

# Paths
DATABASE_FILE = USER_DATA_DIR / "focusd.sqlite"
ALLOWLIST_FILE = USER_DATA_DIR / "allowlist.json"  # Allowed apps + website rules
DAILY_STATS_FILE = USER_DATA_DIR / "daily_stats.json"
PREFERENCES_FILE = USER_DATA_DIR / "preferences.json"  # Focus length and other UI choices

# Identity of this app - always counts as an allowed foreground app
SELF_BUNDLE_ID = os.getenv("FOCUSD_BUNDLE_ID", "com.focusd.bot")
APP_NAME = "Focusd"

# Pomodoro timing
DEFAULT_DURATION_MINUTES = _get_int("FOCUSD_DURATION_MINUTES", 25)
BREAK_SECONDS = 5 * 60
SUCCESS_TO_BREAK_DELAY = 1.5  # Seconds spent celebrating before the break starts
TICK_INTERVAL = 1.0  # One logical tick per second

# Foreground observation
FOREGROUND_QUERY_TIMEOUT = 2.0  # Seconds before an osascript call is abandoned
TAB_QUERY_TIMEOUT = 2.0  # Upper bound the engine waits for a tab URL

# Browsers whose active tab is checked against website rules
SAFARI_BUNDLE_ID = "com.apple.Safari"
CHROME_BUNDLE_ID = "com.google.Chrome"
BROWSER_BUNDLE_IDS = {
    SAFARI_BUNDLE_ID: "Safari",
    CHROME_BUNDLE_ID: "Google Chrome",
}

# Engine states (values of core.engine.PomodoroState)
STATE_IDLE = "idle"
STATE_RUNNING = "running"
STATE_DISTRACTED = "distracted"
STATE_SUCCESS = "success"
STATE_BREAK = "breakTime"

# Activity event kinds
EVENT_APP = "app"
EVENT_MEDIA = "media"  # Now-playing track; title = track, detail = artist

# Reflection
REFLECTION_TOP_APPS = 5  # Slices shown in the post-session breakdown
MAX_SESSION_NOTES = 10
NO_SUMMARY_TEXT = "No summary available."

# Stats view
STATS_PERIOD_DAYS = 7
STATS_TOP_APPS = 5

# Summary proxy (Cloudflare worker). Empty endpoint disables AI summaries.
SUMMARY_PROVIDER = os.getenv("FOCUSD_SUMMARY_PROVIDER", "proxy").lower()
SUMMARY_ENDPOINT = os.getenv("FOCUSD_SUMMARY_ENDPOINT", "").rstrip("/")
SUMMARY_CLIENT_SECRET = os.getenv("FOCUSD_CLIENT_SECRET", "")
SUMMARY_CLIENT_SECRET_HEADER = "x-client-secret"
SUMMARY_REQUEST_TIMEOUT = 10  # Seconds per HTTP request
SUMMARY_POLL_INTERVAL = 2.0  # Seconds between job status polls
SUMMARY_POLL_ATTEMPTS = 30
SUMMARY_MAX_EVENTS = 50

# Direct OpenAI summaries (only used when FOCUSD_SUMMARY_PROVIDER=openai)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_MAX_RETRIES = 3
OPENAI_RETRY_DELAY = 1  # Seconds, doubled on each retry
OPENAI_MAX_PROMPT_CHARS = 2400

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")  # Can override in .env: DEBUG, INFO, WARNING, ERROR
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
