"""Static configuration for otpwatch.

All user-editable settings (source, state, polling, dedup, dispatch, patterns,
logging) live in a single JSON file for quick edits without touching Python.
"""

import json
import os

from dotenv import load_dotenv

from core.errors import ConfigError

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))

# OTPWATCH_CONFIG may come from the environment or a local .env file.
load_dotenv()
CONFIG_PATH = os.path.expanduser(os.getenv("OTPWATCH_CONFIG", os.path.join(PROJECT_ROOT, "config.json")))


def _load_json_config() -> dict:
    """Load config.json with a flat, user-friendly schema."""

    if not os.path.exists(CONFIG_PATH):
        raise ConfigError(f"Config file not found: {CONFIG_PATH}")

    with open(CONFIG_PATH, "r", encoding="utf-8") as handle:
        try:
            return json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Config file is not valid JSON: {CONFIG_PATH}: {exc}") from exc


def _resolve_path(path: str) -> str:
    path = os.path.expanduser(path)
    if not os.path.isabs(path):
        path = os.path.join(PROJECT_ROOT, path)
    return path


_CONFIG = _load_json_config()

# Expose the raw config for modules that need structured access.
CONFIG = _CONFIG

# Read-only path to the Messages database.
_source = _CONFIG.get("source", {})
SOURCE_DB_PATH = os.path.expanduser(_source.get("db_path", "~/Library/Messages/chat.db"))

# Where otpwatch keeps its own SQLite state (watermark, counters, history).
_state = _CONFIG.get("state", {})
STATE_DB_PATH = _resolve_path(_state.get("db_path", "otpwatch.db"))

# Poll loop settings.
# - POLL_INTERVAL_SECONDS: delay between cycles
# - BATCH_SIZE: messages per fetch; the watermark advances after each batch
# - FETCH_TIMEOUT_SECONDS: optional bound on one fetch (null = unbounded)
# - CATCH_UP: process history on the very first run instead of starting at the newest message
_monitor = _CONFIG.get("monitor", {})
POLL_INTERVAL_SECONDS = float(_monitor.get("poll_interval_seconds", 2.0))
BATCH_SIZE = int(_monitor.get("batch_size", 200))
_fetch_timeout = _monitor.get("fetch_timeout_seconds")
FETCH_TIMEOUT_SECONDS = float(_fetch_timeout) if _fetch_timeout is not None else None
CATCH_UP = bool(_monitor.get("catch_up", True))

if POLL_INTERVAL_SECONDS <= 0:
    raise ConfigError("monitor.poll_interval_seconds must be positive")
if BATCH_SIZE <= 0:
    raise ConfigError("monitor.batch_size must be positive")

# Deduplication controls so a replayed message never notifies twice.
# - DEDUP_MODE: "off", "per_message" or "per_code"
# - DEDUP_TTL_DAYS: cleanup horizon for fingerprints
_dedup = _CONFIG.get("dedup", {})
DEDUP_MODE = _dedup.get("mode", "per_message")
DEDUP_TTL_DAYS = int(_dedup.get("ttl_days", 30))

if DEDUP_MODE not in {"off", "per_message", "per_code"}:
    raise ConfigError(f"Unsupported dedup.mode: {DEDUP_MODE}")

# Dispatch switches select sinks without changing core logic.
_dispatch = _CONFIG.get("dispatch", {})
DISPATCH_CLIPBOARD = bool(_dispatch.get("clipboard", True))
DISPATCH_NOTIFICATIONS = bool(_dispatch.get("notifications", True))
NOTIFICATION_SOUND = _dispatch.get("sound", "default")
SENDER_ALIASES = dict(_dispatch.get("sender_aliases", {}))

# Extra keywords and service rules extend the built-in pattern library.
PATTERNS_CONFIG = _CONFIG.get("patterns", {})

# Logging configuration (optional).
LOGGING = _CONFIG.get("logging", {})
