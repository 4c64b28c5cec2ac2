"""Runtime settings for the Atlas constellation service (env overridable)."""
import logging
import os

logger = logging.getLogger("atlas.config")


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("invalid %s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("invalid %s=%r, using %s", name, raw, default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw not in ("0", "false", "no", "off")


def _env_log_level(name: str, default: str) -> str:
    raw = os.environ.get(name, "").strip().upper()
    if not raw:
        return default
    # getLevelName maps known names to ints, unknown ones to "Level X"
    if not isinstance(logging.getLevelName(raw), int):
        logger.warning("invalid %s=%r, using %s", name, raw, default)
        return default
    return raw


# Upstream feed
UPSTREAM_BASE_URL = os.environ.get("ATLAS_UPSTREAM_URL", "https://a.windbornesystems.com/treasure").strip().rstrip("/")
SOURCE_COUNT = _env_int("ATLAS_SOURCE_COUNT", 24)
FETCH_TIMEOUT_SEC = _env_float("ATLAS_FETCH_TIMEOUT_SEC", 10.0)

# Timers
POLL_INTERVAL_SEC = _env_float("ATLAS_POLL_INTERVAL_SEC", 30.0)
TICK_INTERVAL_SEC = _env_float("ATLAS_TICK_INTERVAL_SEC", 0.2)
HOUR_PAUSE_SEC = _env_float("ATLAS_HOUR_PAUSE_SEC", 5.0)

LOG_LEVEL = _env_log_level("ATLAS_LOG_LEVEL", "INFO")
AUTOSTART = _env_bool("ATLAS_AUTOSTART", True)

# Display
DEFAULT_CENTER = (20.0, 0.0)
HOUR_COLORS = [
    "#e41a1c",
    "#377eb8",
    "#4daf4a",
    "#984ea3",
    "#ff7f00",
    "#ffff33",
    "#a65628",
    "#f781bf",
    "#999999",
    "#66c2a5",
    "#fc8d62",
    "#8da0cb",
    "#e78ac3",
    "#a6d854",
    "#ffd92f",
    "#e5c494",
    "#b3b3b3",
    "#1b9e77",
    "#d95f02",
    "#7570b3",
    "#66a61e",
    "#e7298a",
    "#a6761d",
    "#666666",
]
