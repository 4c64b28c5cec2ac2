import asyncio
import logging
import math
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from pydantic import BaseModel

from atlas import config

logger = logging.getLogger("atlas.ingest")


class Point(BaseModel):
    lat: float
    lon: float
    time: str


FlightMap = Dict[str, List[Point]]


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC with millisecond precision and a trailing Z."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def source_suffixes(count: int = None) -> list[str]:
    count = config.SOURCE_COUNT if count is None else count
    return [f"{i:02d}" for i in range(max(0, count))]


def source_url(suffix: str, base_url: str = None) -> str:
    base = (base_url or config.UPSTREAM_BASE_URL).rstrip("/")
    return f"{base}/{suffix}.json"


def hour_key(suffix: str) -> str:
    return f"hour_{suffix}"


def hour_number(key: Optional[str]) -> int:
    """Integer hour of an ``hour_NN`` key; 0 when the key is missing or malformed."""
    if not key:
        return 0
    _, _, tail = key.partition("_")
    try:
        return int(tail, 10)
    except ValueError:
        return 0


def hour_color(hour: int) -> str:
    return config.HOUR_COLORS[hour % len(config.HOUR_COLORS)]


def active_hour_keys(flights: FlightMap) -> list[str]:
    return [k for k, pts in flights.items() if pts]


def coerce_coordinate(value: Any) -> Optional[float]:
    """Numeric value of a coordinate, or None when it is not a finite number."""
    # bool is an int subclass; true/false are not coordinates
    if value is None or isinstance(value, bool):
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError, OverflowError):
        return None
    if not math.isfinite(f):
        return None
    return f


def normalize_entry(entry: Any, now: str) -> Optional[Point]:
    """Coerce one upstream record (pair or object form) into a Point, or None to drop it."""
    if isinstance(entry, (list, tuple)):
        if len(entry) < 2:
            return None
        raw_lat, raw_lon, ts = entry[0], entry[1], now
    elif isinstance(entry, dict) and "lat" in entry and "lon" in entry:
        raw_lat, raw_lon = entry["lat"], entry["lon"]
        ts = entry.get("time")
        if ts is None or ts == "":
            ts = now
        elif not isinstance(ts, str):
            ts = str(ts)
    else:
        return None
    lat = coerce_coordinate(raw_lat)
    lon = coerce_coordinate(raw_lon)
    if lat is None or lon is None:
        return None
    return Point(lat=lat, lon=lon, time=ts)


def normalize_payload(payload: Any, now: str) -> Optional[list[Point]]:
    """Filtered, order-preserving points of one source; None when the payload is not a list."""
    if not isinstance(payload, list):
        return None
    out = []
    for entry in payload:
        p = normalize_entry(entry, now)
        if p is not None:
            out.append(p)
    return out


def fetch_source(suffix: str, base_url: str = None, timeout: float = None) -> Optional[Any]:
    """Blocking GET of one upstream source. Returns the decoded list or None on any failure."""
    url = source_url(suffix, base_url)
    timeout = config.FETCH_TIMEOUT_SEC if timeout is None else timeout
    try:
        r = requests.get(url, timeout=timeout)
    except requests.RequestException as e:
        logger.warning("source %s fetch error: %s", suffix, e)
        return None
    if r.status_code != 200:
        logger.warning("source %s returned status %s", suffix, r.status_code)
        return None
    try:
        data = r.json()
    except ValueError as e:
        logger.warning("source %s returned invalid JSON: %s", suffix, e)
        return None
    if not isinstance(data, list):
        logger.warning("source %s payload is %s, not a list", suffix, type(data).__name__)
        return None
    return data


async def fetch_and_normalize(count: int = None, base_url: str = None, timeout: float = None) -> FlightMap:
    """Poll every upstream source concurrently and group the usable points by hour key.

    Failed sources are omitted; a source whose list holds no usable points still
    yields its key with an empty list. Never raises.
    """
    suffixes = source_suffixes(count)
    loop = asyncio.get_running_loop()
    # one worker per source: every GET is in flight before any is awaited
    pool = ThreadPoolExecutor(max_workers=max(1, len(suffixes)), thread_name_prefix="atlas-fetch")
    try:
        tasks = [loop.run_in_executor(pool, fetch_source, s, base_url, timeout) for s in suffixes]
        payloads = await asyncio.gather(*tasks, return_exceptions=True)
    finally:
        pool.shutdown(wait=False)
    now = utc_timestamp()
    flights: FlightMap = {}
    for suffix, payload in zip(suffixes, payloads):
        if isinstance(payload, BaseException):
            logger.warning("source %s failed: %s", suffix, payload)
            continue
        points = normalize_payload(payload, now)
        if points is None:
            continue
        flights[hour_key(suffix)] = points
    logger.info(
        "poll done: %d/%d sources ok, %d hours with points, %d points",
        len(flights),
        len(suffixes),
        len(active_hour_keys(flights)),
        sum(len(v) for v in flights.values()),
    )
    return flights


def flights_to_json(flights: FlightMap) -> dict[str, list[dict]]:
    return {k: [p.model_dump() for p in pts] for k, pts in flights.items()}
