"""Hour-by-hour playback of the constellation feed.

One ``AnimationScheduler`` owns the latest FlightMap and the animation cursor.
Two independent timers drive it: the poll loop (refresh every
``poll_interval``) and the playback loop, a small state machine

    IDLE -> REVEALING(hour, revealed) -> PAUSING(next pointer) -> REVEALING ...

advanced by ``step()``. Every poll restarts playback against the new
snapshot; the previous playback task is cancelled first, and a generation
counter makes any late wake-up of an old task a no-op.

The displayed hour (``snapshot().hour_key``) is resolved from the latest
FlightMap and the persisted cursor, while ``visible_points`` belong to the
track captured when the playing hour began. After a poll reshuffles the hour
list the two can disagree until the next hour starts.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from pydantic import BaseModel

from atlas import config
from atlas.ingest import FlightMap, Point, active_hour_keys, fetch_and_normalize, hour_color, hour_number

logger = logging.getLogger("atlas.scheduler")


class PlaybackPhase(str, Enum):
    IDLE = "idle"
    REVEALING = "revealing"
    PAUSING = "pausing"


@dataclass
class AnimationCursor:
    pointer_index: int = 0
    revealed_count: int = 0


class CursorView(BaseModel):
    pointer_index: int
    revealed_count: int


class AnimationFrame(BaseModel):
    loading: bool
    phase: PlaybackPhase
    hour_key: Optional[str] = None
    hour: int = 0
    color: str
    playing_hour_key: Optional[str] = None
    cursor: CursorView
    visible_points: list[Point]
    current_points: list[Point]
    latest_point: Optional[Point] = None
    center: tuple[float, float]
    revision: int


class AnimationScheduler:
    def __init__(
        self,
        fetcher: Callable[[], Awaitable[FlightMap]] = fetch_and_normalize,
        poll_interval: float = None,
        tick_interval: float = None,
        hour_pause: float = None,
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.poll_interval = config.POLL_INTERVAL_SEC if poll_interval is None else poll_interval
        self.tick_interval = config.TICK_INTERVAL_SEC if tick_interval is None else tick_interval
        self.hour_pause = config.HOUR_PAUSE_SEC if hour_pause is None else hour_pause
        self._sleep = sleep

        self.flights: FlightMap = {}
        self.cursor = AnimationCursor()
        self.visible_points: list[Point] = []
        self.loading = True
        self.revision = 0

        # playback state machine (private to the current playback run)
        self.phase = PlaybackPhase.IDLE
        self._hour_keys: list[str] = []
        self._playback_flights: FlightMap = {}
        self._pointer = 0
        self._track: list[Point] = []
        self._playing_key: Optional[str] = None

        self._active = False
        self._generation = 0
        self._poll_task: Optional[asyncio.Task] = None
        self._playback_task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._active

    # --- lifecycle -------------------------------------------------------

    async def start(self) -> None:
        if self._active:
            return
        self._active = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(
            "scheduler started (poll=%.1fs tick=%.2fs pause=%.1fs)",
            self.poll_interval,
            self.tick_interval,
            self.hour_pause,
        )

    async def stop(self) -> None:
        if not self._active and self._poll_task is None and self._playback_task is None:
            return
        self._active = False
        self._generation += 1
        tasks = [t for t in (self._poll_task, self._playback_task) if t is not None]
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        self._poll_task = None
        self._playback_task = None
        self.phase = PlaybackPhase.IDLE
        logger.info("scheduler stopped")

    # --- polling ---------------------------------------------------------

    async def _poll_loop(self) -> None:
        while self._active:
            await self.refresh()
            await self._sleep(self.poll_interval)

    async def refresh(self) -> bool:
        """Run one poll and publish its result. Returns False when nothing was published."""
        try:
            flights = await self.fetcher()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("poll failed; keeping previous flights")
            if self._active:
                self.loading = False
                self.revision += 1
            return False
        if not self._active:
            # torn down while the poll was in flight
            return False
        self.loading = False
        self.load(flights)
        return True

    def load(self, flights: FlightMap) -> None:
        """Replace the FlightMap wholesale and restart playback against it."""
        self.flights = flights
        self.revision += 1
        self._restart_playback()

    # --- playback --------------------------------------------------------

    def _restart_playback(self) -> None:
        self._generation += 1
        old = self._playback_task
        self._playback_task = None
        if old is not None and not old.done():
            old.cancel()
        delay = self._begin_playback(self.flights)
        if delay is None or not self._active:
            return
        self._playback_task = asyncio.create_task(self._playback_loop(self._generation, delay))

    async def _playback_loop(self, generation: int, delay: float) -> None:
        while delay is not None:
            await self._sleep(delay)
            if not self._active or generation != self._generation:
                return
            delay = self.step()

    def _begin_playback(self, flights: FlightMap) -> Optional[float]:
        self._playback_flights = flights
        self._hour_keys = active_hour_keys(flights)
        if not self._hour_keys:
            self.phase = PlaybackPhase.IDLE
            self._playing_key = None
            self._track = []
            return None
        self._pointer = self.cursor.pointer_index % len(self._hour_keys)
        return self._begin_hour()

    def _begin_hour(self) -> float:
        key = self._hour_keys[self._pointer % len(self._hour_keys)]
        track = list(self._playback_flights.get(key) or [])
        if not track:
            # unreachable while hour keys are pre-filtered; skip the hour
            self._pointer = (self._pointer + 1) % len(self._hour_keys)
            self.phase = PlaybackPhase.PAUSING
            return self.hour_pause
        self._playing_key = key
        self._track = track
        self.phase = PlaybackPhase.REVEALING
        self.cursor.revealed_count = 0
        self.visible_points = []
        self.revision += 1
        logger.debug("hour %s: revealing %d points", key, len(track))
        return self.tick_interval

    def step(self) -> Optional[float]:
        """Advance playback by one timer firing; returns the delay until the next one."""
        if self.phase == PlaybackPhase.IDLE:
            return None
        if self.phase == PlaybackPhase.PAUSING:
            return self._begin_hour()
        idx = self.cursor.revealed_count + 1
        if idx > len(self._track):
            self.visible_points = list(self._track)
            self._pointer = (self._pointer + 1) % len(self._hour_keys)
            self.cursor.pointer_index = self._pointer
            self.phase = PlaybackPhase.PAUSING
            self.revision += 1
            logger.debug("hour %s done; next pointer %d", self._playing_key, self._pointer)
            return self.hour_pause
        self.cursor.revealed_count = idx
        self.visible_points = self._track[:idx]
        self.revision += 1
        return self.tick_interval

    # --- read side -------------------------------------------------------

    def current_hour_key(self) -> Optional[str]:
        keys = active_hour_keys(self.flights)
        if not keys:
            return None
        return keys[self.cursor.pointer_index % len(keys)]

    def snapshot(self) -> AnimationFrame:
        key = self.current_hour_key()
        current = list(self.flights.get(key) or []) if key else []
        visible = list(self.visible_points)
        hour = hour_number(key)
        if current:
            center = (current[0].lat, current[0].lon)
        else:
            center = config.DEFAULT_CENTER
        return AnimationFrame(
            loading=self.loading,
            phase=self.phase,
            hour_key=key,
            hour=hour,
            color=hour_color(hour),
            playing_hour_key=self._playing_key,
            cursor=CursorView(
                pointer_index=self.cursor.pointer_index,
                revealed_count=self.cursor.revealed_count,
            ),
            visible_points=visible,
            current_points=current,
            latest_point=visible[-1] if visible else None,
            center=center,
            revision=self.revision,
        )
