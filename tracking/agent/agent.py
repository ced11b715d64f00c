"""
Location Acquisition Agent
==========================

Courier-side loop that keeps a location stream flowing for one order:

    idle -> acquiring <-> degraded -> idle

- acquiring: the device source answers; a watch task polls it every tick.
- degraded: the device source is missing, denied, erroring or too slow;
  a timer task synthesizes positions from the simulated source instead.
  The stream never stops for that, observers are only told the state.

Every accepted sample is appended to a capped history and handed to the
sink. Statistics are computed once, when the session ends.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from django.utils import timezone

from tracking.agent.sinks import DeliveryFailed, LocationSink
from tracking.agent.sources import Position, PositionSource, SimulatedPositionSource, UnavailablePositionSource
from tracking.exceptions import LocationUnavailable, NotAuthorized
from tracking.utils import path_distance, validate_coordinates

logger = logging.getLogger(__name__)


# ============================================
# CONFIGURATION
# ============================================

TICK_INTERVAL = 3.0       # seconds between samples
FETCH_TIMEOUT = 10.0      # seconds before a device fetch counts as failed
HISTORY_SIZE = 100        # samples kept in memory


class AgentState:
    IDLE = 'idle'
    ACQUIRING = 'acquiring'
    DEGRADED = 'degraded'


@dataclass
class SessionStatistics:
    total_distance_km: float
    average_speed_kmh: float
    sample_count: int
    duration_seconds: float


@dataclass
class TrackingSession:
    order_id: str
    start_time: datetime
    history_size: int = HISTORY_SIZE
    end_time: Optional[datetime] = None
    locations: deque = None
    samples_accepted: int = 0
    statistics: Optional[SessionStatistics] = None

    def __post_init__(self):
        if self.locations is None:
            self.locations = deque(maxlen=self.history_size)

    @property
    def is_active(self) -> bool:
        return self.end_time is None

    @property
    def current_location(self) -> Optional[Position]:
        return self.locations[-1] if self.locations else None


def compute_statistics(positions: Iterable[Position]) -> SessionStatistics:
    """
    Distance, average speed and count over the given samples.

    Distance is the great-circle sum between consecutive samples; speed
    divides it by the time between the first and the last sample.
    """
    positions = list(positions)
    distance = path_distance(p.coordinates for p in positions)

    duration = 0.0
    if len(positions) > 1:
        duration = max(0.0, (positions[-1].timestamp - positions[0].timestamp).total_seconds())

    hours = duration / 3600
    return SessionStatistics(
        total_distance_km=round(distance, 4),
        average_speed_kmh=round(distance / hours, 2) if hours > 0 else 0.0,
        sample_count=len(positions),
        duration_seconds=round(duration, 3),
    )


class LocationAgent:
    """
    Drives a position source for one order and forwards samples to a sink.

    Only one session runs at a time: start() while active returns the
    running session. stop() may be called any number of times.
    """

    def __init__(
        self,
        order_id,
        sink: LocationSink,
        source: Optional[PositionSource] = None,
        fallback: Optional[SimulatedPositionSource] = None,
        interval: float = TICK_INTERVAL,
        fetch_timeout: float = FETCH_TIMEOUT,
        history_size: int = HISTORY_SIZE,
        on_sample: Optional[Callable] = None,
        on_state_change: Optional[Callable] = None,
        on_session_end: Optional[Callable] = None,
    ):
        self.order_id = str(order_id)
        self.sink = sink
        self.source = source or UnavailablePositionSource()
        self.fallback = fallback or SimulatedPositionSource()
        self.interval = interval
        self.fetch_timeout = fetch_timeout
        self.history_size = history_size
        self.on_sample = on_sample
        self.on_state_change = on_state_change
        self.on_session_end = on_session_end

        self.state = AgentState.IDLE
        self.session: Optional[TrackingSession] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._timer_task: Optional[asyncio.Task] = None
        self._closed: Optional[asyncio.Event] = None

    # ============================================
    # State
    # ============================================

    @property
    def is_active(self) -> bool:
        return self.session is not None and self.session.is_active

    @property
    def degraded(self) -> bool:
        return self.state == AgentState.DEGRADED

    def _set_state(self, state: str, reason: str = '') -> None:
        if state == self.state:
            return
        previous, self.state = self.state, state
        if state == AgentState.DEGRADED:
            logger.warning(f"[AGENT] Order {self.order_id}: degraded mode ({reason or 'no device fix'})")
        elif previous == AgentState.DEGRADED and state == AgentState.ACQUIRING:
            logger.info(f"[AGENT] Order {self.order_id}: device position back")
        if self.on_state_change:
            self.on_state_change(state)

    # ============================================
    # Lifecycle
    # ============================================

    async def start(self) -> TrackingSession:
        if self.is_active:
            return self.session

        self.session = TrackingSession(
            order_id=self.order_id,
            start_time=timezone.now(),
            history_size=self.history_size,
        )
        self._closed = asyncio.Event()
        logger.info(f"[AGENT] Tracking session started for order {self.order_id}")

        position = await self._fetch_device()
        if position is not None:
            self._set_state(AgentState.ACQUIRING)
            self.fallback.seed(position)
        else:
            position = await self.fallback.get_position()

        await self._accept(position)

        if self.is_active:
            if self.source.is_available():
                self._watch_task = asyncio.create_task(self._watch_loop())
            self._timer_task = asyncio.create_task(self._timer_loop())
        return self.session

    async def stop(self) -> Optional[TrackingSession]:
        """Cancel both loops and close the session. No-op when not running."""
        session = self.session
        if session is None or not session.is_active:
            return session

        session.end_time = timezone.now()

        current = asyncio.current_task()
        tasks = [t for t in (self._watch_task, self._timer_task) if t is not None]
        self._watch_task = self._timer_task = None
        for task in tasks:
            if task is not current:
                task.cancel()
        for task in tasks:
            if task is not current:
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        session.statistics = compute_statistics(session.locations)
        self._set_state(AgentState.IDLE)

        stats = session.statistics
        logger.info(
            f"[AGENT] Session ended for order {self.order_id}: "
            f"{stats.sample_count} samples, {stats.total_distance_km:.3f} km, "
            f"{stats.average_speed_kmh:.1f} km/h"
        )
        if self.on_session_end:
            self.on_session_end(session)
        self._closed.set()
        return session

    async def wait_closed(self) -> None:
        if self._closed is not None:
            await self._closed.wait()

    # ============================================
    # Loops
    # ============================================

    async def _watch_loop(self):
        """Continuous device watch: one fetch per tick."""
        while self.is_active:
            await asyncio.sleep(self.interval)
            if not self.is_active:
                break
            position = await self._fetch_device()
            if position is None:
                continue
            self._set_state(AgentState.ACQUIRING)
            self.fallback.seed(position)
            await self._accept(position)

    async def _timer_loop(self):
        """Companion timer: synthesizes a sample each tick while degraded."""
        while self.is_active:
            await asyncio.sleep(self.interval)
            if self.is_active and self.degraded:
                await self._accept(await self.fallback.get_position())

    async def _fetch_device(self) -> Optional[Position]:
        """One bounded device fetch. None (and degraded) on any failure."""
        if not self.source.is_available():
            self._set_state(AgentState.DEGRADED, 'positioning unavailable')
            return None
        try:
            position = await asyncio.wait_for(self.source.get_position(), timeout=self.fetch_timeout)
            validate_coordinates(position.latitude, position.longitude)
            return position
        except asyncio.TimeoutError:
            self._set_state(AgentState.DEGRADED, f'no fix within {self.fetch_timeout}s')
        except LocationUnavailable as e:
            self._set_state(AgentState.DEGRADED, e.message)
        except ValueError as e:
            logger.warning(f"[AGENT] Position source {self.source.name} returned a bad fix: {e}")
            self._set_state(AgentState.DEGRADED, str(e))
        except Exception as e:
            logger.error(f"[AGENT] Position source {self.source.name} failed: {e}")
            self._set_state(AgentState.DEGRADED, str(e))
        return None

    async def _accept(self, position: Position) -> None:
        session = self.session
        if session is None or not session.is_active:
            return

        session.locations.append(position)
        session.samples_accepted += 1
        if self.on_sample:
            self.on_sample(position)

        try:
            await self.sink.send(self.order_id, position)
        except NotAuthorized as e:
            # Delivered, cancelled or reassigned: the write boundary said no
            logger.info(f"[AGENT] Order {self.order_id}: write refused ({e.message}), ending session")
            await self.stop()
        except DeliveryFailed as e:
            logger.warning(f"[AGENT] Order {self.order_id}: sample not delivered: {e}")
        except Exception as e:
            # The stream keeps going; the next tick retries with a fresh sample
            logger.error(f"[AGENT] Order {self.order_id}: sink {type(e).__name__}: {e}")


class AgentRegistry:
    """
    Active agents of one courier device, by order id.

    Fed with the events the courier receives on its delivery room, it
    stops the matching agent on tracking_stop or on a terminal status.
    """

    TERMINAL_STATUSES = ('delivered', 'cancelled')

    def __init__(self):
        self.agents: Dict[str, LocationAgent] = {}

    def register(self, agent: LocationAgent) -> LocationAgent:
        existing = self.agents.get(agent.order_id)
        if existing is not None and existing.is_active:
            return existing
        self.agents[agent.order_id] = agent
        return agent

    def get(self, order_id) -> Optional[LocationAgent]:
        return self.agents.get(str(order_id))

    async def stop(self, order_id) -> Optional[TrackingSession]:
        agent = self.agents.pop(str(order_id), None)
        if agent is None:
            return None
        return await agent.stop()

    async def stop_all(self) -> None:
        for order_id in list(self.agents):
            await self.stop(order_id)

    async def handle_event(self, payload: dict) -> bool:
        """Returns True when the event ended a session."""
        kind = payload.get('type')
        order_id = payload.get('order_id')
        if not order_id:
            return False
        if kind == 'tracking_stop' or (
            kind == 'status_update' and payload.get('status') in self.TERMINAL_STATUSES
        ):
            return await self.stop(order_id) is not None
        return False
