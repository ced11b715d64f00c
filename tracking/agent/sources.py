"""
Position sources for the courier-side Location Acquisition Agent.

A source produces one position per call or raises LocationUnavailable.
The device source talks to the phone's positioning bridge over HTTP; the
simulated source random-walks around the last known point and is what the
agent falls back to in degraded mode.
"""

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, Tuple

import requests
from asgiref.sync import sync_to_async
from django.utils import timezone

from tracking.exceptions import LocationUnavailable
from tracking.utils import validate_coordinates

logger = logging.getLogger(__name__)


# Fallback origin when nothing is known yet (New York City)
DEFAULT_COORDINATES = (40.7128, -74.0060)

# Max random offset per axis and per tick, in degrees (~50 m)
SIMULATED_MAX_STEP = 0.0005


@dataclass
class Position:
    latitude: float
    longitude: float
    timestamp: datetime = field(default_factory=timezone.now)
    accuracy: Optional[float] = None
    address: str = ''
    simulated: bool = False

    @property
    def coordinates(self) -> Tuple[float, float]:
        return (self.latitude, self.longitude)

    def as_dict(self) -> dict:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data


class PositionSource(ABC):
    """Abstract interface for position sources."""

    name = 'abstract'

    def is_available(self) -> bool:
        """False when the platform has no positioning capability at all."""
        return True

    @abstractmethod
    async def get_position(self) -> Position:
        """
        Fetch one position.

        Raises:
            LocationUnavailable: permission denied, no fix, bridge down
        """
        ...


class UnavailablePositionSource(PositionSource):
    """A device without positioning, or where the courier denied access."""

    name = 'unavailable'

    def __init__(self, reason: str = "Géolocalisation indisponible"):
        self.reason = reason

    def is_available(self) -> bool:
        return False

    async def get_position(self) -> Position:
        raise LocationUnavailable(self.reason)


class HttpPositionSource(PositionSource):
    """
    Device positioning exposed through a local HTTP bridge.

    The bridge answers GET <url> with
    {"latitude": .., "longitude": .., "accuracy": ..} (or lat/lng);
    403 means the courier denied location access.
    """

    name = 'device'
    TIMEOUT = 10  # seconds

    def __init__(self, url: str, session: Optional[requests.Session] = None, timeout: float = TIMEOUT):
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def _fetch(self) -> Position:
        try:
            response = self.session.get(self.url, timeout=self.timeout)
        except requests.RequestException as e:
            raise LocationUnavailable(f"Pont GPS injoignable: {e}")

        if response.status_code == 403:
            raise LocationUnavailable("Accès à la position refusé")
        if response.status_code != 200:
            raise LocationUnavailable(f"Pont GPS: HTTP {response.status_code}")

        try:
            data = response.json()
            latitude = float(data.get('latitude', data.get('lat')))
            longitude = float(data.get('longitude', data.get('lng')))
        except (ValueError, TypeError, AttributeError) as e:
            raise LocationUnavailable(f"Réponse GPS illisible: {e}")

        try:
            latitude, longitude = validate_coordinates(latitude, longitude)
        except ValueError as e:
            raise LocationUnavailable(f"Position GPS hors limites: {e}")

        accuracy = data.get('accuracy')
        return Position(
            latitude=latitude,
            longitude=longitude,
            accuracy=float(accuracy) if accuracy is not None else None,
        )

    async def get_position(self) -> Position:
        return await sync_to_async(self._fetch, thread_sensitive=False)()


class SimulatedPositionSource(PositionSource):
    """
    Random walk around the last known position.

    Each call moves at most `max_step` degrees per axis from the previous
    point. Pass a seeded `random.Random` to make the walk reproducible.
    """

    name = 'simulated'

    def __init__(self, origin: Optional[Tuple[float, float]] = None,
                 rng: Optional[random.Random] = None, max_step: float = SIMULATED_MAX_STEP):
        self.last = origin or DEFAULT_COORDINATES
        self.rng = rng or random.Random()
        self.max_step = max_step

    def seed(self, position: Position) -> None:
        """Continue the walk from a real fix."""
        self.last = position.coordinates

    def step(self) -> Tuple[float, float]:
        lat, lng = self.last
        lat = min(90.0, max(-90.0, lat + self.rng.uniform(-self.max_step, self.max_step)))
        lng = lng + self.rng.uniform(-self.max_step, self.max_step)
        if lng > 180.0:
            lng -= 360.0
        elif lng < -180.0:
            lng += 360.0
        self.last = (lat, lng)
        return self.last

    async def get_position(self) -> Position:
        lat, lng = self.step()
        return Position(latitude=lat, longitude=lng, accuracy=50.0, simulated=True)


def detect_source(source_url: Optional[str] = None, session: Optional[requests.Session] = None,
                  timeout: float = HttpPositionSource.TIMEOUT) -> PositionSource:
    """Device source when a positioning bridge is configured, otherwise none."""
    if source_url:
        logger.info(f"[AGENT] Using device position bridge at {source_url}")
        return HttpPositionSource(source_url, session=session, timeout=timeout)
    logger.info("[AGENT] No device positioning available")
    return UnavailablePositionSource()
