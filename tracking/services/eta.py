"""
ETA Estimator.

Pure function, no database and no network: great-circle distance at an
assumed constant speed.
"""

import math
from datetime import timedelta
from typing import Optional, Tuple

from django.conf import settings
from django.utils import timezone

from tracking.utils import haversine_distance

Coordinates = Tuple[float, float]

DEFAULT_SPEED_KMH = 20.0


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def format_minutes(minutes: int) -> str:
    """'N min' below one hour, 'H hr M min' above."""
    if minutes < 60:
        return f"{minutes} min"
    hours, mins = divmod(minutes, 60)
    return f"{hours} hr {mins} min"


def estimate(current: Coordinates, destination: Coordinates,
             speed_kmh: Optional[float] = None, now=None) -> dict:
    """
    Estimate travel from `current` to `destination`.

    Args:
        current, destination: (latitude, longitude) pairs
        speed_kmh: assumed speed; defaults to TRACKING_DEFAULT_SPEED_KMH
        now: reference time for the arrival clock time

    Returns:
        dict: {
            "distance_km": float,     # rounded to 2 decimals
            "eta_minutes": int,       # rounded half-up
            "display": str,           # "12 min" / "1 hr 5 min"
            "arrival_time": datetime,
        }
    """
    if speed_kmh is None:
        speed_kmh = getattr(settings, 'TRACKING_DEFAULT_SPEED_KMH', DEFAULT_SPEED_KMH)
    if speed_kmh <= 0:
        raise ValueError("La vitesse doit être strictement positive")

    distance_km = haversine_distance(current[0], current[1], destination[0], destination[1])
    eta_minutes = round_half_up(distance_km / speed_kmh * 60)
    now = now or timezone.now()

    return {
        'distance_km': round(distance_km, 2),
        'eta_minutes': eta_minutes,
        'display': format_minutes(eta_minutes),
        'arrival_time': now + timedelta(minutes=eta_minutes),
    }
