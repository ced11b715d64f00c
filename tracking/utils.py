"""
TRACKLINE - Tracking Utilities
===============================
Calculs géographiques partagés par l'ETA, l'agent de localisation et l'API.
"""

import math


# Rayon de la Terre en km (approximation sphérique WGS84)
EARTH_RADIUS_KM = 6371.0


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Calcule la distance à vol d'oiseau entre deux points GPS.
    Utilise la formule de Haversine.

    Args:
        lat1, lng1: Coordonnées du point de départ
        lat2, lng2: Coordonnées du point d'arrivée

    Returns:
        Distance en kilomètres (vol d'oiseau)
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lng = math.radians(lng2 - lng1)

    a = (
        math.sin(delta_lat / 2) ** 2 +
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def path_distance(points) -> float:
    """Somme des distances entre échantillons consécutifs ((lat, lng) itérable)."""
    total = 0.0
    previous = None
    for lat, lng in points:
        if previous is not None:
            total += haversine_distance(previous[0], previous[1], lat, lng)
        previous = (lat, lng)
    return total


def validate_coordinates(latitude, longitude):
    """
    Convert and range-check a coordinate pair.

    Raises ValueError with a user-facing message when out of range.
    """
    try:
        lat = float(latitude)
        lng = float(longitude)
    except (TypeError, ValueError):
        raise ValueError('Coordonnées GPS invalides')

    if not (-90 <= lat <= 90):
        raise ValueError('Latitude doit être entre -90 et 90')
    if not (-180 <= lng <= 180):
        raise ValueError('Longitude doit être entre -180 et 180')
    return lat, lng
