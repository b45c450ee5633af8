"""Travel-time estimates between party homes."""

from collections.abc import Sequence
from typing import Protocol

import numpy as np

from dinerotate.models import Party

EARTH_RADIUS_KM = 6371.0

# Rough cycling pace: 15 km/h
CYCLING_MINUTES_PER_KM = 4.0


class TravelProvider(Protocol):
    """Anything that can tell how many minutes it takes to get from one party to another."""

    def minutes(self, origin: Party, destination: Party) -> float | None: ...


def haversine_km(
    origin: Sequence[float] | np.ndarray,
    destination: Sequence[float] | np.ndarray,
) -> np.ndarray:
    """
    Great-circle distance in kilometers.

    Both arguments are (lat, lng) in degrees, or arrays of shape (..., 2);
    the calculation broadcasts.
    """
    a = np.radians(np.asarray(origin, dtype=float))
    b = np.radians(np.asarray(destination, dtype=float))
    dlat = b[..., 0] - a[..., 0]
    dlng = b[..., 1] - a[..., 1]
    h = np.sin(dlat / 2) ** 2 + np.cos(a[..., 0]) * np.cos(b[..., 0]) * np.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arctan2(np.sqrt(h), np.sqrt(1 - h))


class HaversineTravel:
    """Straight-line cycling estimate, used when no routing service is available."""

    def __init__(self, minutes_per_km: float = CYCLING_MINUTES_PER_KM):
        self.minutes_per_km = minutes_per_km

    def minutes(self, origin: Party, destination: Party) -> float | None:
        if origin.coordinates is None or destination.coordinates is None:
            return None
        km = float(haversine_km(origin.coordinates, destination.coordinates))
        return round(km * self.minutes_per_km)


class StaticTravel:
    """Travel minutes from a precomputed lookup, in either direction."""

    def __init__(self, minutes_by_pair: dict[tuple[str, str], float]):
        self.minutes_by_pair = minutes_by_pair

    def minutes(self, origin: Party, destination: Party) -> float | None:
        found = self.minutes_by_pair.get((origin.id, destination.id))
        if found is None:
            found = self.minutes_by_pair.get((destination.id, origin.id))
        return found
