"""Distance estimation between parties."""

from __future__ import annotations

import math
from dataclasses import dataclass

EARTH_RADIUS_KM = 6371.0

SAME_DISTRICT_KM = 1.0
SAME_CITY_KM = 5.0
DIFFERENT_CITY_KM = 30.0

CITY_ALIASES = {
    "cdo": "cagayan de oro",
    "cagayan de oro city": "cagayan de oro",
}

# Adjacent municipalities that are closer than the generic inter-city guess
NEIGHBOURING_CITIES_KM = {
    frozenset({"cagayan de oro", "opol"}): 18.0,
    frozenset({"cagayan de oro", "el salvador"}): 25.0,
    frozenset({"cagayan de oro", "tagoloan"}): 20.0,
}


@dataclass(frozen=True)
class Location:
    """Where a party is: coordinates when known, address parts otherwise."""

    latitude: float | None = None
    longitude: float | None = None
    city: str | None = None
    barangay: str | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _normalize_place(value: str | None) -> str:
    if not value:
        return ""
    name = " ".join(value.lower().replace(",", " ").split())
    name = CITY_ALIASES.get(name, name)
    if name.startswith("city of "):
        name = name[len("city of "):]
    if name.endswith(" city"):
        name = name[: -len(" city")]
    return CITY_ALIASES.get(name, name)


def estimate_address_distance_km(a: Location, b: Location) -> float | None:
    """
    Rough distance from address parts alone.

    Returns:
        About 1 km within one district, 5 km within one city, a known figure
        for neighbouring cities, 30 km otherwise, or None without both cities
    """
    city_a, city_b = _normalize_place(a.city), _normalize_place(b.city)
    if not city_a or not city_b:
        return None

    if city_a == city_b:
        district_a, district_b = _normalize_place(a.barangay), _normalize_place(b.barangay)
        if district_a and district_a == district_b:
            return SAME_DISTRICT_KM
        return SAME_CITY_KM

    return NEIGHBOURING_CITIES_KM.get(frozenset({city_a, city_b}), DIFFERENT_CITY_KM)


def distance_km(a: Location, b: Location) -> tuple[float | None, str]:
    """
    Best available distance between two locations.

    Returns:
        Tuple of (distance or None when unknown, method used)
    """
    if a.has_coordinates and b.has_coordinates:
        km = haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)  # type: ignore[arg-type]
        return km, "coordinates"

    estimate = estimate_address_distance_km(a, b)
    if estimate is not None:
        return estimate, "address"
    return None, "unknown"


def normalize_distance(distance: float | None, max_distance_km: float) -> float:
    """
    Map a distance onto [0, 1] proximity.

    Unknown distance is neutral (0.5). Zero distance is 1.0 and anything at
    or beyond the maximum is 0.0, linear in between.
    """
    if distance is None or math.isnan(distance):
        return 0.5
    if distance <= 0:
        return 1.0
    if distance >= max_distance_km:
        return 0.0
    return round(1.0 - distance / max_distance_km, 4)
