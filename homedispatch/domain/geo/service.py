import math
from dataclasses import dataclass

EARTH_RADIUS_METERS = 6_371_000.0


@dataclass(frozen=True)
class Coordinates:
    """A point in GeoJSON order: longitude first, then latitude."""

    lng: float
    lat: float

    def as_list(self) -> list[float]:
        return [self.lng, self.lat]


def validate_coordinates(lng: float, lat: float) -> Coordinates:
    if not (math.isfinite(lng) and math.isfinite(lat)):
        raise ValueError("Coordinates must be finite numbers")
    if lng < -180 or lng > 180:
        raise ValueError("Longitude must be between -180 and 180")
    if lat < -90 or lat > 90:
        raise ValueError("Latitude must be between -90 and 90")
    # Devices report (0, 0) when location services are off.
    if lng == 0 and lat == 0:
        raise ValueError("Invalid coordinates detected; location services may be disabled")
    return Coordinates(lng=float(lng), lat=float(lat))


def coordinates_from_list(values: list[float] | tuple[float, ...]) -> Coordinates:
    if values is None or len(values) < 2:
        raise ValueError("Coordinates must contain [longitude, latitude]")
    return validate_coordinates(float(values[0]), float(values[1]))


def haversine_meters(a: Coordinates, b: Coordinates) -> float:
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))
    return EARTH_RADIUS_METERS * c


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    return haversine_meters(a, b) / 1000
