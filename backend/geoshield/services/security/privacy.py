"""
Location privacy transforms.

Pure functions used to disclose positions and distances without
revealing exact coordinates:
- grid quantization per privacy level
- hour-stable jitter on top of quantization
- bounded random distance fuzzing
- coarse distance bands
- great-circle distance and search bounding boxes
"""
import enum
import hashlib
import math
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from geoshield.core.exceptions import InvalidLocationException
from geoshield.models.listed_item import PrivacyLevel

EARTH_RADIUS_KM = 6371.0
KM_PER_DEGREE_LAT = 111.32

FUZZ_RATIO = 0.2

_system_random = random.SystemRandom()


@dataclass(frozen=True)
class Coordinate:
    """Latitude/longitude pair in decimal degrees."""

    latitude: float
    longitude: float

    def __post_init__(self):
        if not self.is_valid(self.latitude, self.longitude):
            raise InvalidLocationException(self.latitude, self.longitude)
        object.__setattr__(self, "latitude", float(self.latitude))
        object.__setattr__(self, "longitude", float(self.longitude))

    @staticmethod
    def is_valid(latitude: Any, longitude: Any) -> bool:
        """Range check: -90..90 latitude, -180..180 longitude."""
        try:
            lat = float(latitude)
            lng = float(longitude)
        except (TypeError, ValueError):
            return False
        if not (math.isfinite(lat) and math.isfinite(lng)):
            return False
        return -90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)


@dataclass(frozen=True)
class LocationBounds:
    """Axis-aligned degree box."""

    north: float
    south: float
    east: float
    west: float

    @property
    def spans_all_longitudes(self) -> bool:
        return self.west <= -180.0 and self.east >= 180.0

    def contains(self, latitude: float, longitude: float) -> bool:
        return self.south <= latitude <= self.north and self.west <= longitude <= self.east


class DistanceBand(str, enum.Enum):
    """Coarse distance categories disclosed instead of exact distances."""

    VERY_CLOSE = "very_close"
    NEARBY = "nearby"
    MODERATE = "moderate"
    FAR = "far"
    VERY_FAR = "very_far"


# Upper bounds in km, inclusive
BAND_THRESHOLDS: list[tuple[float, DistanceBand]] = [
    (0.5, DistanceBand.VERY_CLOSE),
    (2.0, DistanceBand.NEARBY),
    (10.0, DistanceBand.MODERATE),
    (50.0, DistanceBand.FAR),
]

BAND_TEXT = {
    DistanceBand.VERY_CLOSE: "Very close (< 0.5 km)",
    DistanceBand.NEARBY: "Nearby (< 2 km)",
    DistanceBand.MODERATE: "Moderate distance (< 10 km)",
    DistanceBand.FAR: "Far (< 50 km)",
    DistanceBand.VERY_FAR: "Very far (50+ km)",
}


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _snap(value: float, grid_size: float) -> float:
    return round(math.floor(value / grid_size) * grid_size + grid_size / 2, 7)


def wrap_longitude(longitude: float) -> float:
    """Normalize a longitude into [-180, 180)."""
    return (longitude + 180.0) % 360.0 - 180.0


def longitude_offset(longitude: float, reference: float) -> float:
    """Signed east-west difference in degrees, taking the short way round."""
    return wrap_longitude(longitude - reference)


def quantize(coordinate: Coordinate, level: PrivacyLevel) -> Coordinate:
    """
    Snap each axis to the center of its privacy grid cell.

    Idempotent: a cell center maps to itself.
    """
    grid = level.grid_size
    return Coordinate(
        _clamp(_snap(coordinate.latitude, grid), -90.0, 90.0),
        _clamp(_snap(coordinate.longitude, grid), -180.0, 180.0),
    )


def hour_bucket(now: Optional[datetime] = None) -> int:
    """Number of whole UTC hours since the epoch."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return int(now.timestamp() // 3600)


def jittered_location(
    coordinate: Coordinate,
    level: PrivacyLevel,
    now: Optional[datetime] = None,
) -> Coordinate:
    """
    Quantize, then offset by at most half a grid cell per axis.

    The offset is seeded from the quantized cell and the current UTC hour,
    so repeated calls within the same hour return the same point.
    """
    cell = quantize(coordinate, level)
    seed_material = f"{cell.latitude:.7f}:{cell.longitude:.7f}:{hour_bucket(now)}"
    digest = hashlib.sha256(seed_material.encode()).digest()
    rng = random.Random(int.from_bytes(digest[:8], "big"))

    half = level.grid_size / 2
    return Coordinate(
        _clamp(round(cell.latitude + rng.uniform(-half, half), 7), -90.0, 90.0),
        _clamp(round(cell.longitude + rng.uniform(-half, half), 7), -180.0, 180.0),
    )


def fuzzed_distance(distance_km: float) -> float:
    """
    Multiply by (1 + noise), noise uniform in [-0.2, 0.2]; never negative.

    Draws from the OS entropy source on every call.
    """
    noise = _system_random.uniform(-FUZZ_RATIO, FUZZ_RATIO)
    return max(0.0, distance_km * (1 + noise))


def distance_band_of(distance_km: float) -> DistanceBand:
    for upper, band in BAND_THRESHOLDS:
        if distance_km <= upper:
            return band
    return DistanceBand.VERY_FAR


def band_text(band: DistanceBand) -> str:
    return BAND_TEXT[band]


def great_circle_distance(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in kilometers."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlng = math.radians(b.longitude - a.longitude)

    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def bounding_box(center: Coordinate, radius_km: float) -> LocationBounds:
    """
    Degree box enclosing a circle of `radius_km` around `center`.

    Widens to all longitudes when the circle reaches a pole or crosses
    the antimeridian; the exact distance filter runs afterwards.
    """
    lat_delta = radius_km / KM_PER_DEGREE_LAT
    north = center.latitude + lat_delta
    south = center.latitude - lat_delta

    if north >= 90.0 or south <= -90.0:
        return LocationBounds(min(north, 90.0), max(south, -90.0), 180.0, -180.0)

    lng_delta = radius_km / (KM_PER_DEGREE_LAT * math.cos(math.radians(center.latitude)))
    east = center.longitude + lng_delta
    west = center.longitude - lng_delta

    if east > 180.0 or west < -180.0:
        return LocationBounds(north, south, 180.0, -180.0)

    return LocationBounds(north, south, east, west)
