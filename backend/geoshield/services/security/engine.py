"""
Location security engine.

Gatekeeps location-revealing searches:
- per-user and per-target hourly rate limits
- triangulation detection over recent search coordinates
- append-only search audit logging

All decisions are derived from the audit log on every call. A failing
audit store raises SearchStoreException instead of allowing the search.
"""
import logging
import math
from datetime import datetime, timedelta, timezone
from itertools import combinations
from typing import Callable, Optional, Union

from geoshield.core.config import LocationSecurityConfig, get_location_security_config
from geoshield.core.metrics import track_location_search
from geoshield.models.listed_item import PrivacyLevel
from geoshield.models.location_search_log import LocationSearchLog, SearchType
from geoshield.repositories.search_audit import SearchAuditRepository
from geoshield.services.security import privacy
from geoshield.services.security.privacy import Coordinate, DistanceBand

logger = logging.getLogger(__name__)

TRIANGULATION_REASON = "Potential triangulation attempt detected"

# Triangle height must be at least this share of its longest side
COLLINEARITY_TOLERANCE = 0.01

RATE_LIMIT_WINDOW = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _local_xy(point: tuple[float, float], origin: tuple[float, float]) -> tuple[float, float]:
    """Equirectangular projection to km around `origin`."""
    lat, lng = point
    origin_lat, origin_lng = origin
    # Offsets wrap at the antimeridian
    dlng = privacy.longitude_offset(lng, origin_lng)
    x = math.radians(dlng) * math.cos(math.radians(origin_lat)) * privacy.EARTH_RADIUS_KM
    y = math.radians(lat) * privacy.EARTH_RADIUS_KM
    return x, y


def is_non_collinear(
    a: tuple[float, float],
    b: tuple[float, float],
    c: tuple[float, float],
    tolerance: float = COLLINEARITY_TOLERANCE,
) -> bool:
    """True if the triangle abc has height >= tolerance * longest side."""
    origin = ((a[0] + b[0] + c[0]) / 3, a[1])
    ax, ay = _local_xy(a, origin)
    bx, by = _local_xy(b, origin)
    cx, cy = _local_xy(c, origin)

    cross = abs((bx - ax) * (cy - ay) - (by - ay) * (cx - ax))
    longest_sq = max(
        (bx - ax) ** 2 + (by - ay) ** 2,
        (cx - ax) ** 2 + (cy - ay) ** 2,
        (cx - bx) ** 2 + (cy - by) ** 2,
    )
    if longest_sq == 0:
        return False
    # height / longest = 2 * area / longest^2 = cross / longest^2
    return cross / longest_sq >= tolerance


class LocationSecurityEngine:
    """
    Rate limiting, triangulation detection and audit logging for
    location searches.

    Request-scoped: wraps a session-bound audit repository.
    """

    def __init__(
        self,
        repository: SearchAuditRepository,
        config: Optional[LocationSecurityConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repository = repository
        self.config = config or get_location_security_config()
        self.clock = clock or _utcnow

    # ------------------------------------------------------------------
    # Audit logging
    # ------------------------------------------------------------------

    async def log_search(
        self,
        user_id: Optional[str],
        target_id: Optional[str],
        search_type: Union[SearchType, str],
        coordinate: Optional[Coordinate] = None,
        query: Optional[str] = None,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
        *,
        search_radius_km: Optional[float] = None,
        session_id: Optional[str] = None,
        result_count: int = 0,
        response_time_ms: int = 0,
    ) -> LocationSearchLog:
        """
        Record one search, flagging it when it completes a triangulation
        pattern. Never rejects.
        """
        search_type = SearchType(search_type)
        entry = LocationSearchLog(
            user_id=user_id,
            target_id=target_id,
            search_type=search_type.value,
            search_lat=coordinate.latitude if coordinate else None,
            search_lng=coordinate.longitude if coordinate else None,
            search_radius_km=search_radius_km,
            search_query=query[:500] if query else None,
            user_agent=user_agent[:500] if user_agent else None,
            ip_address=ip_address,
            session_id=session_id,
            is_suspicious=False,
            result_count=result_count,
            response_time_ms=response_time_ms,
            is_deleted=False,
        )

        if self.config.enable_triangulation_detection and coordinate is not None:
            if await self.is_triangulation_attempt(user_id, target_id, search_type, coordinate, query):
                entry.is_suspicious = True
                entry.suspicious_reason = TRIANGULATION_REASON

        entry.created_at = self.clock()
        entry = await self.repository.add(entry)

        logger.debug(
            f"Location search logged: user={user_id} type={search_type.value} "
            f"suspicious={entry.is_suspicious}"
        )
        return entry

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    async def validate_location_search(
        self,
        user_id: Optional[str],
        target_id: Optional[str] = None,
    ) -> bool:
        """
        Hourly rate-limit check for an identified user.

        Anonymous callers always pass; they are throttled per IP at the
        HTTP layer instead.
        """
        if not user_id:
            return True

        now = self.clock()

        hourly = await self.repository.count_since(user_id, now - RATE_LIMIT_WINDOW)
        if hourly >= self.config.max_searches_per_hour:
            logger.warning(
                f"Hourly search limit exceeded for user {user_id}: "
                f"{hourly}/{self.config.max_searches_per_hour}"
            )
            track_location_search("any", "rate_limited")
            return False

        if target_id:
            per_target = await self.repository.count_since(
                user_id, now - RATE_LIMIT_WINDOW, target_id=target_id
            )
            if per_target >= self.config.max_searches_per_target:
                logger.warning(
                    f"Per-target search limit exceeded for user {user_id}, target {target_id}: "
                    f"{per_target}/{self.config.max_searches_per_target}"
                )
                track_location_search("any", "target_rate_limited")
                return False

        interval = self.config.min_search_interval_seconds
        if interval > 0:
            recent = await self.repository.count_since(user_id, now - timedelta(seconds=interval))
            if recent > 0:
                logger.warning(
                    f"Minimum search interval not met for user {user_id}: {interval}s"
                )
                track_location_search("any", "too_frequent")
                return False

        return True

    # ------------------------------------------------------------------
    # Triangulation detection
    # ------------------------------------------------------------------

    async def is_triangulation_attempt(
        self,
        user_id: Optional[str],
        target_id: Optional[str],
        search_type: Union[SearchType, str],
        coordinate: Coordinate,
        query: Optional[str] = None,
    ) -> bool:
        """
        Detect multilateration: enough mutually separated, non-collinear
        search points in one (user, target, type) scope within the window.
        """
        if not self.config.enable_triangulation_detection or not user_id:
            return False

        search_type = SearchType(search_type)
        since = self.clock() - timedelta(hours=self.config.triangulation_time_window_hours)
        history = await self.repository.coordinate_history(
            user_id, target_id, search_type.value, since
        )
        points = history + [coordinate.as_tuple()]

        if len(points) < self.config.triangulation_min_search_points:
            return False

        if self._has_triangulation_geometry(points):
            logger.warning(
                f"Triangulation attempt detected: user={user_id} target={target_id} "
                f"type={search_type.value} points={len(points)}"
            )
            track_location_search(search_type.value, "suspicious")
            return True
        return False

    def _separated_points(self, points: list[tuple[float, float]]) -> list[tuple[float, float]]:
        """Greedily keep points at least the minimum distance from every kept point."""
        min_km = self.config.triangulation_min_distance_km
        kept: list[Coordinate] = []
        for lat, lng in points:
            candidate = Coordinate(lat, lng)
            if all(privacy.great_circle_distance(candidate, k) >= min_km for k in kept):
                kept.append(candidate)
        return [k.as_tuple() for k in kept]

    def _has_triangulation_geometry(self, points: list[tuple[float, float]]) -> bool:
        separated = self._separated_points(points)
        required = max(self.config.triangulation_min_search_points, 3)
        if len(separated) < required:
            return False
        return any(is_non_collinear(a, b, c) for a, b, c in combinations(separated, 3))

    # ------------------------------------------------------------------
    # Privacy transforms
    # ------------------------------------------------------------------

    def quantize_location(self, coordinate: Coordinate, level: PrivacyLevel) -> Coordinate:
        return privacy.quantize(coordinate, level)

    def jittered_location(self, coordinate: Coordinate, level: PrivacyLevel) -> Coordinate:
        return privacy.jittered_location(coordinate, level, now=self.clock())

    def fuzzed_distance(self, distance_km: float) -> float:
        return privacy.fuzzed_distance(distance_km)

    def distance_band(self, distance_km: float) -> DistanceBand:
        return privacy.distance_band_of(distance_km)

    def distance_band_text(self, band: DistanceBand) -> str:
        return privacy.band_text(band)
