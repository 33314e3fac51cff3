"""Geometry helpers shared by the graph builder, the binder and the step generator.

Distances are great-circle (haversine) metres. Projection and intersection work
in a planar lat/lng approximation, which is fine at campus scale (sub-kilometre)
but is not geodesically exact: do not reuse them for city- or region-sized
networks.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

EARTH_RADIUS_M = 6_371_000.0

# Squared planar lengths (deg^2) at or below this are treated as zero.
_DEGENERATE_EPS_SQ = 1e-24


class Coordinate(Protocol):
    @property
    def lat(self) -> float: ...

    @property
    def lng(self) -> float: ...


@dataclass(frozen=True)
class Projection:
    lat: float
    lng: float
    distance_m: float
    t: float


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = phi2 - phi1
    dlambda = math.radians(lng2 - lng1)
    a = (
        math.sin(dphi / 2.0) ** 2
        + (math.cos(phi1) * math.cos(phi2) * (math.sin(dlambda / 2.0) ** 2))
    )
    return 2.0 * EARTH_RADIUS_M * math.atan2(math.sqrt(max(0.0, a)), math.sqrt(max(0.0, 1.0 - a)))


def calculate_distance(a: Coordinate, b: Coordinate) -> float:
    return haversine_m(a.lat, a.lng, b.lat, b.lng)


def project_point_onto_segment(
    point: Coordinate,
    segment_start: Coordinate,
    segment_end: Coordinate,
) -> Projection:
    """Closest point of the segment to ``point``, with the parameter ``t`` clamped to [0, 1]."""
    dx = segment_end.lng - segment_start.lng
    dy = segment_end.lat - segment_start.lat
    length_sq = dx * dx + dy * dy

    if length_sq <= _DEGENERATE_EPS_SQ:
        return Projection(
            lat=segment_start.lat,
            lng=segment_start.lng,
            distance_m=haversine_m(point.lat, point.lng, segment_start.lat, segment_start.lng),
            t=0.0,
        )

    raw_t = ((point.lng - segment_start.lng) * dx + (point.lat - segment_start.lat) * dy) / length_sq
    t = max(0.0, min(1.0, raw_t))
    lat = segment_start.lat + t * dy
    lng = segment_start.lng + t * dx
    return Projection(lat=lat, lng=lng, distance_m=haversine_m(point.lat, point.lng, lat, lng), t=t)


def segment_intersection(
    a_start: Coordinate,
    a_end: Coordinate,
    b_start: Coordinate,
    b_end: Coordinate,
) -> tuple[float, float] | None:
    """Planar crossing test.

    Returns the parameters ``(t, u)`` of the crossing point along segment A and
    segment B, or ``None`` when the segments are parallel or do not meet.
    """
    rx = a_end.lng - a_start.lng
    ry = a_end.lat - a_start.lat
    sx = b_end.lng - b_start.lng
    sy = b_end.lat - b_start.lat
    denom = rx * sy - ry * sx
    if abs(denom) <= _DEGENERATE_EPS_SQ:
        return None

    qpx = b_start.lng - a_start.lng
    qpy = b_start.lat - a_start.lat
    t = (qpx * sy - qpy * sx) / denom
    u = (qpx * ry - qpy * rx) / denom
    if 0.0 <= t <= 1.0 and 0.0 <= u <= 1.0:
        return t, u
    return None


def interpolate(a: Coordinate, b: Coordinate, t: float) -> tuple[float, float]:
    return a.lat + (b.lat - a.lat) * t, a.lng + (b.lng - a.lng) * t


def calculate_bearing(a: Coordinate, b: Coordinate) -> float:
    """Initial great-circle bearing from ``a`` to ``b`` in degrees, 0-360 clockwise from north."""
    phi1 = math.radians(a.lat)
    phi2 = math.radians(b.lat)
    dlambda = math.radians(b.lng - a.lng)
    y = math.sin(dlambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(dlambda)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def bearing_delta_deg(previous: float, current: float) -> float:
    """Signed change of heading in (-180, 180]; positive means a right turn."""
    delta = (current - previous) % 360.0
    if delta > 180.0:
        delta -= 360.0
    return delta


def polyline_length_m(points: list[Coordinate] | tuple[Coordinate, ...]) -> float:
    return sum(calculate_distance(points[i], points[i + 1]) for i in range(len(points) - 1))


def format_distance(distance_m: float) -> str:
    if distance_m >= 1000.0:
        return f"{distance_m / 1000.0:.1f} km"
    return f"{round(distance_m)} m"
