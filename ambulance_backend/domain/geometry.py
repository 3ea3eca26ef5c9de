"""Distance and movement helpers shared by routing, agents and signals.

Positions are ``(x, y)`` pairs in meters for planar scenarios and
``(lat, lng)`` pairs in degrees for geographic ones. Every helper takes a
``geographic`` flag; distances are always returned in meters.
"""
import math
from typing import Iterable, Optional, Tuple

from ambulance_backend.domain import config

Position = Tuple[float, float]
Bounds = Tuple[float, float, float, float]  # (min_a, min_b, max_a, max_b)


def euclidean(a: Position, b: Position) -> float:
    return math.hypot(b[0] - a[0], b[1] - a[1])


def haversine(a: Position, b: Position) -> float:
    lat1 = math.radians(a[0])
    lat2 = math.radians(b[0])
    delta_lat = math.radians(b[0] - a[0])
    delta_lng = math.radians(b[1] - a[1])

    h = (math.sin(delta_lat / 2) ** 2
         + math.cos(lat1) * math.cos(lat2) * math.sin(delta_lng / 2) ** 2)
    return config.EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distance(a: Position, b: Position, geographic: bool = False) -> float:
    return haversine(a, b) if geographic else euclidean(a, b)


def project_onto_segment(point: Position, start: Position, end: Position,
                         geographic: bool = False) -> Tuple[float, Position]:
    """Clamped projection parameter ``t`` and the closest point on the segment.

    For lat/lng input longitude differences are scaled by the cosine of the
    segment's mean latitude, so ``t`` is taken in local meters.
    """
    scale = math.cos(math.radians((start[0] + end[0]) / 2)) if geographic else 1.0
    ab_a = end[0] - start[0]
    ab_b = end[1] - start[1]
    length_sq = ab_a * ab_a + (ab_b * scale) ** 2
    if length_sq == 0:
        return 0.0, start

    t = ((point[0] - start[0]) * ab_a + (point[1] - start[1]) * ab_b * scale * scale) / length_sq
    t = max(0.0, min(1.0, t))
    return t, (start[0] + t * ab_a, start[1] + t * ab_b)


def point_to_segment_distance(point: Position, start: Position, end: Position,
                              geographic: bool = False) -> Tuple[float, float]:
    """Return ``(distance_m, t)`` from ``point`` to the segment ``start -> end``."""
    t, closest = project_onto_segment(point, start, end, geographic)
    return distance(point, closest, geographic), t


def polyline_length(points: Iterable[Position], geographic: bool = False) -> float:
    points = list(points)
    return sum(distance(a, b, geographic) for a, b in zip(points, points[1:]))


def heading(start: Position, end: Position, geographic: bool = False) -> Optional[str]:
    """Dominant compass heading ("N", "E", "S", "W") of travel from start to end."""
    if geographic:
        north = end[0] - start[0]
        east = (end[1] - start[1]) * math.cos(math.radians((start[0] + end[0]) / 2))
    else:
        east = end[0] - start[0]
        north = end[1] - start[1]

    if east == 0 and north == 0:
        return None
    if abs(east) >= abs(north):
        return "E" if east > 0 else "W"
    return "N" if north > 0 else "S"


def move_towards(current: Position, target: Position, step: float,
                 geographic: bool = False) -> Tuple[Position, bool]:
    """Move ``step`` meters toward ``target``; snap and report True when within reach."""
    remaining = distance(current, target, geographic)
    if remaining <= step:
        return (target[0], target[1]), True

    ratio = step / remaining
    return (
        current[0] + (target[0] - current[0]) * ratio,
        current[1] + (target[1] - current[1]) * ratio,
    ), False


def lateral_offset(position: Position, towards: Position, offset: float,
                   geographic: bool = False) -> Position:
    """Shift ``position`` sideways (to the right of travel) by ``offset`` meters."""
    da = towards[0] - position[0]
    db = towards[1] - position[1]
    length = math.hypot(da, db)
    if length == 0:
        return position

    # Right-hand normal of the travel vector; (lat, lng) is (north, east) so the turn flips
    if geographic:
        na = -db / length / config.METERS_PER_DEGREE
        nb = da / length / (config.METERS_PER_DEGREE * max(math.cos(math.radians(position[0])), 1e-6))
    else:
        na, nb = db / length, -da / length
    return position[0] + na * offset, position[1] + nb * offset


def bounding_box(points: Iterable[Position], padding: float = 0.0,
                 geographic: bool = False) -> Bounds:
    points = list(points)
    if not points:
        raise ValueError("bounding_box needs at least one point")

    min_a = min(p[0] for p in points)
    max_a = max(p[0] for p in points)
    min_b = min(p[1] for p in points)
    max_b = max(p[1] for p in points)

    pad_a = pad_b = padding
    if geographic:
        pad_a = padding / config.METERS_PER_DEGREE
        mid_lat = math.radians((min_a + max_a) / 2)
        pad_b = padding / (config.METERS_PER_DEGREE * max(math.cos(mid_lat), 1e-6))
    return min_a - pad_a, min_b - pad_b, max_a + pad_a, max_b + pad_b


def within_bounds(point: Position, bounds: Bounds) -> bool:
    return bounds[0] <= point[0] <= bounds[2] and bounds[1] <= point[1] <= bounds[3]
