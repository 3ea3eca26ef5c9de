"""Which signals lie on a planned route, and in what order.

A signal is on the route when its perpendicular distance to some route
segment is below the threshold. The segment with the smallest distance is
the signal's ordinal index (earlier segment on ties) and the projection on
that segment is its offset; together they place the signal along the route.
Directional signals are kept only when they control the heading the route
travels on that segment, so one intersection contributes one approach.
"""
import logging
from typing import Iterable, List, Optional, Sequence

from ambulance_backend.domain import config, geometry
from ambulance_backend.domain.models import Position, SignalLocation, SignalOnRoute
from ambulance_backend.routing.providers import SignalRegistry

log = logging.getLogger(__name__)


class SignalOnRouteResolver:
    def __init__(self, threshold: float = config.ROUTE_SIGNAL_THRESHOLD, geographic: bool = False,
                 registry: Optional[SignalRegistry] = None, padding: float = config.REGISTRY_PADDING):
        self.threshold = threshold
        self.geographic = geographic
        self.registry = registry
        self.padding = padding

    def resolve(self, waypoints: Sequence[Position],
                signals: Iterable[SignalLocation]) -> List[SignalOnRoute]:
        if len(waypoints) < 2:
            return []

        on_route: List[SignalOnRoute] = []
        for signal in signals:
            best = self._nearest_segment(signal.position, waypoints)
            if best is None:
                continue
            segment_index, dist, offset = best
            if dist >= self.threshold:
                continue
            if signal.direction is not None:
                travel = geometry.heading(waypoints[segment_index], waypoints[segment_index + 1],
                                          self.geographic)
                if travel != signal.direction.value:
                    continue
            on_route.append(SignalOnRoute(
                signal_id=signal.id,
                intersection_id=signal.intersection_id,
                position=signal.position,
                ordinal_index=segment_index,
                offset=offset,
                distance_to_route=dist,
            ))

        on_route.sort(key=lambda s: (s.ordinal_index, s.offset, s.signal_id))
        log.debug("Resolved %d signals on a %d-waypoint route", len(on_route), len(waypoints))
        return on_route

    def resolve_from_registry(self, waypoints: Sequence[Position]) -> List[SignalOnRoute]:
        if self.registry is None or len(waypoints) < 2:
            return []
        bounds = geometry.bounding_box(waypoints, self.padding, self.geographic)
        return self.resolve(waypoints, self.registry.get_signals_near(bounds))

    def _nearest_segment(self, point: Position, waypoints: Sequence[Position]):
        best = None
        for i in range(len(waypoints) - 1):
            if tuple(waypoints[i]) == tuple(waypoints[i + 1]):
                continue
            dist, t = geometry.point_to_segment_distance(point, waypoints[i], waypoints[i + 1],
                                                         self.geographic)
            # Strict comparison keeps the earlier segment on ties
            if best is None or dist < best[1]:
                best = (i, dist, t)
        return best
