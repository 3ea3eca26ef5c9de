from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Iterable, List

from ambulance_backend.domain import geometry
from ambulance_backend.domain.models import Position, SignalLocation

if TYPE_CHECKING:
    from ambulance_backend.routing.planner import RoutePlanner


class RoutingProvider(ABC):
    @abstractmethod
    def get_route(self, origin: Position, destination: Position) -> List[Position]:
        """Ordered polyline from origin to destination; [] when there is none."""


class SignalRegistry(ABC):
    @abstractmethod
    def get_signals_near(self, bounds: geometry.Bounds) -> List[SignalLocation]:
        pass


class GraphRoutingProvider(RoutingProvider):
    """Routes over the local road network by snapping endpoints to intersections."""

    def __init__(self, planner: "RoutePlanner"):
        self.planner = planner

    def get_route(self, origin: Position, destination: Position) -> List[Position]:
        network = self.planner.network
        start_id = network.nearest_intersection(origin)
        end_id = network.nearest_intersection(destination)
        if start_id is None or end_id is None:
            return []
        if start_id == end_id:
            return [network.get_node_pos(start_id)]
        return self.planner.waypoints(self.planner.find_path(start_id, end_id))


class StaticSignalRegistry(SignalRegistry):
    def __init__(self, signals: Iterable[SignalLocation]):
        self.signals = list(signals)

    def get_signals_near(self, bounds: geometry.Bounds) -> List[SignalLocation]:
        return [s for s in self.signals if geometry.within_bounds(s.position, bounds)]
