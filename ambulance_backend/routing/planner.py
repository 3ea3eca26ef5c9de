import logging
from typing import Dict, Iterable, List, Optional

import networkx as nx

from ambulance_backend.domain import geometry
from ambulance_backend.domain.errors import NoPathFound, SimulationError
from ambulance_backend.domain.graph import RoadNetwork
from ambulance_backend.domain.models import MissionPlan, Position, Route, SimulationMode
from ambulance_backend.routing.providers import RoutingProvider
from ambulance_backend.routing.resolver import SignalOnRouteResolver

log = logging.getLogger(__name__)


class RoutePlanner:
    """A* over the road network.

    Edge cost is the stored road length (straight-line distance between
    the endpoints); the heuristic is the straight-line distance to the goal
    in the network's metric, so it never overestimates.
    """

    def __init__(self, network: RoadNetwork):
        self.network = network

    def heuristic(self, u: str, v: str) -> float:
        return self.network.distance(u, v)

    def find_path(self, start_id: str, end_id: str) -> List[str]:
        """Ordered intersection ids from start to end, or [] when unreachable."""
        try:
            return self._search(start_id, end_id)
        except NoPathFound as exc:
            log.info("%s", exc)
            return []

    def _search(self, start_id: str, end_id: str) -> List[str]:
        if not self.network.has_intersection(start_id):
            raise NoPathFound(start_id, end_id, f"unknown intersection {start_id}")
        if not self.network.has_intersection(end_id):
            raise NoPathFound(start_id, end_id, f"unknown intersection {end_id}")
        try:
            # networkx breaks f-score ties by push order
            return nx.astar_path(self.network.graph, start_id, end_id,
                                 heuristic=self.heuristic, weight="length")
        except nx.NetworkXNoPath as exc:
            raise NoPathFound(start_id, end_id) from exc

    def path_cost(self, path: List[str]) -> float:
        return sum(self.network.get_edge_data(u, v)["length"] for u, v in zip(path, path[1:]))

    def waypoints(self, path: List[str]) -> List[Position]:
        return [self.network.get_node_pos(node_id) for node_id in path]


def concatenate_legs(*legs: List[Position]) -> List[Position]:
    """Join leg polylines, dropping the duplicated waypoint at each boundary."""
    full: List[Position] = []
    for leg in legs:
        if not leg:
            continue
        if full and tuple(full[-1]) == tuple(leg[0]):
            full.extend(leg[1:])
        else:
            full.extend(leg)
    return full


class MissionPlanner:
    """Plans the three legs of a mission: station -> patient -> hospital -> station."""

    def __init__(self, network: RoadNetwork, provider: RoutingProvider,
                 resolver: Optional[SignalOnRouteResolver] = None, hospitals: Iterable[str] = ()):
        self.network = network
        self.provider = provider
        self.resolver = resolver
        self.hospitals = sorted(hospitals)

    def nearest_hospital(self, origin_id: str) -> str:
        """Hospital closest to ``origin_id`` in a straight line; ties go to the lower id."""
        if not self.hospitals:
            raise SimulationError(f"No hospital to take the patient at {origin_id} to")
        return min(self.hospitals, key=lambda h: (self.network.distance(origin_id, h), h))

    def plan_leg(self, origin_id: str, destination_id: str) -> Route:
        waypoints = self.provider.get_route(
            self.network.get_node_pos(origin_id),
            self.network.get_node_pos(destination_id),
        )
        if len(waypoints) < 2:
            if origin_id != destination_id:
                log.warning("No route from %s to %s", origin_id, destination_id)
            return Route(waypoints=list(waypoints))

        signals = self.resolver.resolve_from_registry(waypoints) if self.resolver else []
        return Route(waypoints=list(waypoints), signals=signals)

    def plan(self, station_id: str, patient_id: str, hospital_id: str) -> MissionPlan:
        to_patient = self.plan_leg(station_id, patient_id)
        to_hospital = self.plan_leg(patient_id, hospital_id)
        return_home = self.plan_leg(hospital_id, station_id)
        return MissionPlan(
            to_patient=to_patient,
            to_hospital=to_hospital,
            return_home=return_home,
            full_path=concatenate_legs(to_patient.waypoints, to_hospital.waypoints,
                                       return_home.waypoints),
        )

    def estimate(self, plan: MissionPlan, speed: float, signal_delay: float) -> Dict[str, float]:
        """Seconds from dispatch to the hospital in each mode, ignoring traffic.

        Smart mode drives straight through at ``speed``; normal mode adds
        ``signal_delay`` for every signal on the way to the patient and on to
        the hospital.
        """
        legs = (plan.to_patient, plan.to_hospital)
        travel = sum(geometry.polyline_length(leg.waypoints, self.network.geographic) for leg in legs) / speed
        stops = sum(len(leg.signals) for leg in legs)
        return {
            SimulationMode.SMART.value: travel,
            SimulationMode.NORMAL.value: travel + stops * signal_delay,
        }
