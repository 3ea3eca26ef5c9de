import networkx as nx
from typing import Any, Dict, List, Optional, Tuple

from ambulance_backend.domain import geometry
from ambulance_backend.domain.errors import MalformedGraph
from ambulance_backend.domain.models import RoadSegment

class RoadNetwork:
    """Intersections and road segments. Read-only once the scenario is loaded."""

    def __init__(self, geographic: bool = False):
        self.graph = nx.DiGraph()
        self.geographic = geographic

    def add_intersection(self, intersection_id: str, pos: Tuple[float, float]):
        if intersection_id in self.graph:
            raise MalformedGraph(f"Duplicate intersection id {intersection_id}")
        self.graph.add_node(intersection_id, pos=(float(pos[0]), float(pos[1])))

    def add_road(self, u: str, v: str, lanes: int = 1, bidirectional: bool = True):
        for endpoint in (u, v):
            if endpoint not in self.graph:
                raise MalformedGraph(f"Road {u}->{v} references unknown intersection {endpoint}")
        if u == v:
            raise MalformedGraph(f"Road {u}->{v} is a self loop")
        if lanes < 1:
            raise MalformedGraph(f"Road {u}->{v} needs at least one lane")

        length = self.distance(u, v)
        self.graph.add_edge(u, v, length=length, lanes=lanes)
        if bidirectional:
            self.graph.add_edge(v, u, length=length, lanes=lanes)

    def has_intersection(self, u: str) -> bool:
        return u in self.graph

    def get_edge_data(self, u: str, v: str) -> Dict[str, Any]:
        return self.graph.get_edge_data(u, v)

    def get_node_pos(self, u: str) -> Tuple[float, float]:
        return self.graph.nodes[u].get('pos', (0.0, 0.0))

    def intersection_ids(self) -> List[str]:
        return list(self.graph.nodes)

    def roads(self) -> List[RoadSegment]:
        return [
            RoadSegment(source=u, target=v, lanes=data['lanes'], length=data['length'])
            for u, v, data in self.graph.edges(data=True)
        ]

    def distance(self, u: str, v: str) -> float:
        return geometry.distance(self.get_node_pos(u), self.get_node_pos(v), self.geographic)

    def nearest_intersection(self, pos: Tuple[float, float]) -> Optional[str]:
        best_id, best_dist = None, float("inf")
        for node_id in self.graph.nodes:
            d = geometry.distance(pos, self.get_node_pos(node_id), self.geographic)
            if d < best_dist:
                best_id, best_dist = node_id, d
        return best_id
