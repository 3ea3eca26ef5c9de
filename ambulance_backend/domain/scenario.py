"""Scenario loading.

A scenario is a JSON-compatible document::

    {
        "intersections": [{"id": "I-1", "position": [0, 0]}],
        "roads": [{"source": "I-1", "target": "I-2", "lanes": 2}],
        "signals": [{"id": "S-1", "intersection_id": "I-1", "direction": null}],
        "hospitals": ["I-2"],
        "civilians": [{"id": "car-1", "path": ["I-1", "I-2"]}]
    }

Positions are meters for planar scenarios and ``[lat, lng]`` for
geographic ones. Every problem found here is a ``ConfigurationError`` and
aborts startup.
"""
import logging
import math
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from ambulance_backend.domain import config
from ambulance_backend.domain.errors import MalformedGraph, MissingSignalGeometry
from ambulance_backend.domain.graph import RoadNetwork
from ambulance_backend.domain.models import Direction, Signal, SignalLocation

log = logging.getLogger(__name__)


class IntersectionSpec(BaseModel):
    id: str
    position: Tuple[float, float]


class RoadSpec(BaseModel):
    source: str
    target: str
    lanes: int = 1
    bidirectional: bool = True


class SignalSpec(BaseModel):
    id: str
    intersection_id: str
    direction: Optional[Direction] = None


class CivilianSpec(BaseModel):
    id: str
    path: List[str]
    speed: Optional[float] = None


class ScenarioSpec(BaseModel):
    intersections: List[IntersectionSpec]
    roads: List[RoadSpec] = []
    signals: List[SignalSpec] = []
    hospitals: List[str] = []  # Intersection ids a mission may deliver to
    civilians: List[CivilianSpec] = []


class Scenario:
    def __init__(self, network: RoadNetwork, signals: List[Signal],
                 civilians: Optional[List[CivilianSpec]] = None,
                 hospitals: Optional[List[str]] = None):
        self.network = network
        self.signals = signals
        self.civilians = civilians or []
        self.hospitals = hospitals or []

    def signal_locations(self) -> List[SignalLocation]:
        return [
            SignalLocation(
                id=s.id,
                intersection_id=s.intersection_id,
                position=self.network.get_node_pos(s.intersection_id),
                direction=s.direction,
            )
            for s in self.signals
        ]


def load_scenario(data: Dict[str, Any], geographic: bool = False) -> Scenario:
    try:
        spec = ScenarioSpec.model_validate(data)
    except ValidationError as exc:
        raise MalformedGraph(f"Invalid scenario document: {exc}") from exc

    network = RoadNetwork(geographic=geographic)
    for intersection in spec.intersections:
        network.add_intersection(intersection.id, intersection.position)
    for road in spec.roads:
        network.add_road(road.source, road.target, lanes=road.lanes, bidirectional=road.bidirectional)

    signals: List[Signal] = []
    seen = set()
    for signal in spec.signals:
        if signal.id in seen:
            raise MalformedGraph(f"Duplicate signal id {signal.id}")
        if not network.has_intersection(signal.intersection_id):
            raise MissingSignalGeometry(signal.id, signal.intersection_id)
        seen.add(signal.id)
        signals.append(Signal(id=signal.id, intersection_id=signal.intersection_id,
                              direction=signal.direction))

    for hospital_id in spec.hospitals:
        if not network.has_intersection(hospital_id):
            raise MalformedGraph(f"Hospital at unknown intersection {hospital_id}")

    for civilian in spec.civilians:
        for node_id in civilian.path:
            if not network.has_intersection(node_id):
                raise MalformedGraph(f"Civilian {civilian.id} path uses unknown intersection {node_id}")

    log.info("Scenario loaded: %d intersections, %d roads, %d signals, %d hospitals",
             len(spec.intersections), len(spec.roads), len(signals), len(spec.hospitals))
    return Scenario(network, signals, spec.civilians, spec.hospitals)


def grid_position(row: int, col: int, spacing: float, geographic: bool) -> Tuple[float, float]:
    """Planar ``(x, y)`` or, around ``config.GRID_ORIGIN``, ``(lat, lng)``."""
    if not geographic:
        return col * spacing, row * spacing
    lat0, lng0 = config.GRID_ORIGIN
    lat_step = spacing / config.METERS_PER_DEGREE
    lng_step = spacing / (config.METERS_PER_DEGREE * math.cos(math.radians(lat0)))
    return lat0 + row * lat_step, lng0 + col * lng_step


def build_grid_scenario(size: int = config.GRID_SIZE,
                        spacing: float = config.INTERSECTION_SPACING,
                        geographic: bool = False) -> Scenario:
    """Square grid, one signal per approach direction at every intersection.

    Rows run south to north and columns west to east; the two eastern
    corners host hospitals.
    """
    intersections = []
    roads = []
    signals = []

    def iid(row: int, col: int) -> str:
        return f"I-{100 + row * size + col + 1}"

    for row in range(size):
        for col in range(size):
            directions = []
            if col > 0: directions.append("E")         # arriving from the west
            if col < size - 1: directions.append("W")
            if row > 0: directions.append("N")         # arriving from the south
            if row < size - 1: directions.append("S")
            intersections.append({
                "id": iid(row, col),
                "position": grid_position(row, col, spacing, geographic),
            })
            for direction in directions:
                signals.append({
                    "id": f"S-{iid(row, col)}-{direction}",
                    "intersection_id": iid(row, col),
                    "direction": direction,
                })
            if col < size - 1:
                roads.append({"source": iid(row, col), "target": iid(row, col + 1), "lanes": 2})
            if row < size - 1:
                roads.append({"source": iid(row, col), "target": iid(row + 1, col), "lanes": 2})

    hospitals = [iid(0, size - 1), iid(size - 1, size - 1)]
    return load_scenario({"intersections": intersections, "roads": roads, "signals": signals,
                          "hospitals": hospitals}, geographic=geographic)


def build_corridor_scenario(count: int = 3, spacing: float = 1000.0,
                            signal_at: Optional[Iterable[str]] = None,
                            hospitals: Iterable[str] = (),
                            geographic: bool = False) -> Scenario:
    """Intersections ``I-1 .. I-<count>`` on a straight east-west line.

    Each listed intersection (all of them by default) gets one
    unconstrained signal ``S-<n>``.
    """
    ids = [f"I-{n}" for n in range(1, count + 1)]
    selected = set(ids if signal_at is None else signal_at)
    return load_scenario({
        "intersections": [
            {"id": node_id, "position": grid_position(0, i, spacing, geographic)}
            for i, node_id in enumerate(ids)
        ],
        "roads": [{"source": a, "target": b} for a, b in zip(ids, ids[1:])],
        "signals": [
            {"id": f"S-{node_id[2:]}", "intersection_id": node_id}
            for node_id in ids if node_id in selected
        ],
        "hospitals": list(hospitals),
    }, geographic=geographic)
