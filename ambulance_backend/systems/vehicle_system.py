from typing import Dict, List

from ambulance_backend.domain import geometry
from ambulance_backend.domain.models import CivilianVehicle, Position, SignalLocation, SignalPhase
from ambulance_backend.domain.state import SimulationState


class VehicleSystem:
    """Civilian traffic: loops its waypoints, yields to ambulances, stops at RED.

    Reads signals and ambulance positions as they stood at the end of the
    previous tick.
    """

    def __init__(self, signal_locations: Dict[str, SignalLocation], geographic: bool = False,
                 pull_over_distance: float = 120.0, stop_distance: float = 30.0):
        self.signal_locations = signal_locations
        self.geographic = geographic
        self.pull_over_distance = pull_over_distance
        self.stop_distance = stop_distance

    def update(self, state: SimulationState, dt: float):
        ambulance_positions = [a.position for a in state.ambulances.values() if a.is_active]
        red_signals = [
            self.signal_locations[s.id] for s in state.signals.values()
            if s.phase == SignalPhase.RED and s.id in self.signal_locations
        ]
        for vehicle in state.civilians:
            self._update_single_vehicle(vehicle, ambulance_positions, red_signals, dt)

    def _update_single_vehicle(self, v: CivilianVehicle, ambulance_positions: List[Position],
                               red_signals: List[SignalLocation], dt: float):
        if len(v.waypoints) < 2:
            return

        # A. Yield to ambulances
        v.pulled_over = any(
            geometry.distance(v.position, pos, self.geographic) < self.pull_over_distance
            for pos in ambulance_positions
        )
        if v.pulled_over:
            v.stopped_at_signal = False
            return

        # B. Check Signal
        target = v.waypoints[v.waypoint_index]
        v.stopped_at_signal = any(self._must_stop(v.position, target, s) for s in red_signals)
        if v.stopped_at_signal:
            return

        # C. Move
        position, reached = geometry.move_towards(v.position, target, v.speed * dt, self.geographic)
        v.position = position
        if reached:
            v.waypoint_index += 1
            if v.waypoint_index >= len(v.waypoints):
                # End of the loop: start over from the first waypoint
                v.position = v.waypoints[0]
                v.waypoint_index = 1

    def display_position(self, v: CivilianVehicle, offset: float) -> Position:
        if not v.pulled_over or len(v.waypoints) < 2:
            return v.position
        return geometry.lateral_offset(v.position, v.waypoints[v.waypoint_index], offset,
                                       self.geographic)

    def _must_stop(self, position: Position, target: Position, signal: SignalLocation) -> bool:
        if geometry.distance(position, signal.position, self.geographic) >= self.stop_distance:
            return False
        if not self._is_ahead(position, target, signal.position):
            return False
        if signal.direction is None:
            return True
        return geometry.heading(position, target, self.geographic) == signal.direction.value

    @staticmethod
    def _is_ahead(position: Position, target: Position, point: Position) -> bool:
        travel = (target[0] - position[0], target[1] - position[1])
        to_point = (point[0] - position[0], point[1] - position[1])
        return travel[0] * to_point[0] + travel[1] * to_point[1] > 0
