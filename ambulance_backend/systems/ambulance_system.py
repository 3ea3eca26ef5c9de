import logging
from typing import Callable, NamedTuple, Optional

from ambulance_backend.domain import geometry
from ambulance_backend.domain.models import (
    Ambulance, AmbulancePhase, AmbulanceStatus, MissionPlan, MissionRequest, Position, Route
)
from ambulance_backend.domain.state import SimulationState, route_key
from ambulance_backend.kernel.events import EventLog

log = logging.getLogger(__name__)

LegFinishedHook = Callable[[SimulationState, Ambulance, AmbulancePhase, float], None]

NEXT_PHASE = {
    AmbulancePhase.TO_PATIENT: (AmbulancePhase.TO_HOSPITAL, AmbulanceStatus.TRANSPORTING),
    AmbulancePhase.TO_HOSPITAL: (AmbulancePhase.RETURNING, AmbulanceStatus.RETURNING),
    AmbulancePhase.RETURNING: (AmbulancePhase.IDLE, AmbulanceStatus.IDLE),
}


class AdvanceResult(NamedTuple):
    position: Position
    reached: bool


class AmbulanceAgent:
    """Moves one ambulance waypoint to waypoint at a fixed speed."""

    def __init__(self, ambulance: Ambulance, geographic: bool = False):
        self.ambulance = ambulance
        self.geographic = geographic

    def target(self, route: Optional[Route]) -> Optional[Position]:
        if route is None or route.is_empty:
            return None
        next_index = self.ambulance.waypoint_index + 1
        if next_index >= len(route.waypoints):
            return None
        return route.waypoints[next_index]

    def advance(self, dt: float, route: Optional[Route], held: bool = False) -> AdvanceResult:
        target = self.target(route)
        if held or target is None:
            return AdvanceResult(self.ambulance.position, False)

        position, reached = geometry.move_towards(
            self.ambulance.position, target, self.ambulance.speed * dt, self.geographic
        )
        self.ambulance.position = position
        return AdvanceResult(position, reached)

    def route_progress(self, route: Optional[Route]) -> float:
        """Waypoint index plus the fraction of the current segment already driven."""
        index = self.ambulance.waypoint_index
        target = self.target(route)
        if target is None:
            return float(index)
        start = route.waypoints[index]
        length = geometry.distance(start, target, self.geographic)
        if length == 0:
            return float(index)
        driven = geometry.distance(start, self.ambulance.position, self.geographic)
        return index + min(1.0, driven / length)

    def distance_to(self, position: Position) -> float:
        return geometry.distance(self.ambulance.position, position, self.geographic)


class AmbulanceSystem:
    def __init__(self, events: EventLog, geographic: bool = False, return_to_station: bool = False,
                 on_leg_finished: Optional[LegFinishedHook] = None):
        self.events = events
        self.geographic = geographic
        self.return_to_station = return_to_station
        self.on_leg_finished = on_leg_finished

    def agent(self, ambulance: Ambulance) -> AmbulanceAgent:
        return AmbulanceAgent(ambulance, self.geographic)

    def start_mission(self, state: SimulationState, request: MissionRequest, plan: MissionPlan,
                      start_position: Position, speed: float, now: float) -> Ambulance:
        ambulance = Ambulance(
            id=request.ambulance_id,
            position=start_position,
            speed=request.speed or speed,
            station_id=request.station_id,
            patient_id=request.patient_id,
            hospital_id=request.hospital_id,
            mission_started_at=now,
        )
        state.ambulances[ambulance.id] = ambulance
        state.mission_plans[ambulance.id] = plan
        state.routes[route_key(ambulance.id, AmbulancePhase.TO_PATIENT)] = plan.to_patient
        state.routes[route_key(ambulance.id, AmbulancePhase.TO_HOSPITAL)] = plan.to_hospital
        state.routes[route_key(ambulance.id, AmbulancePhase.RETURNING)] = plan.return_home
        state.passed_signals[ambulance.id] = set()

        self._enter_phase(state, ambulance, AmbulancePhase.TO_PATIENT, AmbulanceStatus.RESPONDING, now)
        if ambulance.status == AmbulanceStatus.RESPONDING:
            self.events.add(now, f"{ambulance.id} dispatched to patient at {request.patient_id} "
                                 f"({len(plan.to_patient.signals)} signals on route)")
        return ambulance

    def update(self, state: SimulationState, dt: float, now: float):
        for ambulance_id in sorted(state.ambulances):
            ambulance = state.ambulances[ambulance_id]
            if ambulance.phase == AmbulancePhase.IDLE:
                continue

            route = state.active_route(ambulance)
            held = ambulance.id in state.wait_records
            result = self.agent(ambulance).advance(dt, route, held)
            if not result.reached:
                continue

            ambulance.waypoint_index += 1
            if ambulance.waypoint_index >= len(route.waypoints) - 1:
                self._finish_leg(state, ambulance, now + dt)

    def _finish_leg(self, state: SimulationState, ambulance: Ambulance, now: float):
        finished = ambulance.phase
        if self.on_leg_finished is not None:
            self.on_leg_finished(state, ambulance, finished, now)
        state.passed_signals[ambulance.id] = set()
        state.wait_records.pop(ambulance.id, None)

        if finished == AmbulancePhase.TO_PATIENT:
            self.events.add(now, f"{ambulance.id} secured patient at {ambulance.patient_id}, "
                                 f"heading to {ambulance.hospital_id}")
        elif finished == AmbulancePhase.TO_HOSPITAL:
            eta = now - (ambulance.mission_started_at or 0.0)
            ambulance.eta_seconds = eta
            state.metrics.eta_by_mode[state.mode.value] = eta
            self.events.add(now, f"{ambulance.id} delivered patient to {ambulance.hospital_id}; "
                                 f"{state.mode.value} mode ETA {eta:.1f}s")
            if not self.return_to_station:
                self._go_idle(ambulance)
                return
        else:
            self.events.add(now, f"{ambulance.id} back at station {ambulance.station_id}")

        phase, status = NEXT_PHASE[finished]
        if phase == AmbulancePhase.IDLE:
            self._go_idle(ambulance)
            return
        self._enter_phase(state, ambulance, phase, status, now)

    def _enter_phase(self, state: SimulationState, ambulance: Ambulance, phase: AmbulancePhase,
                     status: AmbulanceStatus, now: float):
        route = state.routes.get(route_key(ambulance.id, phase))
        ambulance.waypoint_index = 0
        if route is not None and len(route.waypoints) == 1:
            # Leg starts where it ends
            ambulance.phase = phase
            ambulance.status = status
            self._finish_leg(state, ambulance, now)
            return
        if route is None or route.is_empty:
            # No path: stay put and never move again this mission
            self._go_idle(ambulance)
            ambulance.stalled = True
            self.events.add(now, f"{ambulance.id} has no route for {phase.value}; holding position")
            return
        ambulance.phase = phase
        ambulance.status = status

    def _go_idle(self, ambulance: Ambulance):
        ambulance.phase = AmbulancePhase.IDLE
        ambulance.status = AmbulanceStatus.IDLE
