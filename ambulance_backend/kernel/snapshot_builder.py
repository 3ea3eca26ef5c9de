from typing import Dict

from ambulance_backend.domain.models import (
    AmbulanceView, CivilianView, SignalLocation, SignalView, SimulationSnapshot
)
from ambulance_backend.domain.state import SimulationState
from ambulance_backend.systems.vehicle_system import VehicleSystem


class SnapshotBuilder:
    def __init__(self, vehicle_system: VehicleSystem, pull_over_offset: float):
        self.vehicle_system = vehicle_system
        self.pull_over_offset = pull_over_offset

    def build(self, state: SimulationState) -> SimulationSnapshot:
        return SimulationSnapshot(
            tick=state.tick_id,
            time=state.time,
            mode=state.mode,
            signals=[self.signal_view(state, signal_id) for signal_id in sorted(state.signals)],
            ambulances=[self.ambulance_view(state, amb_id) for amb_id in sorted(state.ambulances)],
            civilians=[
                CivilianView(
                    id=v.id,
                    position=self.vehicle_system.display_position(v, self.pull_over_offset),
                    pulledOver=v.pulled_over,
                    stoppedAtSignal=v.stopped_at_signal,
                )
                for v in state.civilians
            ],
        )

    @staticmethod
    def signal_view(state: SimulationState, signal_id: str) -> SignalView:
        signal = state.signals[signal_id]
        locations: Dict[str, SignalLocation] = state.signal_locations
        return SignalView(
            id=signal.id,
            intersectionId=signal.intersection_id,
            direction=signal.direction.value if signal.direction else None,
            position=locations[signal.id].position,
            phase=signal.phase,
            countdownSeconds=round(signal.countdown_seconds, 3),
            preemptedBy=signal.preempted_by,
            mode=signal.mode,
        )

    @staticmethod
    def ambulance_view(state: SimulationState, ambulance_id: str) -> AmbulanceView:
        ambulance = state.ambulances[ambulance_id]
        return AmbulanceView(
            id=ambulance.id,
            position=ambulance.position,
            phase=ambulance.phase,
            status=ambulance.status,
            waypointIndex=ambulance.waypoint_index,
            waiting=ambulance.id in state.wait_records,
            stalled=ambulance.stalled,
            etaSeconds=ambulance.eta_seconds,
            etaEstimates=ambulance.eta_estimates,
        )
