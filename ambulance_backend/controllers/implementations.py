from typing import List

from ambulance_backend.controllers.base import Controller, SignalClaim
from ambulance_backend.domain.models import Ambulance, Route, SignalAction, TimerKind, WaitRecord
from ambulance_backend.domain.state import SimulationState
from ambulance_backend.systems.ambulance_system import AmbulanceAgent

PASSED_EPSILON = 1e-9

class SmartPreemptionController(Controller):
    """Green wave: the next signal not yet passed goes GREEN ahead of the ambulance.

    Signals behind the ambulance get their clearance interval started; the
    coordinator only honours claims on signals this ambulance owns.
    """

    def run_tick(self, state: SimulationState, ambulance: Ambulance, route: Route,
                 now: float) -> List[SignalClaim]:
        agent = AmbulanceAgent(ambulance, self.settings.geographic)
        progress = agent.route_progress(route)

        claims: List[SignalClaim] = []
        active_found = False
        for entry in route.signals:
            if progress + PASSED_EPSILON >= entry.route_position:
                action = SignalAction.BEGIN_RELEASE
            elif not active_found:
                active_found = True
                action = SignalAction.PREEMPT_GREEN
            else:
                action = SignalAction.RELEASE
            claims.append(SignalClaim(
                signal_id=entry.signal_id,
                ambulance_id=ambulance.id,
                action=action,
                distance=agent.distance_to(entry.position),
            ))
        return claims

class NormalStopController(Controller):
    """Stop-and-wait: the ambulance halts at the nearest untriggered signal in range.

    The WaitRecord is written here, before the ambulance moves this tick,
    and is the only record of the ambulance being held.
    """

    def run_tick(self, state: SimulationState, ambulance: Ambulance, route: Route,
                 now: float) -> List[SignalClaim]:
        if ambulance.id in state.wait_records:
            return []

        agent = AmbulanceAgent(ambulance, self.settings.geographic)
        passed = state.passed_signals.setdefault(ambulance.id, set())
        min_ordinal = ambulance.waypoint_index - self.settings.behind_tolerance

        closest, closest_distance = None, float("inf")
        for entry in route.signals:
            if entry.signal_id in passed or entry.ordinal_index < min_ordinal:
                continue
            d = agent.distance_to(entry.position)
            if d < self.settings.proximity_threshold and d < closest_distance:
                closest, closest_distance = entry, d

        if closest is None:
            return []

        state.wait_records[ambulance.id] = WaitRecord(
            ambulance_id=ambulance.id,
            signal_id=closest.signal_id,
            wait_start_time=now,
            waypoint_index_at_stop=ambulance.waypoint_index,
        )
        self.scheduler.schedule(ambulance.id, closest.signal_id, TimerKind.WAIT,
                                self.settings.wait_delay, now)
        self.events.add(now, f"{ambulance.id} waiting at {self.signal_name(state, closest.signal_id)} "
                             f"({closest_distance:.1f}m away)")
        return [SignalClaim(
            signal_id=closest.signal_id,
            ambulance_id=ambulance.id,
            action=SignalAction.HOLD_RED,
            distance=closest_distance,
        )]
