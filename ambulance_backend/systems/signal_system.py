import logging
from typing import Dict, Iterable, List, Optional

from ambulance_backend.domain.models import Signal, SignalAction, SignalMode, SignalPhase, SignalUpdate

log = logging.getLogger(__name__)

class SignalController:
    """State machine of one signal: RED / YELLOW / GREEN plus preemption ownership.

    Preemption transitions are only ever driven by applied ``SignalUpdate``s;
    the background cycle may only move a signal that is in NORMAL mode.
    """

    def __init__(self, signal: Signal):
        self.signal = signal

    @property
    def id(self) -> str:
        return self.signal.id

    @property
    def is_preempted(self) -> bool:
        return self.signal.mode != SignalMode.NORMAL

    def preempt_green(self, ambulance_id: str, countdown: float = 0.0):
        self._set(SignalPhase.GREEN, SignalMode.EMERGENCY, ambulance_id, countdown)

    def hold_red(self, ambulance_id: str, countdown: float):
        self._set(SignalPhase.RED, SignalMode.EMERGENCY, ambulance_id, countdown)

    def grant_green(self, ambulance_id: str, countdown: float):
        self._set(SignalPhase.GREEN, SignalMode.ENDING_EMERGENCY, ambulance_id, countdown)

    def begin_release(self, countdown: float):
        self.signal.mode = SignalMode.ENDING_EMERGENCY
        self.signal.countdown_seconds = countdown

    def release(self):
        self._set(SignalPhase.RED, SignalMode.NORMAL, None, 0.0)

    def force_red(self):
        self.signal.phase = SignalPhase.RED
        self.signal.countdown_seconds = 0.0

    def set_background_phase(self, phase: SignalPhase, countdown: float):
        if self.is_preempted:
            return
        self.signal.phase = phase
        self.signal.countdown_seconds = countdown

    def tick_countdown(self, dt: float):
        self.signal.countdown_seconds = max(0.0, self.signal.countdown_seconds - dt)

    def _set(self, phase: SignalPhase, mode: SignalMode, owner: Optional[str], countdown: float):
        previous = self.signal.phase
        self.signal.phase = phase
        self.signal.mode = mode
        self.signal.preempted_by = owner
        self.signal.countdown_seconds = countdown
        if previous != phase:
            log.debug("Signal %s %s -> %s (%s, owner=%s)", self.id, previous.value, phase.value,
                      mode.value, owner)


class IntersectionCycle:
    """Round-robin background cycle over the approaches of one intersection.

    Stages per approach: GREEN -> YELLOW -> ALL_RED, then the next approach.
    """

    GREEN = "GREEN"
    YELLOW = "YELLOW"
    ALL_RED = "ALL_RED"

    def __init__(self, intersection_id: str, controllers: List[SignalController]):
        self.intersection_id = intersection_id
        self.controllers = controllers
        self.cycle_index = -1
        self.stage = self.ALL_RED
        self.timer = 0.0
        self.suspended = False

    @property
    def current(self) -> Optional[SignalController]:
        if 0 <= self.cycle_index < len(self.controllers):
            return self.controllers[self.cycle_index]
        return None

    def any_preempted(self) -> bool:
        return any(c.is_preempted for c in self.controllers)


class SignalSystem:
    def __init__(self, signals: Dict[str, Signal], background_cycle: bool = True,
                 green_time: float = 15.0, yellow_time: float = 3.0,
                 red_time: float = 15.0, all_red_clear: float = 2.0):
        self.signals = signals
        self.background_cycle = background_cycle
        self.green_time = green_time
        self.yellow_time = yellow_time
        self.red_time = red_time
        self.all_red_clear = all_red_clear

        self.controllers: Dict[str, SignalController] = {
            signal_id: SignalController(signal) for signal_id, signal in signals.items()
        }
        grouped: Dict[str, List[SignalController]] = {}
        for controller in self.controllers.values():
            grouped.setdefault(controller.signal.intersection_id, []).append(controller)
        self.cycles: Dict[str, IntersectionCycle] = {
            iid: IntersectionCycle(iid, sorted(group, key=lambda c: c.id))
            for iid, group in grouped.items()
        }
        self.restore_baseline()

    def get(self, signal_id: str) -> Optional[SignalController]:
        return self.controllers.get(signal_id)

    def restore_baseline(self):
        """Every signal RED, unowned, NORMAL; every cycle restarted from a clean phase."""
        for controller in self.controllers.values():
            controller.release()
        for cycle in self.cycles.values():
            self._restart_cycle(cycle)

    def set_timing(self, green_time: Optional[float] = None, yellow_time: Optional[float] = None,
                   red_time: Optional[float] = None):
        if green_time is not None:
            self.green_time = green_time
        if yellow_time is not None:
            self.yellow_time = yellow_time
        if red_time is not None:
            self.red_time = red_time

    def apply_all(self, updates: Iterable[SignalUpdate]):
        for update in updates:
            self.apply(update)

    def apply(self, update: SignalUpdate):
        controller = self.controllers.get(update.signal_id)
        if controller is None:
            log.warning("Update for unknown signal %s dropped", update.signal_id)
            return

        if update.action == SignalAction.PREEMPT_GREEN:
            controller.preempt_green(update.ambulance_id, update.countdown)
            self._force_siblings_red(controller)
        elif update.action == SignalAction.HOLD_RED:
            controller.hold_red(update.ambulance_id, update.countdown)
            self._force_siblings_red(controller)
        elif update.action == SignalAction.GRANT_GREEN:
            controller.grant_green(update.ambulance_id, update.countdown)
            self._force_siblings_red(controller)
        elif update.action == SignalAction.BEGIN_RELEASE:
            controller.begin_release(update.countdown)
        elif update.action == SignalAction.RELEASE:
            controller.release()

    def update(self, dt: float):
        for controller in self.controllers.values():
            if controller.is_preempted:
                controller.tick_countdown(dt)

        for cycle in self.cycles.values():
            if cycle.any_preempted():
                cycle.suspended = True
                continue
            if cycle.suspended:
                # Preemption over: resume from a clean phase, never mid-cycle
                self._restart_cycle(cycle)
                continue
            if not self.background_cycle:
                continue

            cycle.timer -= dt
            if cycle.timer <= 1e-9:
                self._switch_signal_phase(cycle)
            self._publish_countdown(cycle)

    def conflicting_intersections(self) -> List[str]:
        """Intersections showing more than one non-RED approach."""
        return [
            iid for iid, cycle in self.cycles.items()
            if sum(1 for c in cycle.controllers if c.signal.phase != SignalPhase.RED) > 1
        ]

    def _all_red_time(self, cycle: IntersectionCycle) -> float:
        return self.red_time if len(cycle.controllers) == 1 else self.all_red_clear

    def _restart_cycle(self, cycle: IntersectionCycle):
        for controller in cycle.controllers:
            controller.set_background_phase(SignalPhase.RED, 0.0)
        cycle.cycle_index = -1
        cycle.stage = IntersectionCycle.ALL_RED
        cycle.timer = self._all_red_time(cycle)
        cycle.suspended = False

    def _switch_signal_phase(self, cycle: IntersectionCycle):
        current = cycle.current
        if cycle.stage == IntersectionCycle.GREEN:
            current.set_background_phase(SignalPhase.YELLOW, self.yellow_time)
            cycle.stage = IntersectionCycle.YELLOW
            cycle.timer = self.yellow_time
        elif cycle.stage == IntersectionCycle.YELLOW:
            current.set_background_phase(SignalPhase.RED, 0.0)
            cycle.stage = IntersectionCycle.ALL_RED
            cycle.timer = self._all_red_time(cycle)
        else:
            cycle.cycle_index = (cycle.cycle_index + 1) % len(cycle.controllers)
            cycle.current.set_background_phase(SignalPhase.GREEN, self.green_time)
            cycle.stage = IntersectionCycle.GREEN
            cycle.timer = self.green_time

    def _publish_countdown(self, cycle: IntersectionCycle):
        for controller in cycle.controllers:
            remaining = cycle.timer if controller is cycle.current and cycle.stage != IntersectionCycle.ALL_RED else 0.0
            controller.set_background_phase(controller.signal.phase, max(0.0, remaining))

    def _force_siblings_red(self, controller: SignalController):
        cycle = self.cycles.get(controller.signal.intersection_id)
        if cycle is None:
            return
        # Conflicting approaches go RED even when another ambulance owns them
        for sibling in cycle.controllers:
            if sibling is not controller:
                sibling.force_red()
