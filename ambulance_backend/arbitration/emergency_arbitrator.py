"""Per-tick coordination of every signal against every active ambulance.

The coordinator asks the mode's controller for claims, arbitrates claims
that compete for one signal, turns the winners into ``SignalUpdate``s and
schedules the deferred transitions that follow them. Updates are only
collected here; the kernel applies them all at once at the end of the tick.

Contention rule: a signal actively held (EMERGENCY) by an ambulance that
does not claim it this tick stays with its holder; otherwise the nearest
claimant wins, ties going to the lowest ambulance id.
"""
import logging
from typing import Dict, FrozenSet, List, NamedTuple, Optional, Set, Tuple

from ambulance_backend.controllers.base import Controller, SignalClaim
from ambulance_backend.controllers.implementations import NormalStopController, SmartPreemptionController
from ambulance_backend.domain.errors import SimulationError
from ambulance_backend.domain.models import (
    Ambulance, AmbulancePhase, PreemptionConflict, SignalAction, SignalMode, SignalPhase,
    SignalUpdate, SimulationMode, TimerKind
)
from ambulance_backend.domain.settings import SimulationConfig
from ambulance_backend.domain.state import SimulationState
from ambulance_backend.kernel.events import EventLog
from ambulance_backend.kernel.scheduler import DeferredScheduler, TimerEvent

log = logging.getLogger(__name__)

MAX_CONFLICT_RECORDS = 100

TAKING_ACTIONS = (SignalAction.PREEMPT_GREEN, SignalAction.HOLD_RED)


class SignalView(NamedTuple):
    owner: Optional[str]
    mode: SignalMode
    phase: SignalPhase


def build_controller(settings: SimulationConfig, scheduler: DeferredScheduler,
                     events: EventLog) -> Controller:
    if settings.mode == SimulationMode.SMART:
        return SmartPreemptionController(settings, scheduler, events)
    return NormalStopController(settings, scheduler, events)


class TrafficCoordinator:
    def __init__(self, settings: SimulationConfig, scheduler: DeferredScheduler, events: EventLog):
        self.settings = settings
        self.scheduler = scheduler
        self.events = events
        self.controller = build_controller(settings, scheduler, events)
        self._pending: List[SignalUpdate] = []
        self._overlay: Dict[str, SignalView] = {}
        # Last recorded contention per signal, so a standing conflict is reported once
        self._contested: Dict[str, Tuple[FrozenSet[str], str]] = {}

    def set_mode(self, mode: SimulationMode):
        self.settings = self.settings.model_copy(update={"mode": mode})
        self.controller = build_controller(self.settings, self.scheduler, self.events)

    def reset(self):
        self._pending = []
        self._overlay = {}
        self._contested = {}

    def begin_tick(self):
        self._pending = []
        self._overlay = {}

    def flush(self) -> List[SignalUpdate]:
        """Updates of this tick, in the order they must be applied."""
        updates, self._pending = self._pending, []
        self._overlay = {}
        return updates

    # Timers

    def handle_timer(self, state: SimulationState, event: TimerEvent, now: float):
        if event.epoch != self.scheduler.epoch:
            state.metrics.stale_timer_fires += 1
            log.debug("Ignoring stale %s timer for %s/%s from epoch %d",
                      event.kind.value, event.ambulance_id, event.signal_id, event.epoch)
            return

        view = self._view(state, event.signal_id)
        if view is None:
            return

        if event.kind in (TimerKind.CLEARANCE, TimerKind.RELEASE):
            if view.owner == event.ambulance_id and view.mode == SignalMode.ENDING_EMERGENCY:
                self._commit(SignalUpdate(signal_id=event.signal_id, action=SignalAction.RELEASE,
                                          ambulance_id=event.ambulance_id))
                self.events.add(now, f"{self.controller.signal_name(state, event.signal_id)} - RED "
                                     f"({event.ambulance_id} passed)")
        elif event.kind == TimerKind.WAIT:
            self._finish_wait(state, event, view, now)

    def _finish_wait(self, state: SimulationState, event: TimerEvent, view: SignalView, now: float):
        record = state.wait_records.get(event.ambulance_id)
        if record is None or record.signal_id != event.signal_id:
            return
        del state.wait_records[event.ambulance_id]
        state.passed_signals.setdefault(event.ambulance_id, set()).add(event.signal_id)

        name = self.controller.signal_name(state, event.signal_id)
        if view.owner != event.ambulance_id:
            self.events.add(now, f"{event.ambulance_id} resumes past {name}")
            return
        self._commit(SignalUpdate(signal_id=event.signal_id, action=SignalAction.GRANT_GREEN,
                                  ambulance_id=event.ambulance_id, countdown=self.settings.release_delay))
        self.scheduler.schedule(event.ambulance_id, event.signal_id, TimerKind.RELEASE,
                                self.settings.release_delay, now)
        self.events.add(now, f"{name} - GREEN ({event.ambulance_id} can pass)")

    # Claims

    def tick(self, state: SimulationState, now: float) -> List[SignalUpdate]:
        claims: List[SignalClaim] = []
        for ambulance_id in sorted(state.ambulances):
            ambulance = state.ambulances[ambulance_id]
            if not ambulance.is_active:
                continue
            route = state.active_route(ambulance)
            if route is None or route.is_empty or not route.signals:
                continue
            try:
                claims.extend(self.controller.run_tick(state, ambulance, route, now))
            except SimulationError as exc:
                log.warning("Skipping %s this tick: %s", ambulance.id, exc)

        start = len(self._pending)
        self._resolve(state, claims, now)
        return self._pending[start:]

    def _resolve(self, state: SimulationState, claims: List[SignalClaim], now: float):
        # Releases first, so a signal let go this tick can be claimed this tick
        for claim in claims:
            if claim.action not in TAKING_ACTIONS:
                self._apply_owned(state, claim, now)

        by_signal: Dict[str, List[SignalClaim]] = {}
        for claim in claims:
            if claim.action in TAKING_ACTIONS:
                by_signal.setdefault(claim.signal_id, []).append(claim)

        for signal_id in sorted(by_signal):
            group = by_signal[signal_id]
            view = self._view(state, signal_id)
            if view is None:
                log.warning("Claim on unknown signal %s dropped", signal_id)
                continue

            contenders = {c.ambulance_id for c in group}
            involved = contenders | ({view.owner} if view.owner else set())
            if view.owner is not None and view.mode == SignalMode.EMERGENCY and view.owner not in contenders:
                self._record_conflict(state, signal_id, involved, view.owner)
                continue

            winner = min(group, key=lambda c: (c.distance, c.ambulance_id))
            if len(involved) > 1:
                self._record_conflict(state, signal_id, involved, winner.ambulance_id)
            else:
                self._contested.pop(signal_id, None)
            self._take(state, winner, view, now)

    def _apply_owned(self, state: SimulationState, claim: SignalClaim, now: float):
        view = self._view(state, claim.signal_id)
        if view is None or view.owner != claim.ambulance_id or view.mode != SignalMode.EMERGENCY:
            return

        if claim.action == SignalAction.BEGIN_RELEASE:
            self._begin_clearance(claim.signal_id, claim.ambulance_id, now)
        elif claim.action == SignalAction.RELEASE:
            self.scheduler.cancel(claim.ambulance_id, claim.signal_id)
            self._commit(SignalUpdate(signal_id=claim.signal_id, action=SignalAction.RELEASE,
                                      ambulance_id=claim.ambulance_id))

    def _take(self, state: SimulationState, claim: SignalClaim, view: SignalView, now: float):
        if view.owner is not None and view.owner != claim.ambulance_id:
            # Previous owner's pending clearance must not fire on the new owner
            self.scheduler.cancel(view.owner, claim.signal_id, TimerKind.CLEARANCE)
            self.scheduler.cancel(view.owner, claim.signal_id, TimerKind.RELEASE)

        if claim.action == SignalAction.PREEMPT_GREEN:
            if (view.owner == claim.ambulance_id and view.mode == SignalMode.EMERGENCY
                    and view.phase == SignalPhase.GREEN):
                return
            self.scheduler.cancel(claim.ambulance_id, claim.signal_id, TimerKind.CLEARANCE)
            self._commit(SignalUpdate(signal_id=claim.signal_id, action=SignalAction.PREEMPT_GREEN,
                                      ambulance_id=claim.ambulance_id))
            self.events.add(now, f"{self.controller.signal_name(state, claim.signal_id)} - GREEN "
                                 f"for {claim.ambulance_id}")
        else:
            self._commit(SignalUpdate(signal_id=claim.signal_id, action=SignalAction.HOLD_RED,
                                      ambulance_id=claim.ambulance_id, countdown=self.settings.wait_delay))
        state.metrics.preemptions += 1

    # Leg changes

    def on_leg_finished(self, state: SimulationState, ambulance: Ambulance,
                        finished: AmbulancePhase, now: float):
        """Let go of every signal the ambulance still holds on the leg it just finished."""
        for signal_id in sorted(state.signals):
            view = self._view(state, signal_id)
            if view.owner != ambulance.id or view.mode != SignalMode.EMERGENCY:
                continue
            if view.phase == SignalPhase.GREEN:
                self._begin_clearance(signal_id, ambulance.id, now)
            else:
                self.scheduler.cancel(ambulance.id, signal_id)
                self._commit(SignalUpdate(signal_id=signal_id, action=SignalAction.RELEASE,
                                          ambulance_id=ambulance.id))
        log.debug("%s finished %s at t=%.2f", ambulance.id, finished.value, now)

    # Helpers

    def _begin_clearance(self, signal_id: str, ambulance_id: str, now: float):
        self._commit(SignalUpdate(signal_id=signal_id, action=SignalAction.BEGIN_RELEASE,
                                  ambulance_id=ambulance_id, countdown=self.settings.clearance_delay))
        self.scheduler.schedule(ambulance_id, signal_id, TimerKind.CLEARANCE,
                                self.settings.clearance_delay, now)

    def _view(self, state: SimulationState, signal_id: str) -> Optional[SignalView]:
        if signal_id in self._overlay:
            return self._overlay[signal_id]
        signal = state.signals.get(signal_id)
        if signal is None:
            return None
        return SignalView(signal.preempted_by, signal.mode, signal.phase)

    def _commit(self, update: SignalUpdate):
        self._pending.append(update)
        previous = self._overlay.get(update.signal_id)
        if update.action == SignalAction.PREEMPT_GREEN:
            view = SignalView(update.ambulance_id, SignalMode.EMERGENCY, SignalPhase.GREEN)
        elif update.action == SignalAction.HOLD_RED:
            view = SignalView(update.ambulance_id, SignalMode.EMERGENCY, SignalPhase.RED)
        elif update.action == SignalAction.GRANT_GREEN:
            view = SignalView(update.ambulance_id, SignalMode.ENDING_EMERGENCY, SignalPhase.GREEN)
        elif update.action == SignalAction.BEGIN_RELEASE:
            phase = previous.phase if previous else SignalPhase.GREEN
            view = SignalView(update.ambulance_id, SignalMode.ENDING_EMERGENCY, phase)
        else:
            view = SignalView(None, SignalMode.NORMAL, SignalPhase.RED)
        self._overlay[update.signal_id] = view

    def _record_conflict(self, state: SimulationState, signal_id: str, claimants: Set[str], winner: str):
        key = (frozenset(claimants), winner)
        if self._contested.get(signal_id) == key:
            return
        self._contested[signal_id] = key
        conflict = PreemptionConflict(tick=state.tick_id, signal_id=signal_id,
                                      claimants=sorted(claimants), winner=winner)
        state.conflicts.append(conflict)
        del state.conflicts[:-MAX_CONFLICT_RECORDS]
        state.metrics.conflicts += 1
        log.warning("Preemption conflict on %s between %s; %s wins",
                    signal_id, ", ".join(conflict.claimants), winner)
