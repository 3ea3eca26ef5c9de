from abc import ABC, abstractmethod
from typing import List

from pydantic import BaseModel

from ambulance_backend.domain.models import Ambulance, Route, SignalAction
from ambulance_backend.domain.settings import SimulationConfig
from ambulance_backend.domain.state import SimulationState
from ambulance_backend.kernel.events import EventLog
from ambulance_backend.kernel.scheduler import DeferredScheduler


class SignalClaim(BaseModel):
    """A transition one ambulance asks for on one signal this tick."""

    signal_id: str
    ambulance_id: str
    action: SignalAction
    distance: float = 0.0


class Controller(ABC):
    """Preemption rules of one operating mode, applied to one ambulance per call."""

    def __init__(self, settings: SimulationConfig, scheduler: DeferredScheduler, events: EventLog):
        self.settings = settings
        self.scheduler = scheduler
        self.events = events

    @abstractmethod
    def run_tick(self, state: SimulationState, ambulance: Ambulance, route: Route,
                 now: float) -> List[SignalClaim]:
        pass

    def signal_name(self, state: SimulationState, signal_id: str) -> str:
        signal = state.signals.get(signal_id)
        if signal is None or signal.direction is None:
            return signal_id
        return f"{signal_id} ({signal.direction.value}-bound)"
