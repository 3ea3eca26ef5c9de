import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional

from ambulance_backend.domain.errors import SimulationError
from ambulance_backend.domain.models import MissionRequest, SimulationMode

log = logging.getLogger(__name__)


class Command(ABC):
    @abstractmethod
    def execute(self, kernel: Any):
        pass


class StartSimulationCommand(Command):
    """Dispatch a batch of missions in one operating mode.

    The mode is fixed for the run: starting in a different mode while an
    ambulance is still responding or transporting is rejected.
    """

    def __init__(self, mode: SimulationMode, missions: List[MissionRequest]):
        self.mode = mode
        self.missions = missions

    def execute(self, kernel: Any):
        state = kernel.state
        busy = [a.id for a in state.ambulances.values() if a.is_active]
        if busy and self.mode != state.mode:
            log.warning("Rejected %s start: %s still active in %s mode",
                        self.mode.value, ", ".join(sorted(busy)), state.mode.value)
            return

        kernel.set_mode(self.mode)
        for request in self.missions:
            try:
                kernel.dispatch(request)
            except SimulationError as exc:
                log.warning("Mission for %s dropped: %s", request.ambulance_id, exc)


class ResetSimulationCommand(Command):
    def execute(self, kernel: Any):
        kernel.reset()


class UpdateCycleTimingCommand(Command):
    def __init__(self, green_time: Optional[float] = None, yellow_time: Optional[float] = None,
                 red_time: Optional[float] = None):
        self.green_time = green_time
        self.yellow_time = yellow_time
        self.red_time = red_time

    def execute(self, kernel: Any):
        # Takes effect from the next phase switch of each intersection
        kernel.signal_system.set_timing(self.green_time, self.yellow_time, self.red_time)
