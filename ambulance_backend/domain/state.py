from typing import Dict, List, Optional, Set
from pydantic import BaseModel, ConfigDict
from ambulance_backend.domain.models import (
    Ambulance, AmbulancePhase, CivilianVehicle, Metrics, MissionPlan, PreemptionConflict,
    Route, Signal, SignalLocation, SimulationMode, WaitRecord
)
from ambulance_backend.domain.graph import RoadNetwork

def route_key(ambulance_id: str, phase: AmbulancePhase) -> str:
    return f"{ambulance_id}_{phase.value}"

class SimulationState(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    tick_id: int = 0
    time: float = 0.0
    mode: SimulationMode = SimulationMode.SMART

    # Graph based structure
    road_network: Optional[RoadNetwork] = None
    signals: Dict[str, Signal] = {}
    signal_locations: Dict[str, SignalLocation] = {}

    ambulances: Dict[str, Ambulance] = {}
    civilians: List[CivilianVehicle] = []

    # Per-leg routes and their signals, keyed by route_key()
    routes: Dict[str, Route] = {}
    mission_plans: Dict[str, MissionPlan] = {}

    # Normal mode bookkeeping
    wait_records: Dict[str, WaitRecord] = {}
    passed_signals: Dict[str, Set[str]] = {}

    conflicts: List[PreemptionConflict] = []
    metrics: Metrics = Metrics()

    def active_route(self, ambulance: Ambulance) -> Optional[Route]:
        return self.routes.get(route_key(ambulance.id, ambulance.phase))
