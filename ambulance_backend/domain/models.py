from enum import Enum
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

Position = Tuple[float, float]

class SignalPhase(str, Enum):
    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"

class SignalMode(str, Enum):
    NORMAL = "NORMAL"
    EMERGENCY = "EMERGENCY"
    ENDING_EMERGENCY = "ENDING_EMERGENCY"

class Direction(str, Enum):
    N = "N"
    E = "E"
    S = "S"
    W = "W"

class SimulationMode(str, Enum):
    SMART = "SMART"
    NORMAL = "NORMAL"

class CoordinateSystem(str, Enum):
    PLANAR = "PLANAR"
    GEOGRAPHIC = "GEOGRAPHIC"

class AmbulancePhase(str, Enum):
    TO_PATIENT = "TO_PATIENT"
    TO_HOSPITAL = "TO_HOSPITAL"
    RETURNING = "RETURNING"
    IDLE = "IDLE"

class AmbulanceStatus(str, Enum):
    IDLE = "IDLE"
    RESPONDING = "RESPONDING"
    TRANSPORTING = "TRANSPORTING"
    RETURNING = "RETURNING"

class SignalAction(str, Enum):
    PREEMPT_GREEN = "PREEMPT_GREEN"   # Smart mode: GREEN for an approaching ambulance
    HOLD_RED = "HOLD_RED"             # Normal mode: ambulance waiting at RED
    GRANT_GREEN = "GRANT_GREEN"       # Normal mode: wait over, GREEN until release
    BEGIN_RELEASE = "BEGIN_RELEASE"   # Smart mode: ambulance passed, clearance running
    RELEASE = "RELEASE"               # Back to background baseline

class TimerKind(str, Enum):
    CLEARANCE = "CLEARANCE"
    WAIT = "WAIT"
    RELEASE = "RELEASE"

# Static network

class RoadSegment(BaseModel):
    model_config = ConfigDict(frozen=True)

    source: str
    target: str
    lanes: int = 1
    length: float

# Signals

class Signal(BaseModel):
    id: str
    intersection_id: str
    direction: Optional[Direction] = None  # None for a simple 4-state light
    phase: SignalPhase = SignalPhase.RED
    countdown_seconds: float = 0.0
    preempted_by: Optional[str] = None
    mode: SignalMode = SignalMode.NORMAL

class SignalLocation(BaseModel):
    id: str
    intersection_id: str
    position: Position
    direction: Optional[Direction] = None

class SignalOnRoute(BaseModel):
    signal_id: str
    intersection_id: str
    position: Position
    ordinal_index: int       # Index of the nearest route segment
    offset: float            # Projection of the signal on that segment, 0..1
    distance_to_route: float

    @property
    def route_position(self) -> float:
        return self.ordinal_index + self.offset

class SignalUpdate(BaseModel):
    signal_id: str
    action: SignalAction
    ambulance_id: Optional[str] = None
    countdown: float = 0.0

# Routes & missions

class Route(BaseModel):
    waypoints: List[Position] = []
    signals: List[SignalOnRoute] = []

    @property
    def is_empty(self) -> bool:
        return len(self.waypoints) < 2

class MissionPlan(BaseModel):
    to_patient: Route
    to_hospital: Route
    return_home: Route
    full_path: List[Position] = []

class MissionRequest(BaseModel):
    ambulance_id: str
    station_id: str
    patient_id: str
    hospital_id: Optional[str] = None  # None: the hospital nearest the patient
    speed: Optional[float] = None  # meters / second, defaults to config

# Vehicles

class Ambulance(BaseModel):
    id: str
    position: Position
    waypoint_index: int = 0  # Last waypoint reached on the active route
    phase: AmbulancePhase = AmbulancePhase.IDLE
    status: AmbulanceStatus = AmbulanceStatus.IDLE
    speed: float
    station_id: str
    patient_id: Optional[str] = None
    hospital_id: Optional[str] = None
    mission_started_at: Optional[float] = None
    eta_seconds: Optional[float] = None
    eta_estimates: Dict[str, float] = {}  # Predicted at dispatch, keyed by mode
    stalled: bool = False

    @property
    def is_active(self) -> bool:
        return self.status in (AmbulanceStatus.RESPONDING, AmbulanceStatus.TRANSPORTING)

class WaitRecord(BaseModel):
    ambulance_id: str
    signal_id: str
    wait_start_time: float
    waypoint_index_at_stop: int

class CivilianVehicle(BaseModel):
    id: str
    position: Position
    waypoints: List[Position]
    waypoint_index: int = 0  # Index of the waypoint being driven toward
    speed: float
    pulled_over: bool = False
    stopped_at_signal: bool = False

# Observability

class PreemptionConflict(BaseModel):
    tick: int
    signal_id: str
    claimants: List[str]
    winner: str

class SimulationEvent(BaseModel):
    time: float
    message: str

class Metrics(BaseModel):
    eta_by_mode: Dict[str, float] = {}
    preemptions: int = 0
    conflicts: int = 0
    stale_timer_fires: int = 0

# API/Response Models

class SignalView(BaseModel):
    id: str
    intersectionId: str
    direction: Optional[str] = None
    position: Position
    phase: SignalPhase
    countdownSeconds: float
    preemptedBy: Optional[str] = None
    mode: SignalMode

class AmbulanceView(BaseModel):
    id: str
    position: Position
    phase: AmbulancePhase
    status: AmbulanceStatus
    waypointIndex: int
    waiting: bool
    stalled: bool
    etaSeconds: Optional[float] = None
    etaEstimates: Dict[str, float] = {}

class CivilianView(BaseModel):
    id: str
    position: Position
    pulledOver: bool
    stoppedAtSignal: bool

class SimulationSnapshot(BaseModel):
    tick: int
    time: float
    mode: SimulationMode
    signals: List[SignalView]
    ambulances: List[AmbulanceView]
    civilians: List[CivilianView]

class StartSimulationRequest(BaseModel):
    mode: SimulationMode
    missions: List[MissionRequest]

class CycleTimingUpdate(BaseModel):
    greenTime: Optional[float] = Field(None, gt=0)
    yellowTime: Optional[float] = Field(None, gt=0)
    redTime: Optional[float] = Field(None, gt=0)
