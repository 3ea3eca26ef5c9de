import logging
import random
from typing import Callable, List, Optional

from ambulance_backend.application.commands import Command, StartSimulationCommand
from ambulance_backend.arbitration.emergency_arbitrator import TrafficCoordinator
from ambulance_backend.domain import config
from ambulance_backend.domain.errors import ConfigurationError, SimulationError, UnknownEntity
from ambulance_backend.domain.models import (
    Ambulance, AmbulancePhase, AmbulanceStatus, AmbulanceView, CivilianVehicle, MissionRequest,
    Metrics, SignalView, SimulationMode, SimulationSnapshot, TimerKind
)
from ambulance_backend.domain.scenario import Scenario, build_grid_scenario
from ambulance_backend.domain.settings import SimulationConfig
from ambulance_backend.domain.state import SimulationState
from ambulance_backend.kernel.command_queue import CommandQueue
from ambulance_backend.kernel.events import EventLog, SnapshotBroadcaster, Subscriber
from ambulance_backend.kernel.scheduler import DeferredScheduler
from ambulance_backend.kernel.snapshot_builder import SnapshotBuilder
from ambulance_backend.routing.planner import MissionPlanner, RoutePlanner
from ambulance_backend.routing.providers import GraphRoutingProvider, StaticSignalRegistry
from ambulance_backend.routing.resolver import SignalOnRouteResolver
from ambulance_backend.systems.ambulance_system import AmbulanceSystem
from ambulance_backend.systems.signal_system import SignalSystem
from ambulance_backend.systems.vehicle_system import VehicleSystem

log = logging.getLogger(__name__)

CIVILIAN_SPAWN_ATTEMPTS = 20


class SimulationKernel:
    """Single-threaded owner of the simulation state.

    Every tick runs the same fixed sequence: queued commands, due timers,
    preemption decisions, civilian movement, ambulance movement, then all
    signal updates of the tick at once. Outside callers only queue commands
    or read snapshots.
    """

    def __init__(self, settings: Optional[SimulationConfig] = None):
        self.settings = settings or SimulationConfig()
        self.dt = self.settings.tick_seconds
        self.state = SimulationState(mode=self.settings.mode)
        self.command_queue = CommandQueue()
        self.scheduler = DeferredScheduler()
        self.events = EventLog()
        self.broadcaster = SnapshotBroadcaster()
        self.coordinator = TrafficCoordinator(self.settings, self.scheduler, self.events)
        self.scenario: Optional[Scenario] = None
        self.initialized = False

    def initialize(self, scenario: Optional[Scenario] = None, seed: Optional[int] = None):
        seed = self.settings.seed if seed is None else seed
        self.rng = random.Random(seed)
        geographic = self.settings.geographic
        self.scenario = scenario or build_grid_scenario(geographic=geographic)
        if self.scenario.network.geographic != geographic:
            raise ConfigurationError(
                f"Scenario positions are {'lat/lng' if self.scenario.network.geographic else 'planar'} "
                f"but the run uses {self.settings.coordinate_system.value} coordinates"
            )

        # Anything left from a previous initialization is void
        self.command_queue.clear()
        self.events.clear()
        self.scheduler = DeferredScheduler()
        self.coordinator = TrafficCoordinator(self.settings, self.scheduler, self.events)

        network = self.scenario.network
        locations = self.scenario.signal_locations()
        self.state = SimulationState(
            mode=self.settings.mode,
            road_network=network,
            signals={s.id: s.model_copy() for s in self.scenario.signals},
            signal_locations={loc.id: loc for loc in locations},
            metrics=Metrics(),
        )

        self.planner = RoutePlanner(network)
        self.resolver = SignalOnRouteResolver(
            threshold=self.settings.route_signal_threshold,
            geographic=geographic,
            registry=StaticSignalRegistry(locations),
            padding=self.settings.registry_padding,
        )
        self.mission_planner = MissionPlanner(network, GraphRoutingProvider(self.planner), self.resolver,
                                              hospitals=self.scenario.hospitals)

        self.signal_system = SignalSystem(
            self.state.signals,
            background_cycle=self.settings.background_cycle,
            green_time=self.settings.green_time,
            yellow_time=self.settings.yellow_time,
            red_time=self.settings.red_time,
            all_red_clear=self.settings.all_red_clear,
        )
        self.ambulance_system = AmbulanceSystem(
            self.events,
            geographic=geographic,
            return_to_station=self.settings.return_to_station,
            on_leg_finished=self.coordinator.on_leg_finished,
        )
        self.vehicle_system = VehicleSystem(
            self.state.signal_locations,
            geographic=geographic,
            pull_over_distance=self.settings.pull_over_distance,
            stop_distance=self.settings.civilian_stop_distance,
        )
        self.snapshot_builder = SnapshotBuilder(self.vehicle_system, config.PULL_OVER_OFFSET)

        self._initialize_civilians()
        self.initialized = True
        log.info("Kernel initialized (seed=%d, mode=%s, %d intersections, %d signals, %d civilians)",
                 seed, self.state.mode.value, len(network.intersection_ids()),
                 len(self.state.signals), len(self.state.civilians))

    def _initialize_civilians(self):
        self.state.civilians = []
        if self.scenario.civilians:
            for spec in self.scenario.civilians:
                self._add_civilian(spec.id, spec.path, spec.speed)
            return

        node_ids = sorted(self.state.road_network.intersection_ids())
        if len(node_ids) < 2:
            return
        for _ in range(self.settings.civilian_count * CIVILIAN_SPAWN_ATTEMPTS):
            if len(self.state.civilians) >= self.settings.civilian_count:
                break
            origin, destination = self.rng.sample(node_ids, 2)
            path = self.planner.find_path(origin, destination)
            if len(path) >= 2:
                self._add_civilian(f"car-{len(self.state.civilians) + 1}", path)

    def _add_civilian(self, vehicle_id: str, path: List[str], speed: Optional[float] = None):
        waypoints = self.planner.waypoints(path)
        self.state.civilians.append(CivilianVehicle(
            id=vehicle_id,
            position=waypoints[0],
            waypoints=waypoints,
            waypoint_index=1 if len(waypoints) > 1 else 0,
            speed=speed or self.settings.civilian_speed,
        ))

    def queue_command(self, command: Command):
        self.command_queue.add(command)

    def start_simulation(self, mode: SimulationMode, missions: List[MissionRequest]):
        self.queue_command(StartSimulationCommand(mode, missions))

    def run_tick(self) -> SimulationSnapshot:
        if not self.initialized:
            self.initialize()
        state = self.state

        # 1. Process Commands (a reset may rewind the clock)
        self.command_queue.drain(self)
        now = state.time

        # 2. Deferred transitions due this tick
        self.coordinator.begin_tick()
        for event in self.scheduler.pop_due(now):
            self.coordinator.handle_timer(state, event, now)

        # 3. Preemption decisions, taken before anything moves
        self.coordinator.tick(state, now)

        # 4. Movement; civilians see the signals as they stood last tick
        self.vehicle_system.update(state, self.dt)
        self.ambulance_system.update(state, self.dt, now)

        # 5. Signal updates of this tick land together
        self.signal_system.apply_all(self.coordinator.flush())
        self.signal_system.update(self.dt)

        conflicting = self.signal_system.conflicting_intersections()
        if conflicting:
            log.error("More than one approach open at %s on tick %d", ", ".join(conflicting), state.tick_id)

        # 6. Time Advance
        state.tick_id += 1
        state.time = state.tick_id * self.dt

        snapshot = self.get_snapshot()
        self.broadcaster.publish(snapshot)
        return snapshot

    def run_ticks(self, count: int) -> SimulationSnapshot:
        snapshot = None
        for _ in range(count):
            snapshot = self.run_tick()
        return snapshot

    # Command targets

    def set_mode(self, mode: SimulationMode):
        if mode == self.state.mode:
            return
        log.info("Switching operating mode %s -> %s", self.state.mode.value, mode.value)
        self.state.mode = mode
        self.coordinator.set_mode(mode)

    def dispatch(self, request: MissionRequest) -> Ambulance:
        network = self.state.road_network
        for node_id in (request.station_id, request.patient_id, request.hospital_id):
            if node_id is not None and not network.has_intersection(node_id):
                raise UnknownEntity("intersection", node_id)

        existing = self.state.ambulances.get(request.ambulance_id)
        if existing is not None and existing.is_active:
            raise SimulationError(f"{request.ambulance_id} is already on a mission")
        if request.hospital_id is None:
            request = request.model_copy(
                update={"hospital_id": self.mission_planner.nearest_hospital(request.patient_id)})
        # Clearance and release timers of the last mission still hand its signals back
        self.scheduler.cancel_ambulance(request.ambulance_id, TimerKind.WAIT)
        self.state.wait_records.pop(request.ambulance_id, None)

        plan = self.mission_planner.plan(request.station_id, request.patient_id, request.hospital_id)
        ambulance = self.ambulance_system.start_mission(
            self.state, request, plan,
            start_position=network.get_node_pos(request.station_id),
            speed=self.settings.ambulance_speed,
            now=self.state.time,
        )
        ambulance.eta_estimates = self.mission_planner.estimate(
            plan, ambulance.speed, self.settings.wait_delay + self.settings.release_delay)
        estimates = ambulance.eta_estimates
        self.events.add(self.state.time, f"{ambulance.id} expected at {request.hospital_id} in "
                                         f"{estimates['SMART']:.0f}s (smart), {estimates['NORMAL']:.0f}s (normal)")
        return ambulance

    def reset(self):
        """Back to t=0 with every signal at baseline and every ambulance home.

        Timers already queued stay in the scheduler but belong to the old
        epoch, so they are discarded when they come due.
        """
        state = self.state
        self.scheduler.advance_epoch()
        self.coordinator.reset()
        state.wait_records.clear()
        state.passed_signals.clear()
        state.conflicts.clear()
        state.routes.clear()
        state.mission_plans.clear()
        self.signal_system.restore_baseline()

        for ambulance in state.ambulances.values():
            ambulance.position = state.road_network.get_node_pos(ambulance.station_id)
            ambulance.phase = AmbulancePhase.IDLE
            ambulance.status = AmbulanceStatus.IDLE
            ambulance.waypoint_index = 0
            ambulance.stalled = False
            ambulance.mission_started_at = None

        for vehicle in state.civilians:
            vehicle.position = vehicle.waypoints[0]
            vehicle.waypoint_index = 1 if len(vehicle.waypoints) > 1 else 0
            vehicle.pulled_over = False
            vehicle.stopped_at_signal = False

        state.tick_id = 0
        state.time = 0.0
        self.events.clear()
        self.events.add(0.0, f"Simulation reset (epoch {self.scheduler.epoch})")

    # Read side

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        return self.broadcaster.subscribe(callback)

    def get_snapshot(self) -> SimulationSnapshot:
        return self.snapshot_builder.build(self.state)

    def get_signal(self, signal_id: str) -> SignalView:
        if signal_id not in self.state.signals:
            raise UnknownEntity("signal", signal_id)
        return self.snapshot_builder.signal_view(self.state, signal_id)

    def get_ambulance(self, ambulance_id: str) -> AmbulanceView:
        if ambulance_id not in self.state.ambulances:
            raise UnknownEntity("ambulance", ambulance_id)
        return self.snapshot_builder.ambulance_view(self.state, ambulance_id)
