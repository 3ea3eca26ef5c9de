import unittest

from ambulance_backend.application.commands import ResetSimulationCommand, StartSimulationCommand
from ambulance_backend.domain.errors import ConfigurationError
from ambulance_backend.domain.models import (
    AmbulancePhase, AmbulanceStatus, CoordinateSystem, MissionRequest, SignalMode, SignalPhase, SimulationMode
)
from ambulance_backend.domain.scenario import build_corridor_scenario, load_scenario
from ambulance_backend.domain.settings import SimulationConfig
from ambulance_backend.kernel.simulation_kernel import SimulationKernel

CORRIDOR_MISSION = MissionRequest(ambulance_id="AMB-1", station_id="I-1", patient_id="I-3", hospital_id="I-1")


def corridor_kernel(mode: SimulationMode, signal_at=("I-2",), hospitals=(), **overrides) -> SimulationKernel:
    settings = SimulationConfig.build(mode=mode, background_cycle=False, civilian_count=0, **overrides)
    kernel = SimulationKernel(settings)
    kernel.initialize(build_corridor_scenario(count=3, spacing=1000.0, signal_at=signal_at, hospitals=hospitals))
    return kernel


def run_until(kernel: SimulationKernel, predicate, max_ticks: int = 2000):
    snapshots = []
    for _ in range(max_ticks):
        snapshot = kernel.run_tick()
        snapshots.append(snapshot)
        if predicate(kernel):
            return snapshots
    raise AssertionError("condition never reached")


def signal_in(snapshot, signal_id):
    return next(s for s in snapshot.signals if s.id == signal_id)


def ambulance_in(snapshot, ambulance_id="AMB-1"):
    return next(a for a in snapshot.ambulances if a.id == ambulance_id)


def eta_recorded(kernel):
    return kernel.state.ambulances["AMB-1"].eta_seconds is not None


class TestSmartMode(unittest.TestCase):
    def setUp(self):
        self.kernel = corridor_kernel(SimulationMode.SMART)
        self.kernel.start_simulation(SimulationMode.SMART, [CORRIDOR_MISSION])

    def test_signal_goes_green_ahead_and_red_after_clearance(self):
        first = self.kernel.run_tick()
        s2 = signal_in(first, "S-2")
        self.assertEqual(ambulance_in(first).waypointIndex, 0)
        self.assertEqual(s2.phase, SignalPhase.GREEN)
        self.assertEqual(s2.mode, SignalMode.EMERGENCY)
        self.assertEqual(s2.preemptedBy, "AMB-1")

        snapshots = [first] + run_until(
            self.kernel, lambda k: k.state.ambulances["AMB-1"].phase == AmbulancePhase.TO_HOSPITAL)

        passed_at = next(s.time for s in snapshots if ambulance_in(s).waypointIndex >= 1)
        clearing_at = next(s.time for s in snapshots
                           if signal_in(s, "S-2").mode == SignalMode.ENDING_EMERGENCY)
        red_at = next(s.time for s in snapshots
                      if s.time > clearing_at and signal_in(s, "S-2").phase == SignalPhase.RED)

        self.assertAlmostEqual(passed_at, 50.0)
        self.assertAlmostEqual(clearing_at - passed_at, self.kernel.dt)
        self.assertAlmostEqual(red_at - clearing_at, 3.0)
        # Green the whole way up to the clearance
        for snapshot in snapshots:
            if snapshot.time < clearing_at:
                self.assertEqual(signal_in(snapshot, "S-2").phase, SignalPhase.GREEN)
        final = signal_in(snapshots[-1], "S-2")
        self.assertEqual(final.mode, SignalMode.NORMAL)
        self.assertIsNone(final.preemptedBy)

    def test_traversal_time_is_distance_over_speed(self):
        run_until(self.kernel, lambda k: k.state.ambulances["AMB-1"].phase == AmbulancePhase.TO_HOSPITAL)
        self.assertAlmostEqual(self.kernel.state.time, 2000.0 / 20.0)

        run_until(self.kernel, eta_recorded)
        self.assertAlmostEqual(self.kernel.state.ambulances["AMB-1"].eta_seconds, 200.0)
        self.assertAlmostEqual(self.kernel.state.metrics.eta_by_mode["SMART"], 200.0)
        self.assertEqual(self.kernel.state.ambulances["AMB-1"].status, AmbulanceStatus.IDLE)

    def test_at_most_one_signal_held_green_per_route(self):
        kernel = corridor_kernel(SimulationMode.SMART, signal_at=None)
        kernel.start_simulation(SimulationMode.SMART, [CORRIDOR_MISSION])
        for snapshot in run_until(kernel, eta_recorded):
            held = [s for s in snapshot.signals
                    if s.phase == SignalPhase.GREEN and s.mode == SignalMode.EMERGENCY]
            self.assertLessEqual(len(held), 1)
        self.assertAlmostEqual(kernel.state.ambulances["AMB-1"].eta_seconds, 200.0)


class TestNormalMode(unittest.TestCase):
    def setUp(self):
        self.kernel = corridor_kernel(SimulationMode.NORMAL)
        self.kernel.start_simulation(SimulationMode.NORMAL, [CORRIDOR_MISSION])

    def test_ambulance_halts_five_seconds_at_red(self):
        snapshots = run_until(
            self.kernel, lambda k: k.state.ambulances["AMB-1"].phase == AmbulancePhase.TO_HOSPITAL)

        waiting = [s for s in snapshots if ambulance_in(s).waiting]
        self.assertEqual(len(waiting), 10)
        self.assertAlmostEqual(waiting[0].time, 48.5)
        for snapshot in waiting:
            self.assertEqual(ambulance_in(snapshot).position, (960.0, 0.0))
            s2 = signal_in(snapshot, "S-2")
            self.assertEqual(s2.phase, SignalPhase.RED)
            self.assertEqual(s2.mode, SignalMode.EMERGENCY)
            self.assertEqual(s2.preemptedBy, "AMB-1")

        green_at = next(s.time for s in snapshots if signal_in(s, "S-2").phase == SignalPhase.GREEN)
        red_at = next(s.time for s in snapshots
                      if s.time > green_at and signal_in(s, "S-2").phase == SignalPhase.RED)
        self.assertAlmostEqual(green_at - waiting[0].time, 5.0)
        self.assertAlmostEqual(red_at - green_at, 5.0)
        self.assertEqual(signal_in(snapshots[-1], "S-2").mode, SignalMode.NORMAL)

        resumed = next(s for s in snapshots if s.time == green_at)
        self.assertFalse(ambulance_in(resumed).waiting)
        self.assertEqual(ambulance_in(resumed).position, (970.0, 0.0))

        # Base travel time plus the halt
        self.assertAlmostEqual(self.kernel.state.time, 100.0 + 5.0)

    def test_signal_never_retriggered_on_the_same_leg(self):
        run_until(self.kernel, lambda k: k.state.time >= 60.0)
        self.assertIn("S-2", self.kernel.state.passed_signals["AMB-1"])
        self.assertNotIn("AMB-1", self.kernel.state.wait_records)
        run_until(self.kernel, lambda k: k.state.ambulances["AMB-1"].phase == AmbulancePhase.TO_HOSPITAL)
        self.assertEqual(self.kernel.state.time, 105.0)

    def test_normal_mode_is_slower_than_smart(self):
        run_until(self.kernel, eta_recorded)
        normal_eta = self.kernel.state.ambulances["AMB-1"].eta_seconds
        # The corridor mission crosses S-2 once per leg
        self.assertAlmostEqual(normal_eta, 200.0 + 2 * 5.0)

        smart = corridor_kernel(SimulationMode.SMART)
        smart.start_simulation(SimulationMode.SMART, [CORRIDOR_MISSION])
        run_until(smart, eta_recorded)
        self.assertLess(smart.state.ambulances["AMB-1"].eta_seconds, normal_eta)


class TestNoPath(unittest.TestCase):
    def setUp(self):
        scenario = load_scenario({
            "intersections": [
                {"id": "I-1", "position": (0, 0)},
                {"id": "I-2", "position": (1000, 0)},
                {"id": "I-3", "position": (5000, 5000)},
            ],
            "roads": [{"source": "I-1", "target": "I-2"}],
            "signals": [{"id": "S-1", "intersection_id": "I-1"}, {"id": "S-2", "intersection_id": "I-2"}],
        })
        settings = SimulationConfig.build(mode=SimulationMode.SMART, background_cycle=False, civilian_count=0)
        self.kernel = SimulationKernel(settings)
        self.kernel.initialize(scenario)

    def test_ambulance_without_route_stays_idle_in_place(self):
        self.kernel.start_simulation(SimulationMode.SMART, [
            MissionRequest(ambulance_id="AMB-1", station_id="I-1", patient_id="I-3", hospital_id="I-2")
        ])
        for _ in range(40):
            snapshot = self.kernel.run_tick()
            ambulance = ambulance_in(snapshot)
            self.assertEqual(ambulance.status, AmbulanceStatus.IDLE)
            self.assertTrue(ambulance.stalled)
            self.assertEqual(ambulance.position, (0.0, 0.0))
            for signal in snapshot.signals:
                self.assertEqual(signal.phase, SignalPhase.RED)
                self.assertEqual(signal.mode, SignalMode.NORMAL)
                self.assertIsNone(signal.preemptedBy)
        self.assertEqual(self.kernel.state.metrics.preemptions, 0)


class TestReset(unittest.TestCase):
    def assert_baseline(self, kernel):
        for signal in kernel.state.signals.values():
            self.assertEqual(signal.phase, SignalPhase.RED)
            self.assertEqual(signal.mode, SignalMode.NORMAL)
            self.assertIsNone(signal.preempted_by)

    def test_pending_clearance_cannot_touch_signals_after_reset(self):
        kernel = corridor_kernel(SimulationMode.SMART)
        kernel.start_simulation(SimulationMode.SMART, [CORRIDOR_MISSION])
        run_until(kernel, lambda k: k.state.signals["S-2"].mode == SignalMode.ENDING_EMERGENCY)
        self.assertEqual(kernel.scheduler.pending_count(), 1)

        kernel.reset()
        self.assert_baseline(kernel)
        self.assertEqual(kernel.state.time, 0.0)
        self.assertEqual(kernel.state.wait_records, {})
        self.assertEqual(kernel.state.passed_signals, {})
        ambulance = kernel.state.ambulances["AMB-1"]
        self.assertEqual(ambulance.status, AmbulanceStatus.IDLE)
        self.assertEqual(ambulance.position, (0.0, 0.0))

        for _ in range(120):
            kernel.run_tick()
            self.assert_baseline(kernel)
        self.assertEqual(kernel.state.metrics.stale_timer_fires, 1)

    def test_reset_while_waiting_in_normal_mode(self):
        kernel = corridor_kernel(SimulationMode.NORMAL)
        kernel.start_simulation(SimulationMode.NORMAL, [CORRIDOR_MISSION])
        run_until(kernel, lambda k: "AMB-1" in k.state.wait_records)

        kernel.queue_command(ResetSimulationCommand())
        kernel.run_tick()
        self.assert_baseline(kernel)
        self.assertEqual(kernel.state.wait_records, {})

        # The old wait timer comes due at t=53 of the new run
        for _ in range(120):
            kernel.run_tick()
            self.assert_baseline(kernel)
        self.assertEqual(kernel.state.metrics.stale_timer_fires, 1)

    def test_new_mission_after_reset_runs_normally(self):
        kernel = corridor_kernel(SimulationMode.SMART)
        kernel.start_simulation(SimulationMode.SMART, [CORRIDOR_MISSION])
        kernel.run_ticks(30)
        kernel.reset()

        kernel.start_simulation(SimulationMode.SMART, [CORRIDOR_MISSION])
        run_until(kernel, eta_recorded)
        self.assertAlmostEqual(kernel.state.ambulances["AMB-1"].eta_seconds, 200.0)


class TestMissionLifecycle(unittest.TestCase):
    def test_return_leg_goes_home_without_preemption(self):
        kernel = corridor_kernel(SimulationMode.SMART, return_to_station=True)
        kernel.start_simulation(SimulationMode.SMART, [
            MissionRequest(ambulance_id="AMB-1", station_id="I-1", patient_id="I-3", hospital_id="I-2")
        ])
        run_until(kernel, eta_recorded)
        ambulance = kernel.state.ambulances["AMB-1"]
        self.assertEqual(ambulance.phase, AmbulancePhase.RETURNING)
        self.assertEqual(ambulance.status, AmbulanceStatus.RETURNING)
        self.assertAlmostEqual(ambulance.eta_seconds, 150.0)

        preemptions = kernel.state.metrics.preemptions
        run_until(kernel, lambda k: k.state.ambulances["AMB-1"].phase == AmbulancePhase.IDLE)
        self.assertEqual(ambulance.position, (0.0, 0.0))
        self.assertEqual(ambulance.status, AmbulanceStatus.IDLE)
        self.assertFalse(ambulance.stalled)
        self.assertEqual(kernel.state.metrics.preemptions, preemptions)

    def test_mode_cannot_change_while_mission_active(self):
        kernel = corridor_kernel(SimulationMode.SMART)
        kernel.start_simulation(SimulationMode.SMART, [CORRIDOR_MISSION])
        kernel.run_tick()

        second = MissionRequest(ambulance_id="AMB-2", station_id="I-3", patient_id="I-1", hospital_id="I-3")
        kernel.queue_command(StartSimulationCommand(SimulationMode.NORMAL, [second]))
        with self.assertLogs("ambulance_backend.application.commands", level="WARNING"):
            kernel.run_tick()
        self.assertEqual(kernel.state.mode, SimulationMode.SMART)
        self.assertNotIn("AMB-2", kernel.state.ambulances)

    def test_unknown_intersection_in_mission_is_dropped(self):
        kernel = corridor_kernel(SimulationMode.SMART)
        kernel.start_simulation(SimulationMode.SMART, [
            MissionRequest(ambulance_id="AMB-1", station_id="I-1", patient_id="I-99", hospital_id="I-3")
        ])
        with self.assertLogs("ambulance_backend.application.commands", level="WARNING"):
            kernel.run_tick()
        self.assertEqual(kernel.state.ambulances, {})

    def test_events_describe_the_mission(self):
        kernel = corridor_kernel(SimulationMode.SMART)
        kernel.start_simulation(SimulationMode.SMART, [CORRIDOR_MISSION])
        run_until(kernel, eta_recorded)
        messages = [e.message for e in kernel.events.recent(200)]
        self.assertTrue(any("dispatched" in m for m in messages))
        self.assertTrue(any("S-2 - GREEN for AMB-1" in m for m in messages))
        self.assertTrue(any("delivered patient" in m for m in messages))

    def test_redispatch_lets_the_last_mission_release_its_signals(self):
        # S-3 sits at the hospital, so the mission ends while S-3 is still being handed back
        first = MissionRequest(ambulance_id="AMB-1", station_id="I-1", patient_id="I-2", hospital_id="I-3")
        second = MissionRequest(ambulance_id="AMB-1", station_id="I-1", patient_id="I-2", hospital_id="I-1")
        for mode in (SimulationMode.SMART, SimulationMode.NORMAL):
            with self.subTest(mode=mode):
                kernel = corridor_kernel(mode, signal_at=("I-3",))
                kernel.start_simulation(mode, [first])
                run_until(kernel, eta_recorded)
                s3 = kernel.state.signals["S-3"]
                self.assertEqual(s3.mode, SignalMode.ENDING_EMERGENCY)
                self.assertEqual(s3.preempted_by, "AMB-1")

                kernel.start_simulation(mode, [second])
                kernel.run_ticks(20)
                self.assertEqual(kernel.state.ambulances["AMB-1"].status, AmbulanceStatus.RESPONDING)
                self.assertEqual(s3.mode, SignalMode.NORMAL)
                self.assertEqual(s3.phase, SignalPhase.RED)
                self.assertIsNone(s3.preempted_by)
                self.assertFalse(kernel.signal_system.cycles["I-3"].suspended)

    def test_mission_without_hospital_goes_to_the_nearest(self):
        kernel = corridor_kernel(SimulationMode.NORMAL, hospitals=("I-1", "I-2"))
        kernel.start_simulation(SimulationMode.NORMAL, [
            MissionRequest(ambulance_id="AMB-1", station_id="I-1", patient_id="I-3")
        ])
        kernel.run_tick()

        self.assertEqual(kernel.state.ambulances["AMB-1"].hospital_id, "I-2")
        # 3000 m at 20 m/s; S-2 lies on the way to the patient and at the hospital
        estimates = kernel.get_ambulance("AMB-1").etaEstimates
        self.assertAlmostEqual(estimates["SMART"], 150.0)
        self.assertAlmostEqual(estimates["NORMAL"], 170.0)
        messages = [e.message for e in kernel.events.recent(20)]
        self.assertIn("AMB-1 expected at I-2 in 150s (smart), 170s (normal)", messages)

        run_until(kernel, eta_recorded)
        self.assertEqual(kernel.state.ambulances["AMB-1"].position, (1000.0, 0.0))

    def test_mission_without_hospital_is_dropped_when_there_is_none(self):
        kernel = corridor_kernel(SimulationMode.SMART)
        kernel.start_simulation(SimulationMode.SMART, [
            MissionRequest(ambulance_id="AMB-1", station_id="I-1", patient_id="I-3")
        ])
        with self.assertLogs("ambulance_backend.application.commands", level="WARNING"):
            kernel.run_tick()
        self.assertEqual(kernel.state.ambulances, {})


class TestGeographicRun(unittest.TestCase):
    def test_default_grid_mission_in_lat_lng(self):
        settings = SimulationConfig.build(coordinate_system=CoordinateSystem.GEOGRAPHIC, civilian_count=0)
        kernel = SimulationKernel(settings)
        kernel.initialize()
        network = kernel.state.road_network
        self.assertTrue(network.geographic)
        self.assertAlmostEqual(network.get_edge_data("I-101", "I-102")["length"], 200.0, delta=1.0)

        kernel.start_simulation(SimulationMode.SMART, [
            MissionRequest(ambulance_id="AMB-1", station_id="I-101", patient_id="I-113", hospital_id="I-125")
        ])
        run_until(kernel, eta_recorded, max_ticks=400)

        # 1600 m at 20 m/s, green all the way
        self.assertAlmostEqual(kernel.state.ambulances["AMB-1"].eta_seconds, 80.0, delta=1.0)
        self.assertGreater(kernel.state.metrics.preemptions, 0)

    def test_scenario_must_match_the_coordinate_system(self):
        geographic = SimulationKernel(SimulationConfig.build(coordinate_system=CoordinateSystem.GEOGRAPHIC))
        with self.assertRaises(ConfigurationError):
            geographic.initialize(build_corridor_scenario())

        planar = SimulationKernel(SimulationConfig.build())
        with self.assertRaises(ConfigurationError):
            planar.initialize(build_corridor_scenario(geographic=True))


if __name__ == '__main__':
    unittest.main()
