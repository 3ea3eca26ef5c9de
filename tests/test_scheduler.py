import unittest

from ambulance_backend.domain.models import SimulationSnapshot, SimulationMode, TimerKind
from ambulance_backend.kernel.events import EventLog, SnapshotBroadcaster
from ambulance_backend.kernel.scheduler import DeferredScheduler


class TestDeferredScheduler(unittest.TestCase):
    def setUp(self):
        self.scheduler = DeferredScheduler()

    def test_fires_in_due_order_and_not_early(self):
        self.scheduler.schedule("AMB-1", "S-2", TimerKind.RELEASE, 5.0, now=0.0)
        self.scheduler.schedule("AMB-1", "S-1", TimerKind.CLEARANCE, 3.0, now=0.0)

        self.assertEqual(self.scheduler.pop_due(2.5), [])
        due = self.scheduler.pop_due(5.0)
        self.assertEqual([e.signal_id for e in due], ["S-1", "S-2"])
        self.assertEqual(self.scheduler.pending_count(), 0)

    def test_fires_exactly_on_due_time(self):
        self.scheduler.schedule("AMB-1", "S-1", TimerKind.WAIT, 5.0, now=48.0)
        self.assertEqual(self.scheduler.pop_due(52.5), [])
        self.assertEqual(len(self.scheduler.pop_due(53.0)), 1)

    def test_rescheduling_a_key_replaces_it(self):
        self.scheduler.schedule("AMB-1", "S-1", TimerKind.WAIT, 5.0, now=0.0)
        self.scheduler.schedule("AMB-1", "S-1", TimerKind.WAIT, 5.0, now=1.0)
        self.assertEqual(self.scheduler.pop_due(5.0), [])
        due = self.scheduler.pop_due(6.0)
        self.assertEqual(len(due), 1)
        self.assertEqual(due[0].due, 6.0)

    def test_cancel_one_kind(self):
        self.scheduler.schedule("AMB-1", "S-1", TimerKind.CLEARANCE, 3.0, now=0.0)
        self.scheduler.schedule("AMB-1", "S-1", TimerKind.RELEASE, 3.0, now=0.0)
        self.scheduler.cancel("AMB-1", "S-1", TimerKind.CLEARANCE)

        self.assertFalse(self.scheduler.is_pending("AMB-1", "S-1", TimerKind.CLEARANCE))
        self.assertTrue(self.scheduler.is_pending("AMB-1", "S-1", TimerKind.RELEASE))
        self.assertEqual([e.kind for e in self.scheduler.pop_due(10.0)], [TimerKind.RELEASE])

    def test_cancel_all_kinds_and_whole_ambulance(self):
        self.scheduler.schedule("AMB-1", "S-1", TimerKind.CLEARANCE, 3.0, now=0.0)
        self.scheduler.schedule("AMB-1", "S-1", TimerKind.WAIT, 3.0, now=0.0)
        self.scheduler.schedule("AMB-1", "S-2", TimerKind.WAIT, 3.0, now=0.0)
        self.scheduler.schedule("AMB-2", "S-2", TimerKind.WAIT, 3.0, now=0.0)

        self.scheduler.cancel("AMB-1", "S-1")
        self.assertEqual(self.scheduler.pending_count(), 2)
        self.scheduler.cancel_ambulance("AMB-1")
        self.assertEqual([e.ambulance_id for e in self.scheduler.pop_due(10.0)], ["AMB-2"])

    def test_cancel_one_kind_for_a_whole_ambulance(self):
        self.scheduler.schedule("AMB-1", "S-1", TimerKind.WAIT, 3.0, now=0.0)
        self.scheduler.schedule("AMB-1", "S-2", TimerKind.CLEARANCE, 3.0, now=0.0)
        self.scheduler.cancel_ambulance("AMB-1", TimerKind.WAIT)

        self.assertFalse(self.scheduler.is_pending("AMB-1", "S-1", TimerKind.WAIT))
        self.assertEqual([e.kind for e in self.scheduler.pop_due(10.0)], [TimerKind.CLEARANCE])

    def test_events_from_an_old_epoch_come_back_tagged(self):
        self.scheduler.schedule("AMB-1", "S-1", TimerKind.CLEARANCE, 3.0, now=0.0)
        old_epoch = self.scheduler.epoch
        self.scheduler.advance_epoch()

        self.assertEqual(self.scheduler.pending_count(), 0)
        due = self.scheduler.pop_due(3.0)
        self.assertEqual(len(due), 1)
        self.assertEqual(due[0].epoch, old_epoch)
        self.assertNotEqual(due[0].epoch, self.scheduler.epoch)

    def test_new_epoch_timers_fire_normally(self):
        self.scheduler.advance_epoch()
        self.scheduler.schedule("AMB-1", "S-1", TimerKind.RELEASE, 1.0, now=0.0)
        due = self.scheduler.pop_due(1.0)
        self.assertEqual(due[0].epoch, self.scheduler.epoch)


class TestEventLog(unittest.TestCase):
    def test_bounded_and_most_recent_last(self):
        events = EventLog(maxlen=3)
        for i in range(5):
            events.add(float(i), f"event {i}")
        self.assertEqual(len(events), 3)
        self.assertEqual([e.message for e in events.recent(2)], ["event 3", "event 4"])
        self.assertEqual(events.recent(0), [])

    def test_events_are_logged(self):
        events = EventLog()
        with self.assertLogs("ambulance_backend.kernel.events", level="INFO") as captured:
            events.add(1.5, "S-2 - GREEN for AMB-1")
        self.assertIn("S-2 - GREEN for AMB-1", captured.output[0])


class TestSnapshotBroadcaster(unittest.TestCase):
    def snapshot(self, tick=1):
        return SimulationSnapshot(tick=tick, time=0.5, mode=SimulationMode.SMART,
                                  signals=[], ambulances=[], civilians=[])

    def test_subscribe_and_unsubscribe(self):
        broadcaster = SnapshotBroadcaster()
        received = []
        unsubscribe = broadcaster.subscribe(received.append)

        broadcaster.publish(self.snapshot(1))
        unsubscribe()
        broadcaster.publish(self.snapshot(2))

        self.assertEqual([s.tick for s in received], [1])
        self.assertEqual(len(broadcaster), 0)

    def test_failing_subscriber_does_not_stop_others(self):
        broadcaster = SnapshotBroadcaster()
        received = []

        def broken(snapshot):
            raise RuntimeError("renderer gone")

        broadcaster.subscribe(broken)
        broadcaster.subscribe(received.append)
        with self.assertLogs("ambulance_backend.kernel.events", level="ERROR"):
            broadcaster.publish(self.snapshot())
        self.assertEqual(len(received), 1)


if __name__ == '__main__':
    unittest.main()
