import logging
from collections import deque
from typing import Callable, Deque, Dict, List

from ambulance_backend.domain import config
from ambulance_backend.domain.models import SimulationEvent, SimulationSnapshot

log = logging.getLogger(__name__)

Subscriber = Callable[[SimulationSnapshot], None]


class EventLog:
    """Bounded log of human-readable status lines for the renderer."""

    def __init__(self, maxlen: int = config.EVENT_LOG_SIZE):
        self._events: Deque[SimulationEvent] = deque(maxlen=maxlen)

    def add(self, time: float, message: str):
        self._events.append(SimulationEvent(time=round(time, 3), message=message))
        log.info("[t=%.1f] %s", time, message)

    def recent(self, limit: int = 50) -> List[SimulationEvent]:
        if limit <= 0:
            return []
        return list(self._events)[-limit:]

    def clear(self):
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)


class SnapshotBroadcaster:
    """Pushes the end-of-tick snapshot to every subscriber."""

    def __init__(self):
        self._subscribers: Dict[int, Subscriber] = {}
        self._next_id = 0

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        subscription_id = self._next_id
        self._next_id += 1
        self._subscribers[subscription_id] = callback

        def unsubscribe():
            self._subscribers.pop(subscription_id, None)

        return unsubscribe

    def publish(self, snapshot: SimulationSnapshot):
        for subscription_id, callback in list(self._subscribers.items()):
            try:
                callback(snapshot)
            except Exception:
                log.exception("Subscriber %d failed on tick %d", subscription_id, snapshot.tick)

    def __len__(self) -> int:
        return len(self._subscribers)
