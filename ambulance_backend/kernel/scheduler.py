"""Cancellable deferred transitions on the simulation clock.

Timers are keyed by ``(ambulance_id, signal_id, kind)``; scheduling a key
again or cancelling it invalidates the older entry. Every fired event is
tagged with the epoch it was scheduled in. A reset advances the epoch
without touching the queue, so events from before the reset still come
out of ``pop_due`` and must be discarded by the consumer.
"""
import heapq
import itertools
import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

from ambulance_backend.domain.models import TimerKind

log = logging.getLogger(__name__)

TimerKey = Tuple[str, str, TimerKind]

TIME_EPSILON = 1e-9


class TimerEvent(BaseModel):
    ambulance_id: str
    signal_id: str
    kind: TimerKind
    due: float
    epoch: int
    token: int

    @property
    def key(self) -> TimerKey:
        return (self.ambulance_id, self.signal_id, self.kind)


class DeferredScheduler:
    def __init__(self):
        self.epoch = 0
        self._queue: List[Tuple[float, int, TimerEvent]] = []
        self._tokens: Dict[TimerKey, int] = {}
        self._counter = itertools.count()

    def schedule(self, ambulance_id: str, signal_id: str, kind: TimerKind,
                 delay: float, now: float) -> TimerEvent:
        seq = next(self._counter)
        event = TimerEvent(ambulance_id=ambulance_id, signal_id=signal_id, kind=kind,
                           due=now + delay, epoch=self.epoch, token=seq)
        self._tokens[event.key] = seq
        heapq.heappush(self._queue, (event.due, seq, event))
        log.debug("Scheduled %s for %s/%s at t=%.2f", kind.value, ambulance_id, signal_id, event.due)
        return event

    def cancel(self, ambulance_id: str, signal_id: str, kind: Optional[TimerKind] = None):
        kinds = [kind] if kind is not None else list(TimerKind)
        for k in kinds:
            if self._tokens.pop((ambulance_id, signal_id, k), None) is not None:
                log.debug("Cancelled %s for %s/%s", k.value, ambulance_id, signal_id)

    def cancel_ambulance(self, ambulance_id: str, kind: Optional[TimerKind] = None):
        for key in [k for k in self._tokens if k[0] == ambulance_id and kind in (None, k[2])]:
            del self._tokens[key]

    def is_pending(self, ambulance_id: str, signal_id: str, kind: TimerKind) -> bool:
        return (ambulance_id, signal_id, kind) in self._tokens

    def advance_epoch(self) -> int:
        """Start a new epoch. Everything scheduled before becomes stale."""
        self.epoch += 1
        self._tokens.clear()
        return self.epoch

    def pop_due(self, now: float) -> List[TimerEvent]:
        """Events due at ``now``, in due order. Cancelled entries are dropped here;
        entries from older epochs are returned for the caller to reject."""
        due: List[TimerEvent] = []
        while self._queue and self._queue[0][0] <= now + TIME_EPSILON:
            _, _, event = heapq.heappop(self._queue)
            if event.epoch != self.epoch:
                due.append(event)
                continue
            if self._tokens.get(event.key) != event.token:
                continue
            del self._tokens[event.key]
            due.append(event)
        return due

    def pending_count(self) -> int:
        return len(self._tokens)
