import logging
from collections import deque
from typing import Any, Deque

from ambulance_backend.application.commands import Command
from ambulance_backend.domain.errors import SimulationError

log = logging.getLogger(__name__)


class CommandQueue:
    """Mutations requested between ticks, applied at the start of the next one."""

    def __init__(self):
        self.queue: Deque[Command] = deque()

    def add(self, command: Command):
        self.queue.append(command)

    def drain(self, kernel: Any) -> int:
        """Execute every queued command in arrival order. A failing command is logged and dropped."""
        commands, self.queue = self.queue, deque()
        executed = 0
        while commands:
            command = commands.popleft()
            try:
                command.execute(kernel)
                executed += 1
            except SimulationError as exc:
                log.warning("%s dropped: %s", type(command).__name__, exc)
        return executed

    def clear(self):
        self.queue.clear()

    def __len__(self) -> int:
        return len(self.queue)
