from typing import Optional


class SimulationError(Exception):
    """Base class for every error raised by the simulation core."""


class ConfigurationError(SimulationError):
    """Scenario or configuration is unusable. Fatal at load time."""


class MalformedGraph(ConfigurationError):
    pass


class MissingSignalGeometry(ConfigurationError):
    def __init__(self, signal_id: str, intersection_id: str):
        super().__init__(
            f"Signal {signal_id} references unknown intersection {intersection_id}"
        )
        self.signal_id = signal_id
        self.intersection_id = intersection_id


class NoPathFound(SimulationError):
    def __init__(self, start_id: str, end_id: str, reason: Optional[str] = None):
        message = f"No path from {start_id} to {end_id}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)
        self.start_id = start_id
        self.end_id = end_id


class UnknownEntity(SimulationError):
    def __init__(self, kind: str, entity_id: str):
        super().__init__(f"Unknown {kind}: {entity_id}")
        self.kind = kind
        self.entity_id = entity_id
