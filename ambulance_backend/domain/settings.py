from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from ambulance_backend.domain import config
from ambulance_backend.domain.errors import ConfigurationError
from ambulance_backend.domain.models import CoordinateSystem, SimulationMode

ENV_PREFIX = "AMBULANCE_SIM_"


class SimulationConfig(BaseSettings):
    """Named parameters of one simulation run.

    Defaults come from ``config``; any field can be overridden from the
    environment as ``AMBULANCE_SIM_<FIELD>``, e.g. ``AMBULANCE_SIM_MODE=NORMAL``.
    Keyword arguments win over the environment.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    mode: SimulationMode = SimulationMode.SMART
    coordinate_system: CoordinateSystem = CoordinateSystem.PLANAR
    tick_seconds: float = Field(config.TICK_SECONDS, gt=0)
    seed: int = config.DEFAULT_SEED

    proximity_threshold: float = Field(config.PROXIMITY_THRESHOLD, gt=0)
    route_signal_threshold: float = Field(config.ROUTE_SIGNAL_THRESHOLD, gt=0)
    behind_tolerance: int = Field(config.BEHIND_TOLERANCE, ge=0)
    registry_padding: float = Field(config.REGISTRY_PADDING, ge=0)

    clearance_delay: float = Field(config.CLEARANCE_DELAY, ge=0)
    wait_delay: float = Field(config.WAIT_DELAY, ge=0)
    release_delay: float = Field(config.RELEASE_DELAY, ge=0)

    background_cycle: bool = True
    green_time: float = Field(config.GREEN_TIME, gt=0)
    yellow_time: float = Field(config.YELLOW_TIME, gt=0)
    red_time: float = Field(config.RED_TIME, gt=0)
    all_red_clear: float = Field(config.ALL_RED_CLEAR, gt=0)

    ambulance_speed: float = Field(config.AMBULANCE_SPEED, gt=0)
    civilian_speed: float = Field(config.CIVILIAN_SPEED, gt=0)
    civilian_count: int = Field(config.CIVILIAN_COUNT, ge=0)
    pull_over_distance: float = Field(config.PULL_OVER_DISTANCE, ge=0)
    civilian_stop_distance: float = Field(config.CIVILIAN_STOP_DISTANCE, ge=0)
    return_to_station: bool = False

    @property
    def geographic(self) -> bool:
        return self.coordinate_system == CoordinateSystem.GEOGRAPHIC

    @classmethod
    def build(cls, **overrides) -> "SimulationConfig":
        try:
            return cls(**overrides)
        except ValidationError as exc:
            raise ConfigurationError(str(exc)) from exc
