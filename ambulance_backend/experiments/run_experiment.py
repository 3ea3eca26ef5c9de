import json
import logging
import sys
import time
from typing import Any, Dict, Optional

from ambulance_backend.domain.models import MissionRequest, SimulationMode
from ambulance_backend.domain.settings import SimulationConfig
from ambulance_backend.kernel.simulation_kernel import SimulationKernel

log = logging.getLogger(__name__)

DEFAULT_MISSION = {
    "ambulance_id": "AMB-1",
    "station_id": "I-101",
    "patient_id": "I-113",
    "hospital_id": "I-125",
}
MAX_TICKS = 5000


def run_mission(mode: SimulationMode, mission: MissionRequest, seed: int,
                max_ticks: int = MAX_TICKS) -> Dict[str, Any]:
    kernel = SimulationKernel(SimulationConfig.build(mode=mode, seed=seed))
    kernel.initialize()
    kernel.start_simulation(mode, [mission])

    for _ in range(max_ticks):
        kernel.run_tick()
        ambulance = kernel.state.ambulances.get(mission.ambulance_id)
        if ambulance is not None and ambulance.eta_seconds is not None:
            break

    ambulance = kernel.state.ambulances.get(mission.ambulance_id)
    metrics = kernel.state.metrics
    return {
        "mode": mode.value,
        "eta_seconds": ambulance.eta_seconds if ambulance else None,
        "ticks": kernel.state.tick_id,
        "preemptions": metrics.preemptions,
        "conflicts": metrics.conflicts,
    }


def run_headless_experiment(output_path: str, mission: Optional[Dict[str, Any]] = None,
                            seed: int = 42) -> Dict[str, Any]:
    """Run one mission in both modes and write the ETA comparison to ``output_path``."""
    request = MissionRequest.model_validate(mission or DEFAULT_MISSION)

    start_time = time.time()
    runs = [run_mission(mode, request, seed) for mode in (SimulationMode.SMART, SimulationMode.NORMAL)]
    log.info("Experiment finished in %.4fs", time.time() - start_time)

    smart, normal = runs
    saved = None
    if smart["eta_seconds"] is not None and normal["eta_seconds"] is not None:
        saved = normal["eta_seconds"] - smart["eta_seconds"]
    results = {"mission": request.model_dump(), "seed": seed, "runs": runs, "time_saved_seconds": saved}

    with open(output_path, "w") as f:
        json.dump(results, f, indent=2)
    return results


if __name__ == "__main__":
    from ambulance_backend.logging_setup import setup_logging

    setup_logging(log_file=None)
    if len(sys.argv) > 2:
        with open(sys.argv[1]) as f:
            run_headless_experiment(sys.argv[2], mission=json.load(f))
    elif len(sys.argv) > 1:
        run_headless_experiment(sys.argv[1])
    else:
        log.error("Usage: python -m ambulance_backend.experiments.run_experiment [mission.json] <output>")
        sys.exit(2)
