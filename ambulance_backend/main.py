import asyncio
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import List

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from ambulance_backend.application.commands import (
    ResetSimulationCommand, StartSimulationCommand, UpdateCycleTimingCommand
)
from ambulance_backend.domain.errors import UnknownEntity
from ambulance_backend.domain.models import (
    AmbulanceView, CycleTimingUpdate, Metrics, SignalView, SimulationEvent, SimulationSnapshot,
    StartSimulationRequest
)
from ambulance_backend.domain.settings import SimulationConfig
from ambulance_backend.kernel.simulation_kernel import SimulationKernel
from ambulance_backend.logging_setup import setup_logging

log = logging.getLogger(__name__)

# Initialize Kernel
kernel = SimulationKernel(SimulationConfig.build())


# Background task for simulation loop
@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(os.environ.get("AMBULANCE_SIM_LOG_LEVEL", "INFO"))
    kernel.initialize()
    loop_task = asyncio.create_task(run_simulation())
    yield
    loop_task.cancel()

app = FastAPI(lifespan=lifespan)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


async def run_simulation():
    """Runs one tick per ``tick_seconds`` of wall clock time."""
    dt = kernel.dt

    while True:
        start_time = time.time()
        kernel.run_tick()
        elapsed = time.time() - start_time
        await asyncio.sleep(max(0.0, dt - elapsed))


@app.get("/api/state", response_model=SimulationSnapshot)
async def get_state():
    """Returns the snapshot published at the end of the last tick"""
    return kernel.get_snapshot()


@app.get("/api/signals", response_model=List[SignalView])
async def get_signals():
    return kernel.get_snapshot().signals


@app.get("/api/signals/{signal_id}", response_model=SignalView)
async def get_signal(signal_id: str):
    try:
        return kernel.get_signal(signal_id)
    except UnknownEntity as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@app.get("/api/ambulances/{ambulance_id}", response_model=AmbulanceView)
async def get_ambulance(ambulance_id: str):
    try:
        return kernel.get_ambulance(ambulance_id)
    except UnknownEntity as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@app.get("/api/events", response_model=List[SimulationEvent])
async def get_events(limit: int = 50):
    return kernel.events.recent(limit)


@app.get("/api/metrics", response_model=Metrics)
async def get_metrics():
    return kernel.state.metrics


@app.post("/api/simulation/start")
async def start_simulation(request: StartSimulationRequest):
    """Queues the missions; they are dispatched at the start of the next tick"""
    for mission in request.missions:
        for node_id in (mission.station_id, mission.patient_id, mission.hospital_id):
            if node_id is not None and not kernel.state.road_network.has_intersection(node_id):
                raise HTTPException(status_code=404, detail=f"Unknown intersection: {node_id}")
        if mission.hospital_id is None and not kernel.mission_planner.hospitals:
            raise HTTPException(status_code=422, detail=f"No hospital for {mission.ambulance_id} to deliver to")
    kernel.queue_command(StartSimulationCommand(request.mode, request.missions))
    return {"status": "Simulation Start Queued", "mode": request.mode, "missions": len(request.missions)}


@app.post("/api/simulation/reset")
async def reset_simulation():
    kernel.queue_command(ResetSimulationCommand())
    return {"status": "Simulation Reset Queued"}


@app.post("/api/signals/timing")
async def update_cycle_timing(update: CycleTimingUpdate):
    """Applies new background cycle durations from the next phase switch"""
    kernel.queue_command(UpdateCycleTimingCommand(update.greenTime, update.yellowTime, update.redTime))
    return {"status": "Timing Update Queued"}


@app.get("/")
def read_root():
    return {"status": "Ambulance Preemption Backend Running (Deterministic Kernel)"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("AMBULANCE_SIM_PORT", "8000")))
