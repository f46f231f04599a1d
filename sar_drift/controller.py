"""
Simulation controller.

Validates run requests, executes each run on a worker thread and keeps an
in-memory registry of run status, progress, errors and results for callers
that poll.
"""

import itertools
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Union

import numpy as np

from .conditions import OperatorOverride, Source
from .density import DensityCalculator
from .environment import BlendingStrategy, EnvironmentalManager
from .geo import Position
from .land import LandInteraction, WaterClassifier
from .multi_victim import (
    CONTOUR_LEVELS,
    POLYGON_LEVELS,
    CombinedZone,
    DensityArtifacts,
    IntersectionZone,
    MultiVictimEngine,
    MultiVictimParams,
    Victim,
    VictimPriority,
    VictimProgress,
    VictimSimulationResult,
    polygon_to_dict,
)
from .object_dynamics import ObjectDynamics, ObjectProfile, ObjectType
from .particle import Particle
from .simulator import (
    DEFAULT_DURATION_HOURS,
    DEFAULT_FINAL_PARTICLES,
    DEFAULT_HISTORY_INTERVAL,
    DEFAULT_INITIAL_PARTICLES,
    DEFAULT_TIME_STEP,
    CancellationToken,
    GeoBounds,
    ParticleEngine,
    PhysicsModels,
    PositionalUncertainty,
    PreliminaryResults,
    ProgressEvent,
    SimulationCancelled,
    SimulationConfig,
    SimulationParams,
    Snapshot,
    TemporalUncertainty,
)
from .survival import SurvivalModel, VictimProfile
from .turbulence import Intensity, TurbulenceModel

DEFAULT_MAX_WORKERS = 2
MULTI_VICTIM_PROGRESS_SHARE = 80.0


class SimulationRejected(ValueError):
    """A run request failed validation; nothing was started."""


class RunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class SimulationRequest:
    """Everything needed to start one run; multi-victim when `victims` has 2 or more entries."""

    lkp: Optional[Position] = None
    incident_id: Optional[str] = None
    object_type: Union[ObjectType, str] = ObjectType.PERSON_IN_WATER
    custom_profile: Optional[ObjectProfile] = None
    particle_count: int = DEFAULT_FINAL_PARTICLES
    initial_particle_count: int = DEFAULT_INITIAL_PARTICLES
    duration_hours: float = DEFAULT_DURATION_HOURS
    time_step: float = DEFAULT_TIME_STEP
    history_interval: int = DEFAULT_HISTORY_INTERVAL
    uncertainty: PositionalUncertainty = field(default_factory=PositionalUncertainty)
    time_uncertainty: TemporalUncertainty = field(default_factory=TemporalUncertainty)
    blending_strategy: Union[BlendingStrategy, str] = BlendingStrategy.WEIGHTED_AVERAGE
    turbulence_intensity: Union[Intensity, str] = Intensity.MEDIUM
    sources: List[Source] = field(default_factory=list)
    operator_overrides: List[OperatorOverride] = field(default_factory=list)
    victim_profile: VictimProfile = field(default_factory=VictimProfile)
    victims: List[Victim] = field(default_factory=list)
    land_classifier: Optional[WaterClassifier] = None
    bounds: Optional[GeoBounds] = None
    progressive: bool = True
    seed: Optional[int] = None

    @property
    def is_multi_victim(self) -> bool:
        return len(self.victims) > 1

    def validate(self):
        """
        Check the request before any work starts.

        Raises:
            SimulationRejected: with the reason the request cannot run
        """
        missing = [v.id for v in self.victims if v.lkp is None]
        if missing:
            raise SimulationRejected(f"Victims without a last known position: {', '.join(missing)}")
        ids = [v.id for v in self.victims]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise SimulationRejected(f"Duplicate victim ids: {', '.join(duplicates)}")
        if self.lkp is None and not self.victims:
            raise SimulationRejected("A last known position is required")
        if self.particle_count <= 0 or self.initial_particle_count <= 0:
            raise SimulationRejected(f"Particle count must be positive, got {self.particle_count}")
        if self.duration_hours <= 0:
            raise SimulationRejected(f"Duration must be positive, got {self.duration_hours}")
        if self.time_step <= 0:
            raise SimulationRejected(f"Time step must be positive, got {self.time_step}")
        if self.history_interval < 0:
            raise SimulationRejected(f"History interval must be non-negative, got {self.history_interval}")
        if self.uncertainty.radius_nm < 0 or self.time_uncertainty.window_minutes < 0:
            raise SimulationRejected("Uncertainty must be non-negative")
        for label, entries in (("source", self.sources), ("override", self.operator_overrides)):
            for entry in entries:
                if not 0.0 <= entry.weight <= 1.0:
                    raise SimulationRejected(
                        f"{label.capitalize()} weight must be within [0, 1], got {entry.weight}")
        for label, enum_type, value in (
            ("object type", ObjectType, self.object_type),
            ("blending strategy", BlendingStrategy, self.blending_strategy),
            ("turbulence intensity", Intensity, self.turbulence_intensity),
        ):
            try:
                enum_type(value)
            except ValueError:
                raise SimulationRejected(f"Unknown {label}: {value}")


@dataclass
class SimulationResult:
    """Outputs of a completed single-victim run."""

    particles: List[Particle]
    snapshots: List[Snapshot]
    density: DensityArtifacts
    density_statistics: Optional[dict]
    survival: dict
    statistics: dict

    def get_snapshot_at_hour(self, hour: int) -> Optional[Snapshot]:
        for snapshot in self.snapshots:
            if snapshot.hour == hour:
                return snapshot
        return None

    def to_dict(self) -> dict:
        return {
            "statistics": self.statistics,
            "particles": [
                {"id": p.id, "lat": p.lat, "lng": p.lng, "status": p.status.value}
                for p in self.particles
            ],
            "snapshots": [
                {"hour": s.hour, "time": s.time, **s.statistics} for s in self.snapshots
            ],
            "density": {
                "statistics": self.density_statistics,
                "polygons": [polygon_to_dict(p) for p in self.density.polygons],
                "contours": [
                    {"level": c.level, "percentage": c.percentage, "cell_count": len(c.cells)}
                    for c in self.density.contours
                ],
                "heat_map": [asdict(point) for point in self.density.heat_map],
            },
            "survival": self.survival,
        }


@dataclass
class MultiVictimResult:
    victims: List[VictimSimulationResult]
    combined: Optional[CombinedZone]
    intersection: Optional[IntersectionZone]
    priorities: List[VictimPriority]
    statistics: dict
    export: dict

    def get_snapshot_at_hour(self, hour: int, victim_id: Optional[str] = None) -> Optional[Snapshot]:
        for result in self.victims:
            if victim_id is None or result.victim_id == victim_id:
                for snapshot in result.snapshots:
                    if snapshot.hour == hour:
                        return snapshot
        return None

    def to_dict(self) -> dict:
        return {"statistics": self.statistics, **self.export}


@dataclass
class SimulationRun:
    id: str
    request: SimulationRequest
    incident_id: Optional[str] = None
    status: RunStatus = RunStatus.QUEUED
    progress: float = 0.0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    preliminary: Optional[PreliminaryResults] = None
    result: Optional[Union[SimulationResult, MultiVictimResult]] = None
    cancel_token: CancellationToken = field(default_factory=CancellationToken)
    future: Optional[Future] = None

    def summary(self) -> dict:
        return {
            "simulation_id": self.id,
            "incident_id": self.incident_id,
            "status": self.status.value,
            "progress": self.progress,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }


def build_environmental_manager(request: SimulationRequest,
                                rng: np.random.Generator) -> EnvironmentalManager:
    manager = EnvironmentalManager(blending_strategy=request.blending_strategy, rng=rng)
    for source in request.sources:
        manager.add_source(source.name, source.data, source.weight, source.location)
    for override in request.operator_overrides:
        manager.add_operator_override(override.channel, override.data, override.location, override.weight)
    return manager


def run_single_victim(
    request: SimulationRequest,
    progress_callback=None,
    preliminary_callback=None,
    cancel_token: Optional[CancellationToken] = None,
) -> SimulationResult:
    """
    Execute a single-victim request synchronously.

    Args:
        request: Validated run request
        progress_callback: Optional callback function(ProgressEvent)
        preliminary_callback: Optional callback function(PreliminaryResults)
        cancel_token: Optional cancellation token

    Returns:
        SimulationResult with particles, snapshots, density and survival
    """
    rng = np.random.default_rng(request.seed)
    lkp, object_type, profile = request.lkp, request.object_type, request.victim_profile
    uncertainty, time_uncertainty = request.uncertainty, request.time_uncertainty
    if lkp is None:
        # A single listed victim stands in for the top-level fields
        victim = request.victims[0]
        lkp, object_type, profile = victim.lkp, victim.object_type, victim.profile
        uncertainty, time_uncertainty = victim.uncertainty, victim.time_uncertainty

    engine = ParticleEngine(
        SimulationConfig(
            initial_particle_count=min(request.initial_particle_count, request.particle_count),
            final_particle_count=request.particle_count,
            time_step=request.time_step,
            duration_hours=request.duration_hours,
            history_interval=request.history_interval,
        ),
        rng=rng,
    )
    params = SimulationParams(
        lkp=lkp,
        environmental_manager=build_environmental_manager(request, rng),
        physics=PhysicsModels(
            object_dynamics=ObjectDynamics(object_type, request.custom_profile, rng=rng),
            turbulence=TurbulenceModel(request.turbulence_intensity, rng=rng),
            land_interaction=LandInteraction(request.land_classifier, rng=rng),
        ),
        uncertainty=uncertainty,
        time_uncertainty=time_uncertainty,
        particle_count=request.particle_count,
        duration_hours=request.duration_hours,
        bounds=request.bounds,
    )

    if request.progressive:
        result = engine.run_progressive_simulation(params, progress_callback, preliminary_callback, cancel_token)
    else:
        engine.initialize_particles(lkp, uncertainty, time_uncertainty, request.particle_count)
        result = engine.run_simulation(params, progress_callback, cancel_token)

    density = DensityCalculator()
    grid = density.calculate_density_grid(result.particles)
    contours = density.generate_contours(CONTOUR_LEVELS) if grid is not None else []
    polygons = density.generate_probability_polygons(POLYGON_LEVELS) if grid is not None else []

    statistics = engine.get_statistics()
    statistics.update({
        "simulation_duration": request.duration_hours,
        "particle_count": request.particle_count,
    })

    return SimulationResult(
        particles=result.particles,
        snapshots=result.snapshots,
        density=DensityArtifacts(grid, contours, polygons, density.export_heat_map_data()),
        density_statistics=density.get_statistics(),
        survival=SurvivalModel(profile).export_profile(),
        statistics=statistics,
    )


def run_multi_victim(
    request: SimulationRequest,
    progress_callback=None,
    cancel_token: Optional[CancellationToken] = None,
) -> MultiVictimResult:
    """Execute a multi-victim request synchronously."""
    rng = np.random.default_rng(request.seed)
    engine = MultiVictimEngine(rng=rng)
    for victim in request.victims:
        engine.add_victim(victim.lkp, victim.id, victim.name, victim.profile, victim.object_type,
                          victim.uncertainty, victim.time_uncertainty)

    params = MultiVictimParams(
        environmental_manager=build_environmental_manager(request, rng),
        particle_count=request.particle_count,
        duration_hours=request.duration_hours,
        time_step=request.time_step,
        turbulence=TurbulenceModel(request.turbulence_intensity, rng=rng),
        land_interaction=LandInteraction(request.land_classifier, rng=rng),
        bounds=request.bounds,
    )
    results = engine.run_all_simulations(params, progress_callback, cancel_token)
    combined = engine.generate_combined_zone()
    intersection = engine.generate_intersection_zone()

    return MultiVictimResult(
        victims=results,
        combined=combined,
        intersection=intersection,
        priorities=engine.get_victim_priority_list(0.0),
        statistics=engine.get_statistics(),
        export=engine.export_all(combined, intersection),
    )


class SimulationController:
    """
    Starts simulations in the background and tracks their lifecycle.

    Each run owns its engine and environmental manager; the registry
    itself is guarded by a lock.
    """

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="sar-drift")
        self._runs: Dict[str, SimulationRun] = {}
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        logging.info("Simulation controller initialized (%d workers)", max_workers)

    def start_simulation(self, request: SimulationRequest) -> str:
        """
        Validate and queue a run.

        Returns:
            The new simulation id

        Raises:
            SimulationRejected: if the request is invalid
        """
        request.validate()

        sim_id = f"sim_{next(self._counter)}_{int(time.time() * 1000)}"
        run = SimulationRun(id=sim_id, request=request, incident_id=request.incident_id)
        with self._lock:
            self._runs[sim_id] = run

        logging.info("Starting simulation %s", sim_id)
        run.future = self._executor.submit(self._execute, run)
        return sim_id

    def _set(self, run: SimulationRun, **changes):
        with self._lock:
            for key, value in changes.items():
                setattr(run, key, value)

    def _execute(self, run: SimulationRun):
        self._set(run, status=RunStatus.RUNNING)
        request = run.request
        try:
            if request.is_multi_victim:
                def on_victim(progress: VictimProgress):
                    share = MULTI_VICTIM_PROGRESS_SHARE / progress.total_victims
                    self._set(run, progress=share * (progress.victim_index + progress.progress / 100.0))

                result = run_multi_victim(request, on_victim, run.cancel_token)
            else:
                def on_progress(event: ProgressEvent):
                    self._set(run, progress=event.progress)

                def on_preliminary(preliminary: PreliminaryResults):
                    logging.info("Simulation %s: preliminary results ready (%d particles)",
                                 run.id, preliminary.particle_count)
                    self._set(run, preliminary=preliminary, progress=50.0)

                result = run_single_victim(request, on_progress, on_preliminary, run.cancel_token)
        except SimulationCancelled:
            logging.info("Simulation %s cancelled", run.id)
            self._set(run, status=RunStatus.CANCELLED, completed_at=datetime.now(timezone.utc))
            return
        except Exception as e:
            logging.error("Simulation %s failed: %s", run.id, e)
            self._set(run, status=RunStatus.FAILED, error=str(e) or type(e).__name__,
                      completed_at=datetime.now(timezone.utc))
            return

        self._set(run, status=RunStatus.COMPLETED, result=result, progress=100.0,
                  completed_at=datetime.now(timezone.utc))
        logging.info("Simulation %s completed", run.id)

    def _get(self, sim_id: str) -> SimulationRun:
        with self._lock:
            run = self._runs.get(sim_id)
        if run is None:
            raise KeyError(f"Simulation not found: {sim_id}")
        return run

    def get_status(self, sim_id: str) -> dict:
        run = self._get(sim_id)
        with self._lock:
            return run.summary()

    def get_results(self, sim_id: str) -> Optional[Union[SimulationResult, MultiVictimResult]]:
        """Result of a completed run, or None while it is not completed."""
        run = self._get(sim_id)
        with self._lock:
            return run.result if run.status is RunStatus.COMPLETED else None

    def get_preliminary_results(self, sim_id: str) -> Optional[PreliminaryResults]:
        return self._get(sim_id).preliminary

    def get_snapshot(self, sim_id: str, hour: int) -> Optional[Snapshot]:
        result = self.get_results(sim_id)
        if result is None:
            return None
        return result.get_snapshot_at_hour(int(hour))

    def wait(self, sim_id: str, timeout: Optional[float] = None) -> dict:
        """Block until the run finishes; returns its status summary."""
        run = self._get(sim_id)
        if run.future is not None:
            wait_futures([run.future], timeout=timeout)
        return self.get_status(sim_id)

    def cancel(self, sim_id: str) -> bool:
        """Request cooperative cancellation; False if the run already finished."""
        run = self._get(sim_id)
        with self._lock:
            if run.status in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED):
                return False
        run.cancel_token.cancel()
        if run.future is not None and run.future.cancel():
            self._set(run, status=RunStatus.CANCELLED, completed_at=datetime.now(timezone.utc))
        logging.info("Cancellation requested for %s", sim_id)
        return True

    def list_simulations(self, incident_id: Optional[str] = None,
                         status: Optional[Union[RunStatus, str]] = None) -> List[dict]:
        status = RunStatus(status) if status is not None else None
        with self._lock:
            return [
                run.summary()
                for run in self._runs.values()
                if (incident_id is None or run.incident_id == incident_id)
                and (status is None or run.status is status)
            ]

    def delete_simulation(self, sim_id: str) -> bool:
        with self._lock:
            run = self._runs.pop(sim_id, None)
        if run is None:
            return False
        run.cancel_token.cancel()
        logging.info("Simulation %s deleted", sim_id)
        return True

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
