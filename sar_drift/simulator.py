"""
Main drift simulator module integrating all components.

Implements the Monte Carlo particle engine: seeding around the last known
position, fixed-step advection through wind, current, turbulence and shore
interaction, hourly snapshots and progressive (preliminary then full) runs.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from .environment import EnvironmentalManager
from .geo import Displacement, Position, nm_to_meters
from .land import LandInteraction
from .object_dynamics import ObjectDynamics
from .particle import Particle, ParticleCloud, ParticleStatus
from .turbulence import TurbulenceModel

DEFAULT_TIME_STEP = 60.0            # seconds
DEFAULT_DURATION_HOURS = 72.0
DEFAULT_INITIAL_PARTICLES = 5000
DEFAULT_FINAL_PARTICLES = 200_000
PROGRESS_INTERVAL_STEPS = 100
DEFAULT_HISTORY_INTERVAL = 0       # steps between trajectory points; 0 keeps only the seed point

# (min_lat, max_lat, min_lng, max_lng)
GeoBounds = Tuple[float, float, float, float]


@dataclass(frozen=True)
class SimulationConfig:
    """Particle counts and time stepping for one run."""

    initial_particle_count: int = DEFAULT_INITIAL_PARTICLES
    final_particle_count: int = DEFAULT_FINAL_PARTICLES
    time_step: float = DEFAULT_TIME_STEP
    duration_hours: float = DEFAULT_DURATION_HOURS
    history_interval: int = DEFAULT_HISTORY_INTERVAL

    def __post_init__(self):
        if self.initial_particle_count <= 0 or self.final_particle_count <= 0:
            raise ValueError("Particle counts must be positive")
        if self.time_step <= 0:
            raise ValueError(f"Time step must be positive, got {self.time_step}")
        if self.duration_hours <= 0:
            raise ValueError(f"Duration must be positive, got {self.duration_hours}")
        if self.history_interval < 0:
            raise ValueError(f"History interval must be non-negative, got {self.history_interval}")


@dataclass(frozen=True)
class PositionalUncertainty:
    radius_nm: float = 0.5
    shape: str = "circular"


@dataclass(frozen=True)
class TemporalUncertainty:
    window_minutes: float = 30.0


@dataclass
class PhysicsModels:
    """
    Physics collaborators used on every step.

    jibe_handler is an optional hook called as handler(particle, drift) when
    the object dynamics reports a jibe; it returns the drift to apply. With
    no handler, jibes are not evaluated and do not affect motion.
    """

    object_dynamics: ObjectDynamics
    turbulence: TurbulenceModel
    land_interaction: LandInteraction
    jibe_handler: Optional[Callable[[Particle, Displacement], Displacement]] = None


@dataclass
class SimulationParams:
    lkp: Position
    environmental_manager: EnvironmentalManager
    physics: PhysicsModels
    uncertainty: PositionalUncertainty = field(default_factory=PositionalUncertainty)
    time_uncertainty: TemporalUncertainty = field(default_factory=TemporalUncertainty)
    particle_count: Optional[int] = None
    duration_hours: Optional[float] = None
    bounds: Optional[GeoBounds] = None


@dataclass(frozen=True)
class SnapshotParticle:
    id: int
    lat: float
    lng: float
    status: ParticleStatus


@dataclass(frozen=True)
class Snapshot:
    """Particle positions and status counts at one instant."""

    hour: int
    time: float
    particles: Tuple[SnapshotParticle, ...]
    active: int
    beached: int
    out_of_bounds: int
    total: int

    @property
    def statistics(self) -> dict:
        return {
            "active": self.active,
            "beached": self.beached,
            "out_of_bounds": self.out_of_bounds,
            "total": self.total,
        }


@dataclass(frozen=True)
class ProgressEvent:
    phase: str
    step: int
    total_steps: int
    progress: float  # percent
    current_hour: int


@dataclass(frozen=True)
class PreliminaryResults:
    """Low-fidelity results available after the first progressive phase."""

    particles: List[Particle]
    snapshots: List[Snapshot]
    particle_count: int


@dataclass(frozen=True)
class EngineResult:
    particles: List[Particle]
    snapshots: List[Snapshot]
    particle_count: int


class SimulationCancelled(Exception):
    """Raised inside a run once its cancellation token is set."""


class CancellationToken:
    """Cooperative cancellation flag checked by the stepping loops."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise SimulationCancelled("Simulation cancelled")


def capture_snapshot(hour: int, time: float, particles: Sequence[Particle]) -> Snapshot:
    """Freeze the current particle state."""
    counts = {status: 0 for status in ParticleStatus}
    frozen = []
    for p in particles:
        counts[p.status] += 1
        frozen.append(SnapshotParticle(p.id, p.lat, p.lng, p.status))

    return Snapshot(
        hour=hour,
        time=time,
        particles=tuple(frozen),
        active=counts[ParticleStatus.ACTIVE],
        beached=counts[ParticleStatus.BEACHED],
        out_of_bounds=counts[ParticleStatus.OUT_OF_BOUNDS],
        total=len(frozen),
    )


def _outside(bounds: GeoBounds, lat: float, lng: float) -> bool:
    min_lat, max_lat, min_lng, max_lng = bounds
    return lat < min_lat or lat > max_lat or lng < min_lng or lng > max_lng


def advance_particles(
    particles: Sequence[Particle],
    current_time: float,
    time_step: float,
    environmental_manager: EnvironmentalManager,
    physics: PhysicsModels,
    rng: np.random.Generator,
    direction: int = 1,
    bounds: Optional[GeoBounds] = None,
    record_history: bool = True,
):
    """
    Advance every active particle by one time step.

    The displacement is current drift plus leeway plus turbulence, multiplied
    by `direction` (-1 steps backward in time). A destination off the water
    is resolved through shore collision: the particle either beaches at the
    coastline or is moved to the nearest water point. A particle that is still
    active at its final position outside `bounds` leaves the domain.

    Args:
        particles: Particles to advance in place
        current_time: Simulation time at the end of this step (seconds)
        time_step: Step length (seconds, positive)
        environmental_manager: Source of wind/current per location
        physics: Object dynamics, turbulence and land interaction
        rng: Random generator for ensemble member selection
        direction: +1 forward, -1 backward
        bounds: Optional (min_lat, max_lat, min_lng, max_lng) domain
        record_history: Append the new positions to particle trajectories
    """
    land = physics.land_interaction

    for particle in particles:
        if not particle.is_active:
            continue

        lat, lng = particle.lat, particle.lng
        conditions = environmental_manager.get_conditions_at(
            lat, lng, current_time + particle.time_cohort
        ).resolved(rng)

        drift = physics.object_dynamics.calculate_drift(
            conditions.wind, conditions.current, time_step, lat
        ).total

        if physics.jibe_handler is not None and physics.object_dynamics.should_jibe(time_step):
            drift = physics.jibe_handler(particle, drift)

        if land.modifies_drift:
            drift = land.apply_river_flow(lat, lng, land.apply_shallow_water_effects(lat, lng, drift))

        turbulence = physics.turbulence.apply_turbulence(lat, lng, time_step).total
        step = (drift + turbulence).scaled(direction)

        new_lat = lat + step.delta_lat
        new_lng = lng + step.delta_lng

        if not land.is_on_water(new_lat, new_lng).on_water:
            collision = land.handle_shore_collision(lat, lng, new_lat, new_lng)
            if collision.beached:
                particle.set_status(ParticleStatus.BEACHED)
                new_lat, new_lng = collision.lat, collision.lng
            else:
                nearest = land.find_nearest_water(new_lat, new_lng)
                if land.is_on_water(nearest.lat, nearest.lng).on_water:
                    new_lat, new_lng = nearest.lat, nearest.lng
                else:
                    new_lat, new_lng = collision.lat, collision.lng

        if particle.is_active and bounds is not None and _outside(bounds, new_lat, new_lng):
            particle.set_status(ParticleStatus.OUT_OF_BOUNDS)

        particle.move_to(new_lat, new_lng, current_time, record=record_history)


class ParticleEngine:
    """
    Monte Carlo drift simulator.

    Owns the particle population of one run. Seeds particles around the
    last known position, advances them in fixed steps and captures an
    hourly snapshot of their state.
    """

    def __init__(
        self,
        config: Optional[SimulationConfig] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize particle engine.

        Args:
            config: Particle counts and time stepping (defaults if None)
            rng: Random generator for seeding and ensemble selection
        """
        self.config = config or SimulationConfig()
        self.rng = rng if rng is not None else np.random.default_rng()

        self.particle_cloud = ParticleCloud()
        self.snapshots: List[Snapshot] = []
        self.current_time = 0.0

        logging.info("Particle engine initialized: %d initial / %d final particles, %.0f s step, %.1f h",
                     self.config.initial_particle_count, self.config.final_particle_count,
                     self.config.time_step, self.config.duration_hours)

    @property
    def particles(self) -> List[Particle]:
        return self.particle_cloud.particles

    def initialize_particles(
        self,
        lkp: Position,
        uncertainty: PositionalUncertainty,
        time_uncertainty: TemporalUncertainty,
        particle_count: int,
    ):
        """
        Seed a fresh particle population and reset the run clock.

        Args:
            lkp: Last known position
            uncertainty: Positional uncertainty circle
            time_uncertainty: Window around the time of loss
            particle_count: Number of particles to create
        """
        if lkp is None:
            raise ValueError("A last known position is required")
        if particle_count <= 0:
            raise ValueError(f"Particle count must be positive, got {particle_count}")

        self.particle_cloud.create_particles(
            lkp=lkp,
            radius_m=nm_to_meters(uncertainty.radius_nm),
            time_window_s=time_uncertainty.window_minutes * 60.0,
            num_particles=particle_count,
            rng=self.rng,
        )
        self.snapshots = []
        self.current_time = 0.0
        logging.info("%d particles initialized at %.4f, %.4f (radius %.2f nm)",
                     particle_count, lkp.lat, lkp.lng, uncertainty.radius_nm)

    def adjust_particle_count(self, new_count: int, params: SimulationParams):
        """Re-seed with a different particle count; previous state is discarded."""
        logging.info("Adjusting particle count to %d", new_count)
        self.initialize_particles(params.lkp, params.uncertainty, params.time_uncertainty, new_count)

    def iter_simulation(
        self,
        params: SimulationParams,
        cancel_token: Optional[CancellationToken] = None,
        phase: str = "full",
    ) -> Iterator[ProgressEvent]:
        """
        Run the simulation as a generator of progress events.

        Particles are seeded from params first if none exist. An event is
        yielded every PROGRESS_INTERVAL_STEPS steps and once at completion.

        Raises:
            SimulationCancelled: if cancel_token is set during the run
        """
        if not self.particles:
            self.initialize_particles(
                params.lkp, params.uncertainty, params.time_uncertainty,
                params.particle_count or self.config.final_particle_count,
            )

        dt = self.config.time_step
        duration = params.duration_hours or self.config.duration_hours
        total_steps = int(round(duration * 3600.0 / dt))
        start_time = self.current_time
        current_hour = int(start_time // 3600)

        logging.info("Running simulation: %.1f hours (%d steps, %d particles)",
                     duration, total_steps, len(self.particles))

        for step in range(total_steps):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            previous_time = self.current_time
            self.current_time = start_time + (step + 1) * dt

            interval = self.config.history_interval
            advance_particles(
                self.particles, self.current_time, dt,
                params.environmental_manager, params.physics, self.rng,
                bounds=params.bounds,
                record_history=interval > 0 and (step + 1) % interval == 0,
            )

            current_hour = int(self.current_time // 3600)
            if current_hour > int(previous_time // 3600):
                self.capture_snapshot(current_hour)

            if step % PROGRESS_INTERVAL_STEPS == 0:
                yield ProgressEvent(phase, step, total_steps, step / total_steps * 100.0, current_hour)

        yield ProgressEvent(phase, total_steps, total_steps, 100.0, current_hour)
        logging.info("Simulation complete: %.1f hours", duration)

    def run_simulation(
        self,
        params: SimulationParams,
        progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> EngineResult:
        """
        Run the simulation to completion.

        Args:
            params: Run parameters
            progress_callback: Optional callback function(ProgressEvent)
            cancel_token: Optional cancellation token checked each step

        Returns:
            EngineResult with final particles and snapshots
        """
        for event in self.iter_simulation(params, cancel_token):
            if progress_callback:
                progress_callback(event)
        return self.get_result()

    def iter_progressive_simulation(
        self,
        params: SimulationParams,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Iterator[Union[ProgressEvent, PreliminaryResults]]:
        """
        Two-phase run: a small preliminary population, then the full one.

        Yields progress events scaled to [0, 50) for the preliminary phase
        and [50, 100] for the full phase, with a PreliminaryResults item
        between the two.
        """
        logging.info("PHASE 1: preliminary results (%d particles)", self.config.initial_particle_count)
        self.initialize_particles(params.lkp, params.uncertainty, params.time_uncertainty,
                                  self.config.initial_particle_count)
        for event in self.iter_simulation(params, cancel_token, phase="preliminary"):
            yield ProgressEvent(event.phase, event.step, event.total_steps,
                                min(event.progress * 0.5, 49.999), event.current_hour)

        yield PreliminaryResults(
            particles=list(self.particles),
            snapshots=list(self.snapshots),
            particle_count=len(self.particles),
        )
        logging.info("Preliminary results ready")

        count = params.particle_count or self.config.final_particle_count
        logging.info("PHASE 2: full resolution (%d particles)", count)
        self.initialize_particles(params.lkp, params.uncertainty, params.time_uncertainty, count)
        for event in self.iter_simulation(params, cancel_token, phase="full"):
            yield ProgressEvent(event.phase, event.step, event.total_steps,
                                50.0 + event.progress * 0.5, event.current_hour)

    def run_progressive_simulation(
        self,
        params: SimulationParams,
        progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
        preliminary_callback: Optional[Callable[[PreliminaryResults], None]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> EngineResult:
        for item in self.iter_progressive_simulation(params, cancel_token):
            if isinstance(item, PreliminaryResults):
                if preliminary_callback:
                    preliminary_callback(item)
            elif progress_callback:
                progress_callback(item)
        logging.info("Full simulation complete")
        return self.get_result()

    def capture_snapshot(self, hour: int) -> Snapshot:
        snapshot = capture_snapshot(hour, self.current_time, self.particles)
        self.snapshots.append(snapshot)
        logging.debug("Snapshot %dh: %d active particles", hour, snapshot.active)
        return snapshot

    def get_snapshot_at_hour(self, hour: int) -> Optional[Snapshot]:
        for snapshot in self.snapshots:
            if snapshot.hour == hour:
                return snapshot
        return None

    def get_active_particle_count(self) -> int:
        return len(self.particle_cloud.get_active_particles())

    def get_beached_particle_count(self) -> int:
        return len(self.particle_cloud.get_beached_particles())

    def get_result(self) -> EngineResult:
        return EngineResult(
            particles=list(self.particles),
            snapshots=list(self.snapshots),
            particle_count=len(self.particles),
        )

    def get_statistics(self) -> dict:
        """
        Get simulation statistics.

        Returns:
            Dictionary with statistics
        """
        counts = self.particle_cloud.status_counts()
        total = len(self.particles)
        return {
            "total_particles": total,
            "active_particles": counts[ParticleStatus.ACTIVE],
            "beached_particles": counts[ParticleStatus.BEACHED],
            "out_of_bounds_particles": counts[ParticleStatus.OUT_OF_BOUNDS],
            "simulation_time": self.current_time,
            "fraction_beached": counts[ParticleStatus.BEACHED] / total if total else 0.0,
        }

    def to_geojson(self) -> dict:
        return self.particle_cloud.to_geojson()
