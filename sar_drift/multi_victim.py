"""
Multi-victim engine.

Runs one independent drift simulation per victim, one after another, and
derives zones across victims: a combined density over every particle and
an intersection of the victims' 50% probability regions.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, Dict, List, Optional, Union

import numpy as np

from .density import (
    DensityCalculator,
    DensityGrid,
    Contour,
    HeatMapPoint,
    LatLng,
    ProbabilityPolygon,
    polygon_area_m2,
)
from .environment import EnvironmentalManager
from .geo import Position
from .land import LandInteraction
from .object_dynamics import ObjectDynamics, ObjectType
from .particle import Particle
from .simulator import (
    DEFAULT_DURATION_HOURS,
    DEFAULT_FINAL_PARTICLES,
    DEFAULT_INITIAL_PARTICLES,
    DEFAULT_TIME_STEP,
    CancellationToken,
    GeoBounds,
    ParticleEngine,
    PhysicsModels,
    PositionalUncertainty,
    ProgressEvent,
    SimulationConfig,
    SimulationParams,
    Snapshot,
    TemporalUncertainty,
)
from .survival import SurvivalModel, VictimProfile
from .turbulence import TurbulenceModel

CONTOUR_LEVELS = (0.5, 0.75, 0.9)
POLYGON_LEVELS = (0.5, 0.9)
INTERSECTION_LEVEL = 0.5


@dataclass
class Victim:
    id: str
    name: str
    lkp: Position
    profile: VictimProfile = field(default_factory=VictimProfile)
    object_type: ObjectType = ObjectType.PERSON_IN_WATER
    uncertainty: PositionalUncertainty = field(default_factory=PositionalUncertainty)
    time_uncertainty: TemporalUncertainty = field(default_factory=TemporalUncertainty)

    def __post_init__(self):
        self.object_type = ObjectType(self.object_type)


@dataclass
class MultiVictimParams:
    """Settings shared by every victim's run."""

    environmental_manager: EnvironmentalManager
    particle_count: int = DEFAULT_FINAL_PARTICLES
    duration_hours: float = DEFAULT_DURATION_HOURS
    time_step: float = DEFAULT_TIME_STEP
    turbulence: Optional[TurbulenceModel] = None
    land_interaction: Optional[LandInteraction] = None
    bounds: Optional[GeoBounds] = None


@dataclass(frozen=True)
class VictimProgress:
    victim_id: str
    victim_name: str
    victim_index: int
    total_victims: int
    progress: float


@dataclass(frozen=True)
class DensityArtifacts:
    grid: Optional[DensityGrid]
    contours: List[Contour]
    polygons: List[ProbabilityPolygon]
    heat_map: List[HeatMapPoint]


@dataclass(frozen=True)
class VictimSimulationResult:
    victim_id: str
    victim_name: str
    particles: List[Particle]
    snapshots: List[Snapshot]
    density: DensityArtifacts
    survival: dict
    statistics: dict


@dataclass(frozen=True)
class CombinedZone:
    total_particles: int
    density: Optional[DensityGrid]
    polygons: List[ProbabilityPolygon]
    heat_map: List[HeatMapPoint]


@dataclass(frozen=True)
class IntersectionZone:
    """Bounding-box overlap of the victims' 50% polygons."""

    victim_count: int
    vertices: List[LatLng]
    area: float
    empty: bool


@dataclass(frozen=True)
class VictimPriority:
    victim_id: str
    victim_name: str
    priority_score: float
    survival_probability: float
    survival_percentage: int
    urgency: str
    time_remaining: float


class MultiVictimEngine:
    """Orchestrates per-victim simulations and cross-victim zones."""

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng()
        self.victims: List[Victim] = []
        self.simulations: Dict[str, VictimSimulationResult] = {}
        logging.info("Multi-victim engine initialized")

    def add_victim(
        self,
        lkp: Position,
        victim_id: Optional[str] = None,
        name: Optional[str] = None,
        profile: Optional[VictimProfile] = None,
        object_type: Union[ObjectType, str] = ObjectType.PERSON_IN_WATER,
        uncertainty: Optional[PositionalUncertainty] = None,
        time_uncertainty: Optional[TemporalUncertainty] = None,
    ) -> Victim:
        """
        Register a victim; ids and names default to 'victim_N' / 'Victim N'.

        Raises:
            ValueError: if lkp is missing, the id is already taken or the
                object type is unknown
        """
        if lkp is None:
            raise ValueError("A last known position is required for each victim")
        n = len(self.victims) + 1
        victim = Victim(
            id=victim_id or f"victim_{n}",
            name=name or f"Victim {n}",
            lkp=lkp,
            profile=profile or VictimProfile(),
            object_type=object_type,
            uncertainty=uncertainty or PositionalUncertainty(),
            time_uncertainty=time_uncertainty or TemporalUncertainty(),
        )
        if any(v.id == victim.id for v in self.victims):
            raise ValueError(f"Duplicate victim id: {victim.id}")

        self.victims.append(victim)
        logging.info("Added victim: %s (%s)", victim.name, victim.object_type.value)
        return victim

    def run_all_simulations(
        self,
        params: MultiVictimParams,
        progress_callback: Optional[Callable[[VictimProgress], None]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> List[VictimSimulationResult]:
        """
        Simulate every victim sequentially.

        Victims run one at a time so only one particle population is being
        stepped at once.

        Args:
            params: Settings shared by all victims
            progress_callback: Optional callback function(VictimProgress)
            cancel_token: Optional cancellation token

        Returns:
            Per-victim results in registration order
        """
        logging.info("Running simulations for %d victims", len(self.victims))

        results = []
        for index, victim in enumerate(self.victims):
            logging.info("Simulating victim %d/%d: %s", index + 1, len(self.victims), victim.name)

            def forward(event: ProgressEvent, victim=victim, index=index):
                if progress_callback:
                    progress_callback(VictimProgress(victim.id, victim.name, index,
                                                     len(self.victims), event.progress))

            result = self.run_victim_simulation(victim, params, forward, cancel_token)
            self.simulations[victim.id] = result
            results.append(result)

        logging.info("All %d simulations complete", len(self.victims))
        return results

    def run_victim_simulation(
        self,
        victim: Victim,
        params: MultiVictimParams,
        progress_callback: Optional[Callable[[ProgressEvent], None]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> VictimSimulationResult:
        engine = ParticleEngine(
            SimulationConfig(
                initial_particle_count=min(DEFAULT_INITIAL_PARTICLES, params.particle_count),
                final_particle_count=params.particle_count,
                time_step=params.time_step,
                duration_hours=params.duration_hours,
            ),
            rng=self.rng,
        )
        physics = PhysicsModels(
            object_dynamics=ObjectDynamics(victim.object_type, rng=self.rng),
            turbulence=params.turbulence or TurbulenceModel(rng=self.rng),
            land_interaction=params.land_interaction or LandInteraction(rng=self.rng),
        )
        sim_params = SimulationParams(
            lkp=victim.lkp,
            environmental_manager=params.environmental_manager,
            physics=physics,
            uncertainty=victim.uncertainty,
            time_uncertainty=victim.time_uncertainty,
            particle_count=params.particle_count,
            duration_hours=params.duration_hours,
            bounds=params.bounds,
        )

        engine.initialize_particles(victim.lkp, victim.uncertainty, victim.time_uncertainty,
                                    params.particle_count)
        result = engine.run_simulation(sim_params, progress_callback, cancel_token)

        density = DensityCalculator()
        grid = density.calculate_density_grid(result.particles)
        contours = density.generate_contours(CONTOUR_LEVELS) if grid is not None else []
        polygons = density.generate_probability_polygons(POLYGON_LEVELS) if grid is not None else []

        return VictimSimulationResult(
            victim_id=victim.id,
            victim_name=victim.name,
            particles=result.particles,
            snapshots=result.snapshots,
            density=DensityArtifacts(grid, contours, polygons, density.export_heat_map_data()),
            survival=SurvivalModel(victim.profile).export_profile(),
            statistics={
                "total_particles": result.particle_count,
                "active_particles": engine.get_active_particle_count(),
                "beached_particles": engine.get_beached_particle_count(),
            },
        )

    def generate_combined_zone(self) -> Optional[CombinedZone]:
        """Density over the union of all victims' particles."""
        if not self.simulations:
            logging.warning("No simulations to combine")
            return None

        all_particles = [p for result in self.simulations.values() for p in result.particles]

        density = DensityCalculator()
        grid = density.calculate_density_grid(all_particles)
        polygons = density.generate_probability_polygons(POLYGON_LEVELS) if grid is not None else []

        logging.info("Combined zone: %d particles", len(all_particles))
        return CombinedZone(
            total_particles=len(all_particles),
            density=grid,
            polygons=polygons,
            heat_map=density.export_heat_map_data(),
        )

    def generate_intersection_zone(self) -> Optional[IntersectionZone]:
        """
        Approximate where all victims may be together.

        Uses the overlap of the bounding boxes of each victim's 50% polygon,
        not a true polygon intersection. Returns None with fewer than two
        victims carrying such a polygon.
        """
        if len(self.simulations) < 2:
            logging.warning("Need at least 2 victims for intersection")
            return None

        polygons = []
        for result in self.simulations.values():
            for polygon in result.density.polygons:
                if polygon.level == INTERSECTION_LEVEL and polygon.vertices:
                    polygons.append(polygon.vertices)
                    break

        if len(polygons) < 2:
            logging.warning("Not enough polygons for intersection")
            return None

        min_lat = max(min(v.lat for v in poly) for poly in polygons)
        max_lat = min(max(v.lat for v in poly) for poly in polygons)
        min_lng = max(min(v.lng for v in poly) for poly in polygons)
        max_lng = min(max(v.lng for v in poly) for poly in polygons)

        if min_lat > max_lat or min_lng > max_lng:
            logging.info("Victim probability regions do not overlap")
            return IntersectionZone(len(self.simulations), [], 0.0, True)

        vertices = [
            LatLng(min_lat, min_lng),
            LatLng(min_lat, max_lng),
            LatLng(max_lat, max_lng),
            LatLng(max_lat, min_lng),
        ]
        return IntersectionZone(len(self.simulations), vertices, polygon_area_m2(vertices), False)

    def get_victim_priority_list(self, hours_elapsed: float) -> List[VictimPriority]:
        """All registered victims ranked by search priority, highest first."""
        priorities = []
        for victim in self.victims:
            model = SurvivalModel(victim.profile)
            estimate = model.estimate(hours_elapsed)
            priorities.append(VictimPriority(
                victim_id=victim.id,
                victim_name=victim.name,
                priority_score=model.get_search_priority_score(hours_elapsed),
                survival_probability=estimate.probability,
                survival_percentage=estimate.percentage,
                urgency=estimate.urgency,
                time_remaining=estimate.time_remaining,
            ))
        priorities.sort(key=lambda p: p.priority_score, reverse=True)
        return priorities

    def export_all(self, combined: Optional[CombinedZone] = None,
                   intersection: Optional[IntersectionZone] = None) -> dict:
        """Plain-data summary of every victim and zone; zones are computed if not given."""
        combined = combined or self.generate_combined_zone()
        intersection = intersection or self.generate_intersection_zone()
        return {
            "victims": [
                {
                    "id": v.id,
                    "name": v.name,
                    "lkp": {"lat": v.lkp.lat, "lng": v.lkp.lng},
                    "object_type": v.object_type.value,
                    "profile": v.profile.to_dict(),
                }
                for v in self.victims
            ],
            "simulations": [
                {
                    "victim_id": r.victim_id,
                    "victim_name": r.victim_name,
                    "statistics": r.statistics,
                    "polygons": [polygon_to_dict(p) for p in r.density.polygons],
                    "survival": r.survival,
                }
                for r in self.simulations.values()
            ],
            "combined": None if combined is None else {
                "total_particles": combined.total_particles,
                "polygons": [polygon_to_dict(p) for p in combined.polygons],
            },
            "intersection": None if intersection is None else asdict(intersection),
            "priorities": [asdict(p) for p in self.get_victim_priority_list(0.0)],
        }

    def get_statistics(self) -> dict:
        return {
            "victim_count": len(self.victims),
            "simulation_count": len(self.simulations),
            "total_particles": sum(r.statistics["total_particles"] for r in self.simulations.values()),
        }


def polygon_to_dict(polygon: ProbabilityPolygon) -> dict:
    return {
        "level": polygon.level,
        "percentage": polygon.percentage,
        "vertices": [{"lat": v.lat, "lng": v.lng} for v in polygon.vertices],
        "area": polygon.area,
    }
