"""
Particle module for Lagrangian drift simulation.

Defines individual drift particles and the particle cloud that owns them.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

from .geo import Position, meters_to_degrees


class ParticleStatus(str, Enum):
    ACTIVE = "active"
    BEACHED = "beached"
    OUT_OF_BOUNDS = "out-of-bounds"


@dataclass(frozen=True)
class TrajectoryPoint:
    time: float  # seconds since simulation start
    lat: float
    lng: float


@dataclass
class Particle:
    """A single drift particle: one plausible position of the search object."""

    id: int
    lat: float
    lng: float

    # Seconds before (negative) or after t=0 this particle entered the water
    time_cohort: float = 0.0

    status: ParticleStatus = ParticleStatus.ACTIVE
    history: List[TrajectoryPoint] = field(default_factory=list)

    def __post_init__(self):
        if not self.history:
            self.history.append(TrajectoryPoint(0.0, self.lat, self.lng))

    @property
    def is_active(self) -> bool:
        return self.status is ParticleStatus.ACTIVE

    def move_to(self, lat: float, lng: float, time: float, record: bool = True):
        """Update position; append it to the trajectory when `record` is set."""
        self.lat = lat
        self.lng = lng
        if record:
            self.history.append(TrajectoryPoint(time, lat, lng))

    def set_status(self, status: ParticleStatus):
        """
        Change status.

        Raises:
            ValueError: if the particle already left the active state
        """
        if status is self.status:
            return
        if not self.is_active:
            raise ValueError(f"Particle {self.id} is {self.status.value}; status is terminal")
        self.status = status


class ParticleCloud:
    """Manages the particle population of one simulation run."""

    def __init__(self):
        self.particles: List[Particle] = []

    def __len__(self) -> int:
        return len(self.particles)

    def add_particle(self, particle: Particle):
        """Add a particle to the cloud."""
        self.particles.append(particle)

    def create_particles(
        self,
        lkp: Position,
        radius_m: float,
        time_window_s: float,
        num_particles: int,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Seed particles around a last known position.

        Positions are uniform by area inside a circle (radius drawn as
        R * sqrt(u)); time cohorts are uniform in +/- time_window_s.

        Args:
            lkp: Last known position
            radius_m: Positional uncertainty radius (meters)
            time_window_s: Temporal uncertainty half-width (seconds)
            num_particles: Number of particles to create
            rng: Random generator
        """
        rng = rng if rng is not None else np.random.default_rng()
        self.particles = []

        distances = radius_m * np.sqrt(rng.random(num_particles))
        angles = rng.uniform(0.0, 2 * math.pi, num_particles)
        cohorts = rng.uniform(-time_window_s, time_window_s, num_particles)

        for i in range(num_particles):
            offset = meters_to_degrees(
                distances[i] * math.cos(angles[i]),
                distances[i] * math.sin(angles[i]),
                lkp.lat,
            )
            self.add_particle(Particle(
                id=i,
                lat=lkp.lat + offset.delta_lat,
                lng=lkp.lng + offset.delta_lng,
                time_cohort=float(cohorts[i]),
            ))

    def get_active_particles(self) -> List[Particle]:
        """Return particles still drifting."""
        return [p for p in self.particles if p.is_active]

    def get_beached_particles(self) -> List[Particle]:
        return [p for p in self.particles if p.status is ParticleStatus.BEACHED]

    def status_counts(self) -> Dict[ParticleStatus, int]:
        counts = {status: 0 for status in ParticleStatus}
        for p in self.particles:
            counts[p.status] += 1
        return counts

    def get_positions(self) -> np.ndarray:
        """
        Get positions of all active particles.

        Returns:
            Array of shape (n, 2) with [lat, lng]
        """
        active = self.get_active_particles()
        if not active:
            return np.array([]).reshape(0, 2)
        return np.array([[p.lat, p.lng] for p in active])

    def to_geojson(self) -> dict:
        return {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "geometry": {"type": "Point", "coordinates": [p.lng, p.lat]},
                    "properties": {"id": p.id, "status": p.status.value},
                }
                for p in self.particles
            ],
        }
