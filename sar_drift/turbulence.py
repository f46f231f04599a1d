"""
Turbulence model for particle dispersion.

Provides the random-walk, eddy and gust displacements added to every
particle on every step.
"""

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

import numpy as np

from .geo import METERS_PER_DEGREE, Displacement, meters_to_degrees, meters_to_nm

EDDY_STRENGTH = 0.05  # m/s
GUST_SPEED_RANGE = (0.5, 2.0)  # m/s


class Intensity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


INTENSITY_MULTIPLIERS = {
    Intensity.LOW: 0.5,
    Intensity.MEDIUM: 1.0,
    Intensity.HIGH: 2.0,
}


@dataclass(frozen=True)
class TurbulenceResult:
    total: Displacement
    brownian: Displacement
    eddy: Displacement
    gust: Displacement

    @property
    def delta_lat(self) -> float:
        return self.total.delta_lat

    @property
    def delta_lng(self) -> float:
        return self.total.delta_lng


class TurbulenceModel:
    """
    Stochastic ocean turbulence.

    Three independent components are summed and scaled by the intensity
    multiplier: Gaussian diffusion, a deterministic pseudo-periodic eddy
    field and intermittent gusts.
    """

    def __init__(
        self,
        intensity: Union[Intensity, str] = Intensity.MEDIUM,
        horizontal_diffusion: float = 0.1,
        eddy_scale: float = 1000.0,
        gust_probability: float = 0.1,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize turbulence model.

        Args:
            intensity: 'low', 'medium' or 'high'
            horizontal_diffusion: Horizontal diffusivity D (m^2/s)
            eddy_scale: Eddy length scale (meters)
            gust_probability: Chance of a gust per step
            rng: Random generator
        """
        self.intensity = Intensity(intensity)
        self.multiplier = INTENSITY_MULTIPLIERS[self.intensity]
        self.horizontal_diffusion = horizontal_diffusion
        self.eddy_scale = eddy_scale
        self.gust_probability = gust_probability
        self.rng = rng if rng is not None else np.random.default_rng()

        logging.info("Turbulence model initialized: %s (%.1fx), diffusion %.3f m^2/s",
                     self.intensity.value, self.multiplier, horizontal_diffusion)

    def apply_turbulence(self, lat: float, lng: float, time_step: float) -> TurbulenceResult:
        """
        Turbulent displacement for one particle and step.

        Args:
            lat: Current latitude (degrees)
            lng: Current longitude (degrees)
            time_step: Time step (seconds)

        Returns:
            TurbulenceResult with the scaled total and raw components
        """
        brownian = self.calculate_brownian_motion(lat, time_step)
        eddy = self.calculate_eddy_effect(lat, lng, time_step)
        gust = self.calculate_gust_effect(lat, time_step)
        total = (brownian + eddy + gust).scaled(self.multiplier)
        return TurbulenceResult(total=total, brownian=brownian, eddy=eddy, gust=gust)

    def calculate_brownian_motion(self, lat: float, time_step: float) -> Displacement:
        # sigma = sqrt(2 D dt)
        sigma = math.sqrt(2.0 * self.horizontal_diffusion * time_step)
        east, north = self.rng.normal(0.0, sigma, size=2)
        return meters_to_degrees(north, east, lat)

    def calculate_eddy_effect(self, lat: float, lng: float, time_step: float) -> Displacement:
        x = lng * METERS_PER_DEGREE / self.eddy_scale
        y = lat * METERS_PER_DEGREE / self.eddy_scale

        vx = math.sin(2 * math.pi * x) * math.cos(2 * math.pi * y) * EDDY_STRENGTH
        vy = math.cos(2 * math.pi * x) * math.sin(2 * math.pi * y) * EDDY_STRENGTH
        return meters_to_degrees(vy * time_step, vx * time_step, lat)

    def calculate_gust_effect(self, lat: float, time_step: float) -> Displacement:
        if self.rng.random() >= self.gust_probability:
            return Displacement()

        strength = self.rng.uniform(*GUST_SPEED_RANGE)
        direction = self.rng.uniform(0.0, 2 * math.pi)
        return meters_to_degrees(
            math.sin(direction) * strength * time_step,
            math.cos(direction) * strength * time_step,
            lat,
        )

    def calculate_dispersion_rate(self, time_step: float) -> dict:
        """Cloud spread sqrt(4 D t) over a period, in meters and nautical miles."""
        meters = math.sqrt(4.0 * self.horizontal_diffusion * time_step)
        return {"meters": meters, "nautical_miles": meters_to_nm(meters)}

    def set_intensity(self, intensity: Union[Intensity, str]):
        self.intensity = Intensity(intensity)
        self.multiplier = INTENSITY_MULTIPLIERS[self.intensity]
        logging.info("Turbulence intensity changed to: %s (%.1fx)", self.intensity.value, self.multiplier)
