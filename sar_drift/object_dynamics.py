"""
Object dynamics model.

Leeway coefficients for drifting persons, rafts, vessels and debris, and the
stochastic conversion of wind and current into a per-step displacement.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Union

import numpy as np

from .conditions import Current, Wind
from .geo import Displacement, heading_to_components, knots_to_mps, meters_to_degrees

LEEWAY_RATE_VARIATION = 0.2     # +/- fraction of the base rate
DEFLECTION_VARIATION_DEG = 10.0


class ObjectType(str, Enum):
    PERSON_IN_WATER = "person-in-water"
    PERSON_WITH_PFD = "person-with-pfd"
    PERSON_IN_DRYSUIT = "person-in-drysuit"
    LIFE_RAFT_4 = "life-raft-4"
    LIFE_RAFT_6 = "life-raft-6"
    LIFE_RAFT_10 = "life-raft-10"
    VESSEL_SMALL = "vessel-small"
    VESSEL_MEDIUM = "vessel-medium"
    SAILBOAT = "sailboat"
    KAYAK = "kayak"
    CANOE = "canoe"
    SURFBOARD = "surfboard"
    PADDLEBOARD = "paddleboard"
    DEBRIS_WOOD = "debris-wood"
    DEBRIS_PLASTIC = "debris-plastic"
    COOLER = "cooler"


@dataclass(frozen=True)
class ObjectProfile:
    leeway_rate: float       # fraction of wind speed
    deflection_angle: float  # degrees
    jibe_frequency: float    # events per hour
    description: str


OBJECT_PROFILES: Dict[ObjectType, ObjectProfile] = {
    # Persons
    ObjectType.PERSON_IN_WATER: ObjectProfile(0.03, 20, 0.5, "Person in water (PIW)"),
    ObjectType.PERSON_WITH_PFD: ObjectProfile(0.035, 18, 0.4, "Person with PFD/life jacket"),
    ObjectType.PERSON_IN_DRYSUIT: ObjectProfile(0.04, 15, 0.3, "Person in survival/dry suit"),
    # Life rafts
    ObjectType.LIFE_RAFT_4: ObjectProfile(0.05, 15, 0.6, "4-person life raft"),
    ObjectType.LIFE_RAFT_6: ObjectProfile(0.048, 16, 0.55, "6-person life raft"),
    ObjectType.LIFE_RAFT_10: ObjectProfile(0.045, 18, 0.5, "10+ person life raft"),
    # Vessels
    ObjectType.VESSEL_SMALL: ObjectProfile(0.06, 10, 0.2, "Small vessel (<20ft)"),
    ObjectType.VESSEL_MEDIUM: ObjectProfile(0.055, 12, 0.25, "Medium vessel (20-40ft)"),
    ObjectType.SAILBOAT: ObjectProfile(0.05, 25, 0.7, "Sailboat (dismasted)"),
    # Small craft
    ObjectType.KAYAK: ObjectProfile(0.04, 30, 0.8, "Kayak"),
    ObjectType.CANOE: ObjectProfile(0.045, 28, 0.75, "Canoe"),
    ObjectType.SURFBOARD: ObjectProfile(0.035, 25, 0.9, "Surfboard"),
    ObjectType.PADDLEBOARD: ObjectProfile(0.038, 22, 0.85, "Stand-up paddleboard (SUP)"),
    # Debris
    ObjectType.DEBRIS_WOOD: ObjectProfile(0.025, 35, 0.95, "Wooden debris"),
    ObjectType.DEBRIS_PLASTIC: ObjectProfile(0.04, 30, 0.9, "Plastic debris/containers"),
    ObjectType.COOLER: ObjectProfile(0.045, 20, 0.6, "Ice chest/cooler"),
}


@dataclass(frozen=True)
class DriftResult:
    """Total displacement for one step and its two components."""

    total: Displacement
    current: Displacement
    leeway: Displacement

    @property
    def delta_lat(self) -> float:
        return self.total.delta_lat

    @property
    def delta_lng(self) -> float:
        return self.total.delta_lng


class ObjectDynamics:
    """
    Drift physics for one object type.

    The object moves with 100% of the surface current plus a wind-driven
    leeway: a jittered fraction of wind speed, deflected left or right of
    the downwind heading by a jittered angle.
    """

    def __init__(
        self,
        object_type: Union[ObjectType, str] = ObjectType.PERSON_IN_WATER,
        custom_profile: Optional[ObjectProfile] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize object dynamics.

        Args:
            object_type: Object type (ObjectType or its string value)
            custom_profile: Operator-supplied profile replacing the table entry
            rng: Random generator for leeway and deflection jitter

        Raises:
            ValueError: if object_type is not a known type
        """
        self.object_type = ObjectType(object_type)
        self.profile = custom_profile or OBJECT_PROFILES[self.object_type]
        self.rng = rng if rng is not None else np.random.default_rng()

        logging.info("Object dynamics initialized: %s (leeway %.1f%% of wind, deflection %.0f deg)",
                     self.profile.description, self.profile.leeway_rate * 100,
                     self.profile.deflection_angle)

    def calculate_drift(self, wind: Wind, current: Current, time_step: float, lat: float = 0.0) -> DriftResult:
        """
        Calculate total drift from wind and current.

        Args:
            wind: Wind (knots, heading toward)
            current: Surface current (knots, heading toward)
            time_step: Time step (seconds)
            lat: Latitude used to scale longitude displacement

        Returns:
            DriftResult with total, current and leeway displacements
        """
        current_drift = self.calculate_current_drift(current, time_step, lat)
        leeway_drift = self.calculate_leeway(wind, time_step, lat)
        return DriftResult(
            total=current_drift + leeway_drift,
            current=current_drift,
            leeway=leeway_drift,
        )

    def calculate_current_drift(self, current: Current, time_step: float, lat: float = 0.0) -> Displacement:
        distance = knots_to_mps(current.speed) * time_step
        north, east = heading_to_components(distance, current.direction)
        return meters_to_degrees(north, east, lat)

    def calculate_leeway(self, wind: Wind, time_step: float, lat: float = 0.0) -> Displacement:
        leeway_speed = wind.speed * self.stochastic_leeway_rate()
        heading = wind.direction + self.stochastic_deflection()
        distance = knots_to_mps(leeway_speed) * time_step
        north, east = heading_to_components(distance, heading)
        return meters_to_degrees(north, east, lat)

    def stochastic_leeway_rate(self) -> float:
        base = self.profile.leeway_rate
        return base + self.rng.uniform(-1.0, 1.0) * base * LEEWAY_RATE_VARIATION

    def stochastic_deflection(self) -> float:
        """Deflection in degrees, randomly to the left (negative) or right."""
        side = -1.0 if self.rng.random() < 0.5 else 1.0
        angle = self.profile.deflection_angle + self.rng.uniform(-1.0, 1.0) * DEFLECTION_VARIATION_DEG
        return angle * side

    def should_jibe(self, time_step: float) -> bool:
        """True if a jibe occurs within this step."""
        probability = self.profile.jibe_frequency * (time_step / 3600.0)
        return bool(self.rng.random() < probability)

    def set_object_type(self, object_type: Union[ObjectType, str]):
        self.object_type = ObjectType(object_type)
        self.profile = OBJECT_PROFILES[self.object_type]
        logging.info("Object type changed to: %s", self.profile.description)

    @staticmethod
    def available_object_types() -> List[dict]:
        return [
            {
                "type": object_type.value,
                "leeway_rate": profile.leeway_rate,
                "deflection_angle": profile.deflection_angle,
                "jibe_frequency": profile.jibe_frequency,
                "description": profile.description,
            }
            for object_type, profile in OBJECT_PROFILES.items()
        ]
