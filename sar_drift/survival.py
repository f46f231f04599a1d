"""
Survival model.

Time-based survival probability for one victim in the water: an exponential
decay whose time constant comes from a water-temperature table scaled by
physiological and protective-equipment modifiers.
"""

import logging
import math
from dataclasses import asdict, dataclass, field, fields
from enum import Enum
from typing import List, Optional, Tuple

MAX_BREAKDOWN_HOURS = 72.0
BREAKDOWN_STEP_HOURS = 0.5

PFD_MULTIPLIER = 2.5
UNCONSCIOUS_MULTIPLIER = 0.3
MEDICAL_CONDITION_MULTIPLIER = 0.7

UNCONSCIOUS_PRIORITY_BOOST = 20.0
INJURY_PRIORITY_BOOST = 10.0
NO_PFD_PRIORITY_BOOST = 10.0

# (inclusive upper bound in deg F, base survival hours); first matching bucket wins
WATER_TEMP_SURVIVAL_HOURS: Tuple[Tuple[float, float], ...] = (
    (32.0, 0.25),
    (40.0, 1.5),
    (50.0, 2.0),
    (60.0, 4.0),
    (70.0, 8.0),
)
TEMPERATE_WATER_SURVIVAL_HOURS = 24.0  # above 70 and below 80 deg F
WARM_WATER_LIMIT = 80.0
WARM_WATER_SURVIVAL_HOURS = 48.0

# (upper bound in years, modifier)
AGE_MODIFIERS: Tuple[Tuple[float, float], ...] = (
    (10, 0.6),
    (20, 0.8),
    (40, 1.0),
    (60, 0.9),
    (70, 0.7),
)
ELDERLY_AGE_MODIFIER = 0.5


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class Fitness(str, Enum):
    POOR = "poor"
    AVERAGE = "average"
    GOOD = "good"
    EXCELLENT = "excellent"


class BodyComposition(str, Enum):
    LEAN = "lean"
    AVERAGE = "average"
    HEAVY = "heavy"


class Clothing(str, Enum):
    NONE = "none"
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"
    WETSUIT = "wetsuit"
    DRYSUIT = "drysuit"


class Consciousness(str, Enum):
    CONSCIOUS = "conscious"
    UNCONSCIOUS = "unconscious"


FITNESS_MODIFIERS = {
    Fitness.POOR: 0.7,
    Fitness.AVERAGE: 1.0,
    Fitness.GOOD: 1.2,
    Fitness.EXCELLENT: 1.4,
}

BODY_COMPOSITION_MODIFIERS = {
    BodyComposition.LEAN: 0.8,
    BodyComposition.AVERAGE: 1.0,
    BodyComposition.HEAVY: 1.3,
}

CLOTHING_MODIFIERS = {
    Clothing.NONE: 1.0,
    Clothing.LIGHT: 1.2,
    Clothing.MODERATE: 1.5,
    Clothing.HEAVY: 2.0,
    Clothing.WETSUIT: 3.0,
    Clothing.DRYSUIT: 4.0,
}


@dataclass
class VictimProfile:
    """Physiological and environmental inputs for one victim."""

    age: float = 35
    gender: Gender = Gender.MALE
    fitness: Fitness = Fitness.AVERAGE
    body_composition: BodyComposition = BodyComposition.AVERAGE
    pfd: bool = False
    clothing: Clothing = Clothing.LIGHT
    consciousness: Consciousness = Consciousness.CONSCIOUS
    medical_conditions: List[str] = field(default_factory=list)
    injuries: List[str] = field(default_factory=list)
    water_temp: float = 72.0  # deg F
    air_temp: float = 75.0    # deg F

    def __post_init__(self):
        # Accept plain strings from config files; unknown values raise ValueError
        self.gender = Gender(self.gender)
        self.fitness = Fitness(self.fitness)
        self.body_composition = BodyComposition(self.body_composition)
        self.clothing = Clothing(self.clothing)
        self.consciousness = Consciousness(self.consciousness)
        if self.age < 0:
            raise ValueError(f"Age must be non-negative, got {self.age}")

    @classmethod
    def from_dict(cls, data: dict) -> "VictimProfile":
        keys = {
            "bodyComposition": "body_composition",
            "medicalConditions": "medical_conditions",
            "waterTemp": "water_temp",
            "airTemp": "air_temp",
        }
        known = {f.name for f in fields(cls)}
        values = {keys.get(k, k): v for k, v in data.items()}
        unknown = sorted(k for k in values if k not in known)
        if unknown:
            raise ValueError(f"Unknown victim profile fields: {', '.join(unknown)}")
        return cls(**values)

    def to_dict(self) -> dict:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Enum):
                data[key] = value.value
        return data


@dataclass(frozen=True)
class SurvivalEstimate:
    probability: float
    percentage: int
    hours_elapsed: float
    expected_survival_time: float
    time_remaining: float
    urgency: str


@dataclass(frozen=True)
class BreakdownEntry:
    hours: float
    minutes: float
    time_label: str
    probability: float
    percentage: int
    status: str


def base_survival_time(water_temp_f: float) -> float:
    for upper, hours in WATER_TEMP_SURVIVAL_HOURS:
        if water_temp_f <= upper:
            return hours
    if water_temp_f < WARM_WATER_LIMIT:
        return TEMPERATE_WATER_SURVIVAL_HOURS
    return WARM_WATER_SURVIVAL_HOURS


def age_modifier(age: float) -> float:
    for upper, modifier in AGE_MODIFIERS:
        if age < upper:
            return modifier
    return ELDERLY_AGE_MODIFIER


def survival_status(percentage: float) -> str:
    if percentage >= 75:
        return "GOOD"
    if percentage >= 50:
        return "MODERATE"
    if percentage >= 25:
        return "CRITICAL"
    return "UNLIKELY"


def urgency_level(probability: float) -> str:
    if probability >= 0.75:
        return "LOW"
    if probability >= 0.5:
        return "MEDIUM"
    if probability >= 0.25:
        return "HIGH"
    return "CRITICAL"


def format_hours(hours: float) -> str:
    h = int(math.floor(hours))
    m = int(round((hours - h) * 60))
    return f"{h}h" if m == 0 else f"{h}h {m}m"


class SurvivalModel:
    """Survival curve and search priority for one victim."""

    def __init__(self, profile: Optional[VictimProfile] = None):
        self.profile = profile or VictimProfile()

        logging.info("Survival model initialized: age %s, fitness %s, water %.0f F, PFD %s, clothing %s",
                     self.profile.age, self.profile.fitness.value, self.profile.water_temp,
                     "yes" if self.profile.pfd else "no", self.profile.clothing.value)

    def calculate_expected_survival_time(self) -> float:
        """
        Expected survival time in hours.

        Base time from the water-temperature table multiplied by the age,
        fitness, body-composition, PFD, clothing, consciousness and medical
        modifiers.
        """
        p = self.profile
        hours = base_survival_time(p.water_temp)
        hours *= age_modifier(p.age)
        hours *= FITNESS_MODIFIERS[p.fitness]
        hours *= BODY_COMPOSITION_MODIFIERS[p.body_composition]
        if p.pfd:
            hours *= PFD_MULTIPLIER
        hours *= CLOTHING_MODIFIERS[p.clothing]
        if p.consciousness is Consciousness.UNCONSCIOUS:
            hours *= UNCONSCIOUS_MULTIPLIER
        if p.medical_conditions:
            hours *= MEDICAL_CONDITION_MULTIPLIER
        return hours

    def calculate_survival_probability(self, hours_elapsed: float) -> float:
        """
        Probability the victim is still alive after `hours_elapsed` hours.

        Raises:
            ValueError: for negative elapsed time
        """
        if hours_elapsed < 0:
            raise ValueError(f"Elapsed hours must be non-negative, got {hours_elapsed}")
        return math.exp(-hours_elapsed / self.calculate_expected_survival_time())

    def estimate(self, hours_elapsed: float) -> SurvivalEstimate:
        expected = self.calculate_expected_survival_time()
        probability = self.calculate_survival_probability(hours_elapsed)
        return SurvivalEstimate(
            probability=probability,
            percentage=int(round(probability * 100)),
            hours_elapsed=hours_elapsed,
            expected_survival_time=expected,
            time_remaining=max(0.0, expected - hours_elapsed),
            urgency=urgency_level(probability),
        )

    def get_search_priority_score(self, hours_elapsed: float) -> float:
        """Search priority in [0, 100]; higher means search sooner."""
        score = (1.0 - self.calculate_survival_probability(hours_elapsed)) * 100.0

        if self.profile.consciousness is Consciousness.UNCONSCIOUS:
            score += UNCONSCIOUS_PRIORITY_BOOST
        if self.profile.injuries:
            score += INJURY_PRIORITY_BOOST
        if not self.profile.pfd:
            score += NO_PFD_PRIORITY_BOOST

        return min(100.0, max(0.0, score))

    def compare_victims(self, other: "SurvivalModel", hours_elapsed: float) -> float:
        """Positive when this victim has the higher priority."""
        return self.get_search_priority_score(hours_elapsed) - other.get_search_priority_score(hours_elapsed)

    def generate_30_minute_breakdown(self) -> List[BreakdownEntry]:
        max_hours = min(self.calculate_expected_survival_time() * 2, MAX_BREAKDOWN_HOURS)
        breakdown = []
        steps = int(math.floor(max_hours / BREAKDOWN_STEP_HOURS))
        for i in range(steps + 1):
            hours = i * BREAKDOWN_STEP_HOURS
            probability = self.calculate_survival_probability(hours)
            percentage = int(round(probability * 100))
            breakdown.append(BreakdownEntry(
                hours=hours,
                minutes=hours * 60,
                time_label=format_hours(hours),
                probability=probability,
                percentage=percentage,
                status=survival_status(percentage),
            ))
        return breakdown

    def export_profile(self) -> dict:
        return {
            "profile": self.profile.to_dict(),
            "current": asdict(self.estimate(0.0)),
            "breakdown": [asdict(entry) for entry in self.generate_30_minute_breakdown()],
            "expected_survival_time": self.calculate_expected_survival_time(),
        }
