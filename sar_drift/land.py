"""
Land interaction model.

Keeps particles in the water: classifies points as water or land through a
pluggable classifier, resolves shore collisions (beaching or reflection) and
offers optional shallow-water and river-flow drift modifiers.
"""

import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Sequence

import numpy as np

from .geo import Displacement, Position, haversine_array

BEACHING_PROBABILITY = 0.7
PATH_SAMPLES = 10
BISECTION_ITERATIONS = 10
NEAREST_WATER_STEP_DEG = 0.001
NEAREST_WATER_RADIUS_DEG = 0.01
NEAREST_WATER_DIRECTIONS = 8
DEFAULT_DEPTH_M = 50.0


@dataclass(frozen=True)
class WaterCheck:
    on_water: bool
    distance_to_shore: float  # meters; inf when unknown or no shore nearby


class WaterClassifier(Protocol):
    """Anything that can tell water from land at a point."""

    def classify(self, lat: float, lng: float) -> WaterCheck:
        ...


class OpenWaterClassifier:
    """Treats every point as open water."""

    def classify(self, lat: float, lng: float) -> WaterCheck:
        return WaterCheck(on_water=True, distance_to_shore=math.inf)


def points_in_polygon(px: np.ndarray, py: np.ndarray, poly: np.ndarray) -> np.ndarray:
    """Ray-casting point-in-polygon for 1-D arrays px (lng), py (lat)."""
    n = len(poly)
    inside = np.zeros(px.shape, dtype=bool)
    x1, y1 = poly[0]
    for i in range(1, n + 1):
        x2, y2 = poly[i % n]
        mask = ((py > min(y1, y2)) & (py <= max(y1, y2)) &
                (px <= max(x1, x2)))
        if y1 != y2:
            xinters = (py - y1) * (x2 - x1) / (y2 - y1) + x1
            mask = mask & ((x1 == x2) | (px <= xinters))
        inside[mask] = ~inside[mask]
        x1, y1 = x2, y2
    return inside


class PolygonLandClassifier:
    """
    Land defined by one or more polygons of (lng, lat) vertices.

    Distance to shore is approximated by the distance to the nearest
    polygon vertex.
    """

    def __init__(self, land_polygons: Sequence[Sequence[Sequence[float]]]):
        self.polygons = [np.asarray(p, dtype=float) for p in land_polygons]
        for poly in self.polygons:
            if poly.ndim != 2 or poly.shape[1] != 2 or len(poly) < 3:
                raise ValueError("Each land polygon needs at least 3 (lng, lat) vertices")
        self._vertices = np.vstack(self.polygons)

    def on_land(self, lats: np.ndarray, lngs: np.ndarray) -> np.ndarray:
        lats = np.atleast_1d(np.asarray(lats, dtype=float))
        lngs = np.atleast_1d(np.asarray(lngs, dtype=float))
        result = np.zeros(lats.shape, dtype=bool)
        for poly in self.polygons:
            result |= points_in_polygon(lngs, lats, poly)
        return result

    def classify(self, lat: float, lng: float) -> WaterCheck:
        land = bool(self.on_land(lat, lng)[0])
        distances = haversine_array(lat, lng, self._vertices[:, 1], self._vertices[:, 0])
        distance = 0.0 if land else float(distances.min())
        return WaterCheck(on_water=not land, distance_to_shore=distance)


@dataclass(frozen=True)
class ShoreCollision:
    """Outcome of a step that ended off the water."""

    beached: bool
    lat: float
    lng: float


class LandInteraction:
    """
    Shore interaction for drifting particles.

    A classifier failure is treated as degraded data: it is logged and the
    point is assumed to be water.
    """

    def __init__(
        self,
        classifier: Optional[WaterClassifier] = None,
        beaching_probability: float = BEACHING_PROBABILITY,
        shallow_water_depth: float = 10.0,
        depth_provider: Optional[Callable[[float, float], float]] = None,
        river_flow_provider: Optional[Callable[[float, float], Optional[Displacement]]] = None,
        rng: Optional[np.random.Generator] = None,
    ):
        """
        Initialize land interaction.

        Args:
            classifier: Water/land classifier (open water if None)
            beaching_probability: Chance a shore collision beaches the particle
            shallow_water_depth: Depth (m) below which drift is slowed
            depth_provider: Optional function(lat, lng) -> depth in meters
            river_flow_provider: Optional function(lat, lng) -> river drift or None
            rng: Random generator for beaching decisions
        """
        self.classifier = classifier or OpenWaterClassifier()
        self.beaching_probability = beaching_probability
        self.shallow_water_depth = shallow_water_depth
        self.depth_provider = depth_provider
        self.river_flow_provider = river_flow_provider
        self.rng = rng if rng is not None else np.random.default_rng()
        self._classifier_failed = False

        logging.info("Land interaction initialized: %s, beaching probability %.2f",
                     type(self.classifier).__name__, beaching_probability)

    @property
    def modifies_drift(self) -> bool:
        """True when shallow-water or river-flow modifiers are configured."""
        return self.depth_provider is not None or self.river_flow_provider is not None

    def is_on_water(self, lat: float, lng: float) -> WaterCheck:
        try:
            return self.classifier.classify(lat, lng)
        except Exception as e:
            if not self._classifier_failed:
                logging.warning("Water classifier unavailable (%s); assuming water", e)
                self._classifier_failed = True
            return WaterCheck(on_water=True, distance_to_shore=math.inf)

    def handle_shore_collision(self, prev_lat: float, prev_lng: float,
                               new_lat: float, new_lng: float) -> ShoreCollision:
        """
        Resolve a step whose path reaches land.

        The coastline crossing is located by bisection. The particle then
        beaches there with probability `beaching_probability`, otherwise it
        is returned to its pre-step position.

        Returns:
            ShoreCollision with the resolved position
        """
        if not self.path_crosses_land(prev_lat, prev_lng, new_lat, new_lng):
            return ShoreCollision(beached=False, lat=new_lat, lng=new_lng)

        crossing = self.find_coastline_intersection(prev_lat, prev_lng, new_lat, new_lng)
        if self.rng.random() < self.beaching_probability:
            logging.debug("Particle beached at %.5f, %.5f", crossing.lat, crossing.lng)
            return ShoreCollision(beached=True, lat=crossing.lat, lng=crossing.lng)
        return ShoreCollision(beached=False, lat=prev_lat, lng=prev_lng)

    def path_crosses_land(self, lat1: float, lng1: float, lat2: float, lng2: float) -> bool:
        for i in range(PATH_SAMPLES + 1):
            ratio = i / PATH_SAMPLES
            if not self.is_on_water(lat1 + (lat2 - lat1) * ratio,
                                    lng1 + (lng2 - lng1) * ratio).on_water:
                return True
        return False

    def find_coastline_intersection(self, lat1: float, lng1: float,
                                    lat2: float, lng2: float) -> Position:
        low, high = 0.0, 1.0
        for _ in range(BISECTION_ITERATIONS):
            mid = (low + high) / 2
            if self.is_on_water(lat1 + (lat2 - lat1) * mid, lng1 + (lng2 - lng1) * mid).on_water:
                low = mid
            else:
                high = mid
        ratio = (low + high) / 2
        return Position(lat1 + (lat2 - lat1) * ratio, lng1 + (lng2 - lng1) * ratio)

    def find_nearest_water(self, lat: float, lng: float) -> Position:
        """
        Search expanding rings (8 directions each) for a water point.

        Returns the input position unchanged if none is found within range.
        """
        r = NEAREST_WATER_STEP_DEG
        while r < NEAREST_WATER_RADIUS_DEG:
            for i in range(NEAREST_WATER_DIRECTIONS):
                angle = i / NEAREST_WATER_DIRECTIONS * 2 * math.pi
                test_lat = lat + r * math.cos(angle)
                test_lng = lng + r * math.sin(angle)
                if self.is_on_water(test_lat, test_lng).on_water:
                    return Position(test_lat, test_lng)
            r += NEAREST_WATER_STEP_DEG
        return Position(lat, lng)

    def get_water_depth(self, lat: float, lng: float) -> float:
        if self.depth_provider is None:
            return DEFAULT_DEPTH_M
        return self.depth_provider(lat, lng)

    def apply_shallow_water_effects(self, lat: float, lng: float, drift: Displacement) -> Displacement:
        """Slow drift by 50% below 5 m depth and 30% below the shallow threshold."""
        depth = self.get_water_depth(lat, lng)
        if depth >= self.shallow_water_depth:
            return drift
        factor = 0.5 if depth < 5.0 else 0.7
        return drift.scaled(factor)

    def apply_river_flow(self, lat: float, lng: float, drift: Displacement) -> Displacement:
        if self.river_flow_provider is None:
            return drift
        flow = self.river_flow_provider(lat, lng)
        if flow is None:
            return drift
        return drift + flow
