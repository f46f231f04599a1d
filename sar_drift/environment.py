"""
Environmental manager for drift simulation.

Blends any number of named data sources and operator overrides into
per-location conditions for the wind, current, wave and tide channels.
"""

import logging
import math
import threading
import time
from collections import OrderedDict
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from .conditions import (
    DEFAULT_CONDITIONS,
    Channel,
    ChannelEnsemble,
    ChannelValue,
    CoverageArea,
    Current,
    EnvironmentalConditions,
    OperatorOverride,
    Source,
    SourcePayload,
    Tide,
    Waves,
    Wind,
    channel_value_from_dict,
)
from .geo import haversine_distance, nm_to_meters, normalize_angle

DEFAULT_CACHE_TTL = 300.0          # seconds
DEFAULT_CACHE_TIME_BUCKET = 300.0  # seconds of simulation time per cache key
DEFAULT_MAX_CACHE_ENTRIES = 100_000
CACHE_EDGE_TOLERANCE_M = 25.0      # points this close to an override boundary are not cached


class BlendingStrategy(str, Enum):
    WEIGHTED_AVERAGE = "weighted-average"
    RANDOM_SELECTION = "random-selection"
    ENSEMBLE = "ensemble"


def circular_mean(directions: Sequence[float], weights: Sequence[float]) -> float:
    """Weighted circular mean of headings in degrees, in [0, 360)."""
    sin_sum = sum(math.sin(math.radians(d)) * w for d, w in zip(directions, weights))
    cos_sum = sum(math.cos(math.radians(d)) * w for d, w in zip(directions, weights))
    return normalize_angle(math.degrees(math.atan2(sin_sum, cos_sum)))


def _weighted_mean(values: Sequence[float], weights: Sequence[float], total: float) -> float:
    return sum(v * w for v, w in zip(values, weights)) / total


def weighted_average(contributions: Sequence[Tuple[ChannelValue, float]]) -> ChannelValue:
    """
    Blend same-channel values by weight.

    Magnitudes use the weighted arithmetic mean, directions the weighted
    circular mean. A tide phase is taken from the heaviest contributor.

    Args:
        contributions: (value, weight) pairs with a positive total weight

    Returns:
        A value of the same type as the inputs
    """
    values = [v for v, _ in contributions]
    weights = [w for _, w in contributions]
    total = sum(weights)
    first = values[0]

    if isinstance(first, (Wind, Current)):
        return type(first)(
            speed=_weighted_mean([v.speed for v in values], weights, total),
            direction=circular_mean([v.direction for v in values], weights),
        )
    if isinstance(first, Waves):
        return Waves(
            height=_weighted_mean([v.height for v in values], weights, total),
            period=_weighted_mean([v.period for v in values], weights, total),
            direction=circular_mean([v.direction for v in values], weights),
        )
    heaviest = max(contributions, key=lambda c: c[1])[0]
    return Tide(
        height=_weighted_mean([v.height for v in values], weights, total),
        phase=heaviest.phase,
    )


class EnvironmentalManager:
    """
    Multi-source environmental data blender.

    Operator overrides take precedence over sources inside their coverage
    radius and are returned verbatim. Otherwise sources are spatially
    weighted and blended with the configured strategy. Results are cached
    per rounded location and time bucket, except near the boundary of a
    located override where one rounded cell can straddle the edge.

    All registries and the cache are guarded by one re-entrant lock, so a
    single manager may be shared by concurrently running simulations.
    """

    def __init__(
        self,
        blending_strategy: Union[BlendingStrategy, str] = BlendingStrategy.WEIGHTED_AVERAGE,
        cache_ttl: float = DEFAULT_CACHE_TTL,
        cache_time_bucket: float = DEFAULT_CACHE_TIME_BUCKET,
        max_cache_entries: int = DEFAULT_MAX_CACHE_ENTRIES,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize environmental manager.

        Args:
            blending_strategy: How sources are combined per channel
            cache_ttl: Soft expiry of cached conditions (seconds, wall clock)
            cache_time_bucket: Simulation seconds sharing one cache entry
            max_cache_entries: Upper bound on cache size (LRU eviction)
            rng: Random generator for random-selection blending
            clock: Wall clock used for cache expiry
        """
        self.blending_strategy = BlendingStrategy(blending_strategy)
        self.cache_ttl = cache_ttl
        self.cache_time_bucket = cache_time_bucket
        self.max_cache_entries = max_cache_entries
        self.rng = rng if rng is not None else np.random.default_rng()
        self._clock = clock

        self.sources: List[Source] = []
        self.operator_overrides: List[OperatorOverride] = []
        self._cache: "OrderedDict[tuple, Tuple[float, EnvironmentalConditions]]" = OrderedDict()
        self._lock = threading.RLock()
        self._defaulted_channels = set()

        logging.info("Environmental manager initialized (blending: %s)",
                     self.blending_strategy.value)

    # ------------------------------------------------------------------ inputs

    def add_source(
        self,
        name: str,
        data: Union[SourcePayload, dict],
        weight: float = 0.5,
        location: Optional[CoverageArea] = None,
    ) -> Source:
        """
        Register an environmental data source.

        Args:
            name: Source name (e.g. 'NOAA-buoy-42001')
            data: Conditions reported by the source
            weight: Base weight in [0, 1]
            location: Optional coverage circle; None applies everywhere

        Returns:
            The registered source
        """
        if not 0.0 <= weight <= 1.0:
            raise ValueError(f"Source weight must be in [0, 1], got {weight}")
        if isinstance(data, dict):
            data = SourcePayload.from_dict(data)

        source = Source(name=name, data=data, weight=weight, location=location)
        with self._lock:
            self.sources.append(source)
            self._invalidate()
        logging.info("Added source: %s (weight: %.2f)", name, weight)
        return source

    def add_operator_override(
        self,
        channel: Union[Channel, str],
        data: Union[ChannelValue, dict],
        location: Optional[CoverageArea] = None,
        weight: float = 1.0,
    ) -> OperatorOverride:
        """
        Register an operator override for one channel.

        Args:
            channel: 'wind', 'current', 'wave' or 'tide'
            data: Override value, returned verbatim where it applies
            location: Optional coverage circle; None is a global override
            weight: Precedence among overlapping overrides (1.0 = highest)

        Returns:
            The registered override
        """
        channel = Channel(channel)
        if isinstance(data, dict):
            data = channel_value_from_dict(channel, data)

        override = OperatorOverride(channel=channel, data=data, location=location, weight=weight)
        with self._lock:
            self.operator_overrides.append(override)
            self._invalidate()

        if location is not None:
            logging.info("Operator override added: %s (weight: %.2f) at %.4f, %.4f radius %.2f nm",
                         channel.value, weight, location.lat, location.lng, location.radius_nm)
        else:
            logging.info("Operator override added: %s (weight: %.2f), global", channel.value, weight)
        return override

    def set_blending_strategy(self, strategy: Union[BlendingStrategy, str]):
        with self._lock:
            self.blending_strategy = BlendingStrategy(strategy)
            self._invalidate()
        logging.info("Blending strategy changed to: %s", self.blending_strategy.value)

    def clear_sources(self):
        with self._lock:
            self.sources = []
            self._invalidate()
        logging.info("All sources cleared")

    def clear_overrides(self):
        with self._lock:
            self.operator_overrides = []
            self._invalidate()
        logging.info("All operator overrides cleared")

    def _invalidate(self):
        self._cache.clear()
        self._defaulted_channels.clear()

    # ----------------------------------------------------------------- queries

    def get_conditions_at(self, lat: float, lng: float, time_s: float = 0.0) -> EnvironmentalConditions:
        """
        Get blended conditions at a location and simulation time.

        Args:
            lat: Latitude (degrees)
            lng: Longitude (degrees)
            time_s: Simulation time (seconds)

        Returns:
            EnvironmentalConditions for all four channels
        """
        key = (round(lat, 4), round(lng, 4), math.floor(time_s / self.cache_time_bucket))

        with self._lock:
            cacheable = (self.blending_strategy is not BlendingStrategy.RANDOM_SELECTION
                         and not self._near_override_edge(lat, lng))
            if cacheable:
                cached = self._cache.get(key)
                if cached is not None:
                    stamp, conditions = cached
                    if self._clock() - stamp < self.cache_ttl:
                        self._cache.move_to_end(key)
                        return conditions
                    del self._cache[key]

            conditions = EnvironmentalConditions(
                wind=self.get_blended_wind(lat, lng),
                current=self.get_blended_current(lat, lng),
                waves=self.get_blended_waves(lat, lng),
                tide=self.get_blended_tide(lat, lng),
            )

            if cacheable:
                self._cache[key] = (self._clock(), conditions)
                while len(self._cache) > self.max_cache_entries:
                    self._cache.popitem(last=False)

        return conditions

    def get_blended_wind(self, lat: float, lng: float):
        return self.get_blended(Channel.WIND, lat, lng)

    def get_blended_current(self, lat: float, lng: float):
        return self.get_blended(Channel.CURRENT, lat, lng)

    def get_blended_waves(self, lat: float, lng: float):
        return self.get_blended(Channel.WAVE, lat, lng)

    def get_blended_tide(self, lat: float, lng: float):
        return self.get_blended(Channel.TIDE, lat, lng)

    def get_blended(self, channel: Channel, lat: float, lng: float):
        """
        Resolve one channel at a location.

        An applicable operator override wins outright. Otherwise every
        source carrying the channel with a positive spatial weight is
        blended; with none left the channel falls back to its default.
        """
        with self._lock:
            override = self.get_operator_override(channel, lat, lng)
            if override is not None:
                return override.data

            contributions = []
            for source in self.sources:
                value = source.data.get(channel)
                if value is None:
                    continue
                weight = self.calculate_spatial_weight(source, lat, lng)
                if weight > 0:
                    contributions.append((value, weight))

            if not contributions:
                if channel not in self._defaulted_channels:
                    self._defaulted_channels.add(channel)
                    logging.warning("No %s data available near %.4f, %.4f; using default",
                                    channel.value, lat, lng)
                return DEFAULT_CONDITIONS[channel]

            return self.blend(channel, contributions)

    def blend(self, channel: Channel, contributions: Sequence[Tuple[ChannelValue, float]]):
        """Combine positive-weight contributions with the active strategy."""
        if len(contributions) == 1:
            return contributions[0][0]

        if self.blending_strategy is BlendingStrategy.RANDOM_SELECTION:
            return ChannelEnsemble(channel, tuple(contributions)).select(self.rng)
        if self.blending_strategy is BlendingStrategy.ENSEMBLE:
            return ChannelEnsemble(channel, tuple(contributions))
        return weighted_average(contributions)

    def get_operator_override(self, channel: Channel, lat: float, lng: float) -> Optional[OperatorOverride]:
        """Highest-weight override for the channel covering the point, if any."""
        relevant = []
        for override in self.operator_overrides:
            if override.channel is not channel:
                continue
            if override.location is None or self._within(override.location, lat, lng):
                relevant.append(override)

        if not relevant:
            return None
        return max(relevant, key=lambda o: o.weight)

    def calculate_spatial_weight(self, source: Source, lat: float, lng: float) -> float:
        """Base weight with linear falloff to zero at the coverage radius."""
        if source.location is None:
            return source.weight

        distance = haversine_distance(lat, lng, source.location.lat, source.location.lng)
        radius_m = nm_to_meters(source.location.radius_nm)
        if radius_m <= 0 or distance > radius_m:
            return 0.0
        return source.weight * (1.0 - distance / radius_m)

    @staticmethod
    def _within(area: CoverageArea, lat: float, lng: float) -> bool:
        distance = haversine_distance(lat, lng, area.lat, area.lng)
        return distance <= nm_to_meters(area.radius_nm)

    def _near_override_edge(self, lat: float, lng: float) -> bool:
        for override in self.operator_overrides:
            area = override.location
            if area is None:
                continue
            distance = haversine_distance(lat, lng, area.lat, area.lng)
            if abs(distance - nm_to_meters(area.radius_nm)) <= CACHE_EDGE_TOLERANCE_M:
                return True
        return False

    def get_statistics(self) -> Dict[str, object]:
        with self._lock:
            return {
                "source_count": len(self.sources),
                "override_count": len(self.operator_overrides),
                "cache_size": len(self._cache),
                "blending_strategy": self.blending_strategy.value,
            }
