"""
Tests for environmental source blending, overrides and caching.
"""

import numpy as np
import pytest
from sar_drift.conditions import (
    DEFAULT_CONDITIONS,
    Channel,
    ChannelEnsemble,
    CoverageArea,
    Current,
    SourcePayload,
    Wind,
)
from sar_drift.environment import EnvironmentalManager, circular_mean, weighted_average
from sar_drift.geo import destination_point, nm_to_meters


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


P = (29.7604, -95.3698)


def test_single_source_returned_verbatim():
    """Test a lone source is returned unchanged at any nearby point."""
    manager = EnvironmentalManager(rng=np.random.default_rng(0))
    manager.add_source("buoy", {"wind": {"speed": 15, "direction": 270}}, weight=0.8)

    assert manager.get_blended_wind(*P) == Wind(speed=15.0, direction=270.0)
    assert manager.get_blended_wind(P[0] + 0.2, P[1] - 0.2) == Wind(speed=15.0, direction=270.0)


def test_equal_weight_winds_blend_circularly():
    """Test north and east winds of equal weight blend to north-east."""
    manager = EnvironmentalManager()
    manager.add_source("a", {"wind": {"speed": 10, "direction": 0}}, weight=0.5)
    manager.add_source("b", {"wind": {"speed": 10, "direction": 90}}, weight=0.5)

    wind = manager.get_blended_wind(*P)
    assert wind.direction == pytest.approx(45.0)
    assert wind.speed == pytest.approx(10.0)


def test_circular_mean_across_north():
    """Test headings either side of north average to north, not south."""
    mean = circular_mean([350.0, 10.0], [1.0, 1.0])
    assert min(mean, 360.0 - mean) == pytest.approx(0.0, abs=1e-9)


def test_weighted_average_speed():
    """Test magnitudes use the weighted arithmetic mean."""
    blended = weighted_average([(Current(1.0, 90.0), 0.75), (Current(2.0, 90.0), 0.25)])
    assert blended.speed == pytest.approx(1.25)
    assert blended.direction == pytest.approx(90.0)


def test_override_wins_inside_radius_only():
    """Test an override applies inside its circle and sources apply outside."""
    manager = EnvironmentalManager()
    for i, (speed, direction, weight) in enumerate([(0.5, 80, 0.9), (0.8, 100, 0.6), (1.1, 120, 0.3)]):
        manager.add_source(
            f"source-{i}",
            {"current": {"speed": speed, "direction": direction}},
            weight=weight,
            location=CoverageArea(P[0], P[1], radius_nm=50.0),
        )
    override = Current(speed=2.0, direction=45.0)
    manager.add_operator_override("current", override, location=CoverageArea(P[0], P[1], radius_nm=1.0))

    inside = destination_point(P[0], P[1], 1000.0, 45.0)
    assert manager.get_blended_current(inside.lat, inside.lng) == override

    outside = destination_point(P[0], P[1], 2000.0, 45.0)
    expected = weighted_average([
        (s.data.current, manager.calculate_spatial_weight(s, outside.lat, outside.lng))
        for s in manager.sources
    ])
    blended = manager.get_blended_current(outside.lat, outside.lng)
    assert blended != override
    assert blended.speed == pytest.approx(expected.speed)
    assert blended.direction == pytest.approx(expected.direction)


def test_global_override_and_highest_weight():
    """Test overrides without a location apply everywhere and the heaviest wins."""
    manager = EnvironmentalManager()
    manager.add_source("buoy", {"wind": {"speed": 5, "direction": 0}})
    manager.add_operator_override(Channel.WIND, {"speed": 20, "direction": 180}, weight=0.5)
    manager.add_operator_override(Channel.WIND, {"speed": 30, "direction": 200}, weight=0.9)

    assert manager.get_blended_wind(0.0, 0.0) == Wind(30.0, 200.0)
    assert manager.get_blended_wind(45.0, 45.0) == Wind(30.0, 200.0)


def test_spatial_weight_falloff():
    """Test spatial weight falls linearly to zero at the coverage radius."""
    manager = EnvironmentalManager()
    source = manager.add_source("buoy", SourcePayload(wind=Wind(10, 0)), weight=0.8,
                                location=CoverageArea(P[0], P[1], radius_nm=10.0))
    assert manager.calculate_spatial_weight(source, *P) == pytest.approx(0.8)
    halfway = destination_point(P[0], P[1], 5 * 1852.0, 0.0)
    assert manager.calculate_spatial_weight(source, halfway.lat, halfway.lng) == pytest.approx(0.4, rel=1e-3)
    far = destination_point(P[0], P[1], 20 * 1852.0, 0.0)
    assert manager.calculate_spatial_weight(source, far.lat, far.lng) == 0.0


def test_defaults_when_no_sources():
    """Test every channel falls back to its default without data."""
    manager = EnvironmentalManager()
    conditions = manager.get_conditions_at(*P)
    for channel in Channel:
        assert conditions.get(channel) == DEFAULT_CONDITIONS[channel]


def test_invalid_source_weight_rejected():
    """Test weights outside [0, 1] are rejected."""
    manager = EnvironmentalManager()
    with pytest.raises(ValueError):
        manager.add_source("bad", {"wind": {"speed": 1, "direction": 0}}, weight=1.5)


def test_cache_hits_and_invalidation():
    """Test conditions are cached and dropped when sources change."""
    clock = FakeClock()
    manager = EnvironmentalManager(clock=clock)
    manager.add_source("buoy", {"wind": {"speed": 12, "direction": 90}})

    first = manager.get_conditions_at(*P, 0.0)
    assert manager.get_conditions_at(*P, 120.0) is first

    clock.now = 301.0
    expired = manager.get_conditions_at(*P, 120.0)
    assert expired is not first
    assert expired == first

    manager.add_source("ship", {"wind": {"speed": 8, "direction": 90}})
    assert manager.get_conditions_at(*P, 120.0).wind.speed == pytest.approx(10.0)


def test_override_edge_not_shared_through_cache():
    """Test points either side of an override boundary each get their own conditions."""
    manager = EnvironmentalManager()
    manager.add_source("buoy", {"current": {"speed": 0.5, "direction": 90}})
    override = Current(speed=2.0, direction=45.0)
    manager.add_operator_override("current", override, location=CoverageArea(P[0], P[1], radius_nm=1.0))

    edge = nm_to_meters(1.0)
    inside = destination_point(P[0], P[1], edge - 1.0, 90.0)
    outside = destination_point(P[0], P[1], edge + 1.0, 90.0)

    assert manager.get_conditions_at(inside.lat, inside.lng, 0.0).current == override
    assert manager.get_conditions_at(outside.lat, outside.lng, 0.0).current == Current(0.5, 90.0)
    assert manager.get_statistics()["cache_size"] == 0

    far = destination_point(P[0], P[1], 3 * edge, 90.0)
    manager.get_conditions_at(far.lat, far.lng, 0.0)
    assert manager.get_statistics()["cache_size"] == 1


def test_cache_is_bounded():
    """Test least recently used entries are evicted at capacity."""
    manager = EnvironmentalManager(max_cache_entries=2)
    for i in range(5):
        manager.get_conditions_at(P[0] + i * 0.01, P[1])
    assert manager.get_statistics()["cache_size"] == 2


def test_ensemble_strategy_keeps_members():
    """Test ensemble blending returns all members and resolves to one."""
    manager = EnvironmentalManager(blending_strategy="ensemble")
    manager.add_source("a", {"wind": {"speed": 5, "direction": 0}})
    manager.add_source("b", {"wind": {"speed": 15, "direction": 180}})

    conditions = manager.get_conditions_at(*P)
    assert isinstance(conditions.wind, ChannelEnsemble)
    assert conditions.wind.count == 2
    resolved = conditions.resolved(np.random.default_rng(1))
    assert resolved.wind in (Wind(5, 0), Wind(15, 180))


def test_random_selection_picks_a_member():
    """Test random selection returns one of the contributing values."""
    manager = EnvironmentalManager(blending_strategy="random-selection", rng=np.random.default_rng(3))
    manager.add_source("a", {"current": {"speed": 0.5, "direction": 0}})
    manager.add_source("b", {"current": {"speed": 1.5, "direction": 90}})

    picks = {manager.get_blended_current(*P) for _ in range(50)}
    assert picks <= {Current(0.5, 0), Current(1.5, 90)}
    assert manager.get_statistics()["cache_size"] == 0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
