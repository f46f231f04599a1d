"""
Tests for geodesic helpers and unit conversions.
"""

import numpy as np
import pytest
from sar_drift.geo import (
    Displacement,
    calculate_bearing,
    destination_point,
    haversine_array,
    haversine_distance,
    heading_to_components,
    knots_to_mps,
    meters_to_degrees,
    mps_to_knots,
    nm_to_meters,
    normalize_angle,
)


def test_haversine_one_degree_latitude():
    """Test one degree of latitude is about 111 km."""
    d = haversine_distance(0.0, 0.0, 1.0, 0.0)
    assert d == pytest.approx(111195.0, rel=1e-3)
    assert haversine_distance(29.76, -95.37, 29.76, -95.37) == 0.0


def test_haversine_array_matches_scalar():
    """Test vectorised distance agrees with the scalar version."""
    lats = np.array([29.0, 29.5, 30.0])
    lngs = np.array([-95.0, -94.5, -94.0])
    distances = haversine_array(29.76, -95.37, lats, lngs)
    for lat, lng, d in zip(lats, lngs, distances):
        assert d == pytest.approx(haversine_distance(29.76, -95.37, lat, lng))


def test_bearing_cardinal_directions():
    """Test bearings to points due north and due east."""
    assert calculate_bearing(0.0, 0.0, 1.0, 0.0) == pytest.approx(0.0, abs=1e-9)
    assert calculate_bearing(0.0, 0.0, 0.0, 1.0) == pytest.approx(90.0)
    assert calculate_bearing(0.0, 0.0, -1.0, 0.0) == pytest.approx(180.0)


def test_destination_point_round_trip_distance():
    """Test travelling a distance along a bearing lands that far away."""
    dest = destination_point(29.76, -95.37, 1852.0, 45.0)
    assert haversine_distance(29.76, -95.37, dest.lat, dest.lng) == pytest.approx(1852.0, rel=1e-6)
    assert calculate_bearing(29.76, -95.37, dest.lat, dest.lng) == pytest.approx(45.0, abs=0.01)


def test_meters_to_degrees_scales_longitude():
    """Test longitude offsets grow with latitude."""
    equator = meters_to_degrees(0.0, 1000.0, 0.0)
    north = meters_to_degrees(0.0, 1000.0, 60.0)
    assert north.delta_lng == pytest.approx(equator.delta_lng * 2.0, rel=1e-6)
    assert meters_to_degrees(111320.0, 0.0).delta_lat == pytest.approx(1.0)


def test_heading_components():
    """Test heading toward east puts the whole distance in the east component."""
    north, east = heading_to_components(100.0, 90.0)
    assert north == pytest.approx(0.0, abs=1e-9)
    assert east == pytest.approx(100.0)


def test_displacement_arithmetic():
    """Test displacement addition and scaling."""
    d = Displacement(1.0, 2.0) + Displacement(0.5, -1.0)
    assert d == Displacement(1.5, 1.0)
    assert d.scaled(-1) == Displacement(-1.5, -1.0)


def test_unit_conversions():
    """Test knot and nautical mile conversions."""
    assert knots_to_mps(1.0) == pytest.approx(0.514444)
    assert mps_to_knots(knots_to_mps(12.0)) == pytest.approx(12.0)
    assert nm_to_meters(0.5) == pytest.approx(926.0)


def test_normalize_angle():
    """Test angles wrap into [0, 360)."""
    assert normalize_angle(370.0) == pytest.approx(10.0)
    assert normalize_angle(-90.0) == pytest.approx(270.0)
    assert normalize_angle(360.0) == 0.0


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
