"""
Coordinate and geodesy helpers shared by every drift component.

Distances are in metres and angles in degrees (0=North, 90=East) unless noted.
"""

import math
from dataclasses import dataclass
from typing import Tuple

import numpy as np

EARTH_RADIUS_M = 6371000.0
METERS_PER_DEGREE = 111320.0
METERS_PER_NM = 1852.0
MPS_PER_KNOT = 0.514444


@dataclass(frozen=True)
class Position:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lng: float


@dataclass(frozen=True)
class Displacement:
    """A small positional change in degrees of latitude and longitude."""

    delta_lat: float = 0.0
    delta_lng: float = 0.0

    def __add__(self, other: "Displacement") -> "Displacement":
        return Displacement(
            self.delta_lat + other.delta_lat,
            self.delta_lng + other.delta_lng,
        )

    def scaled(self, factor: float) -> "Displacement":
        return Displacement(self.delta_lat * factor, self.delta_lng * factor)


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """
    Great-circle distance between two points.

    Returns:
        Distance in metres
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (math.sin(d_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2)
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_array(lat: float, lng: float, lats: np.ndarray, lngs: np.ndarray) -> np.ndarray:
    """Vectorised haversine distance (metres) from one point to many."""
    phi1 = np.radians(lat)
    phi2 = np.radians(lats)
    d_phi = phi2 - phi1
    d_lambda = np.radians(lngs - lng)

    a = np.sin(d_phi / 2) ** 2 + np.cos(phi1) * np.cos(phi2) * np.sin(d_lambda / 2) ** 2
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(a), np.sqrt(1 - a))


def calculate_bearing(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Initial bearing from point 1 to point 2, in [0, 360)."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_lambda = math.radians(lng2 - lng1)

    y = math.sin(d_lambda) * math.cos(phi2)
    x = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(d_lambda)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def destination_point(lat: float, lng: float, distance_m: float, bearing_deg: float) -> Position:
    """
    Point reached by travelling a distance along a great circle.

    Args:
        lat: Start latitude (degrees)
        lng: Start longitude (degrees)
        distance_m: Distance to travel (metres)
        bearing_deg: Initial bearing (degrees)

    Returns:
        Destination position
    """
    delta = distance_m / EARTH_RADIUS_M
    theta = math.radians(bearing_deg)
    phi1 = math.radians(lat)
    lambda1 = math.radians(lng)

    phi2 = math.asin(math.sin(phi1) * math.cos(delta) +
                     math.cos(phi1) * math.sin(delta) * math.cos(theta))
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    return Position(math.degrees(phi2), math.degrees(lambda2))


def meters_to_degrees(north_m: float, east_m: float, lat: float = 0.0) -> Displacement:
    """
    Small-angle conversion of a metric offset to degrees.

    Longitude is scaled by cos(latitude); 1 degree is taken as 111,320 m.
    """
    cos_lat = math.cos(math.radians(lat))
    # Guard the poles
    if abs(cos_lat) < 1e-12:
        cos_lat = 1e-12
    return Displacement(
        delta_lat=north_m / METERS_PER_DEGREE,
        delta_lng=east_m / (METERS_PER_DEGREE * cos_lat),
    )


def heading_to_components(distance_m: float, heading_deg: float) -> Tuple[float, float]:
    """Split a distance travelled on a heading into (north_m, east_m)."""
    heading = math.radians(heading_deg)
    return distance_m * math.cos(heading), distance_m * math.sin(heading)


def knots_to_mps(knots: float) -> float:
    return knots * MPS_PER_KNOT


def mps_to_knots(mps: float) -> float:
    return mps / MPS_PER_KNOT


def nm_to_meters(nm: float) -> float:
    return nm * METERS_PER_NM


def meters_to_nm(meters: float) -> float:
    return meters / METERS_PER_NM


def normalize_angle(angle: float) -> float:
    """Wrap an angle into [0, 360)."""
    angle = angle % 360.0
    # -0.0 % 360 and float rounding can land exactly on 360
    return 0.0 if angle >= 360.0 else angle
