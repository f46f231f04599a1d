"""
Density calculator for particle distributions.

Turns the active particles of a run into a normalized kernel density grid,
threshold contours, convex-hull probability polygons and heat-map output
(point lists, GeoJSON, or a georeferenced PNG with a PGW world file).
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np

from .geo import METERS_PER_DEGREE, haversine_array
from .particle import ParticleStatus

DEFAULT_GRID_RESOLUTION = 100
DEFAULT_KERNEL_BANDWIDTH = 1000.0  # meters
BOUNDS_PADDING = 0.1
HEAT_MAP_FLOOR = 0.01
DEFAULT_CONTOUR_LEVELS = (0.5, 0.75, 0.9)
DEFAULT_POLYGON_LEVELS = (0.5, 0.9)

# Particles per KDE block; bounds peak memory at grid_resolution * block floats
KDE_BLOCK_SIZE = 20_000


class KernelType(str, Enum):
    GAUSSIAN = "gaussian"
    EPANECHNIKOV = "epanechnikov"


@dataclass(frozen=True)
class Bounds:
    min_lat: float
    max_lat: float
    min_lng: float
    max_lng: float

    @classmethod
    def around(cls, lats: np.ndarray, lngs: np.ndarray, padding: float = BOUNDS_PADDING) -> "Bounds":
        """Bounding box of the points grown by `padding` of its extent on each side."""
        min_lat, max_lat = float(lats.min()), float(lats.max())
        min_lng, max_lng = float(lngs.min()), float(lngs.max())
        lat_pad = (max_lat - min_lat) * padding
        lng_pad = (max_lng - min_lng) * padding
        return cls(min_lat - lat_pad, max_lat + lat_pad, min_lng - lng_pad, max_lng + lng_pad)


@dataclass(frozen=True)
class LatLng:
    lat: float
    lng: float


@dataclass(frozen=True)
class DensityGrid:
    """Normalized density values; row 0 is the southern edge."""

    grid: np.ndarray
    bounds: Bounds
    rows: int
    cols: int
    cell_height: float
    cell_width: float
    max_density: float
    particle_count: int

    @classmethod
    def from_array(cls, values, bounds: Bounds, particle_count: int = 0) -> "DensityGrid":
        """Wrap an already normalized 2-D array."""
        grid = np.asarray(values, dtype=float)
        if grid.ndim != 2 or grid.size == 0:
            raise ValueError("Density grid must be a non-empty 2-D array")
        rows, cols = grid.shape
        return cls(
            grid=grid,
            bounds=bounds,
            rows=rows,
            cols=cols,
            cell_height=(bounds.max_lat - bounds.min_lat) / rows,
            cell_width=(bounds.max_lng - bounds.min_lng) / cols,
            max_density=float(grid.max()),
            particle_count=particle_count,
        )

    def cell_center(self, row: int, col: int) -> LatLng:
        return LatLng(
            self.bounds.min_lat + (row + 0.5) * self.cell_height,
            self.bounds.min_lng + (col + 0.5) * self.cell_width,
        )


@dataclass(frozen=True)
class ContourCell:
    row: int
    col: int
    lat: float
    lng: float
    value: float


@dataclass(frozen=True)
class Contour:
    level: float
    percentage: int
    cells: List[ContourCell]


@dataclass(frozen=True)
class ProbabilityPolygon:
    level: float
    percentage: int
    vertices: List[LatLng]
    area: float  # square meters

    def contains(self, lat: float, lng: float, tolerance: float = 1e-9) -> bool:
        """True if the point lies inside or on the hull."""
        n = len(self.vertices)
        if n == 0:
            return False
        if n == 1:
            v = self.vertices[0]
            return abs(v.lat - lat) <= tolerance and abs(v.lng - lng) <= tolerance
        if n == 2:
            return _on_segment(self.vertices, lat, lng, tolerance)
        point = LatLng(lat, lng)
        for i in range(n):
            if _cross(self.vertices[i], self.vertices[(i + 1) % n], point) < -tolerance:
                return False
        return True


@dataclass(frozen=True)
class HeatMapPoint:
    lat: float
    lng: float
    weight: float


def _cross(o: LatLng, a: LatLng, b: LatLng) -> float:
    return (a.lng - o.lng) * (b.lat - o.lat) - (a.lat - o.lat) * (b.lng - o.lng)


def _on_segment(segment: Sequence[LatLng], lat: float, lng: float, tolerance: float) -> bool:
    a, b = segment
    p = LatLng(lat, lng)
    if abs(_cross(a, b, p)) > tolerance:
        return False
    return (min(a.lat, b.lat) - tolerance <= lat <= max(a.lat, b.lat) + tolerance and
            min(a.lng, b.lng) - tolerance <= lng <= max(a.lng, b.lng) + tolerance)


def convex_hull(points: Sequence[LatLng]) -> List[LatLng]:
    """
    Monotone-chain convex hull, counter-clockwise in (lng, lat).

    Fewer than three points are returned as given.
    """
    if len(points) < 3:
        return list(points)

    ordered = sorted(set(points), key=lambda p: (p.lng, p.lat))
    if len(ordered) < 3:
        return ordered

    lower: List[LatLng] = []
    for p in ordered:
        while len(lower) >= 2 and _cross(lower[-2], lower[-1], p) <= 0:
            lower.pop()
        lower.append(p)

    upper: List[LatLng] = []
    for p in reversed(ordered):
        while len(upper) >= 2 and _cross(upper[-2], upper[-1], p) <= 0:
            upper.pop()
        upper.append(p)

    return lower[:-1] + upper[:-1]


def polygon_area_m2(vertices: Sequence[LatLng]) -> float:
    """Shoelace area converted from square degrees with a flat-earth scale."""
    if len(vertices) < 3:
        return 0.0
    area = 0.0
    n = len(vertices)
    for i in range(n):
        j = (i + 1) % n
        area += vertices[i].lng * vertices[j].lat
        area -= vertices[j].lng * vertices[i].lat
    return abs(area) / 2.0 * METERS_PER_DEGREE * METERS_PER_DEGREE


class DensityCalculator:
    """Kernel density estimation over particle positions."""

    def __init__(
        self,
        grid_resolution: int = DEFAULT_GRID_RESOLUTION,
        kernel_bandwidth: float = DEFAULT_KERNEL_BANDWIDTH,
        kernel_type: KernelType = KernelType.GAUSSIAN,
    ):
        """
        Initialize density calculator.

        Args:
            grid_resolution: Cells per side of the square grid
            kernel_bandwidth: Kernel bandwidth (meters)
            kernel_type: Gaussian or Epanechnikov kernel
        """
        if grid_resolution <= 0:
            raise ValueError(f"Grid resolution must be positive, got {grid_resolution}")
        if kernel_bandwidth <= 0:
            raise ValueError(f"Kernel bandwidth must be positive, got {kernel_bandwidth}")

        self.grid_resolution = grid_resolution
        self.kernel_bandwidth = kernel_bandwidth
        self.kernel_type = KernelType(kernel_type)

        self.density_grid: Optional[DensityGrid] = None
        self.contours: List[Contour] = []
        self.polygons: List[ProbabilityPolygon] = []

        logging.info("Density calculator initialized: %dx%d grid, %s kernel (%.0f m)",
                     grid_resolution, grid_resolution, self.kernel_type.value, kernel_bandwidth)

    def kernel(self, distances: np.ndarray) -> np.ndarray:
        u = distances / self.kernel_bandwidth
        if self.kernel_type is KernelType.GAUSSIAN:
            return np.exp(-0.5 * u ** 2)
        return np.where(u <= 1.0, 0.75 * (1.0 - u ** 2), 0.0)

    def calculate_density_grid(self, particles) -> Optional[DensityGrid]:
        """
        Compute a normalized KDE grid over the active particles.

        Args:
            particles: Objects with lat, lng and status attributes

        Returns:
            DensityGrid, or None when there are no active particles
        """
        active = [p for p in particles if p.status is ParticleStatus.ACTIVE]
        if not active:
            logging.warning("No active particles to calculate density")
            return None

        lats = np.array([p.lat for p in active])
        lngs = np.array([p.lng for p in active])
        bounds = Bounds.around(lats, lngs)

        rows = cols = self.grid_resolution
        cell_height = (bounds.max_lat - bounds.min_lat) / rows
        cell_width = (bounds.max_lng - bounds.min_lng) / cols
        cell_lngs = bounds.min_lng + (np.arange(cols) + 0.5) * cell_width

        logging.info("Calculating density grid from %d active particles", len(active))

        grid = np.zeros((rows, cols))
        for row in range(rows):
            cell_lat = bounds.min_lat + (row + 0.5) * cell_height
            for start in range(0, len(active), KDE_BLOCK_SIZE):
                block = slice(start, start + KDE_BLOCK_SIZE)
                distances = haversine_array(cell_lat, cell_lngs[:, None],
                                            lats[None, block], lngs[None, block])
                grid[row] += self.kernel(distances).sum(axis=1)
        grid /= len(active)

        max_density = float(grid.max())
        if max_density > 0:
            grid = grid / max_density

        self.density_grid = DensityGrid(
            grid=grid,
            bounds=bounds,
            rows=rows,
            cols=cols,
            cell_height=cell_height,
            cell_width=cell_width,
            max_density=max_density,
            particle_count=len(active),
        )
        self.contours = []
        self.polygons = []

        logging.info("Density grid calculated (max density: %.4f)", max_density)
        return self.density_grid

    def _require_grid(self, density_grid: Optional[DensityGrid]) -> Optional[DensityGrid]:
        grid = density_grid or self.density_grid
        if grid is None:
            logging.warning("No density grid; run calculate_density_grid first")
        return grid

    def generate_contours(
        self,
        levels: Sequence[float] = DEFAULT_CONTOUR_LEVELS,
        density_grid: Optional[DensityGrid] = None,
    ) -> List[Contour]:
        """
        Threshold the grid at each level using 2x2 cell averages.

        Each passing block reports the coordinates of the corner shared by
        its four cells.
        """
        _validate_levels(levels)
        dg = self._require_grid(density_grid)
        if dg is None:
            return []

        g = dg.grid
        averages = (g[:-1, :-1] + g[:-1, 1:] + g[1:, :-1] + g[1:, 1:]) / 4.0

        contours = []
        for level in levels:
            cells = [
                ContourCell(
                    row=int(r),
                    col=int(c),
                    lat=dg.bounds.min_lat + (r + 1) * dg.cell_height,
                    lng=dg.bounds.min_lng + (c + 1) * dg.cell_width,
                    value=float(averages[r, c]),
                )
                for r, c in zip(*np.nonzero(averages >= level))
            ]
            contours.append(Contour(level=level, percentage=int(round(level * 100)), cells=cells))

        self.contours = contours
        logging.info("Generated %d contours", len(contours))
        return contours

    def generate_probability_polygons(
        self,
        levels: Sequence[float] = DEFAULT_POLYGON_LEVELS,
        density_grid: Optional[DensityGrid] = None,
    ) -> List[ProbabilityPolygon]:
        """Convex hull of the cell centers at or above each level."""
        _validate_levels(levels)
        dg = self._require_grid(density_grid)
        if dg is None:
            return []

        polygons = []
        for level in levels:
            points = [dg.cell_center(int(r), int(c)) for r, c in zip(*np.nonzero(dg.grid >= level))]
            hull = convex_hull(points)
            polygons.append(ProbabilityPolygon(
                level=level,
                percentage=int(round(level * 100)),
                vertices=hull,
                area=polygon_area_m2(hull),
            ))

        self.polygons = polygons
        logging.info("Generated %d probability polygons", len(polygons))
        return polygons

    def export_heat_map_data(self, density_grid: Optional[DensityGrid] = None) -> List[HeatMapPoint]:
        dg = density_grid or self.density_grid
        if dg is None:
            return []
        points = []
        for r, c in zip(*np.nonzero(dg.grid > HEAT_MAP_FLOOR)):
            center = dg.cell_center(int(r), int(c))
            points.append(HeatMapPoint(center.lat, center.lng, float(dg.grid[r, c])))
        return points

    def export_geojson(self) -> dict:
        features = []
        for contour in self.contours:
            features.append({
                "type": "Feature",
                "geometry": {
                    "type": "MultiPoint",
                    "coordinates": [[c.lng, c.lat] for c in contour.cells],
                },
                "properties": {
                    "type": "contour",
                    "level": contour.level,
                    "percentage": contour.percentage,
                },
            })
        for polygon in self.polygons:
            ring = [[v.lng, v.lat] for v in polygon.vertices]
            if ring:
                ring.append(ring[0])
            features.append({
                "type": "Feature",
                "geometry": {"type": "Polygon", "coordinates": [ring]},
                "properties": {
                    "type": "probability-polygon",
                    "level": polygon.level,
                    "percentage": polygon.percentage,
                    "area": polygon.area,
                },
            })
        return {"type": "FeatureCollection", "features": features}

    def save_heat_map(self, filename: str, colormap: str = "hot",
                      density_grid: Optional[DensityGrid] = None):
        """
        Save the density grid as PNG with a PGW world file.

        The PNG holds one pixel per grid cell so the world file georeferences
        it exactly. An annotated figure with axes and a colorbar is written
        alongside as <filename>_plot.png.

        Args:
            filename: Output filename (without extension)
            colormap: Matplotlib colormap name
            density_grid: Grid to render (last calculated grid if None)
        """
        import matplotlib.pyplot as plt

        dg = self._require_grid(density_grid)
        if dg is None:
            return

        raster = np.flipud(dg.grid)
        plt.imsave(f"{filename}.png", raster, cmap=colormap, vmin=0, vmax=1)
        self._save_world_file(filename, dg)

        b = dg.bounds
        fig, ax = plt.subplots(figsize=(10, 8))
        im = ax.imshow(
            raster,
            extent=[b.min_lng, b.max_lng, b.min_lat, b.max_lat],
            cmap=colormap,
            vmin=0,
            vmax=1,
            interpolation='bilinear'
        )
        plt.colorbar(im, ax=ax, label='Relative probability density')
        ax.set_xlabel('Longitude (°)')
        ax.set_ylabel('Latitude (°)')
        ax.set_title('Drift Probability Density')

        fig.savefig(f"{filename}_plot.png", dpi=150, bbox_inches='tight')
        plt.close(fig)

        logging.info("Heat map saved to %s.png", filename)

    @staticmethod
    def _save_world_file(filename: str, dg: DensityGrid):
        """
        Save PGW world file for georeferencing.

        Lines: x pixel size, two rotation terms, negative y pixel size, then
        the coordinates of the upper-left pixel center.
        """
        with open(f"{filename}.pgw", 'w') as f:
            f.write(f"{dg.cell_width}\n")
            f.write("0\n")
            f.write("0\n")
            f.write(f"{-dg.cell_height}\n")
            f.write(f"{dg.bounds.min_lng + dg.cell_width / 2}\n")
            f.write(f"{dg.bounds.max_lat - dg.cell_height / 2}\n")

    def get_statistics(self) -> Optional[dict]:
        """
        Get statistics about the density grid.

        Returns:
            Dictionary with statistics, or None before any grid is calculated
        """
        if self.density_grid is None:
            return None
        dg = self.density_grid
        return {
            "grid_resolution": f"{dg.rows}x{dg.cols}",
            "max_density": dg.max_density,
            "particle_count": dg.particle_count,
            "contour_count": len(self.contours),
            "polygon_count": len(self.polygons),
        }


def _validate_levels(levels: Sequence[float]):
    if not levels:
        raise ValueError("At least one probability level is required")
    for level in levels:
        if not 0.0 < level <= 1.0:
            raise ValueError(f"Probability levels must be in (0, 1], got {level}")
